"""Catalog of draft and published process definitions."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional

from .contracts import DefinitionStatus, ProcessDefinition, new_id, utcnow
from .engine.validation import validate_definition
from .exceptions import ApprovalGuardError, DefinitionNotFoundError, DefinitionValidationError

logger = logging.getLogger(__name__)


class DefinitionCatalog:
    """Stores definitions by id and versions published ones per key.

    Published definitions are never modified; publishing an edited draft
    creates a new version under the same ``definition_key``.
    """

    def __init__(self, lock: Optional[threading.RLock] = None) -> None:
        self._definitions: Dict[str, ProcessDefinition] = {}
        self._lock = lock or threading.RLock()

    def save_draft(self, definition: ProcessDefinition) -> ProcessDefinition:
        with self._lock:
            existing = self._definitions.get(definition.id)
            if existing is not None and existing.is_published:
                raise ApprovalGuardError(
                    f"Definition {definition.id} is published and cannot be edited"
                )
            draft = definition.model_copy(
                deep=True,
                update={"status": DefinitionStatus.DRAFT, "published_at": None},
            )
            self._definitions[draft.id] = draft
            return draft.model_copy(deep=True)

    def publish(self, definition: ProcessDefinition) -> ProcessDefinition:
        """Validate ``definition`` and store it as the next version of its key."""
        issues = validate_definition(definition)
        if issues:
            logger.warning(
                f"Rejected publish of definition {definition.id}: "
                f"{[issue.code for issue in issues]}"
            )
            raise DefinitionValidationError(issues)

        with self._lock:
            key = definition.definition_key or definition.id
            version = max(
                (d.version or 0 for d in self._definitions.values() if d.definition_key == key),
                default=0,
            ) + 1
            definition_id = definition.id
            existing = self._definitions.get(definition_id)
            if existing is not None and existing.is_published:
                definition_id = new_id()
            published = definition.model_copy(
                deep=True,
                update={
                    "id": definition_id,
                    "definition_key": key,
                    "version": version,
                    "status": DefinitionStatus.PUBLISHED,
                    "published_at": utcnow(),
                },
            )
            self._definitions[published.id] = published
        logger.info(f"Published definition {published.id} as {key} v{version}")
        return published.model_copy(deep=True)

    def get(self, definition_id: str) -> ProcessDefinition:
        with self._lock:
            definition = self._definitions.get(definition_id)
            if definition is None:
                raise DefinitionNotFoundError(definition_id)
            return definition.model_copy(deep=True)

    def get_version(self, definition_key: str, version: int) -> ProcessDefinition:
        with self._lock:
            for definition in self._definitions.values():
                if (
                    definition.definition_key == definition_key
                    and definition.version == version
                    and definition.is_published
                ):
                    return definition.model_copy(deep=True)
        raise DefinitionNotFoundError(f"{definition_key} v{version}")

    def latest(self, definition_key: str) -> ProcessDefinition:
        with self._lock:
            published = [
                d
                for d in self._definitions.values()
                if d.definition_key == definition_key and d.is_published
            ]
            if not published:
                raise DefinitionNotFoundError(definition_key)
            return max(published, key=lambda d: d.version or 0).model_copy(deep=True)

    def list(self) -> List[ProcessDefinition]:
        with self._lock:
            return [d.model_copy(deep=True) for d in self._definitions.values()]

    def load(self, definitions: Iterable[ProcessDefinition]) -> None:
        with self._lock:
            self._definitions = {d.id: d.model_copy(deep=True) for d in definitions}
