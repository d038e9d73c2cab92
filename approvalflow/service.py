"""Composition root wiring the catalog, task manager and state machine."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Union

from .config import ApprovalflowConfig, EngineConfig
from .contracts import (
    ApprovalPathStep,
    EngineState,
    ProcessDefinition,
    ProcessInstance,
    Task,
    normalize_form_data,
)
from .definitions import DefinitionCatalog
from .engine.path import build_approval_path
from .instances import InstanceStateMachine
from .persistence import StateRepository
from .progress import ProgressStep, build_progress
from .tasks import TaskManager

logger = logging.getLogger(__name__)


class ApprovalEngine:
    """Service object owning one set of definitions, tasks and instances.

    The host application constructs it and owns its lifetime; nothing in
    the engine is process-global. All mutating calls share one re-entrant
    lock so each public operation runs as a single atomic unit.
    """

    def __init__(self, config: Optional[Union[ApprovalflowConfig, EngineConfig]] = None) -> None:
        if isinstance(config, ApprovalflowConfig):
            config = config.engine
        self.config: EngineConfig = config or EngineConfig()
        self.tasks = TaskManager()
        self.instances = InstanceStateMachine(
            self.tasks, max_walk_steps=self.config.max_walk_steps
        )
        self.definitions = DefinitionCatalog(lock=self.tasks.lock)

    # ------------------------------------------------------------------
    # State transfer
    @classmethod
    def from_state(
        cls,
        state: EngineState,
        config: Optional[Union[ApprovalflowConfig, EngineConfig]] = None,
    ) -> "ApprovalEngine":
        engine = cls(config)
        engine.load_state(state)
        return engine

    def load_state(self, state: EngineState) -> None:
        with self.tasks.lock:
            self.definitions.load(state.definitions)
            self.tasks.load(state.tasks)
            self.instances.load(state.instances.values())
        logger.debug(
            f"Loaded {len(state.definitions)} definitions, {len(state.tasks)} tasks, "
            f"{len(state.instances)} instances"
        )

    def snapshot(self) -> EngineState:
        with self.tasks.lock:
            return EngineState(
                definitions=self.definitions.list(),
                tasks=self.tasks.snapshot(),
                instances=self.instances.snapshot(),
            )

    async def save(self, repository: StateRepository) -> None:
        await repository.save_state(self.snapshot())

    @classmethod
    async def restore(
        cls,
        repository: StateRepository,
        config: Optional[Union[ApprovalflowConfig, EngineConfig]] = None,
    ) -> "ApprovalEngine":
        return cls.from_state(await repository.load_state(), config)

    # ------------------------------------------------------------------
    # Definitions
    def publish(self, definition: ProcessDefinition) -> ProcessDefinition:
        return self.definitions.publish(definition)

    def preview_path(self, source: Any, form_data: Mapping[str, Any]) -> List[ApprovalPathStep]:
        """Approval path a submission of ``form_data`` would traverse."""
        return build_approval_path(
            source,
            {"form": normalize_form_data(dict(form_data))},
            max_steps=self.config.max_walk_steps,
            default_label=self.config.default_approval_label,
        )

    # ------------------------------------------------------------------
    # Instances
    def start_process(
        self,
        definition_id: Optional[str] = None,
        form_data: Optional[Mapping[str, Any]] = None,
        created_by: str = "user",
        definition_key: Optional[str] = None,
        version: Optional[int] = None,
        title: Optional[str] = None,
    ) -> ProcessInstance:
        """Start a process by definition id or by exact ``(key, version)``."""
        if definition_id is not None:
            definition = self.definitions.get(definition_id)
        elif definition_key is not None and version is not None:
            definition = self.definitions.get_version(definition_key, version)
        else:
            raise ValueError("Either definition_id or definition_key and version are required")
        return self.instances.start_process(
            definition, form_data=form_data, created_by=created_by, title=title
        )

    def approval_path(self, instance_id: str) -> List[ApprovalPathStep]:
        instance = self.instances.get(instance_id)
        return build_approval_path(
            instance,
            instance.form_context(),
            max_steps=self.config.max_walk_steps,
            default_label=self.config.default_approval_label,
        )

    def progress(self, instance_id: str) -> List[ProgressStep]:
        with self.tasks.lock:
            instance = self.instances.get(instance_id)
            tasks = self.tasks.for_instance(instance_id)
        return build_progress(
            instance,
            tasks,
            max_steps=self.config.max_walk_steps,
            default_label=self.config.default_approval_label,
        )

    # ------------------------------------------------------------------
    # Tasks
    def approve(self, task_id: str, operator: Optional[str] = None, comment: Optional[str] = None) -> Task:
        return self.tasks.approve(task_id, operator=operator, comment=comment)

    def reject(self, task_id: str, operator: Optional[str] = None, comment: Optional[str] = None) -> Task:
        return self.tasks.reject(task_id, operator=operator, comment=comment)

    def delegate(self, task_id: str, to_role: str, operator_role: str) -> Task:
        return self.tasks.delegate(task_id, to_role, operator_role)
