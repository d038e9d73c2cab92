"""Exception hierarchy for the approvalflow engine.

Every error carries a stable ``code`` tag so callers can dispatch on the tag
instead of on the class hierarchy.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .engine.validation import ValidationIssue


class ApprovalflowError(Exception):
    """Base class for engine failures."""

    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ApprovalGuardError(ApprovalflowError):
    """A task was acted on out of turn or a precondition was violated.

    Raised before any state is mutated.
    """

    code = "guard_violation"


class AdvancementError(ApprovalflowError):
    """The instance could not move past a satisfied node."""

    code = "advancement_failed"

    def __init__(
        self,
        message: str,
        instance_id: Optional[str] = None,
        node_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.instance_id = instance_id
        self.node_id = node_id


class DefinitionValidationError(ApprovalflowError):
    """A definition failed the publish validator."""

    code = "definition_invalid"

    def __init__(self, issues: List["ValidationIssue"]) -> None:
        summary = "; ".join(issue.message for issue in issues) or "invalid definition"
        super().__init__(f"Process definition is invalid: {summary}")
        self.issues = list(issues)


class NotFoundError(ApprovalflowError):
    code = "not_found"


class TaskNotFoundError(NotFoundError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class InstanceNotFoundError(NotFoundError):
    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Process instance not found: {instance_id}")
        self.instance_id = instance_id


class DefinitionNotFoundError(NotFoundError):
    def __init__(self, reference: str) -> None:
        super().__init__(f"Process definition not found: {reference}")
        self.reference = reference
