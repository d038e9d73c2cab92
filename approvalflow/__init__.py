"""approvalflow: configurable approval workflows with gateways and consensus."""

from .config import load_config
from .contracts import (
    ApprovalMode,
    ApprovalPathStep,
    ProcessDefinition,
    ProcessInstance,
    Task,
)
from .engine import build_approval_path, validate_definition
from .exceptions import (
    AdvancementError,
    ApprovalflowError,
    ApprovalGuardError,
    DefinitionValidationError,
    NotFoundError,
)
from .persistence import get_repository
from .service import ApprovalEngine

__version__ = "0.1.0"
__all__ = [
    "AdvancementError",
    "ApprovalEngine",
    "ApprovalGuardError",
    "ApprovalMode",
    "ApprovalPathStep",
    "ApprovalflowError",
    "DefinitionValidationError",
    "NotFoundError",
    "ProcessDefinition",
    "ProcessInstance",
    "Task",
    "build_approval_path",
    "get_repository",
    "load_config",
    "validate_definition",
]
