"""Pure graph algorithms shared by preview, history and live progression."""

from __future__ import annotations

from .conditions import evaluate
from .gateway import next_node, resolve_resting_node
from .graph import as_definition, make_edge, resolve_definition
from .path import approval_label, build_approval_path
from .validation import ValidationIssue, validate_definition

__all__ = [
    "ValidationIssue",
    "approval_label",
    "as_definition",
    "build_approval_path",
    "evaluate",
    "make_edge",
    "next_node",
    "resolve_definition",
    "resolve_resting_node",
    "validate_definition",
]
