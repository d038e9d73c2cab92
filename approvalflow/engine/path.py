"""Approval path computation used by preview, history and progress views."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from ..contracts import ApprovalMode, ApprovalPathStep, FlowGraph, Node, NodeType
from .gateway import next_node
from .graph import resolve_definition

logger = logging.getLogger(__name__)

DEFAULT_APPROVAL_LABEL = "Approval Node"
MAX_WALK_STEPS = 200

MODE_SUFFIXES = {
    ApprovalMode.MATCH_ALL: "会签",
    ApprovalMode.MATCH_ANY: "或签",
}
MODE_SEPARATORS = {
    ApprovalMode.MATCH_ALL: "+",
    ApprovalMode.MATCH_ANY: "/",
}


def approval_label(node: Node, default_label: str = DEFAULT_APPROVAL_LABEL) -> str:
    """Display label of an approval node.

    Precedence: explicit label, then roles and mode (``finance+hr（会签）``),
    then the node name, then ``default_label``.
    """
    if node.label:
        return node.label
    if node.config is not None:
        roles = node.config.resolved_roles()
        if roles:
            mode = node.config.approval_mode
            joined = MODE_SEPARATORS[mode].join(roles)
            return f"{joined}（{MODE_SUFFIXES[mode]}）"
    if node.name:
        return node.name
    return default_label


def build_approval_path(
    source: Any,
    context: Any,
    max_steps: int = MAX_WALK_STEPS,
    default_label: str = DEFAULT_APPROVAL_LABEL,
) -> List[ApprovalPathStep]:
    """Ordered approval nodes a submission with ``context`` will traverse.

    Pure and idempotent: creates no tasks and touches no state. The walk
    stops at an end node, when no next node can be resolved, when a node
    would be revisited, or after ``max_steps`` iterations.
    """
    graph: Optional[FlowGraph] = (
        source if type(source) is FlowGraph else resolve_definition(source)
    )
    if graph is None:
        return []
    start = graph.start_node()
    if start is None:
        logger.warning("Definition has no start node; approval path is empty")
        return []

    path: List[ApprovalPathStep] = []
    visited: set[str] = set()
    cursor: Optional[str] = start.id
    steps = 0

    while cursor is not None:
        if steps >= max_steps:
            logger.warning(f"Approval path walk stopped after {max_steps} steps")
            break
        steps += 1
        if cursor in visited:
            logger.warning(f"Approval path walk revisited node {cursor}; stopping")
            break
        visited.add(cursor)

        node = graph.node(cursor)
        if node is None:
            logger.warning(f"Approval path walk reached unknown node {cursor}")
            break
        if node.type == NodeType.APPROVAL:
            path.append(ApprovalPathStep(id=node.id, label=approval_label(node, default_label)))
        if node.type == NodeType.END:
            break
        cursor = next_node(graph, cursor, context)

    return path
