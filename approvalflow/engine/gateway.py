"""Selection of the single outgoing edge taken from a node."""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..contracts import FlowGraph, Node, NodeType
from .conditions import evaluate

logger = logging.getLogger(__name__)


def next_node(graph: FlowGraph, from_node_id: str, context: Any) -> Optional[str]:
    """Return the id of the node reached from ``from_node_id``.

    A lone unconditional edge is followed unconditionally. Otherwise edges
    are tried in definition order and the first one whose condition holds
    wins; the default edge is the fallback. ``None`` means the walk cannot
    advance and must not be read as termination.
    """
    outgoing = graph.outgoing(from_node_id)
    if not outgoing:
        logger.warning(f"No outgoing edges for node {from_node_id}")
        return None

    if len(outgoing) == 1 and outgoing[0].condition is None:
        return outgoing[0].target.node_id

    for edge in outgoing:
        if edge.condition is not None and evaluate(edge.condition, context):
            logger.debug(
                f"Edge {edge.id} matched at node {from_node_id} -> {edge.target.node_id}"
            )
            return edge.target.node_id

    for edge in outgoing:
        if edge.is_default:
            logger.debug(
                f"Default edge {edge.id} taken at node {from_node_id} -> {edge.target.node_id}"
            )
            return edge.target.node_id

    logger.warning(f"No outgoing edge matched for node {from_node_id}")
    return None


RESTING_NODE_TYPES = (NodeType.APPROVAL, NodeType.END)


def resolve_resting_node(
    graph: FlowGraph, from_node_id: str, context: Any, max_steps: int = 200
) -> Optional[Node]:
    """Follow edges from ``from_node_id`` through gateways.

    Only approval and end nodes are resting states. Returns ``None`` when the
    walk cannot advance, reaches an unknown node, or revisits a node.
    """
    visited = {from_node_id}
    cursor = from_node_id
    for _ in range(max_steps):
        target_id = next_node(graph, cursor, context)
        if target_id is None:
            return None
        target = graph.node(target_id)
        if target is None:
            logger.warning(f"Edge from {cursor} points to unknown node {target_id}")
            return None
        if target.type in RESTING_NODE_TYPES:
            return target
        if target_id in visited:
            logger.warning(f"Cycle detected while resolving from node {from_node_id}")
            return None
        visited.add(target_id)
        cursor = target_id
    logger.warning(f"Walk from node {from_node_id} exceeded {max_steps} steps")
    return None
