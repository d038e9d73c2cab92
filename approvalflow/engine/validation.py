"""Structural validation run before a definition is published."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel

from ..contracts import ConditionOp, FlowGraph, NodeType

_KNOWN_OPS = {op.value for op in ConditionOp}


class ValidationIssue(BaseModel):
    """A single problem found in a definition."""

    node_id: Optional[str] = None
    code: str
    message: str


def _sorted(issues: List[ValidationIssue]) -> List[ValidationIssue]:
    return sorted(issues, key=lambda i: (i.node_id or "", i.code, i.message))


def _find_cycle(graph: FlowGraph) -> Optional[str]:
    """Return a node id that lies on a cycle, if any."""
    adjacency: dict[str, list[str]] = {node.id: [] for node in graph.nodes}
    for edge in graph.edges:
        if edge.source.node_id in adjacency:
            adjacency[edge.source.node_id].append(edge.target.node_id)

    white, grey, black = 0, 1, 2
    colour = {node_id: white for node_id in adjacency}

    for root in adjacency:
        if colour[root] != white:
            continue
        stack = [(root, iter(adjacency[root]))]
        colour[root] = grey
        while stack:
            node_id, children = stack[-1]
            child = next(children, None)
            if child is None:
                colour[node_id] = black
                stack.pop()
                continue
            if child not in colour:
                continue
            if colour[child] == grey:
                return child
            if colour[child] == white:
                colour[child] = grey
                stack.append((child, iter(adjacency[child])))
    return None


def validate_definition(graph: FlowGraph) -> List[ValidationIssue]:
    """Check the structural invariants a published definition must satisfy.

    Returns an empty list when the definition is valid.
    """
    issues: List[ValidationIssue] = []

    def add(node_id: Optional[str], code: str, message: str) -> None:
        issues.append(ValidationIssue(node_id=node_id, code=code, message=message))

    seen: set[str] = set()
    for node in graph.nodes:
        if node.id in seen:
            add(node.id, "duplicate_node", f"Duplicate node id '{node.id}'.")
        seen.add(node.id)

    starts = [n for n in graph.nodes if n.type == NodeType.START]
    ends = [n for n in graph.nodes if n.type == NodeType.END]
    if len(starts) != 1:
        add(None, "start_count", "A process must have exactly one start node.")
    if not ends:
        add(None, "missing_end", "A process must have at least one end node.")

    for edge in graph.edges:
        for endpoint in (edge.source.node_id, edge.target.node_id):
            if endpoint not in seen:
                add(
                    endpoint,
                    "dangling_edge",
                    f"Edge '{edge.id}' references unknown node '{endpoint}'.",
                )

    for node in graph.nodes:
        display = node.name or node.label or node.id
        incoming = graph.incoming(node.id)
        outgoing = graph.outgoing(node.id)

        if node.type != NodeType.START and not incoming:
            add(node.id, "no_incoming", f"Node '{display}' has no incoming edge.")
        if node.type != NodeType.END and not outgoing:
            add(node.id, "no_outgoing", f"Node '{display}' has no outgoing edge.")

        if node.type == NodeType.APPROVAL:
            roles = node.config.resolved_roles() if node.config else []
            if not roles:
                add(node.id, "no_approvers", f"Approval node '{display}' has no approver roles.")

        if node.type != NodeType.GATEWAY:
            for edge in outgoing:
                if edge.condition is not None or edge.is_default:
                    add(
                        node.id,
                        "condition_outside_gateway",
                        f"Only gateway edges may carry conditions (node '{display}').",
                    )
            continue

        if len(outgoing) < 2:
            add(node.id, "gateway_fanout", f"Gateway '{display}' needs at least two outgoing edges.")
        defaults = [edge for edge in outgoing if edge.is_default]
        if len(defaults) != 1:
            add(
                node.id,
                "gateway_default",
                f"Gateway '{display}' must have exactly one default edge.",
            )
        for edge in outgoing:
            if edge.is_default and edge.condition is not None:
                add(
                    node.id,
                    "default_with_condition",
                    f"Default edge of gateway '{display}' must not carry a condition.",
                )
            if not edge.is_default and edge.condition is None:
                add(
                    node.id,
                    "missing_condition",
                    f"Non-default edge of gateway '{display}' must carry a condition.",
                )
            if edge.condition is not None and edge.condition.op not in _KNOWN_OPS:
                add(
                    node.id,
                    "unknown_operator",
                    f"Unknown condition operator '{edge.condition.op}' on gateway '{display}'.",
                )

    cyclic = _find_cycle(graph)
    if cyclic is not None:
        add(cyclic, "cycle", f"The process graph contains a cycle through node '{cyclic}'.")

    return _sorted(issues)
