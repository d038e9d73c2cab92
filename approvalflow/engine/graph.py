"""Normalisation of definitions, snapshots and instances into one graph."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from ..contracts import (
    Edge,
    EdgeEndpoint,
    FlowGraph,
    Node,
    ProcessDefinition,
    ProcessInstance,
)

logger = logging.getLogger(__name__)

_SNAPSHOT_KEYS = ("definitionSnapshot", "definition_snapshot")
_LEGACY_NODE_TYPES = {"condition": "gateway"}


def _graph_from_model(model: FlowGraph) -> FlowGraph:
    return FlowGraph(nodes=list(model.nodes), edges=list(model.edges))


def _normalize_node(raw: Mapping[str, Any]) -> dict[str, Any]:
    node = dict(raw)
    node_type = node.get("type")
    if isinstance(node_type, str):
        node["type"] = _LEGACY_NODE_TYPES.get(node_type, node_type)
    return node


def _legacy_edges(nodes: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Synthesise edges for serial definitions whose nodes carry ``nextId``."""
    edges = []
    for raw in nodes:
        next_id = raw.get("nextId") or raw.get("next_id")
        if next_id:
            edges.append(
                {
                    "id": f"{raw.get('id')}->{next_id}",
                    "from": {"nodeId": raw.get("id")},
                    "to": {"nodeId": next_id},
                }
            )
    return edges


def _graph_from_mapping(source: Mapping[str, Any]) -> Optional[FlowGraph]:
    raw_nodes = source.get("nodes")
    raw_edges = source.get("edges")
    if not isinstance(raw_nodes, list):
        return None
    if raw_edges is None:
        raw_edges = _legacy_edges([n for n in raw_nodes if isinstance(n, Mapping)])
        if not raw_edges:
            return None
    if not isinstance(raw_edges, list):
        return None
    try:
        return FlowGraph(
            nodes=[
                Node.model_validate(_normalize_node(n))
                for n in raw_nodes
                if isinstance(n, Mapping)
            ],
            edges=[Edge.model_validate(e) for e in raw_edges if isinstance(e, Mapping)],
        )
    except ValidationError as exc:
        logger.warning(f"Definition source could not be normalised: {exc}")
        return None


def resolve_definition(source: Any) -> Optional[FlowGraph]:
    """Return the canonical graph behind ``source`` or ``None``.

    ``source`` may be a live definition, a frozen snapshot, a running
    instance, or a plain mapping in either the ``{nodes, edges}`` or the
    ``{definitionSnapshot: {...}}`` shape. A nested snapshot wins over
    top-level nodes.
    """
    if source is None:
        return None
    if isinstance(source, ProcessInstance):
        return _graph_from_model(source.definition_snapshot)
    if isinstance(source, FlowGraph):
        return _graph_from_model(source)
    if not isinstance(source, Mapping):
        return None

    for key in _SNAPSHOT_KEYS:
        snapshot = source.get(key)
        if snapshot:
            return resolve_definition(snapshot)

    if "nodes" in source:
        return _graph_from_mapping(source)
    return None


def make_edge(
    source: str,
    target: str,
    condition: Any = None,
    is_default: bool = False,
    edge_id: Optional[str] = None,
) -> Edge:
    """Convenience constructor used by callers building graphs in code."""
    kwargs: dict[str, Any] = {
        "source": EdgeEndpoint(node_id=source),
        "target": EdgeEndpoint(node_id=target),
        "condition": condition,
        "is_default": is_default,
    }
    if edge_id is not None:
        kwargs["id"] = edge_id
    return Edge(**kwargs)


def as_definition(source: Any) -> Optional[ProcessDefinition]:
    """Coerce a mapping or graph into a ``ProcessDefinition``."""
    if isinstance(source, ProcessDefinition):
        return source
    if isinstance(source, Mapping):
        graph = resolve_definition(source)
        if graph is None:
            return None
        metadata = {
            key: value
            for key, value in source.items()
            if key not in ("nodes", "edges") and key not in _SNAPSHOT_KEYS
        }
        try:
            definition = ProcessDefinition.model_validate(metadata)
        except ValidationError as exc:
            logger.warning(f"Definition metadata could not be parsed: {exc}")
            return None
        return definition.model_copy(update={"nodes": graph.nodes, "edges": graph.edges})
    if isinstance(source, FlowGraph):
        return ProcessDefinition(nodes=list(source.nodes), edges=list(source.edges))
    return None
