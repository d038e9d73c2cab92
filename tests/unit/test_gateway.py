"""Tests for outgoing edge selection and resting node resolution."""

from approvalflow.contracts import ConditionExpression, FlowGraph, Node, NodeType
from approvalflow.engine import make_edge, next_node, resolve_resting_node


def _node(node_id, node_type=NodeType.GATEWAY):
    return Node(id=node_id, type=node_type)


def _gt(value):
    return ConditionExpression(left="amount", op="gt", right=value)


def _branching_graph(with_default=True):
    edges = [
        make_edge("gw", "small", condition=_gt(100)),
        make_edge("gw", "large", condition=_gt(1000)),
    ]
    if with_default:
        edges.append(make_edge("gw", "fallback", is_default=True))
    return FlowGraph(
        nodes=[
            _node("gw"),
            _node("small", NodeType.APPROVAL),
            _node("large", NodeType.APPROVAL),
            _node("fallback", NodeType.APPROVAL),
        ],
        edges=edges,
    )


def test_single_unconditional_edge_is_followed():
    graph = FlowGraph(
        nodes=[_node("a", NodeType.APPROVAL), _node("b", NodeType.END)],
        edges=[make_edge("a", "b")],
    )
    assert next_node(graph, "a", {"form": {}}) == "b"


def test_first_matching_edge_wins_in_definition_order():
    graph = _branching_graph()
    for _ in range(3):
        assert next_node(graph, "gw", {"form": {"amount": 5000}}) == "small"


def test_default_edge_is_the_fallback():
    graph = _branching_graph()
    assert next_node(graph, "gw", {"form": {"amount": 10}}) == "fallback"
    assert next_node(graph, "gw", {"form": {}}) == "fallback"


def test_no_match_without_default_is_none():
    graph = _branching_graph(with_default=False)
    assert next_node(graph, "gw", {"form": {"amount": 10}}) is None


def test_single_conditional_edge_is_evaluated():
    graph = FlowGraph(
        nodes=[_node("gw"), _node("a", NodeType.APPROVAL)],
        edges=[make_edge("gw", "a", condition=_gt(5))],
    )
    assert next_node(graph, "gw", {"form": {"amount": 1}}) is None
    assert next_node(graph, "gw", {"form": {"amount": 10}}) == "a"


def test_node_without_outgoing_edges_is_none():
    graph = FlowGraph(nodes=[_node("a", NodeType.APPROVAL)], edges=[])
    assert next_node(graph, "a", {"form": {}}) is None


def test_resting_node_passes_through_chained_gateways():
    graph = FlowGraph(
        nodes=[
            _node("start", NodeType.START),
            _node("g1"),
            _node("g2"),
            _node("approve", NodeType.APPROVAL),
            _node("end", NodeType.END),
        ],
        edges=[
            make_edge("start", "g1"),
            make_edge("g1", "g2", condition=_gt(10)),
            make_edge("g1", "end", is_default=True),
            make_edge("g2", "approve", condition=_gt(100)),
            make_edge("g2", "end", is_default=True),
        ],
    )
    assert resolve_resting_node(graph, "start", {"form": {"amount": 500}}).id == "approve"
    assert resolve_resting_node(graph, "start", {"form": {"amount": 50}}).id == "end"
    assert resolve_resting_node(graph, "start", {"form": {"amount": 1}}).type == NodeType.END


def test_resting_node_stops_on_gateway_cycle():
    graph = FlowGraph(
        nodes=[_node("start", NodeType.START), _node("g1"), _node("g2")],
        edges=[make_edge("start", "g1"), make_edge("g1", "g2"), make_edge("g2", "g1")],
    )
    assert resolve_resting_node(graph, "start", {"form": {}}) is None


def test_resting_node_respects_step_limit():
    ids = [f"g{i}" for i in range(10)]
    graph = FlowGraph(
        nodes=[_node("start", NodeType.START)] + [_node(i) for i in ids] + [_node("end", NodeType.END)],
        edges=[make_edge("start", ids[0])]
        + [make_edge(a, b) for a, b in zip(ids, ids[1:])]
        + [make_edge(ids[-1], "end")],
    )
    assert resolve_resting_node(graph, "start", {"form": {}}, max_steps=5) is None
    assert resolve_resting_node(graph, "start", {"form": {}}).id == "end"


def test_edge_to_unknown_node_is_none():
    graph = FlowGraph(nodes=[_node("start", NodeType.START)], edges=[make_edge("start", "ghost")])
    assert resolve_resting_node(graph, "start", {"form": {}}) is None
