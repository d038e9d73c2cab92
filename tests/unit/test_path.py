"""Tests for approval path computation and labels."""

from approvalflow.contracts import (
    ApprovalMode,
    FlowGraph,
    Node,
    NodeConfig,
    NodeType,
    ProcessDefinition,
)
from approvalflow.engine import approval_label, build_approval_path, make_edge


def test_path_follows_the_matching_branch(expense_definition):
    path = build_approval_path(expense_definition, {"form": {"amount": 5000}})
    assert [(step.id, step.label) for step in path] == [("finance", "Financial Approver")]

    path = build_approval_path(expense_definition, {"form": {"amount": 200}})
    assert [step.label for step in path] == ["manager（会签）"]


def test_path_is_idempotent_and_creates_no_tasks(engine, expense_definition):
    context = {"form": {"amount": 5000}}
    first = build_approval_path(expense_definition, context)
    second = build_approval_path(expense_definition, context)
    assert first == second
    assert engine.preview_path(expense_definition, {"amount": 5000}) == first
    assert engine.tasks.list() == []
    assert engine.instances.list() == []


def test_path_accepts_wire_mappings(expense_definition):
    path = build_approval_path(expense_definition.to_wire(), {"form": {"amount": "1500"}})
    assert [step.id for step in path] == ["finance"]


def test_labels_follow_precedence():
    roles = NodeConfig(approver_roles=["finance", "hr"])
    any_roles = NodeConfig(approver_roles=["finance", "hr"], approval_mode=ApprovalMode.MATCH_ANY)

    labelled = Node(id="a", type=NodeType.APPROVAL, label="Board", name="n", config=roles)
    assert approval_label(labelled) == "Board"
    assert approval_label(Node(id="a", type=NodeType.APPROVAL, name="n", config=roles)) == "finance+hr（会签）"
    assert approval_label(Node(id="a", type=NodeType.APPROVAL, config=any_roles)) == "finance/hr（或签）"
    assert approval_label(Node(id="a", type=NodeType.APPROVAL, name="Named")) == "Named"
    assert approval_label(Node(id="a", type=NodeType.APPROVAL)) == "Approval Node"
    assert approval_label(Node(id="a", type=NodeType.APPROVAL), default_label="Step") == "Step"


def test_path_over_a_cycle_never_revisits_a_node():
    nodes = [
        Node(id="start", type=NodeType.START),
        Node(id="a", type=NodeType.APPROVAL, label="A"),
        Node(id="b", type=NodeType.APPROVAL, label="B"),
    ]
    graph = FlowGraph(
        nodes=nodes,
        edges=[make_edge("start", "a"), make_edge("a", "b"), make_edge("b", "a")],
    )
    path = build_approval_path(graph, {"form": {}})
    assert [step.id for step in path] == ["a", "b"]
    assert len(path) <= len(nodes)


def test_path_stops_at_step_limit(serial_definition):
    assert [s.id for s in build_approval_path(serial_definition, {"form": {}})] == ["lead", "director"]
    assert [s.id for s in build_approval_path(serial_definition, {"form": {}}, max_steps=2)] == ["lead"]


def test_path_stops_when_no_branch_matches():
    definition = ProcessDefinition(
        nodes=[
            Node(id="start", type=NodeType.START),
            Node(id="first", type=NodeType.APPROVAL, label="First"),
            Node(id="gw", type=NodeType.GATEWAY),
            Node(id="second", type=NodeType.APPROVAL, label="Second"),
        ],
        edges=[
            make_edge("start", "first"),
            make_edge("first", "gw"),
            make_edge("gw", "second", condition={"left": "amount", "op": "gt", "right": 1}),
        ],
    )
    assert [s.label for s in build_approval_path(definition, {"form": {}})] == ["First"]


def test_path_without_start_node_is_empty():
    graph = FlowGraph(nodes=[Node(id="a", type=NodeType.APPROVAL)], edges=[])
    assert build_approval_path(graph, {"form": {}}) == []


def test_instance_path_uses_its_snapshot(engine, expense_definition):
    published = engine.publish(expense_definition)
    instance = engine.start_process(published.id, form_data={"amount": 5000})
    assert [s.label for s in engine.approval_path(instance.instance_id)] == ["Financial Approver"]
