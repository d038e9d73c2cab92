"""Tests for instance advancement, consensus and rollback."""

import pytest

from approvalflow.contracts import (
    ApprovalMode,
    ConditionExpression,
    InstanceStatus,
    LogAction,
    Node,
    NodeConfig,
    NodeType,
    ProcessDefinition,
    TaskStatus,
)
from approvalflow.engine import make_edge
from approvalflow.exceptions import AdvancementError, ApprovalGuardError
from approvalflow.instances import MATCH_ANY_CANCEL_REASON, REJECT_CANCEL_REASON


def _start(engine, definition, **form):
    published = engine.publish(definition)
    return engine.start_process(published.id, form_data=form)


def _tasks(engine, instance):
    return engine.tasks.for_instance(instance.instance_id)


def test_start_enters_first_approval_node(engine, expense_definition):
    instance = _start(engine, expense_definition, amount=5000, title="  Team offsite  ")
    assert instance.status == InstanceStatus.RUNNING
    assert instance.current_node_id == "finance"
    assert instance.title == "Team offsite"
    assert instance.definition_key == "expense"
    assert instance.definition_version == 1
    assert instance.logs[0].action == LogAction.SUBMIT
    assert [(t.node_id, t.assignee_role) for t in _tasks(engine, instance)] == [("finance", "finance")]
    assert list(instance.approval_records) == ["finance"]


def test_title_falls_back_to_definition_name(engine, expense_definition):
    instance = _start(engine, expense_definition, amount=10)
    assert instance.title == "Expense claim"
    assert instance.current_node_id == "manager"


def test_start_requires_a_published_definition(engine, expense_definition):
    with pytest.raises(ApprovalGuardError):
        engine.instances.start_process(expense_definition, form_data={"amount": 1})
    assert engine.instances.list() == []


def test_start_can_finish_immediately(engine):
    definition = ProcessDefinition(
        name="Auto approve",
        nodes=[
            Node(id="start", type=NodeType.START),
            Node(id="gw", type=NodeType.GATEWAY),
            Node(id="check", type=NodeType.APPROVAL, config=NodeConfig(approver_roles=["audit"])),
            Node(id="end", type=NodeType.END),
        ],
        edges=[
            make_edge("start", "gw"),
            make_edge("gw", "check", condition=ConditionExpression(left="amount", op="gt", right=0)),
            make_edge("gw", "end", is_default=True),
            make_edge("check", "end"),
        ],
    )
    instance = _start(engine, definition, amount=0)
    assert instance.status == InstanceStatus.APPROVED
    assert instance.current_node_id is None
    assert engine.tasks.list() == []


def test_start_without_reachable_node_fails(engine, force_published):
    definition = force_published(
        ProcessDefinition(
            nodes=[
                Node(id="start", type=NodeType.START),
                Node(id="gw", type=NodeType.GATEWAY),
                Node(id="end", type=NodeType.END),
            ],
            edges=[
                make_edge("start", "gw"),
                make_edge("gw", "end", condition=ConditionExpression(left="amount", op="gt", right=0)),
            ],
        )
    )
    with pytest.raises(AdvancementError) as exc_info:
        engine.instances.start_process(definition, form_data={})
    assert exc_info.value.code == "advancement_failed"
    assert engine.instances.list() == []
    assert engine.tasks.list() == []


def test_match_all_waits_for_every_approver(engine, review_definition):
    instance = _start(engine, review_definition(["finance", "hr"]))
    first, second = _tasks(engine, instance)

    engine.approve(first.id)
    current = engine.instances.get(instance.instance_id)
    assert current.current_node_id == "review"
    assert current.status == InstanceStatus.RUNNING
    assert current.logs[-1].comment == "Approval in progress (1/2)"
    assert engine.tasks.get(second.id).status == TaskStatus.PENDING

    engine.approve(second.id)
    current = engine.instances.get(instance.instance_id)
    assert current.status == InstanceStatus.APPROVED
    assert current.current_node_id is None
    record = current.approval_records["review"]
    assert record.approved_task_ids == [first.id, second.id]


def test_match_any_advances_and_cancels_siblings(engine, review_definition):
    instance = _start(engine, review_definition(["finance", "hr", "legal"], ApprovalMode.MATCH_ANY))
    finance, hr, legal = _tasks(engine, instance)

    engine.approve(hr.id)

    assert engine.instances.get(instance.instance_id).status == InstanceStatus.APPROVED
    for task_id in (finance.id, legal.id):
        task = engine.tasks.get(task_id)
        assert task.status == TaskStatus.CANCELLED
        assert task.cancelled_reason == MATCH_ANY_CANCEL_REASON
    assert engine.tasks.get(hr.id).status == TaskStatus.APPROVED


@pytest.mark.parametrize("mode", [ApprovalMode.MATCH_ALL, ApprovalMode.MATCH_ANY])
def test_single_rejection_vetoes_the_instance(engine, review_definition, mode):
    instance = _start(engine, review_definition(["finance", "hr"], mode))
    finance, hr = _tasks(engine, instance)

    engine.reject(finance.id, comment="over budget")

    current = engine.instances.get(instance.instance_id)
    assert current.status == InstanceStatus.REJECTED
    assert current.current_node_id is None
    assert current.logs[-1].action == LogAction.REJECT
    assert current.logs[-1].comment == "over budget"
    assert engine.tasks.get(hr.id).status == TaskStatus.CANCELLED
    assert engine.tasks.get(hr.id).cancelled_reason == REJECT_CANCEL_REASON

    # Cancelled siblings can no longer change the outcome.
    assert engine.approve(hr.id).status == TaskStatus.CANCELLED
    assert engine.instances.get(instance.instance_id).status == InstanceStatus.REJECTED


def test_failed_advancement_rolls_back(engine, force_published):
    definition = force_published(
        ProcessDefinition(
            nodes=[
                Node(id="start", type=NodeType.START),
                Node(id="review", type=NodeType.APPROVAL, config=NodeConfig(approver_roles=["finance"])),
                Node(id="gw", type=NodeType.GATEWAY),
                Node(id="big", type=NodeType.END),
                Node(id="negative", type=NodeType.END),
            ],
            edges=[
                make_edge("start", "review"),
                make_edge("review", "gw"),
                make_edge("gw", "big", condition=ConditionExpression(left="amount", op="gt", right=1000)),
                make_edge("gw", "negative", condition=ConditionExpression(left="amount", op="lt", right=0)),
            ],
        )
    )
    instance = engine.instances.start_process(definition, form_data={"amount": 5})
    task = _tasks(engine, instance)[0]
    before = engine.instances.get(instance.instance_id)

    with pytest.raises(AdvancementError) as exc_info:
        engine.approve(task.id)

    assert exc_info.value.node_id == "review"
    after = engine.instances.get(instance.instance_id)
    assert after == before
    assert after.current_node_id == "review"
    assert after.status == InstanceStatus.RUNNING
    restored = engine.tasks.get(task.id)
    assert restored.status == TaskStatus.PENDING
    assert restored.completed_at is None


def test_state_machine_requires_recorded_outcome(engine, review_definition):
    instance = _start(engine, review_definition(["finance"]))
    task = _tasks(engine, instance)[0]
    before = engine.instances.get(instance.instance_id)

    with pytest.raises(ApprovalGuardError):
        engine.instances.apply_task_action(task.id, "approve")
    assert engine.instances.get(instance.instance_id) == before


def test_running_instance_keeps_its_snapshot(engine, expense_definition):
    instance = _start(engine, expense_definition, amount=5000)

    edited = expense_definition.model_copy(deep=True)
    edited.nodes[2].label = "CFO"
    republished = engine.publish(edited)
    assert republished.version == 2

    current = engine.instances.get(instance.instance_id)
    assert current.definition_version == 1
    assert current.definition_snapshot.node("finance").label == "Financial Approver"
    assert [s.label for s in engine.approval_path(instance.instance_id)] == ["Financial Approver"]


def test_nested_form_data_is_copied_on_start(engine, expense_definition):
    items = [{"sku": "a"}]
    form = {"amount": 5000, "items": items}
    published = engine.publish(expense_definition)
    instance = engine.start_process(published.id, form_data=form)

    items.append({"sku": "b"})
    items[0]["sku"] = "changed"

    assert engine.instances.get(instance.instance_id).form_data["items"] == [{"sku": "a"}]
