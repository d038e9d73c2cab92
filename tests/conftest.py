"""Shared fixtures for approvalflow tests."""

from typing import Callable, List

import pytest

from approvalflow.contracts import (
    ApprovalMode,
    ConditionExpression,
    DefinitionStatus,
    Node,
    NodeConfig,
    NodeType,
    ProcessDefinition,
)
from approvalflow.engine import make_edge
from approvalflow.service import ApprovalEngine


def approval_node(node_id, roles, mode=ApprovalMode.MATCH_ALL, label=None, name=None):
    return Node(
        id=node_id,
        type=NodeType.APPROVAL,
        label=label,
        name=name,
        config=NodeConfig(approver_roles=roles, approval_mode=mode),
    )


@pytest.fixture
def engine() -> ApprovalEngine:
    return ApprovalEngine()


@pytest.fixture
def expense_definition() -> ProcessDefinition:
    """start -> gateway(amount > 1000 ? finance : manager) -> end"""
    return ProcessDefinition(
        name="Expense claim",
        definition_key="expense",
        nodes=[
            Node(id="start", type=NodeType.START, name="Start"),
            Node(id="gw", type=NodeType.GATEWAY, name="Amount check"),
            approval_node("finance", ["finance"], label="Financial Approver"),
            approval_node("manager", ["manager"], name="Manager"),
            Node(id="end", type=NodeType.END, name="End"),
        ],
        edges=[
            make_edge("start", "gw", edge_id="e-start"),
            make_edge(
                "gw",
                "finance",
                condition=ConditionExpression(left="amount", op="gt", right=1000),
                edge_id="e-finance",
            ),
            make_edge("gw", "manager", is_default=True, edge_id="e-manager"),
            make_edge("finance", "end", edge_id="e-finance-end"),
            make_edge("manager", "end", edge_id="e-manager-end"),
        ],
    )


@pytest.fixture
def review_definition() -> Callable[..., ProcessDefinition]:
    """Factory for start -> review -> end with configurable approvers."""

    def build(roles: List[str], mode: ApprovalMode = ApprovalMode.MATCH_ALL) -> ProcessDefinition:
        return ProcessDefinition(
            name="Review",
            definition_key="review",
            nodes=[
                Node(id="start", type=NodeType.START),
                approval_node("review", roles, mode=mode),
                Node(id="end", type=NodeType.END),
            ],
            edges=[make_edge("start", "review"), make_edge("review", "end")],
        )

    return build


@pytest.fixture
def serial_definition() -> ProcessDefinition:
    """start -> lead -> director -> end"""
    return ProcessDefinition(
        name="Purchase request",
        definition_key="purchase",
        nodes=[
            Node(id="start", type=NodeType.START),
            approval_node("lead", ["lead"], label="Team Lead"),
            approval_node("director", ["director"], label="Director"),
            Node(id="end", type=NodeType.END),
        ],
        edges=[
            make_edge("start", "lead"),
            make_edge("lead", "director"),
            make_edge("director", "end"),
        ],
    )


@pytest.fixture
def force_published() -> Callable[[ProcessDefinition], ProcessDefinition]:
    """Mark a definition published without running the publish validator."""

    def publish(definition: ProcessDefinition) -> ProcessDefinition:
        return definition.model_copy(
            update={
                "status": DefinitionStatus.PUBLISHED,
                "definition_key": definition.definition_key or definition.id,
                "version": 1,
            }
        )

    return publish
