"""Core data contracts for the approvalflow engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

FieldValue = Union[str, int, float, bool, None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class ContractModel(BaseModel):
    """Base model accepting both snake_case and camelCase field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """Dump using the camelCase names of the persisted shape."""
        return self.model_dump(mode="json", by_alias=True)


class NodeType(str, Enum):
    START = "start"
    APPROVAL = "approval"
    GATEWAY = "gateway"
    END = "end"


class ApprovalMode(str, Enum):
    MATCH_ALL = "MATCH_ALL"
    MATCH_ANY = "MATCH_ANY"


class ConditionOp(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"


class DefinitionStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


class InstanceStatus(str, Enum):
    RUNNING = "running"
    APPROVED = "approved"
    REJECTED = "rejected"


class TaskStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class TaskAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class LogAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    DELEGATE = "delegate"


# ---------------------------------------------------------------------------
# Definition graph


class ConditionExpression(ContractModel):
    """Comparison of a form field against a literal.

    ``op`` stays a plain string so that an unknown operator can be loaded and
    then fails closed when evaluated.
    """

    left: str
    op: str
    right: FieldValue = None


class NodeConfig(ContractModel):
    approver_roles: List[str] = Field(default_factory=list)
    approver_role: Optional[str] = None
    approval_mode: ApprovalMode = ApprovalMode.MATCH_ALL

    def resolved_roles(self) -> list[str]:
        """Return the configured approver roles, honouring the legacy field."""
        if self.approver_roles:
            return list(self.approver_roles)
        if self.approver_role:
            return [self.approver_role]
        return []


class Node(ContractModel):
    id: str
    type: NodeType
    name: Optional[str] = None
    label: Optional[str] = None
    config: Optional[NodeConfig] = None


class EdgeEndpoint(ContractModel):
    node_id: str


class Edge(ContractModel):
    id: str = Field(default_factory=new_id)
    source: EdgeEndpoint = Field(alias="from")
    target: EdgeEndpoint = Field(alias="to")
    condition: Optional[ConditionExpression] = None
    is_default: bool = False


class FlowGraph(ContractModel):
    """Canonical node/edge graph every traversal algorithm works on."""

    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)

    def node(self, node_id: Optional[str]) -> Optional[Node]:
        if node_id is None:
            return None
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing(self, node_id: str) -> list[Edge]:
        """Outgoing edges of ``node_id`` in definition order."""
        return [edge for edge in self.edges if edge.source.node_id == node_id]

    def incoming(self, node_id: str) -> list[Edge]:
        return [edge for edge in self.edges if edge.target.node_id == node_id]

    def start_node(self) -> Optional[Node]:
        for node in self.nodes:
            if node.type == NodeType.START:
                return node
        return None


class ProcessDefinition(FlowGraph):
    """A process definition; immutable once published."""

    id: str = Field(default_factory=new_id)
    name: str = ""
    definition_key: Optional[str] = None
    version: Optional[int] = None
    status: DefinitionStatus = DefinitionStatus.DRAFT
    published_at: Optional[datetime] = None

    @property
    def is_published(self) -> bool:
        return self.status == DefinitionStatus.PUBLISHED


class ApprovalPathStep(ContractModel):
    id: str
    label: str


# ---------------------------------------------------------------------------
# Runtime state


class Task(ContractModel):
    """A single approval task assigned to one role."""

    id: str = Field(default_factory=new_id)
    instance_id: str
    node_id: str
    assignee_role: str
    status: TaskStatus = TaskStatus.PENDING
    delegated_from: Optional[str] = None
    delegated_at: Optional[datetime] = None
    cancelled_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_pending(self) -> bool:
        return self.status == TaskStatus.PENDING


class ApprovalRecord(ContractModel):
    """Consensus bookkeeping for one approval node of one instance."""

    mode: ApprovalMode = ApprovalMode.MATCH_ALL
    task_ids: List[str] = Field(default_factory=list)
    approved_task_ids: List[str] = Field(default_factory=list)
    rejected_task_ids: List[str] = Field(default_factory=list)

    def is_satisfied(self) -> bool:
        if self.mode == ApprovalMode.MATCH_ANY:
            return len(self.approved_task_ids) >= 1
        return bool(self.task_ids) and set(self.approved_task_ids) >= set(
            self.task_ids
        )


class LogEntry(ContractModel):
    action: LogAction
    operator: str
    date: datetime = Field(default_factory=utcnow)
    comment: Optional[str] = None
    node_id: Optional[str] = None
    task_id: Optional[str] = None


class ProcessInstance(ContractModel):
    """Runtime state of one submission bound to a frozen definition."""

    instance_id: str = Field(default_factory=new_id)
    title: str = ""
    process_definition_id: str
    definition_key: str
    definition_version: int = 1
    definition_snapshot: ProcessDefinition
    current_node_id: Optional[str] = None
    status: InstanceStatus = InstanceStatus.RUNNING
    form_data: Dict[str, Any] = Field(default_factory=dict)
    approval_records: Dict[str, ApprovalRecord] = Field(default_factory=dict)
    logs: List[LogEntry] = Field(default_factory=list)
    created_by: str = "user"
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status != InstanceStatus.RUNNING

    def form_context(self) -> dict[str, Any]:
        """Condition context built from the submission's scalar fields."""
        return {"form": normalize_form_data(self.form_data)}


class EngineState(ContractModel):
    """Persisted-state document shared with the storage collaborator."""

    definitions: List[ProcessDefinition] = Field(default_factory=list)
    tasks: List[Task] = Field(default_factory=list)
    instances: Dict[str, ProcessInstance] = Field(default_factory=dict)


def normalize_form_data(form_data: dict[str, Any]) -> dict[str, FieldValue]:
    """Keep only scalar values; anything else is invisible to conditions."""
    return {
        key: value
        for key, value in form_data.items()
        if value is None or isinstance(value, (str, int, float, bool))
    }
