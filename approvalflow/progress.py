"""Progress read model combining the approval path with runtime records."""

from __future__ import annotations

from enum import Enum
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field

from .contracts import (
    ApprovalMode,
    ApprovalRecord,
    InstanceStatus,
    ProcessInstance,
    Task,
)
from .engine.path import DEFAULT_APPROVAL_LABEL, MAX_WALK_STEPS, build_approval_path


class StepStatus(str, Enum):
    WAIT = "wait"
    PROCESS = "process"
    FINISH = "finish"
    ERROR = "error"


class ProgressStep(BaseModel):
    """One row of the progress view."""

    id: Optional[str] = None
    title: str
    status: StepStatus
    mode: Optional[ApprovalMode] = None
    approved: int = 0
    total: int = 0
    approved_roles: List[str] = Field(default_factory=list)
    pending_roles: List[str] = Field(default_factory=list)
    rejected_roles: List[str] = Field(default_factory=list)

    @property
    def summary(self) -> str:
        if self.mode is None:
            return ""
        if self.mode == ApprovalMode.MATCH_ALL:
            return f"{self.approved}/{self.total} approved"
        return "approved" if self.approved else "waiting for any approver"


def _node_step(
    title: str, node_id: str, record: Optional[ApprovalRecord], tasks: List[Task]
) -> ProgressStep:
    step = ProgressStep(id=node_id, title=title, status=StepStatus.WAIT)
    if record is None:
        return step
    by_id = {task.id: task for task in tasks}
    step.mode = record.mode
    step.total = len(record.task_ids)
    step.approved = len(record.approved_task_ids)
    for task_id in record.task_ids:
        task = by_id.get(task_id)
        if task is None:
            continue
        if task_id in record.approved_task_ids:
            step.approved_roles.append(task.assignee_role)
        elif task_id in record.rejected_task_ids:
            step.rejected_roles.append(task.assignee_role)
        elif task.is_pending:
            step.pending_roles.append(task.assignee_role)
    return step


def build_progress(
    instance: ProcessInstance,
    tasks: Iterable[Task],
    max_steps: int = MAX_WALK_STEPS,
    default_label: str = DEFAULT_APPROVAL_LABEL,
) -> List[ProgressStep]:
    """Submit step, every approval node on the instance's path, and the end step."""
    instance_tasks = [task for task in tasks if task.instance_id == instance.instance_id]
    path = build_approval_path(
        instance, instance.form_context(), max_steps=max_steps, default_label=default_label
    )

    steps = [
        _node_step(node.label, node.id, instance.approval_records.get(node.id), instance_tasks)
        for node in path
    ]

    if instance.status == InstanceStatus.APPROVED:
        for step in steps:
            step.status = StepStatus.FINISH
    elif instance.status == InstanceStatus.REJECTED:
        error_index = next(
            (i for i, step in enumerate(steps) if step.rejected_roles), len(steps) - 1
        )
        for i, step in enumerate(steps):
            if i < error_index:
                step.status = StepStatus.FINISH
            elif i == error_index:
                step.status = StepStatus.ERROR
    else:
        current = next(
            (i for i, node in enumerate(path) if node.id == instance.current_node_id), -1
        )
        if current == -1:
            current = next(
                (i for i, node in enumerate(path) if node.id not in instance.approval_records),
                len(path),
            )
        for i, step in enumerate(steps):
            if i < current:
                step.status = StepStatus.FINISH
            elif i == current:
                step.status = StepStatus.PROCESS

    end_status = {
        InstanceStatus.APPROVED: StepStatus.FINISH,
        InstanceStatus.REJECTED: StepStatus.ERROR,
    }.get(instance.status, StepStatus.WAIT)

    return (
        [ProgressStep(title="Submitted", status=StepStatus.FINISH)]
        + steps
        + [ProgressStep(title="Completed", status=end_status)]
    )
