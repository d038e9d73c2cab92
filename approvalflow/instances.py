"""Process instance state machine.

Owns the instance collection and applies task outcomes: records approvals
and rejections, evaluates match-all / match-any consensus, moves the cursor
through gateways to the next resting node, and terminates instances.

Every failure is raised before the stored instance or the task collection
is touched, so the task manager can roll back its own tentative change.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .contracts import (
    ApprovalRecord,
    InstanceStatus,
    LogAction,
    LogEntry,
    Node,
    NodeType,
    ProcessDefinition,
    ProcessInstance,
    Task,
    TaskAction,
    TaskStatus,
    normalize_form_data,
)
from .engine.gateway import resolve_resting_node
from .engine.path import MAX_WALK_STEPS
from .exceptions import AdvancementError, ApprovalGuardError, InstanceNotFoundError
from .tasks import OUT_OF_TURN_MESSAGE, TaskManager

logger = logging.getLogger(__name__)

MATCH_ANY_CANCEL_REASON = "Node approved by another approver"
REJECT_CANCEL_REASON = "Node rejected; process terminated"


class InstanceStateMachine:
    """Advance process instances as their tasks are approved or rejected."""

    def __init__(self, tasks: TaskManager, max_walk_steps: int = MAX_WALK_STEPS) -> None:
        self._instances: Dict[str, ProcessInstance] = {}
        self._tasks = tasks
        self._lock = tasks.lock
        self._max_walk_steps = max_walk_steps
        tasks.bind(self)

    # ------------------------------------------------------------------
    # Queries
    def get(self, instance_id: str) -> ProcessInstance:
        with self._lock:
            return self._require(instance_id).model_copy(deep=True)

    def list(self) -> List[ProcessInstance]:
        with self._lock:
            return [instance.model_copy(deep=True) for instance in self._instances.values()]

    def current_node_id(self, instance_id: str) -> Optional[str]:
        with self._lock:
            return self._require(instance_id).current_node_id

    # ------------------------------------------------------------------
    # Start
    def start_process(
        self,
        definition: ProcessDefinition,
        form_data: Optional[Mapping[str, Any]] = None,
        created_by: str = "user",
        title: Optional[str] = None,
    ) -> ProcessInstance:
        """Start an instance bound to a frozen copy of ``definition``.

        The cursor is moved from the start node through any gateways to the
        first approval or end node. Reaching an end node approves the
        instance immediately.
        """
        if not definition.is_published:
            raise ApprovalGuardError(
                f"Process definition {definition.id} is not published and cannot be started"
            )

        snapshot = definition.model_copy(deep=True)
        form = copy.deepcopy(dict(form_data or {}))
        context = {"form": normalize_form_data(form)}

        start = snapshot.start_node()
        if start is None:
            raise AdvancementError(f"Process definition {definition.id} has no start node")
        first = resolve_resting_node(snapshot, start.id, context, self._max_walk_steps)
        if first is None:
            raise AdvancementError(
                "Cannot determine the first step of the process; check gateway conditions "
                "and default paths",
                node_id=start.id,
            )
        self._check_enterable(first)

        if not title:
            raw_title = form.get("title")
            if isinstance(raw_title, str) and raw_title.strip():
                title = raw_title.strip()
            else:
                title = definition.name

        instance = ProcessInstance(
            title=title,
            process_definition_id=definition.id,
            definition_key=definition.definition_key or definition.id,
            definition_version=definition.version or 1,
            definition_snapshot=snapshot,
            form_data=form,
            created_by=created_by,
        )
        instance.logs.append(
            LogEntry(action=LogAction.SUBMIT, operator=created_by, comment="Submitted")
        )

        with self._lock:
            if first.type == NodeType.END:
                instance.status = InstanceStatus.APPROVED
                instance.current_node_id = None
            else:
                instance.current_node_id = first.id
                self._enter_approval_node(instance, first)
            self._instances[instance.instance_id] = instance
            started = instance.model_copy(deep=True)

        logger.info(
            f"Started instance_id={started.instance_id} from definition {definition.id} "
            f"at node {started.current_node_id} ({started.status.value})"
        )
        return started

    # ------------------------------------------------------------------
    # Task outcomes
    def apply_task_action(
        self,
        task_id: str,
        action: Union[TaskAction, str],
        operator: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> ProcessInstance:
        """Apply the recorded outcome of ``task_id`` to its instance.

        Called by the task manager after it has tentatively set the task's
        status; the status must already reflect ``action``.
        """
        action = TaskAction(action)
        with self._lock:
            task = self._tasks.get(task_id)
            stored = self._require(task.instance_id)
            if stored.is_terminal:
                raise ApprovalGuardError(
                    f"Process instance {stored.instance_id} is already {stored.status.value}"
                )
            if stored.current_node_id != task.node_id:
                raise ApprovalGuardError(OUT_OF_TURN_MESSAGE)
            expected = (
                TaskStatus.APPROVED if action == TaskAction.APPROVE else TaskStatus.REJECTED
            )
            if task.status != expected:
                raise ApprovalGuardError(
                    f"Task {task_id} is {task.status.value}; outcomes must be recorded "
                    "through the task manager"
                )
            node = stored.definition_snapshot.node(task.node_id)
            if node is None:
                raise AdvancementError(
                    f"Node {task.node_id} is missing from the definition snapshot",
                    instance_id=stored.instance_id,
                    node_id=task.node_id,
                )

            working = stored.model_copy(deep=True)
            record = self._record_for(working, node)
            operator = operator or task.assignee_role

            if action == TaskAction.REJECT:
                self._reject(working, node, record, task, operator, comment)
            else:
                self._approve(working, node, record, task, operator, comment)

            self._instances[working.instance_id] = working
            return working.model_copy(deep=True)

    def record_delegation(self, task: Task, from_role: str, to_role: str) -> None:
        with self._lock:
            instance = self._instances.get(task.instance_id)
            if instance is None:
                logger.warning(
                    f"Delegation of task {task.id} refers to unknown instance_id={task.instance_id}"
                )
                return
            instance.logs.append(
                LogEntry(
                    action=LogAction.DELEGATE,
                    operator=from_role,
                    comment=f"Delegated from {from_role} to {to_role}",
                    node_id=task.node_id,
                    task_id=task.id,
                )
            )

    # ------------------------------------------------------------------
    # Persistence hooks
    def load(self, instances: Iterable[ProcessInstance]) -> None:
        with self._lock:
            self._instances = {
                instance.instance_id: instance.model_copy(deep=True) for instance in instances
            }

    def snapshot(self) -> Dict[str, ProcessInstance]:
        with self._lock:
            return {
                instance_id: instance.model_copy(deep=True)
                for instance_id, instance in self._instances.items()
            }

    # ------------------------------------------------------------------
    def _require(self, instance_id: str) -> ProcessInstance:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance

    def _record_for(self, instance: ProcessInstance, node: Node) -> ApprovalRecord:
        record = instance.approval_records.get(node.id)
        if record is not None:
            return record
        # Seed from tasks created for this node before the record existed.
        return ApprovalRecord(
            mode=node.config.approval_mode if node.config else ApprovalRecord().mode,
            task_ids=[t.id for t in self._tasks.for_node(instance.instance_id, node.id)],
        )

    def _check_enterable(self, node: Node) -> None:
        if node.type != NodeType.APPROVAL:
            return
        roles = node.config.resolved_roles() if node.config else []
        if not roles:
            raise AdvancementError(
                f"Approval node {node.id} has no approver roles configured",
                node_id=node.id,
            )

    def _enter_approval_node(self, instance: ProcessInstance, node: Node) -> ApprovalRecord:
        """Idempotent upsert of the record and tasks keyed by (instance, node)."""
        existing = instance.approval_records.get(node.id)
        if existing is not None:
            return existing
        roles = node.config.resolved_roles() if node.config else []
        created = [
            self._tasks.create_task(instance.instance_id, node.id, role) for role in roles
        ]
        record = ApprovalRecord(
            mode=node.config.approval_mode if node.config else ApprovalRecord().mode,
            task_ids=[task.id for task in created],
        )
        instance.approval_records[node.id] = record
        return record

    def _approve(
        self,
        instance: ProcessInstance,
        node: Node,
        record: ApprovalRecord,
        task: Task,
        operator: str,
        comment: Optional[str],
    ) -> None:
        if task.id not in record.task_ids:
            record.task_ids.append(task.id)
        if task.id not in record.approved_task_ids:
            record.approved_task_ids.append(task.id)
        instance.approval_records[node.id] = record

        if not record.is_satisfied():
            progress = f"{len(record.approved_task_ids)}/{len(record.task_ids)}"
            instance.logs.append(
                LogEntry(
                    action=LogAction.APPROVE,
                    operator=operator,
                    comment=comment or f"Approval in progress ({progress})",
                    node_id=node.id,
                    task_id=task.id,
                )
            )
            logger.info(
                f"Partial approval {progress} at node {node.id} (instance_id={instance.instance_id})"
            )
            return

        target = resolve_resting_node(
            instance.definition_snapshot, node.id, instance.form_context(), self._max_walk_steps
        )
        if target is None:
            logger.error(
                f"Cannot advance instance_id={instance.instance_id} past node {node.id}"
            )
            raise AdvancementError(
                "Cannot determine the next step after this node; the gateway has no "
                "matching condition or default path",
                instance_id=instance.instance_id,
                node_id=node.id,
            )
        self._check_enterable(target)

        # No failure is possible past this point.
        siblings = [tid for tid in record.task_ids if tid not in record.approved_task_ids]
        self._tasks.cancel(siblings, MATCH_ANY_CANCEL_REASON)

        if target.type == NodeType.END:
            instance.status = InstanceStatus.APPROVED
            instance.current_node_id = None
            default_comment = "Approved; process completed"
        else:
            instance.current_node_id = target.id
            self._enter_approval_node(instance, target)
            default_comment = "Approved; moved to the next node"

        instance.logs.append(
            LogEntry(
                action=LogAction.APPROVE,
                operator=operator,
                comment=comment or default_comment,
                node_id=node.id,
                task_id=task.id,
            )
        )
        logger.info(
            f"Instance {instance.instance_id} advanced from {node.id} to "
            f"{target.id} ({instance.status.value})"
        )

    def _reject(
        self,
        instance: ProcessInstance,
        node: Node,
        record: ApprovalRecord,
        task: Task,
        operator: str,
        comment: Optional[str],
    ) -> None:
        if task.id not in record.task_ids:
            record.task_ids.append(task.id)
        if task.id not in record.rejected_task_ids:
            record.rejected_task_ids.append(task.id)
        instance.approval_records[node.id] = record

        self._tasks.cancel(
            [tid for tid in record.task_ids if tid != task.id], REJECT_CANCEL_REASON
        )
        instance.status = InstanceStatus.REJECTED
        instance.current_node_id = None
        instance.logs.append(
            LogEntry(
                action=LogAction.REJECT,
                operator=operator,
                comment=comment or "Rejected; process terminated",
                node_id=node.id,
                task_id=task.id,
            )
        )
        logger.info(f"Instance {instance.instance_id} rejected at node {node.id}")
