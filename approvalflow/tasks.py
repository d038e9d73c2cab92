"""Task lifecycle management.

The :class:`TaskManager` is the only owner of the task collection. Outcomes
are forwarded to the instance state machine; if the state machine raises,
the tentative status change on the task is rolled back before the error is
surfaced so tasks and instances never disagree.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional, Protocol, Union

from .contracts import Task, TaskAction, TaskStatus, utcnow
from .exceptions import ApprovalGuardError, TaskNotFoundError

logger = logging.getLogger(__name__)

OUT_OF_TURN_MESSAGE = "Process has not reached this node; out-of-order approval rejected"


class TaskOutcomeHandler(Protocol):
    """Interface the task manager uses to reach the instance state machine."""

    def current_node_id(self, instance_id: str) -> Optional[str]:
        """Return the node the instance cursor currently occupies."""

    def apply_task_action(
        self,
        task_id: str,
        action: Union[TaskAction, str],
        operator: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> object:
        """Apply a task outcome to the owning instance."""

    def record_delegation(self, task: Task, from_role: str, to_role: str) -> None:
        """Append delegation history to the owning instance."""


class TaskManager:
    """Create, act on, delegate and cancel approval tasks."""

    def __init__(self, lock: Optional[threading.RLock] = None) -> None:
        self._tasks: Dict[str, Task] = {}
        self._lock = lock or threading.RLock()
        self._handler: Optional[TaskOutcomeHandler] = None

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def bind(self, handler: TaskOutcomeHandler) -> None:
        """Attach the state machine that applies task outcomes."""
        self._handler = handler

    # ------------------------------------------------------------------
    # Queries
    def get(self, task_id: str) -> Task:
        with self._lock:
            return self._require(task_id).model_copy()

    def list(self) -> List[Task]:
        with self._lock:
            return [task.model_copy() for task in self._tasks.values()]

    def pending_for_role(self, role: str) -> List[Task]:
        with self._lock:
            return [
                task.model_copy()
                for task in self._tasks.values()
                if task.assignee_role == role and task.is_pending
            ]

    def for_instance(self, instance_id: str) -> List[Task]:
        with self._lock:
            return [
                task.model_copy()
                for task in self._tasks.values()
                if task.instance_id == instance_id
            ]

    def for_node(self, instance_id: str, node_id: str) -> List[Task]:
        with self._lock:
            return [
                task.model_copy()
                for task in self._tasks.values()
                if task.instance_id == instance_id and task.node_id == node_id
            ]

    # ------------------------------------------------------------------
    # Mutations
    def create_task(self, instance_id: str, node_id: str, role: str) -> Task:
        """Allocate a pending task.

        Uniqueness per node is the caller's responsibility.
        """
        with self._lock:
            task = Task(instance_id=instance_id, node_id=node_id, assignee_role=role)
            self._tasks[task.id] = task
            logger.info(
                f"Created task {task.id} for role {role} at node {node_id} "
                f"(instance_id={instance_id})"
            )
            return task.model_copy()

    def approve(
        self, task_id: str, operator: Optional[str] = None, comment: Optional[str] = None
    ) -> Task:
        return self._act(task_id, TaskAction.APPROVE, operator, comment)

    def reject(
        self, task_id: str, operator: Optional[str] = None, comment: Optional[str] = None
    ) -> Task:
        return self._act(task_id, TaskAction.REJECT, operator, comment)

    def delegate(self, task_id: str, to_role: str, operator_role: str) -> Task:
        """Reassign a pending task to ``to_role``.

        Only the current assignee may delegate. Instance state is untouched
        apart from an audit log entry.
        """
        with self._lock:
            task = self._require(task_id)
            if not task.is_pending:
                raise ApprovalGuardError(
                    f"Task {task_id} is {task.status.value}; only pending tasks can be delegated"
                )
            if task.assignee_role != operator_role:
                raise ApprovalGuardError(
                    f"Role {operator_role} is not the assignee of task {task_id}"
                )
            previous = (task.assignee_role, task.delegated_from, task.delegated_at)
            task.assignee_role = to_role
            task.delegated_from = operator_role
            task.delegated_at = utcnow()
            if self._handler is not None:
                try:
                    self._handler.record_delegation(task.model_copy(), operator_role, to_role)
                except Exception as exc:
                    task.assignee_role, task.delegated_from, task.delegated_at = previous
                    logger.error(f"Rolled back delegation of task {task_id}: {exc}")
                    raise
            logger.info(f"Delegated task {task_id} from {operator_role} to {to_role}")
            return task.model_copy()

    def cancel(self, task_ids: Iterable[str], reason: Optional[str] = None) -> List[str]:
        """Cancel every pending task in ``task_ids``; returns the ids cancelled."""
        cancelled: List[str] = []
        with self._lock:
            now = utcnow()
            for task_id in task_ids:
                task = self._tasks.get(task_id)
                if task is None or not task.is_pending:
                    continue
                task.status = TaskStatus.CANCELLED
                task.cancelled_reason = reason
                task.cancelled_at = now
                cancelled.append(task_id)
        if cancelled:
            logger.info(f"Cancelled tasks {cancelled}: {reason}")
        return cancelled

    # ------------------------------------------------------------------
    # Persistence hooks
    def load(self, tasks: Iterable[Task]) -> None:
        with self._lock:
            self._tasks = {task.id: task.model_copy() for task in tasks}

    def snapshot(self) -> List[Task]:
        with self._lock:
            return self.list()

    # ------------------------------------------------------------------
    def _require(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _act(
        self,
        task_id: str,
        action: TaskAction,
        operator: Optional[str],
        comment: Optional[str],
    ) -> Task:
        if self._handler is None:
            raise RuntimeError("TaskManager is not bound to an instance state machine")

        with self._lock:
            task = self._require(task_id)
            if not task.is_pending:
                logger.info(
                    f"Ignoring {action.value} of task {task_id}: already {task.status.value}"
                )
                return task.model_copy()

            current = self._handler.current_node_id(task.instance_id)
            if current is None or current != task.node_id:
                logger.warning(
                    f"Out-of-order {action.value} of task {task_id} at node {task.node_id} "
                    f"(current node {current}, instance_id={task.instance_id})"
                )
                raise ApprovalGuardError(OUT_OF_TURN_MESSAGE)

            task.status = (
                TaskStatus.APPROVED if action == TaskAction.APPROVE else TaskStatus.REJECTED
            )
            task.completed_at = utcnow()
            try:
                self._handler.apply_task_action(
                    task_id=task_id,
                    action=action,
                    operator=operator or task.assignee_role,
                    comment=comment,
                )
            except Exception as exc:
                task.status = TaskStatus.PENDING
                task.completed_at = None
                logger.error(
                    f"Rolled back {action.value} of task {task_id} "
                    f"(instance_id={task.instance_id}): {exc}"
                )
                raise
            return task.model_copy()
