"""Status state machine: transition validation, side effects, and cascade.

The table below is closed-world: a pair that is not listed is rejected.
Archiving is additionally restricted to completed tasks, so ``todo →
archived`` is listed for completeness but is refused by the archive guard.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Optional

from loguru import logger

from ..errors import (
    ArchiveOfNonCompleted,
    InvalidTransition,
    MissingBlockReason,
    TaskNotFound,
    TaskwerkError,
)
from ..utils import _now_iso
from .history import HistoryRecorder
from .model import SideEffect, Task, TaskStatus, TransitionResult
from .store import TaskTransaction


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

STATE_TRANSITIONS: dict[TaskStatus, tuple[TaskStatus, ...]] = {
    TaskStatus.TODO: (TaskStatus.ACTIVE, TaskStatus.BLOCKED, TaskStatus.COMPLETED, TaskStatus.ARCHIVED),
    TaskStatus.ACTIVE: (TaskStatus.PAUSED, TaskStatus.BLOCKED, TaskStatus.COMPLETED),
    TaskStatus.PAUSED: (TaskStatus.ACTIVE, TaskStatus.BLOCKED, TaskStatus.COMPLETED),
    TaskStatus.BLOCKED: (TaskStatus.TODO, TaskStatus.ACTIVE, TaskStatus.COMPLETED),
    TaskStatus.COMPLETED: (TaskStatus.ARCHIVED,),
    TaskStatus.ARCHIVED: (),  # terminal
}

# parent target status -> (child statuses affected, child target status)
CASCADE_RULES: dict[TaskStatus, tuple[frozenset[TaskStatus], TaskStatus]] = {
    TaskStatus.BLOCKED: (frozenset({TaskStatus.ACTIVE, TaskStatus.TODO}), TaskStatus.BLOCKED),
    TaskStatus.ARCHIVED: (frozenset({TaskStatus.COMPLETED}), TaskStatus.ARCHIVED),
}


def get_allowed_transitions(status: TaskStatus) -> list[TaskStatus]:
    """Targets reachable from *status*, with the archive guard applied."""
    allowed = list(STATE_TRANSITIONS.get(status, ()))
    if status != TaskStatus.COMPLETED:
        allowed = [s for s in allowed if s != TaskStatus.ARCHIVED]
    return allowed


def is_valid_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    return to_status in get_allowed_transitions(from_status)


def parse_status(value: Any, task_id: str, current: Optional[TaskStatus] = None) -> TaskStatus:
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(str(value).strip().lower())
    except ValueError:
        raise InvalidTransition(
            task_id,
            current.value if current else None,
            str(value),
            allowed=[s.value for s in get_allowed_transitions(current)] if current else None,
            message=f"Unknown status '{value}'. Must be one of: {', '.join(s.value for s in TaskStatus)}",
        ) from None


def cascade_reason(parent_id: str, parent_status: TaskStatus) -> str:
    return f"Parent task ({parent_id}) changed to {parent_status.value}"


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class StatusStateMachine:
    """Validate and execute single-task transitions inside a caller's transaction."""

    def __init__(self, history: Optional[HistoryRecorder] = None) -> None:
        self.history = history or HistoryRecorder()

    def plan(self, task: Task, target: TaskStatus, reason: Optional[str] = None) -> dict[str, Any]:
        """Validate a transition and return the field changes it implies.

        Raises before anything is written; the returned mapping always
        contains ``status``.
        """
        if target == TaskStatus.ARCHIVED and task.status != TaskStatus.COMPLETED:
            raise ArchiveOfNonCompleted(task.id, task.status.value)
        if not is_valid_transition(task.status, target):
            raise InvalidTransition(
                task.id,
                task.status.value,
                target.value,
                allowed=[s.value for s in get_allowed_transitions(task.status)],
            )

        changes: dict[str, Any] = {"status": target}
        if target == TaskStatus.BLOCKED:
            if not isinstance(reason, str) or not reason.strip():
                raise MissingBlockReason(task.id)
            changes["blocked_reason"] = reason.strip()
        elif task.status == TaskStatus.BLOCKED and target in (TaskStatus.ACTIVE, TaskStatus.TODO):
            changes["blocked_reason"] = None

        if target == TaskStatus.COMPLETED:
            changes["completed_at"] = _now_iso()
            changes["blocked_reason"] = None
        return changes

    def execute(
        self,
        tx: TaskTransaction,
        task_id: str,
        target: Any,
        *,
        reason: Optional[str] = None,
        cascade: bool = False,
    ) -> TransitionResult:
        task = tx.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        target_status = parse_status(target, task.id, task.status)
        changes = self.plan(task, target_status, reason)

        old_status = task.status
        self.history.apply(tx, task, changes)
        result = TransitionResult(task_id=task.id, old_status=old_status, new_status=target_status)
        if cascade:
            result.side_effects = self._cascade(tx, task.id, target_status)
        return result

    def _cascade(self, tx: TaskTransaction, root_id: str, root_status: TaskStatus) -> list[SideEffect]:
        """Walk descendants depth-first with an explicit stack.

        A child is only descended into when it transitioned itself.
        """
        effects: list[SideEffect] = []
        visited: set[str] = {root_id}
        stack: list[tuple[str, TaskStatus]] = [(root_id, root_status)]

        while stack:
            parent_id, parent_status = stack.pop()
            rule = CASCADE_RULES.get(parent_status)
            if rule is None:
                continue
            sources, child_target = rule
            for child in tx.list_children(parent_id):
                if child.id in visited:
                    logger.warning("Parent cycle through {} ignored during cascade", child.id)
                    continue
                visited.add(child.id)
                if child.status not in sources:
                    continue
                reason = cascade_reason(parent_id, parent_status)
                try:
                    changes = self.plan(child, child_target, reason)
                except InvalidTransition:
                    logger.debug("Cascade skipped {} ({} → {})", child.id, child.status.value, child_target.value)
                    continue
                old_status = child.status
                self.history.apply(tx, child, changes)
                effects.append(
                    SideEffect(
                        task_id=child.id,
                        parent_id=parent_id,
                        old_status=old_status,
                        new_status=child_target,
                        reason=reason,
                    )
                )
                logger.debug("Cascaded {} {} → {}", child.id, old_status.value, child_target.value)
                stack.append((child.id, child_target))
        return effects

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def describe(self, task: Task) -> dict[str, Any]:
        allowed = get_allowed_transitions(task.status)
        return {
            "task_id": task.id,
            "current_status": task.status.value,
            "allowed_transitions": [s.value for s in allowed],
            "is_terminal": not allowed,
        }

    def validate_bulk(
        self,
        tx: TaskTransaction,
        changes: Iterable[Any],
    ) -> dict[str, Any]:
        """Dry-run each proposed change against the current state.

        Validation problems become per-item results; nothing is written.
        Items that are not mappings are reported as invalid, never skipped.
        """
        results: list[dict[str, Any]] = []
        for change in changes:
            if not isinstance(change, Mapping):
                results.append({
                    "task_id": None,
                    "current_status": None,
                    "target_status": None,
                    "valid": False,
                    "error": f"Expected a mapping with task_id and status, got {type(change).__name__}",
                    "code": "INVALID_ITEM",
                })
                continue
            task_id = str(change.get("task_id", ""))
            target = change.get("status", change.get("new_status"))
            item: dict[str, Any] = {
                "task_id": task_id,
                "current_status": None,
                "target_status": str(getattr(target, "value", target)) if target is not None else None,
                "valid": False,
                "error": None,
                "code": None,
            }
            task = tx.get(task_id)
            try:
                if task is None:
                    raise TaskNotFound(task_id)
                item["current_status"] = task.status.value
                target_status = parse_status(target, task.id, task.status)
                item["target_status"] = target_status.value
                self.plan(task, target_status, change.get("reason"))
                item["valid"] = True
            except TaskwerkError as exc:
                item["error"] = exc.message
                item["code"] = exc.code
            results.append(item)
        return {"valid": all(r["valid"] for r in results), "results": results}
