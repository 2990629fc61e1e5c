"""Field-level audit trail written in the same transaction as the mutation."""

from __future__ import annotations

from typing import Any, Optional

from loguru import logger

from ..utils import _now_iso, _stringify
from .model import ChangeType, HistoryEntry, Task
from .store import TaskTransaction


class HistoryRecorder:
    """Apply field changes to a task and append one entry per changed field.

    The recorder never opens a transaction of its own; it always writes into
    the caller's, so history and task state commit or roll back together.
    """

    def apply(
        self,
        tx: TaskTransaction,
        task: Task,
        changes: dict[str, Any],
        *,
        change_type: Optional[ChangeType] = None,
    ) -> list[HistoryEntry]:
        """Update *task* with *changes* and record what actually changed.

        Fields whose value is unchanged are neither written nor recorded.
        ``status`` is recorded as a status change; everything else as an
        update unless *change_type* overrides it.
        """
        effective: dict[str, Any] = {}
        for name, new_value in changes.items():
            if getattr(task, name) != new_value:
                effective[name] = new_value
        if not effective:
            return []

        old_values = {name: getattr(task, name) for name in effective}
        tx.update(task.id, effective)

        now = _now_iso()
        entries: list[HistoryEntry] = []
        for name, new_value in effective.items():
            kind = change_type or (ChangeType.STATUS_CHANGE if name == "status" else ChangeType.UPDATE)
            entry = HistoryEntry(
                task_id=task.id,
                field_name=name,
                old_value=_stringify(old_values[name]),
                new_value=_stringify(new_value),
                change_type=kind,
                timestamp=now,
            )
            tx.append_history(entry)
            entries.append(entry)
        logger.debug("Recorded {} history entries for {}", len(entries), task.id)
        return entries

    def record_created(self, tx: TaskTransaction, task: Task) -> HistoryEntry:
        return tx.append_history(
            HistoryEntry(
                task_id=task.id,
                field_name="status",
                old_value=None,
                new_value=task.status.value,
                change_type=ChangeType.CREATE,
                timestamp=task.created_at,
            )
        )
