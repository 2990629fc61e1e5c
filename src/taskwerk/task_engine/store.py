"""Task stores: the persistence collaborator behind the lifecycle engine.

Both stores expose the same unit of work.  :meth:`TaskStore.transaction`
acquires the store's lock, loads a private snapshot, yields a
:class:`TaskTransaction` over it, and writes the snapshot back only when the
``with`` block exits cleanly.  An exception anywhere inside the block leaves
the stored state exactly as it was.

:class:`FileTaskStore` keeps tasks and history together in one YAML file
(``.taskwerk/tasks.yaml``) so a single atomic rename commits both.
:class:`MemoryTaskStore` keeps them in process and is used by tests and
embedders that bring their own persistence.
"""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, ContextManager, Iterator, Optional

from ..constants import DEFAULT_ID_PREFIX, LOCK_FILE, STORE_FILE, STORE_VERSION
from ..io_utils import FileLock, _atomic_write_yaml, _load_yaml
from ..utils import _next_task_id
from .model import DependencyEdge, HistoryEntry, Task

# Fields a plain ``update`` may touch; ``id`` and timestamps are managed here.
_UPDATABLE_FIELDS = frozenset({
    "name",
    "description",
    "status",
    "priority",
    "parent_id",
    "dependencies",
    "blocked_reason",
    "completed_at",
    "assignee",
    "metadata",
})


class TaskTransaction:
    """In-memory unit of work over a snapshot of tasks and history.

    Mutations mark the transaction dirty; the owning store flushes the
    snapshot when the ``transaction`` context-manager exits without error.
    """

    def __init__(
        self,
        tasks: list[Task],
        history: list[HistoryEntry],
        *,
        id_prefix: str = DEFAULT_ID_PREFIX,
    ) -> None:
        self.tasks = tasks
        self.history = history
        self.dirty = False
        self._id_prefix = id_prefix
        self._index: dict[str, int] = {t.id: i for i, t in enumerate(tasks)}

    # -- lookups ------------------------------------------------------------

    def get(self, task_id: str) -> Optional[Task]:
        idx = self._index.get(task_id)
        return self.tasks[idx] if idx is not None else None

    def list_all(self) -> list[Task]:
        return list(self.tasks)

    def list_children(self, parent_id: str) -> list[Task]:
        return [t for t in self.tasks if t.parent_id == parent_id]

    def list_dependents(self, task_id: str) -> list[Task]:
        """Tasks whose dependency set includes *task_id*."""
        return [t for t in self.tasks if task_id in t.dependencies]

    def list_edges(self) -> list[DependencyEdge]:
        return [DependencyEdge(t.id, dep) for t in self.tasks for dep in t.dependencies]

    def find(
        self,
        *,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        assignee: Optional[str] = None,
        parent_id: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[Task]:
        out: list[Task] = []
        for t in self.tasks:
            if status and t.status.value != status:
                continue
            if priority and t.priority.value != priority:
                continue
            if assignee and t.assignee != assignee:
                continue
            if parent_id is not None and t.parent_id != parent_id:
                continue
            if search:
                q = search.lower()
                if q not in t.name.lower() and q not in t.description.lower() and q not in t.id.lower():
                    continue
            out.append(t)
        return out

    def history_for(self, task_id: str) -> list[HistoryEntry]:
        return [h for h in self.history if h.task_id == task_id]

    def next_id(self) -> str:
        return _next_task_id(self._id_prefix, self._index.keys())

    # -- mutations ----------------------------------------------------------

    def add(self, task: Task) -> Task:
        if task.id in self._index:
            raise ValueError(f"Task {task.id} already exists")
        self._index[task.id] = len(self.tasks)
        self.tasks.append(task)
        self.dirty = True
        return task

    def update(self, task_id: str, changes: dict[str, Any]) -> Optional[Task]:
        task = self.get(task_id)
        if task is None:
            return None
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields {sorted(unknown)} on {task_id}")
        for key, value in changes.items():
            setattr(task, key, value)
        task.touch()
        self.dirty = True
        return task

    def delete(self, task_id: str) -> bool:
        """Physically remove a task, its history, and every edge touching it."""
        idx = self._index.pop(task_id, None)
        if idx is None:
            return False
        self.tasks.pop(idx)
        self._index = {t.id: i for i, t in enumerate(self.tasks)}
        for other in self.tasks:
            other.remove_dependency(task_id)
        self.delete_history(task_id)
        self.dirty = True
        return True

    def append_history(self, entry: HistoryEntry) -> HistoryEntry:
        self.history.append(entry)
        self.dirty = True
        return entry

    def delete_history(self, task_id: str) -> int:
        before = len(self.history)
        self.history = [h for h in self.history if h.task_id != task_id]
        removed = before - len(self.history)
        if removed:
            self.dirty = True
        return removed


class TaskStore(ABC):
    """Durable owner of tasks and history with a scoped transaction primitive."""

    def __init__(self, id_prefix: str = DEFAULT_ID_PREFIX) -> None:
        self.id_prefix = id_prefix

    @abstractmethod
    def _locked(self) -> ContextManager[Any]:
        raise NotImplementedError

    @abstractmethod
    def _load(self) -> tuple[list[Task], list[HistoryEntry]]:
        raise NotImplementedError

    @abstractmethod
    def _save(self, tasks: list[Task], history: list[HistoryEntry]) -> None:
        raise NotImplementedError

    @contextmanager
    def transaction(self) -> Iterator[TaskTransaction]:
        """Acquire the lock, load a snapshot, yield a transaction, and save on clean exit.

        Usage::

            with store.transaction() as tx:
                task = tx.get("TASK-001")
                tx.update(task.id, {"name": "Renamed"})
                # saved on exit; discarded if the block raises
        """
        with self._locked():
            tasks, history = self._load()
            tx = TaskTransaction(tasks, history, id_prefix=self.id_prefix)
            yield tx
            if tx.dirty:
                self._save(tx.tasks, tx.history)

    def read_snapshot(self) -> list[Task]:
        """Return a read-only snapshot (no lock held after return)."""
        with self._locked():
            tasks, _ = self._load()
            return tasks

    def get_one(self, task_id: str) -> Optional[Task]:
        for t in self.read_snapshot():
            if t.id == task_id:
                return t
        return None


class FileTaskStore(TaskStore):
    """YAML-file store guarded by an exclusive file lock.

    Parameters
    ----------
    state_dir:
        Path to the project's ``.taskwerk/`` directory.
    """

    def __init__(self, state_dir: Path, id_prefix: str = DEFAULT_ID_PREFIX) -> None:
        super().__init__(id_prefix)
        self._state_dir = state_dir
        self._store_path = state_dir / STORE_FILE
        self._lock = FileLock(state_dir / LOCK_FILE)

    @property
    def path(self) -> Path:
        return self._store_path

    def _locked(self) -> ContextManager[Any]:
        return self._lock

    def _load(self) -> tuple[list[Task], list[HistoryEntry]]:
        data = _load_yaml(self._store_path, {})
        raw_tasks = data.get("tasks") or []
        raw_history = data.get("history") or []
        for key, raw in (("tasks", raw_tasks), ("history", raw_history)):
            if not isinstance(raw, list):
                raise ValueError(f"{self._store_path}: '{key}' must be a list, got {type(raw).__name__}")
        tasks = [Task.from_dict(d) for d in raw_tasks if isinstance(d, dict)]
        history = [HistoryEntry.from_dict(d) for d in raw_history if isinstance(d, dict)]
        return tasks, history

    def _save(self, tasks: list[Task], history: list[HistoryEntry]) -> None:
        payload = {
            "version": STORE_VERSION,
            "tasks": [t.to_dict() for t in tasks],
            "history": [h.to_dict() for h in history],
        }
        _atomic_write_yaml(self._store_path, payload)


class MemoryTaskStore(TaskStore):
    """Process-local store; each transaction works on a deep copy."""

    def __init__(self, tasks: Optional[list[Task]] = None, id_prefix: str = DEFAULT_ID_PREFIX) -> None:
        super().__init__(id_prefix)
        self._tasks: list[Task] = copy.deepcopy(list(tasks or []))
        self._history: list[HistoryEntry] = []
        self._lock = threading.RLock()

    def _locked(self) -> ContextManager[Any]:
        return self._lock

    def _load(self) -> tuple[list[Task], list[HistoryEntry]]:
        return copy.deepcopy(self._tasks), list(self._history)

    def _save(self, tasks: list[Task], history: list[HistoryEntry]) -> None:
        self._tasks = copy.deepcopy(tasks)
        self._history = list(history)
