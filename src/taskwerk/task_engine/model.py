"""Task model for the lifecycle engine.

This module defines the task record, the status/priority enums, and the small
immutable value types the engine hands back to callers (history entries,
dependency edges, transition results and dependency-tree nodes). Everything
here is plain data and serializes to YAML/JSON-friendly dicts.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..constants import MISSING_DEPENDENCY_DESCRIPTION, MISSING_STATUS
from ..utils import _now_iso


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    """Lifecycle status of a task."""

    TODO = "todo"  # Not started
    ACTIVE = "active"  # Currently being worked on
    PAUSED = "paused"  # Temporarily stopped
    BLOCKED = "blocked"  # Cannot proceed
    COMPLETED = "completed"  # Finished successfully
    ARCHIVED = "archived"  # Hidden from normal views


class TaskPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def sort_key(self) -> int:
        return {"high": 0, "medium": 1, "low": 2}[self.value]


class ChangeType(str, Enum):
    """Kind of change recorded in a history entry."""

    CREATE = "create"
    UPDATE = "update"
    STATUS_CHANGE = "status_change"


class DependencyState(str, Enum):
    """Readiness classification of a task's dependency set."""

    READY = "ready"  # All dependencies satisfied
    BLOCKED = "blocked"  # No dependency satisfied
    PARTIAL = "partial"  # Some dependencies satisfied


# ---------------------------------------------------------------------------
# Task dataclass
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A unit of trackable work.

    ``status``, ``blocked_reason`` and ``completed_at`` belong to the state
    machine; write them through :class:`~taskwerk.task_engine.engine.TaskEngine`
    only.
    """

    id: str
    name: str = ""
    description: str = ""

    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM

    # Hierarchy
    parent_id: Optional[str] = None

    # Dependencies (ids this task depends on), ordered and duplicate-free
    dependencies: list[str] = field(default_factory=list)

    # Lifecycle bookkeeping
    blocked_reason: Optional[str] = None
    completed_at: Optional[str] = None

    assignee: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict for YAML/JSON persistence."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "parent_id": self.parent_id,
            "dependencies": list(self.dependencies),
            "blocked_reason": self.blocked_reason,
            "completed_at": self.completed_at,
            "assignee": self.assignee,
            "metadata": dict(self.metadata),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict, coercing enums gracefully."""
        d = dict(data)  # shallow copy

        def _enum(enum_cls: type[Enum], key: str, default: Enum) -> Any:
            raw = d.pop(key, None)
            if raw is None:
                return default
            if isinstance(raw, enum_cls):
                return raw
            try:
                return enum_cls(str(raw))
            except (ValueError, KeyError):
                return default

        status = _enum(TaskStatus, "status", TaskStatus.TODO)
        priority = _enum(TaskPriority, "priority", TaskPriority.MEDIUM)

        deps: list[str] = []
        for dep in d.pop("dependencies", []) or []:
            dep = str(dep)
            if dep not in deps:
                deps.append(dep)

        return cls(
            id=str(d.pop("id")),
            name=str(d.pop("name", "") or ""),
            description=str(d.pop("description", "") or ""),
            status=status,
            priority=priority,
            parent_id=d.pop("parent_id", None),
            dependencies=deps,
            blocked_reason=d.pop("blocked_reason", None),
            completed_at=d.pop("completed_at", None),
            assignee=d.pop("assignee", None),
            metadata=dict(d.pop("metadata", {}) or {}),
            created_at=str(d.pop("created_at", None) or _now_iso()),
            updated_at=str(d.pop("updated_at", None) or _now_iso()),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.updated_at = _now_iso()

    @property
    def is_terminal(self) -> bool:
        return self.status == TaskStatus.ARCHIVED

    @property
    def is_done(self) -> bool:
        """True once the work is finished (completed, possibly archived since)."""
        return self.status in (TaskStatus.COMPLETED, TaskStatus.ARCHIVED)

    def add_dependency(self, task_id: str) -> bool:
        if task_id in self.dependencies:
            return False
        self.dependencies.append(task_id)
        self.touch()
        return True

    def remove_dependency(self, task_id: str) -> bool:
        if task_id not in self.dependencies:
            return False
        self.dependencies.remove(task_id)
        self.touch()
        return True


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

def _history_id() -> str:
    return f"hist-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable audit record of one field change on one task."""

    task_id: str
    field_name: str
    old_value: Optional[str]
    new_value: Optional[str]
    change_type: ChangeType
    timestamp: str = field(default_factory=_now_iso)
    id: str = field(default_factory=_history_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "field_name": self.field_name,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "change_type": self.change_type.value,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        try:
            change_type = ChangeType(str(data.get("change_type")))
        except ValueError:
            change_type = ChangeType.UPDATE
        old_value = data.get("old_value")
        new_value = data.get("new_value")
        return cls(
            task_id=str(data["task_id"]),
            field_name=str(data.get("field_name", "")),
            old_value=None if old_value is None else str(old_value),
            new_value=None if new_value is None else str(new_value),
            change_type=change_type,
            timestamp=str(data.get("timestamp") or _now_iso()),
            id=str(data.get("id") or _history_id()),
        )


@dataclass(frozen=True)
class DependencyEdge:
    """``task_id`` cannot start until ``depends_on_id`` is completed."""

    task_id: str
    depends_on_id: str


@dataclass(frozen=True)
class SideEffect:
    """A child task mutated by a cascading transition."""

    task_id: str
    parent_id: str
    old_status: TaskStatus
    new_status: TaskStatus
    reason: Optional[str] = None
    type: str = "child_transition"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "task_id": self.task_id,
            "parent_id": self.parent_id,
            "old_status": self.old_status.value,
            "new_status": self.new_status.value,
            "reason": self.reason,
        }


@dataclass
class TransitionResult:
    task_id: str
    old_status: TaskStatus
    new_status: TaskStatus
    side_effects: list[SideEffect] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "old_status": self.old_status.value,
            "new_status": self.new_status.value,
            "side_effects": [s.to_dict() for s in self.side_effects],
        }


@dataclass
class DependencyNode:
    """One node of a dependency tree.

    ``task`` is None for a dependency id that no longer resolves; such a node
    is a leaf with ``missing`` set.
    """

    task_id: str
    task: Optional[Task]
    dependencies: list["DependencyNode"] = field(default_factory=list)
    missing: bool = False

    @classmethod
    def missing_leaf(cls, task_id: str) -> "DependencyNode":
        return cls(task_id=task_id, task=None, dependencies=[], missing=True)

    def task_data(self) -> dict[str, Any]:
        if self.missing or self.task is None:
            return {
                "id": self.task_id,
                "description": MISSING_DEPENDENCY_DESCRIPTION,
                "status": MISSING_STATUS,
            }
        return self.task.to_dict()

    def to_dict(self) -> dict[str, Any]:
        """Nested dict form; built bottom-up without recursion."""
        rendered: dict[int, dict[str, Any]] = {}
        stack: list[tuple[DependencyNode, bool]] = [(self, False)]
        while stack:
            node, ready = stack.pop()
            if ready:
                rendered[id(node)] = {
                    "task": node.task_data(),
                    "dependencies": [rendered[id(d)] for d in node.dependencies],
                    "missing": node.missing,
                }
                continue
            if id(node) in rendered:
                continue
            stack.append((node, True))
            stack.extend((d, False) for d in node.dependencies)
        return rendered[id(self)]
