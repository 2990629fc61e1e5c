"""Hierarchy resolver: parent resolution, forest invariant, and delete guard."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from loguru import logger

from ..errors import CircularHierarchy, HasChildren, HasDependents, ParentNotFound, TaskNotFound
from .history import HistoryRecorder
from .model import Task
from .store import TaskTransaction


class ChildPolicy(str, Enum):
    """What happens to the children of a force-deleted task."""

    ORPHAN = "orphan"  # children become roots
    REPARENT = "reparent"  # children move to the deleted task's parent
    CASCADE = "cascade"  # children (and their subtrees) are deleted too


class HierarchyResolver:
    def __init__(self, history: Optional[HistoryRecorder] = None) -> None:
        self.history = history or HistoryRecorder()

    # ------------------------------------------------------------------
    # Parent resolution
    # ------------------------------------------------------------------

    def resolve_parent(self, tx: TaskTransaction, parent_id: Optional[str]) -> Optional[Task]:
        if not parent_id:
            return None
        parent = tx.get(parent_id)
        if parent is None:
            raise ParentNotFound(parent_id)
        return parent

    def check_can_parent(self, tx: TaskTransaction, task_id: str, parent_id: str) -> None:
        """Raise :class:`CircularHierarchy` if *task_id* is *parent_id* or one of its ancestors."""
        if task_id == parent_id:
            raise CircularHierarchy(task_id, parent_id)
        visited: set[str] = set()
        current: Optional[str] = parent_id
        while current and current not in visited:
            if current == task_id:
                raise CircularHierarchy(task_id, parent_id)
            visited.add(current)
            node = tx.get(current)
            current = node.parent_id if node else None

    def set_parent(self, tx: TaskTransaction, task_id: str, parent_id: Optional[str]) -> Task:
        task = tx.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        if parent_id:
            self.resolve_parent(tx, parent_id)
            self.check_can_parent(tx, task_id, parent_id)
        self.history.apply(tx, task, {"parent_id": parent_id or None})
        return task

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def children(self, tx: TaskTransaction, task_id: str) -> list[Task]:
        return tx.list_children(task_id)

    def ancestors(self, tx: TaskTransaction, task_id: str) -> list[Task]:
        """Parent first, root last."""
        task = tx.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        out: list[Task] = []
        seen: set[str] = {task_id}
        current = task.parent_id
        while current and current not in seen:
            seen.add(current)
            node = tx.get(current)
            if node is None:
                break
            out.append(node)
            current = node.parent_id
        return out

    def descendants(self, tx: TaskTransaction, task_id: str) -> list[Task]:
        """All tasks below *task_id*, depth-first pre-order."""
        if tx.get(task_id) is None:
            raise TaskNotFound(task_id)
        out: list[Task] = []
        seen: set[str] = {task_id}
        stack: list[Task] = list(reversed(tx.list_children(task_id)))
        while stack:
            node = stack.pop()
            if node.id in seen:
                continue
            seen.add(node.id)
            out.append(node)
            stack.extend(reversed(tx.list_children(node.id)))
        return out

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def guard_delete(self, tx: TaskTransaction, task_id: str) -> None:
        dependents = [t.id for t in tx.list_dependents(task_id)]
        if dependents:
            raise HasDependents(task_id, dependents)
        children = [t.id for t in tx.list_children(task_id)]
        if children:
            raise HasChildren(task_id, children)

    def delete(
        self,
        tx: TaskTransaction,
        task_id: str,
        *,
        force: bool = False,
        child_policy: Optional[ChildPolicy] = None,
    ) -> list[str]:
        """Delete *task_id* and return every id removed.

        Without *force* the delete guard applies.  With *force*, a task that
        has children also needs an explicit *child_policy*; there is no
        implicit choice between orphaning, reparenting and cascading.
        """
        task = tx.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        if not force:
            self.guard_delete(tx, task_id)

        children = tx.list_children(task_id)
        if children and child_policy is None:
            raise HasChildren(
                task_id,
                [c.id for c in children],
                message=(
                    f"Cannot force-delete task {task_id}: it has children "
                    f"{', '.join(c.id for c in children)}; choose a child policy "
                    f"({', '.join(p.value for p in ChildPolicy)})"
                ),
            )

        doomed: list[Task] = [task]
        if child_policy == ChildPolicy.CASCADE:
            doomed.extend(self.descendants(tx, task_id))
        elif children:
            new_parent = task.parent_id if child_policy == ChildPolicy.REPARENT else None
            for child in children:
                self.history.apply(tx, child, {"parent_id": new_parent})

        doomed_ids = {t.id for t in doomed}
        for t in doomed:
            for dependent in tx.list_dependents(t.id):
                if dependent.id in doomed_ids:
                    continue
                remaining = [d for d in dependent.dependencies if d != t.id]
                self.history.apply(tx, dependent, {"dependencies": remaining})

        removed: list[str] = []
        for t in doomed:
            if tx.delete(t.id):
                removed.append(t.id)
        if force:
            logger.warning("Force-deleted {} (policy={})", ", ".join(removed), child_policy.value if child_policy else None)
        return removed
