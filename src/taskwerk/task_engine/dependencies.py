"""Dependency graph manager: cycle-safe edges, readiness and tree views.

Edges live on the dependent task (``Task.dependencies``).  Every traversal
here is iterative with an explicit visited set, so a long chain or a wide
diamond never recurses on the Python stack and shared dependencies are
explored once.
"""

from __future__ import annotations

from typing import Any, Optional

from loguru import logger

from ..errors import CircularDependency, DependencyNotFound, TaskNotFound
from .history import HistoryRecorder
from .model import DependencyEdge, DependencyNode, DependencyState, Task, TaskStatus
from .store import TaskTransaction


def _is_satisfied(dep: Optional[Task]) -> bool:
    """A dependency is satisfied once its task is done; unknown ids never are."""
    return dep is not None and dep.is_done


class DependencyGraph:
    def __init__(self, history: Optional[HistoryRecorder] = None) -> None:
        self.history = history or HistoryRecorder()

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def add(self, tx: TaskTransaction, task_id: str, depends_on_id: str) -> bool:
        """Add ``task_id → depends_on_id``.

        Returns True when a new edge was written, False when it already
        existed.  Raises :class:`CircularDependency` for a self edge or an
        edge that would close a cycle, leaving the graph unchanged.
        """
        if task_id == depends_on_id:
            raise CircularDependency(task_id, depends_on_id, message=f"A task cannot depend on itself: {task_id}")

        task = tx.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        if tx.get(depends_on_id) is None:
            raise DependencyNotFound(task_id, depends_on_id)

        if depends_on_id in task.dependencies:
            logger.debug("Dependency {} → {} already present", task_id, depends_on_id)
            return False

        path = self.find_path(tx, depends_on_id, task_id)
        if path is not None:
            chain = " → ".join([task_id, *path])
            raise CircularDependency(
                task_id,
                depends_on_id,
                message=f"Adding dependency {task_id} → {depends_on_id} would create a cycle: {chain}",
            )

        self.history.apply(tx, task, {"dependencies": [*task.dependencies, depends_on_id]})
        logger.info("Added dependency {} → {}", task_id, depends_on_id)
        return True

    def remove(self, tx: TaskTransaction, task_id: str, depends_on_id: str) -> bool:
        task = tx.get(task_id)
        if task is None or depends_on_id not in task.dependencies:
            return False
        remaining = [d for d in task.dependencies if d != depends_on_id]
        self.history.apply(tx, task, {"dependencies": remaining})
        logger.info("Removed dependency {} → {}", task_id, depends_on_id)
        return True

    @staticmethod
    def find_path(tx: TaskTransaction, start_id: str, target_id: str) -> Optional[list[str]]:
        """Return the dependency path from *start_id* to *target_id*, or None.

        Depth-first over dependency edges; each task id is expanded at most
        once, but every distinct unvisited branch is still followed.
        """
        parents: dict[str, Optional[str]] = {start_id: None}
        stack: list[str] = [start_id]
        while stack:
            current = stack.pop()
            if current == target_id:
                path = [current]
                while parents[path[-1]] is not None:
                    path.append(parents[path[-1]])  # type: ignore[arg-type]
                return list(reversed(path))
            node = tx.get(current)
            if node is None:
                continue
            for dep in reversed(node.dependencies):
                if dep not in parents:
                    parents[dep] = current
                    stack.append(dep)
        return None

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def tree(self, tx: TaskTransaction, task_id: str) -> DependencyNode:
        """Expand the dependency tree of *task_id*.

        Unresolvable ids become missing leaves.  A shared dependency is built
        once and referenced from every parent.  Should the stored graph
        contain a cycle anyway, the back edge is shown as an unexpanded leaf.
        """
        root = tx.get(task_id)
        if root is None:
            raise TaskNotFound(task_id)

        built: dict[str, DependencyNode] = {}
        on_path: set[str] = set()
        stack: list[tuple[str, bool]] = [(task_id, False)]

        while stack:
            node_id, expanded = stack.pop()
            if expanded:
                on_path.discard(node_id)
                task = tx.get(node_id)
                if task is None:
                    continue
                children: list[DependencyNode] = []
                for dep_id in task.dependencies:
                    child = built.get(dep_id)
                    if child is None:
                        # back edge onto the current path
                        child = DependencyNode(task_id=dep_id, task=tx.get(dep_id))
                    children.append(child)
                built[node_id] = DependencyNode(task_id=node_id, task=task, dependencies=children)
                continue

            if node_id in built or node_id in on_path:
                continue
            task = tx.get(node_id)
            if task is None:
                built[node_id] = DependencyNode.missing_leaf(node_id)
                continue
            on_path.add(node_id)
            stack.append((node_id, True))
            for dep_id in reversed(task.dependencies):
                stack.append((dep_id, False))

        return built[task_id]

    def ready(self, tx: TaskTransaction) -> list[Task]:
        """Return ``todo`` tasks whose dependencies are all satisfied."""
        ready: list[Task] = []
        for t in tx.list_all():
            if t.status != TaskStatus.TODO:
                continue
            if all(_is_satisfied(tx.get(dep_id)) for dep_id in t.dependencies):
                ready.append(t)
        ready.sort(key=lambda t: (t.priority.sort_key, t.created_at))
        return ready

    def state(self, tx: TaskTransaction, task_id: str) -> DependencyState:
        task = tx.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        if not task.dependencies:
            return DependencyState.READY
        satisfied = [_is_satisfied(tx.get(dep_id)) for dep_id in task.dependencies]
        if all(satisfied):
            return DependencyState.READY
        if any(satisfied):
            return DependencyState.PARTIAL
        return DependencyState.BLOCKED

    def describe(self, tx: TaskTransaction, task_id: str) -> dict[str, Any]:
        task = tx.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)

        def _entry(dep_id: str) -> dict[str, Any]:
            dep = tx.get(dep_id)
            return {
                "id": dep_id,
                "name": dep.name if dep else None,
                "status": dep.status.value if dep else "missing",
            }

        return {
            "task_id": task.id,
            "depends_on": [_entry(d) for d in task.dependencies],
            "dependents": [_entry(t.id) for t in tx.list_dependents(task.id)],
        }

    @staticmethod
    def edges(tx: TaskTransaction) -> list[DependencyEdge]:
        return tx.list_edges()
