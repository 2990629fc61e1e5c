"""Task engine: the single entry point for task lifecycle operations.

It wraps a :class:`TaskStore` with the state machine, the dependency graph and
the hierarchy resolver.  Each public operation runs inside exactly one store
transaction, so validation, field writes, history and cascades either all
commit or all roll back.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from ..config import get_delete_config, get_lifecycle_config, get_store_config, load_config
from ..constants import STATE_DIR_NAME
from ..errors import TaskNotFound
from ..session import SessionContext
from .dependencies import DependencyGraph
from .hierarchy import ChildPolicy, HierarchyResolver
from .history import HistoryRecorder
from .model import (
    DependencyEdge,
    DependencyNode,
    DependencyState,
    HistoryEntry,
    Task,
    TaskPriority,
    TaskStatus,
    TransitionResult,
)
from .state_machine import StatusStateMachine
from .store import FileTaskStore, TaskStore

# Fields callers may edit freely; lifecycle fields go through ``transition``.
_EDITABLE_FIELDS = frozenset({"name", "description", "priority", "assignee", "metadata"})


class TaskEngine:
    """Manage the full lifecycle of tasks.

    Parameters
    ----------
    store:
        Persistence collaborator providing the transaction primitive.
    cascade_default:
        Cascade behaviour of :meth:`transition` when the caller does not say.
    child_policy:
        Project-level choice for children of force-deleted tasks, if any.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        cascade_default: bool = False,
        child_policy: Optional[ChildPolicy] = None,
    ) -> None:
        self.store = store
        self.cascade_default = cascade_default
        self.child_policy = child_policy
        self.history = HistoryRecorder()
        self.state_machine = StatusStateMachine(self.history)
        self.graph = DependencyGraph(self.history)
        self.hierarchy = HierarchyResolver(self.history)

    @classmethod
    def for_project(cls, project_dir: Path) -> "TaskEngine":
        """Build an engine over ``<project_dir>/.taskwerk`` honouring its config."""
        config, err = load_config(project_dir)
        if err:
            logger.warning("Ignoring unreadable config: {}", err)
        policy = get_delete_config(config)["child_policy"]
        store = FileTaskStore(
            project_dir.resolve() / STATE_DIR_NAME,
            id_prefix=get_store_config(config)["id_prefix"],
        )
        return cls(
            store,
            cascade_default=get_lifecycle_config(config)["cascade"],
            child_policy=ChildPolicy(policy) if policy else None,
        )

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_task(
        self,
        name: str,
        description: str = "",
        priority: str = "medium",
        parent_id: Optional[str] = None,
        assignee: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Task:
        """Create and persist a new ``todo`` task, returning it."""
        if not name or not name.strip():
            raise ValueError("Task name is required")
        prio = TaskPriority(priority) if priority else TaskPriority.MEDIUM

        with self.store.transaction() as tx:
            self.hierarchy.resolve_parent(tx, parent_id)
            task = Task(
                id=tx.next_id(),
                name=name.strip(),
                description=description,
                priority=prio,
                parent_id=parent_id or None,
                assignee=assignee,
                metadata=dict(metadata or {}),
            )
            tx.add(task)
            self.history.record_created(tx, task)

        logger.info("Created task {}: {}", task.id, task.name)
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.store.get_one(task_id)

    def list_tasks(
        self,
        *,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        assignee: Optional[str] = None,
        parent_id: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[Task]:
        with self.store.transaction() as tx:
            return tx.find(
                status=status,
                priority=priority,
                assignee=assignee,
                parent_id=parent_id,
                search=search,
            )

    def update_task(self, task_id: str, changes: dict[str, Any]) -> Task:
        """Apply partial updates to non-lifecycle fields."""
        blocked = set(changes) - _EDITABLE_FIELDS
        if blocked:
            raise ValueError(
                f"Fields {sorted(blocked)} cannot be updated directly; "
                "use transition(), set_parent() or the dependency operations"
            )
        if "priority" in changes and isinstance(changes["priority"], str):
            changes = {**changes, "priority": TaskPriority(changes["priority"])}

        with self.store.transaction() as tx:
            task = tx.get(task_id)
            if task is None:
                raise TaskNotFound(task_id)
            self.history.apply(tx, task, changes)
            return task

    def set_parent(self, task_id: str, parent_id: Optional[str]) -> Task:
        with self.store.transaction() as tx:
            return self.hierarchy.set_parent(tx, task_id, parent_id)

    def delete_task(
        self,
        task_id: str,
        *,
        force: bool = False,
        child_policy: Optional[ChildPolicy | str] = None,
    ) -> list[str]:
        """Delete a task (and, under the cascade policy, its subtree).

        Returns the ids removed.  Raises :class:`HasDependents` /
        :class:`HasChildren` unless *force* is set.
        """
        policy = ChildPolicy(child_policy) if child_policy else self.child_policy
        with self.store.transaction() as tx:
            removed = self.hierarchy.delete(tx, task_id, force=force, child_policy=policy)
        logger.info("Deleted {}", ", ".join(removed))
        return removed

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        task_id: str,
        status: TaskStatus | str,
        *,
        reason: Optional[str] = None,
        cascade: Optional[bool] = None,
    ) -> TransitionResult:
        """Move a task to *status*, enforcing the transition table.

        With *cascade* (default from config), children follow the cascade
        rules in the same transaction.
        """
        do_cascade = self.cascade_default if cascade is None else bool(cascade)
        with self.store.transaction() as tx:
            result = self.state_machine.execute(tx, task_id, status, reason=reason, cascade=do_cascade)
        logger.info(
            "Transitioned {} {} → {} ({} side effects)",
            result.task_id,
            result.old_status.value,
            result.new_status.value,
            len(result.side_effects),
        )
        return result

    def validate_bulk_transitions(self, changes: Iterable[Any]) -> dict[str, Any]:
        """Dry-run a batch of transitions; reports per item and writes nothing."""
        with self.store.transaction() as tx:
            return self.state_machine.validate_bulk(tx, list(changes))

    def get_task_state(self, task_id: str) -> dict[str, Any]:
        with self.store.transaction() as tx:
            task = tx.get(task_id)
            if task is None:
                raise TaskNotFound(task_id)
            return self.state_machine.describe(task)

    # ------------------------------------------------------------------
    # Session-aware shortcuts
    # ------------------------------------------------------------------

    def start_task(self, task_id: str, session: SessionContext) -> tuple[TransitionResult, SessionContext]:
        result = self.transition(task_id, TaskStatus.ACTIVE)
        return result, session.started(task_id)

    def pause_task(self, task_id: str, session: SessionContext) -> tuple[TransitionResult, SessionContext]:
        result = self.transition(task_id, TaskStatus.PAUSED)
        return result, session.released(task_id)

    def complete_task(self, task_id: str, session: SessionContext) -> tuple[TransitionResult, SessionContext]:
        result = self.transition(task_id, TaskStatus.COMPLETED)
        return result, session.released(task_id)

    # ------------------------------------------------------------------
    # Dependency management
    # ------------------------------------------------------------------

    def add_dependency(self, task_id: str, depends_on_id: str) -> bool:
        """Make *task_id* depend on *depends_on_id*; idempotent.

        Raises :class:`CircularDependency` if the edge would create a cycle.
        """
        with self.store.transaction() as tx:
            return self.graph.add(tx, task_id, depends_on_id)

    def remove_dependency(self, task_id: str, depends_on_id: str) -> bool:
        with self.store.transaction() as tx:
            return self.graph.remove(tx, task_id, depends_on_id)

    def get_dependency_tree(self, task_id: str) -> DependencyNode:
        with self.store.transaction() as tx:
            return self.graph.tree(tx, task_id)

    def get_ready_tasks(self) -> list[Task]:
        """Return ``todo`` tasks whose dependencies are all completed."""
        with self.store.transaction() as tx:
            return self.graph.ready(tx)

    def get_dependencies(self, task_id: str) -> dict[str, Any]:
        with self.store.transaction() as tx:
            return self.graph.describe(tx, task_id)

    def get_dependency_status(self, task_id: str) -> DependencyState:
        with self.store.transaction() as tx:
            return self.graph.state(tx, task_id)

    def list_dependency_edges(self) -> list[DependencyEdge]:
        with self.store.transaction() as tx:
            return self.graph.edges(tx)

    # ------------------------------------------------------------------
    # Hierarchy & history views
    # ------------------------------------------------------------------

    def get_children(self, task_id: str) -> list[Task]:
        with self.store.transaction() as tx:
            if tx.get(task_id) is None:
                raise TaskNotFound(task_id)
            return self.hierarchy.children(tx, task_id)

    def get_ancestors(self, task_id: str) -> list[Task]:
        with self.store.transaction() as tx:
            return self.hierarchy.ancestors(tx, task_id)

    def get_descendants(self, task_id: str) -> list[Task]:
        with self.store.transaction() as tx:
            return self.hierarchy.descendants(tx, task_id)

    def get_history(self, task_id: str) -> list[HistoryEntry]:
        with self.store.transaction() as tx:
            if tx.get(task_id) is None:
                raise TaskNotFound(task_id)
            return tx.history_for(task_id)
