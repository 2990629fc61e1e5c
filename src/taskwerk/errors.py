"""Error taxonomy for the task lifecycle engine.

Every error is raised before the engine writes anything, so a caller that
catches one of these can rely on the task and the dependency graph being
unchanged. All of them subclass :class:`ValueError` so existing
``except ValueError`` handlers at the CLI/API edge keep working.
"""

from __future__ import annotations

from typing import Any, Optional


class TaskwerkError(ValueError):
    """Base class carrying a machine-readable ``code`` and an HTTP-ish status."""

    code = "TASKWERK_ERROR"
    status_code = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": dict(self.details)}


class TaskNotFound(TaskwerkError):
    code = "TASK_NOT_FOUND"
    status_code = 404

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}", task_id=task_id)


class InvalidTransition(TaskwerkError):
    code = "INVALID_TRANSITION"

    def __init__(
        self,
        task_id: str,
        from_status: Optional[str],
        to_status: str,
        allowed: Optional[list[str]] = None,
        message: Optional[str] = None,
    ) -> None:
        allowed = list(allowed or [])
        if message is None:
            message = (
                f"Invalid status transition for {task_id}: {from_status} → {to_status}. "
                f"Allowed: {', '.join(allowed) if allowed else 'none'}"
            )
        super().__init__(
            message,
            task_id=task_id,
            from_status=from_status,
            to_status=to_status,
            allowed=allowed,
        )


class ArchiveOfNonCompleted(InvalidTransition):
    code = "ARCHIVE_OF_NON_COMPLETED"

    def __init__(self, task_id: str, from_status: str) -> None:
        super().__init__(
            task_id,
            from_status,
            "archived",
            allowed=["completed"],
            message=f"Only completed tasks can be archived: {task_id} is {from_status}",
        )


class MissingBlockReason(TaskwerkError):
    code = "MISSING_BLOCK_REASON"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Blocked reason is required to block {task_id}", task_id=task_id)


class CircularDependency(TaskwerkError):
    code = "CIRCULAR_DEPENDENCY"
    status_code = 409

    def __init__(self, task_id: str, depends_on_id: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Circular dependency detected between {task_id} and {depends_on_id}",
            task_id=task_id,
            depends_on_id=depends_on_id,
        )


class CircularHierarchy(CircularDependency):
    code = "CIRCULAR_HIERARCHY"

    def __init__(self, task_id: str, parent_id: str) -> None:
        super().__init__(
            task_id,
            parent_id,
            message=f"Task {task_id} cannot be placed under {parent_id}: it would become its own ancestor",
        )


class DependencyNotFound(TaskwerkError):
    code = "DEPENDENCY_NOT_FOUND"
    status_code = 404

    def __init__(self, task_id: str, depends_on_id: str) -> None:
        super().__init__(
            f"Dependency {depends_on_id} not found (requested by {task_id})",
            task_id=task_id,
            depends_on_id=depends_on_id,
        )


class ParentNotFound(TaskwerkError):
    code = "PARENT_NOT_FOUND"
    status_code = 404

    def __init__(self, parent_id: str) -> None:
        super().__init__(f"Parent task not found: {parent_id}", parent_id=parent_id)


class HasDependents(TaskwerkError):
    code = "HAS_DEPENDENTS"
    status_code = 409

    def __init__(self, task_id: str, dependents: list[str]) -> None:
        super().__init__(
            f"Cannot delete task {task_id}: depended on by {', '.join(dependents)}",
            task_id=task_id,
            dependents=list(dependents),
        )


class HasChildren(TaskwerkError):
    code = "HAS_CHILDREN"
    status_code = 409

    def __init__(self, task_id: str, children: list[str], message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Cannot delete task {task_id}: has children {', '.join(children)}",
            task_id=task_id,
            children=list(children),
        )
