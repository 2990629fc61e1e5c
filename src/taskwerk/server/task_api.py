"""Task API endpoints for the lifecycle engine.

This module provides a FastAPI router with CRUD, status transitions,
dependency management, hierarchy views and history.  It is mounted under
``/api/tasks`` by the main ``create_app`` factory.  Engine errors are turned
into HTTP responses by the handlers registered in :mod:`.api`.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from ..task_engine.state_machine import STATE_TRANSITIONS, get_allowed_transitions


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class CreateTaskRequest(BaseModel):
    name: str
    description: str = ""
    priority: str = "medium"
    parent_id: Optional[str] = None
    assignee: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class UpdateTaskRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    assignee: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class TransitionRequest(BaseModel):
    status: str
    reason: Optional[str] = None
    cascade: Optional[bool] = None


class BulkTransitionItem(BaseModel):
    task_id: str
    status: str
    reason: Optional[str] = None


class BulkValidateRequest(BaseModel):
    changes: list[BulkTransitionItem]


class AddDependencyRequest(BaseModel):
    depends_on: str


class SetParentRequest(BaseModel):
    parent_id: Optional[str] = None


class TaskResponse(BaseModel):
    """Standard wrapper for task responses."""
    task: dict[str, Any]


class TaskListResponse(BaseModel):
    tasks: list[dict[str, Any]]
    total: int


class StateMachineResponse(BaseModel):
    states: list[str]
    transitions: dict[str, list[str]]


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def _task_list(tasks: list[Any]) -> TaskListResponse:
    data = [t.to_dict() for t in tasks]
    return TaskListResponse(tasks=data, total=len(data))


def create_task_router(get_engine: Any) -> APIRouter:
    """Create the task API router.

    Parameters
    ----------
    get_engine:
        A callable ``(project_dir_param: str | None) -> TaskEngine`` that
        resolves the engine for the current request's project directory.
    """
    router = APIRouter(prefix="/api/tasks", tags=["tasks"])

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    @router.get("", response_model=TaskListResponse)
    async def list_tasks(
        project_dir: Optional[str] = Query(None),
        status: Optional[str] = Query(None),
        priority: Optional[str] = Query(None),
        assignee: Optional[str] = Query(None),
        parent_id: Optional[str] = Query(None),
        search: Optional[str] = Query(None),
    ) -> TaskListResponse:
        engine = get_engine(project_dir)
        tasks = engine.list_tasks(
            status=status,
            priority=priority,
            assignee=assignee,
            parent_id=parent_id,
            search=search,
        )
        return _task_list(tasks)

    @router.post("", response_model=TaskResponse, status_code=201)
    async def create_task(
        body: CreateTaskRequest,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        task = engine.create_task(**body.model_dump())
        return TaskResponse(task=task.to_dict())

    @router.get("/ready", response_model=TaskListResponse)
    async def get_ready_tasks(
        project_dir: Optional[str] = Query(None),
    ) -> TaskListResponse:
        engine = get_engine(project_dir)
        return _task_list(engine.get_ready_tasks())

    @router.get("/edges")
    async def list_edges(
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, list[dict[str, str]]]:
        engine = get_engine(project_dir)
        edges = engine.list_dependency_edges()
        return {"edges": [{"task_id": e.task_id, "depends_on_id": e.depends_on_id} for e in edges]}

    @router.get("/meta/state-machine", response_model=StateMachineResponse)
    async def get_state_machine() -> StateMachineResponse:
        transitions = {s.value: [t.value for t in get_allowed_transitions(s)] for s in STATE_TRANSITIONS}
        return StateMachineResponse(states=list(transitions.keys()), transitions=transitions)

    @router.post("/validate-transitions")
    async def validate_transitions(
        body: BulkValidateRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return engine.validate_bulk_transitions([c.model_dump() for c in body.changes])

    @router.get("/{task_id}", response_model=TaskResponse)
    async def get_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        task = engine.get_task(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
        return TaskResponse(task=task.to_dict())

    @router.patch("/{task_id}", response_model=TaskResponse)
    async def update_task(
        task_id: str,
        body: UpdateTaskRequest,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        changes = {k: v for k, v in body.model_dump().items() if v is not None}
        task = engine.update_task(task_id, changes)
        return TaskResponse(task=task.to_dict())

    @router.delete("/{task_id}")
    async def delete_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
        force: bool = Query(False),
        child_policy: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        removed = engine.delete_task(task_id, force=force, child_policy=child_policy)
        return {"status": "deleted", "removed": removed}

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    @router.post("/{task_id}/transition")
    async def transition_task(
        task_id: str,
        body: TransitionRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        result = engine.transition(task_id, body.status, reason=body.reason, cascade=body.cascade)
        task = engine.get_task(task_id)
        return {"task": task.to_dict() if task else None, "result": result.to_dict()}

    @router.get("/{task_id}/state")
    async def get_task_state(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return engine.get_task_state(task_id)

    @router.get("/{task_id}/history")
    async def get_history(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return {"history": [h.to_dict() for h in engine.get_history(task_id)]}

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    @router.put("/{task_id}/parent", response_model=TaskResponse)
    async def set_parent(
        task_id: str,
        body: SetParentRequest,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        task = engine.set_parent(task_id, body.parent_id)
        return TaskResponse(task=task.to_dict())

    @router.get("/{task_id}/children", response_model=TaskListResponse)
    async def get_children(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> TaskListResponse:
        engine = get_engine(project_dir)
        return _task_list(engine.get_children(task_id))

    @router.get("/{task_id}/ancestors", response_model=TaskListResponse)
    async def get_ancestors(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> TaskListResponse:
        engine = get_engine(project_dir)
        return _task_list(engine.get_ancestors(task_id))

    @router.get("/{task_id}/descendants", response_model=TaskListResponse)
    async def get_descendants(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> TaskListResponse:
        engine = get_engine(project_dir)
        return _task_list(engine.get_descendants(task_id))

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    @router.get("/{task_id}/dependencies")
    async def get_task_dependencies(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        data = engine.get_dependencies(task_id)
        data["state"] = engine.get_dependency_status(task_id).value
        return data

    @router.get("/{task_id}/dependencies/tree")
    async def get_dependency_tree(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return {"tree": engine.get_dependency_tree(task_id).to_dict()}

    @router.post("/{task_id}/dependencies")
    async def add_dependency(
        task_id: str,
        body: AddDependencyRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        added = engine.add_dependency(task_id, body.depends_on)
        return {"status": "ok", "added": added}

    @router.delete("/{task_id}/dependencies/{dep_id}")
    async def remove_dependency(
        task_id: str,
        dep_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        removed = engine.remove_dependency(task_id, dep_id)
        return {"status": "ok", "removed": removed}

    return router
