"""FastAPI application factory for the task engine."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from ..errors import TaskwerkError
from ..task_engine.engine import TaskEngine
from .task_api import create_task_router


def create_app(
    project_dir: Optional[Path] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        project_dir: Default project directory.
        enable_cors: Whether to enable CORS.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="Taskwerk",
        description="Task lifecycle and dependency engine",
        version="0.1.0",
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.default_project_dir = project_dir
    engines: dict[Path, TaskEngine] = {}

    def _get_project_dir(project_dir_param: Optional[str] = None) -> Path:
        """Get project directory from parameter or default."""
        if project_dir_param:
            return Path(project_dir_param)
        if app.state.default_project_dir:
            return app.state.default_project_dir
        return Path.cwd()

    def _get_engine(project_dir_param: Optional[str] = None) -> TaskEngine:
        path = _get_project_dir(project_dir_param).resolve()
        engine = engines.get(path)
        if engine is None:
            engine = TaskEngine.for_project(path)
            engines[path] = engine
        return engine

    @app.exception_handler(TaskwerkError)
    async def _taskwerk_error(request: Request, exc: TaskwerkError) -> JSONResponse:
        logger.info("{} {} rejected: {}", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})

    @app.exception_handler(ValueError)
    async def _value_error(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"name": "Taskwerk", "version": "0.1.0", "status": "running"}

    app.include_router(create_task_router(_get_engine))
    return app
