"""Provide the public `taskwerk` package exports."""

from __future__ import annotations

from .errors import TaskwerkError
from .session import SessionContext
from .task_engine.engine import TaskEngine

__all__ = ["SessionContext", "TaskEngine", "TaskwerkError"]
