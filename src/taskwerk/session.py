"""Explicit work-session context.

The session names the task currently being worked on.  It is an immutable
value handed into engine calls and returned updated; the engine never keeps a
session of its own.  :class:`SessionFile` persists it between CLI runs.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .constants import DEFAULT_BASE_BRANCH, SESSION_FILE
from .io_utils import _atomic_write_yaml, _load_data_with_error
from .utils import _now_iso


def detect_agent(env: Optional[dict[str, str]] = None) -> str:
    env = os.environ if env is None else env
    if env.get("TASKWERK_AGENT"):
        return env["TASKWERK_AGENT"]
    if env.get("CURSOR"):
        return "Cursor"
    if env.get("COPILOT"):
        return "GitHub Copilot"
    if env.get("TERM_PROGRAM") == "vscode":
        return "VS Code"
    return "CLI"


@dataclass(frozen=True)
class SessionContext:
    current_task: Optional[str] = None
    started_at: Optional[str] = None
    agent: str = "CLI"
    branch: Optional[str] = None
    base_branch: str = DEFAULT_BASE_BRANCH
    files_modified: tuple[str, ...] = field(default_factory=tuple)
    last_activity: Optional[str] = None

    @classmethod
    def new(cls, agent: Optional[str] = None) -> "SessionContext":
        return cls(agent=agent or detect_agent(), last_activity=_now_iso())

    def started(self, task_id: str) -> "SessionContext":
        if self.current_task and self.current_task != task_id:
            logger.warning("Switching session from {} to {}", self.current_task, task_id)
        return replace(self, current_task=task_id, started_at=_now_iso(), last_activity=_now_iso())

    def released(self, task_id: str) -> "SessionContext":
        """Clear the current task if it is *task_id*; otherwise return self unchanged."""
        if self.current_task != task_id:
            return self
        return replace(self, current_task=None, started_at=None, last_activity=_now_iso())

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["files_modified"] = list(self.files_modified)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionContext":
        return cls(
            current_task=data.get("current_task"),
            started_at=data.get("started_at"),
            agent=str(data.get("agent") or detect_agent()),
            branch=data.get("branch"),
            base_branch=str(data.get("base_branch") or DEFAULT_BASE_BRANCH),
            files_modified=tuple(str(f) for f in (data.get("files_modified") or [])),
            last_activity=data.get("last_activity"),
        )


class SessionFile:
    """Load/save a :class:`SessionContext` under the state directory."""

    def __init__(self, state_dir: Path) -> None:
        self.path = state_dir / SESSION_FILE

    def load(self) -> SessionContext:
        data, err = _load_data_with_error(self.path, {})
        if err:
            logger.warning("Ignoring unreadable session file: {}", err)
        if not data:
            return SessionContext.new()
        return SessionContext.from_dict(data)

    def save(self, session: SessionContext) -> None:
        _atomic_write_yaml(self.path, session.to_dict())
