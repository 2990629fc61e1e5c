"""Tests for the explicit work session (session.py)."""

from __future__ import annotations

from pathlib import Path

import pytest

from taskwerk.session import SessionContext, SessionFile, detect_agent


class TestDetectAgent:
    @pytest.mark.parametrize(
        "env,expected",
        [
            ({"TASKWERK_AGENT": "Claude"}, "Claude"),
            ({"CURSOR": "1"}, "Cursor"),
            ({"COPILOT": "1"}, "GitHub Copilot"),
            ({"TERM_PROGRAM": "vscode"}, "VS Code"),
            ({}, "CLI"),
        ],
    )
    def test_detection(self, env: dict[str, str], expected: str) -> None:
        assert detect_agent(env) == expected


class TestSessionContext:
    def test_started_and_released(self) -> None:
        session = SessionContext(agent="CLI")
        started = session.started("TASK-001")
        assert session.current_task is None
        assert started.current_task == "TASK-001"
        assert started.released("TASK-002") is started
        released = started.released("TASK-001")
        assert released.current_task is None
        assert released.started_at is None

    def test_round_trip_dict(self) -> None:
        session = SessionContext(agent="CLI", branch="feat/x", files_modified=("a.py", "b.py"))
        data = session.to_dict()
        assert data["files_modified"] == ["a.py", "b.py"]
        assert SessionContext.from_dict(data) == session


class TestSessionFile:
    def test_missing_file_gives_fresh_session(self, tmp_path: Path) -> None:
        session = SessionFile(tmp_path).load()
        assert session.current_task is None
        assert session.base_branch == "main"

    def test_save_and_load(self, tmp_path: Path) -> None:
        files = SessionFile(tmp_path)
        files.save(SessionContext(agent="CLI").started("TASK-003"))
        assert files.load().current_task == "TASK-003"

    def test_unreadable_file_is_ignored(self, tmp_path: Path) -> None:
        (tmp_path / "session.yaml").write_text("current_task: [", encoding="utf-8")
        assert SessionFile(tmp_path).load().current_task is None
