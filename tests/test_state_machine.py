"""Tests for status transitions and cascades (task_engine/state_machine.py)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import pytest

from taskwerk.errors import (
    ArchiveOfNonCompleted,
    InvalidTransition,
    MissingBlockReason,
    TaskNotFound,
)
from taskwerk.task_engine.engine import TaskEngine
from taskwerk.task_engine.history import HistoryRecorder
from taskwerk.task_engine.model import ChangeType, Task, TaskStatus
from taskwerk.task_engine.state_machine import (
    STATE_TRANSITIONS,
    cascade_reason,
    get_allowed_transitions,
    is_valid_transition,
)
from taskwerk.task_engine.store import MemoryTaskStore

S = TaskStatus

VALID_PAIRS = [
    (S.TODO, S.ACTIVE),
    (S.TODO, S.BLOCKED),
    (S.TODO, S.COMPLETED),
    (S.ACTIVE, S.PAUSED),
    (S.ACTIVE, S.BLOCKED),
    (S.ACTIVE, S.COMPLETED),
    (S.PAUSED, S.ACTIVE),
    (S.PAUSED, S.BLOCKED),
    (S.PAUSED, S.COMPLETED),
    (S.BLOCKED, S.TODO),
    (S.BLOCKED, S.ACTIVE),
    (S.BLOCKED, S.COMPLETED),
    (S.COMPLETED, S.ARCHIVED),
]

INVALID_PAIRS = [
    (src, dst)
    for src in TaskStatus
    for dst in TaskStatus
    if (src, dst) not in VALID_PAIRS
]


def _engine_with(*tasks: Task, cascade_default: bool = False) -> TaskEngine:
    return TaskEngine(MemoryTaskStore(list(tasks)), cascade_default=cascade_default)


def _reason_for(target: TaskStatus) -> Optional[str]:
    return "waiting on upstream" if target == S.BLOCKED else None


class TestTransitionTable:
    def test_archived_is_terminal(self) -> None:
        assert STATE_TRANSITIONS[S.ARCHIVED] == ()
        assert get_allowed_transitions(S.ARCHIVED) == []

    def test_archive_only_offered_from_completed(self) -> None:
        for status in TaskStatus:
            allowed = get_allowed_transitions(status)
            assert (S.ARCHIVED in allowed) == (status == S.COMPLETED)

    @pytest.mark.parametrize("src,dst", VALID_PAIRS)
    def test_valid_pairs(self, src: TaskStatus, dst: TaskStatus) -> None:
        assert is_valid_transition(src, dst)
        engine = _engine_with(Task(id="T", status=src, blocked_reason="old" if src == S.BLOCKED else None))
        result = engine.transition("T", dst, reason=_reason_for(dst))
        assert result.old_status == src
        assert result.new_status == dst
        assert engine.get_task("T").status == dst

    @pytest.mark.parametrize("src,dst", INVALID_PAIRS)
    def test_invalid_pairs_leave_task_unchanged(self, src: TaskStatus, dst: TaskStatus) -> None:
        engine = _engine_with(Task(id="T", status=src))
        with pytest.raises(InvalidTransition):
            engine.transition("T", dst, reason=_reason_for(dst))
        assert engine.get_task("T").status == src
        assert engine.get_history("T") == []


class TestTransitionRules:
    def test_unknown_task(self) -> None:
        with pytest.raises(TaskNotFound):
            _engine_with().transition("NOPE", S.ACTIVE)

    def test_unknown_status_string(self) -> None:
        engine = _engine_with(Task(id="T"))
        with pytest.raises(InvalidTransition, match="Unknown status"):
            engine.transition("T", "in_review")

    def test_status_string_is_accepted(self) -> None:
        engine = _engine_with(Task(id="T"))
        assert engine.transition("T", "Active").new_status == S.ACTIVE

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_block_requires_reason(self, reason: Optional[str]) -> None:
        engine = _engine_with(Task(id="T", status=S.ACTIVE))
        with pytest.raises(MissingBlockReason):
            engine.transition("T", S.BLOCKED, reason=reason)
        assert engine.get_task("T").status == S.ACTIVE

    def test_block_stores_trimmed_reason(self) -> None:
        engine = _engine_with(Task(id="T", status=S.ACTIVE))
        engine.transition("T", S.BLOCKED, reason="  waiting on API keys ")
        assert engine.get_task("T").blocked_reason == "waiting on API keys"

    @pytest.mark.parametrize("target", [S.ACTIVE, S.TODO, S.COMPLETED])
    def test_leaving_blocked_clears_reason(self, target: TaskStatus) -> None:
        engine = _engine_with(Task(id="T", status=S.BLOCKED, blocked_reason="waiting"))
        engine.transition("T", target)
        assert engine.get_task("T").blocked_reason is None

    def test_complete_sets_completed_at(self) -> None:
        engine = _engine_with(Task(id="T", status=S.ACTIVE))
        before = datetime.now(timezone.utc)
        engine.transition("T", S.COMPLETED)
        after = datetime.now(timezone.utc)
        completed_at = datetime.fromisoformat(engine.get_task("T").completed_at)
        assert before <= completed_at <= after

    @pytest.mark.parametrize("status", [S.TODO, S.ACTIVE, S.PAUSED, S.BLOCKED])
    def test_archive_of_non_completed(self, status: TaskStatus) -> None:
        engine = _engine_with(Task(id="T", status=status, blocked_reason="r" if status == S.BLOCKED else None))
        with pytest.raises(ArchiveOfNonCompleted):
            engine.transition("T", S.ARCHIVED)
        assert engine.get_task("T").status == status

    def test_archive_error_is_invalid_transition(self) -> None:
        assert issubclass(ArchiveOfNonCompleted, InvalidTransition)

    def test_transition_records_status_change(self) -> None:
        engine = _engine_with(Task(id="T"))
        engine.transition("T", S.ACTIVE)
        history = engine.get_history("T")
        assert len(history) == 1
        assert history[0].field_name == "status"
        assert history[0].old_value == "todo"
        assert history[0].new_value == "active"
        assert history[0].change_type == ChangeType.STATUS_CHANGE

    def test_get_task_state(self) -> None:
        engine = _engine_with(Task(id="T", status=S.COMPLETED))
        state = engine.get_task_state("T")
        assert state == {
            "task_id": "T",
            "current_status": "completed",
            "allowed_transitions": ["archived"],
            "is_terminal": False,
        }


class TestCascade:
    @pytest.fixture
    def family(self) -> list[Task]:
        return [
            Task(id="P", status=S.ACTIVE),
            Task(id="C1", status=S.ACTIVE, parent_id="P"),
            Task(id="C2", status=S.TODO, parent_id="P"),
            Task(id="C3", status=S.COMPLETED, parent_id="P"),
            Task(id="C4", status=S.PAUSED, parent_id="P"),
            Task(id="G1", status=S.TODO, parent_id="C1"),
        ]

    def test_block_cascades_to_active_and_todo_descendants(self, family: list[Task]) -> None:
        engine = _engine_with(*family)
        result = engine.transition("P", S.BLOCKED, reason="vendor outage", cascade=True)

        assert {e.task_id for e in result.side_effects} == {"C1", "C2", "G1"}
        for task_id in ("C1", "C2", "G1"):
            task = engine.get_task(task_id)
            assert task.status == S.BLOCKED
        assert engine.get_task("C1").blocked_reason == cascade_reason("P", S.BLOCKED)
        assert engine.get_task("G1").blocked_reason == "Parent task (C1) changed to blocked"
        assert engine.get_task("C3").status == S.COMPLETED
        assert engine.get_task("C4").status == S.PAUSED

    def test_side_effects_describe_each_child(self, family: list[Task]) -> None:
        engine = _engine_with(*family)
        result = engine.transition("P", S.BLOCKED, reason="vendor outage", cascade=True)
        by_id = {e.task_id: e for e in result.side_effects}
        assert by_id["C2"].parent_id == "P"
        assert by_id["C2"].old_status == S.TODO
        assert by_id["C2"].new_status == S.BLOCKED
        assert by_id["G1"].parent_id == "C1"
        assert all(e.type == "child_transition" for e in result.side_effects)

    def test_no_cascade_by_default(self, family: list[Task]) -> None:
        engine = _engine_with(*family)
        result = engine.transition("P", S.BLOCKED, reason="vendor outage")
        assert result.side_effects == []
        assert engine.get_task("C1").status == S.ACTIVE

    def test_cascade_default_from_engine(self, family: list[Task]) -> None:
        engine = _engine_with(*family, cascade_default=True)
        result = engine.transition("P", S.BLOCKED, reason="vendor outage")
        assert len(result.side_effects) == 3
        result = engine.transition("P", S.ACTIVE, cascade=False)
        assert result.side_effects == []

    def test_archive_cascades_to_completed_children_only(self) -> None:
        engine = _engine_with(
            Task(id="P", status=S.COMPLETED),
            Task(id="C1", status=S.COMPLETED, parent_id="P"),
            Task(id="C2", status=S.ACTIVE, parent_id="P"),
        )
        result = engine.transition("P", S.ARCHIVED, cascade=True)
        assert [e.task_id for e in result.side_effects] == ["C1"]
        assert engine.get_task("C1").status == S.ARCHIVED
        assert engine.get_task("C2").status == S.ACTIVE

    def test_statuses_without_rules_do_not_cascade(self, family: list[Task]) -> None:
        engine = _engine_with(*family)
        result = engine.transition("P", S.COMPLETED, cascade=True)
        assert result.side_effects == []
        assert engine.get_task("C2").status == S.TODO

    def test_cascade_history_recorded_per_child(self, family: list[Task]) -> None:
        engine = _engine_with(*family)
        engine.transition("P", S.BLOCKED, reason="vendor outage", cascade=True)
        fields = {h.field_name for h in engine.get_history("C2")}
        assert fields == {"status", "blocked_reason"}

    def test_failure_mid_cascade_rolls_back_everything(self, family: list[Task]) -> None:
        class FailingRecorder(HistoryRecorder):
            calls = 0

            def apply(self, tx, task, changes, *, change_type=None):
                FailingRecorder.calls += 1
                if FailingRecorder.calls == 3:
                    raise RuntimeError("disk full")
                return super().apply(tx, task, changes, change_type=change_type)

        engine = _engine_with(*family)
        engine.state_machine.history = FailingRecorder()
        with pytest.raises(RuntimeError):
            engine.transition("P", S.BLOCKED, reason="vendor outage", cascade=True)

        assert engine.get_task("P").status == S.ACTIVE
        assert engine.get_task("C1").status == S.ACTIVE
        assert engine.get_task("C2").status == S.TODO
        assert engine.get_history("P") == []


class TestBulkValidation:
    def test_mixed_batch(self) -> None:
        engine = _engine_with(
            Task(id="A", status=S.TODO),
            Task(id="B", status=S.ACTIVE),
            Task(id="C", status=S.ARCHIVED),
        )
        report = engine.validate_bulk_transitions([
            {"task_id": "A", "status": "active"},
            {"task_id": "B", "status": "blocked"},
            {"task_id": "C", "status": "todo"},
            {"task_id": "Z", "status": "active"},
            {"task_id": "A", "status": "archived"},
        ])
        assert report["valid"] is False
        codes = [r["code"] for r in report["results"]]
        assert codes == [
            None,
            "MISSING_BLOCK_REASON",
            "INVALID_TRANSITION",
            "TASK_NOT_FOUND",
            "ARCHIVE_OF_NON_COMPLETED",
        ]
        assert report["results"][0]["valid"] is True
        assert report["results"][2]["current_status"] == "archived"

    def test_valid_batch_writes_nothing(self) -> None:
        engine = _engine_with(Task(id="A"), Task(id="B", status=S.ACTIVE))
        report = engine.validate_bulk_transitions([
            {"task_id": "A", "status": "active"},
            {"task_id": "B", "new_status": "blocked", "reason": "waiting"},
        ])
        assert report["valid"] is True
        assert engine.get_task("A").status == S.TODO
        assert engine.get_task("B").status == S.ACTIVE
        assert engine.get_history("A") == []

    def test_empty_batch_is_valid(self) -> None:
        assert _engine_with().validate_bulk_transitions([]) == {"valid": True, "results": []}

    def test_non_mapping_items_are_reported(self) -> None:
        engine = _engine_with(Task(id="A"))
        report = engine.validate_bulk_transitions([
            "A",
            {"task_id": "A", "status": "active"},
            None,
        ])
        assert report["valid"] is False
        assert len(report["results"]) == 3
        assert [r["code"] for r in report["results"]] == ["INVALID_ITEM", None, "INVALID_ITEM"]
        assert "got str" in report["results"][0]["error"]
