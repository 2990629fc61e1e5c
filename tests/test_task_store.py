"""Tests for the task stores (task_engine/store.py)."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from taskwerk.task_engine.model import ChangeType, HistoryEntry, Task, TaskPriority, TaskStatus
from taskwerk.task_engine.store import FileTaskStore, MemoryTaskStore, TaskStore


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    d = tmp_path / ".taskwerk"
    d.mkdir()
    return d


@pytest.fixture(params=["file", "memory"])
def store(request, state_dir: Path) -> TaskStore:
    if request.param == "file":
        return FileTaskStore(state_dir)
    return MemoryTaskStore()


class TestTaskStore:
    def test_empty_read(self, store: TaskStore) -> None:
        assert store.read_snapshot() == []

    def test_add_and_read(self, store: TaskStore) -> None:
        with store.transaction() as tx:
            tx.add(Task(id="TASK-001", name="First"))
            tx.add(Task(id="TASK-002", name="Second"))

        tasks = store.read_snapshot()
        assert [t.id for t in tasks] == ["TASK-001", "TASK-002"]

    def test_duplicate_add_raises(self, store: TaskStore) -> None:
        with store.transaction() as tx:
            tx.add(Task(id="TASK-001", name="First"))
            with pytest.raises(ValueError, match="already exists"):
                tx.add(Task(id="TASK-001", name="Duplicate"))

    def test_get_one(self, store: TaskStore) -> None:
        with store.transaction() as tx:
            tx.add(Task(id="TASK-001", name="Test"))

        t = store.get_one("TASK-001")
        assert t is not None
        assert t.name == "Test"
        assert store.get_one("nonexistent") is None

    def test_update(self, store: TaskStore) -> None:
        with store.transaction() as tx:
            tx.add(Task(id="TASK-001", name="Old"))

        with store.transaction() as tx:
            result = tx.update("TASK-001", {"name": "New"})
            assert result is not None

        t = store.get_one("TASK-001")
        assert t is not None
        assert t.name == "New"

    def test_update_nonexistent(self, store: TaskStore) -> None:
        with store.transaction() as tx:
            assert tx.update("nope", {"name": "x"}) is None

    def test_update_rejects_managed_fields(self, store: TaskStore) -> None:
        with store.transaction() as tx:
            tx.add(Task(id="TASK-001"))
            with pytest.raises(ValueError, match="Cannot update"):
                tx.update("TASK-001", {"id": "TASK-999"})

    def test_delete_strips_edges_and_history(self, store: TaskStore) -> None:
        with store.transaction() as tx:
            tx.add(Task(id="A"))
            tx.add(Task(id="B", dependencies=["A"]))
            tx.append_history(HistoryEntry("A", "status", None, "todo", ChangeType.CREATE))
            tx.append_history(HistoryEntry("B", "status", None, "todo", ChangeType.CREATE))

        with store.transaction() as tx:
            assert tx.delete("A")
            assert not tx.delete("A")

        with store.transaction() as tx:
            assert tx.get("A") is None
            b = tx.get("B")
            assert b is not None and b.dependencies == []
            assert tx.history_for("A") == []
            assert len(tx.history_for("B")) == 1

    def test_find_filters(self, store: TaskStore) -> None:
        with store.transaction() as tx:
            tx.add(Task(id="T1", name="Fix login", priority=TaskPriority.HIGH, assignee="ana"))
            tx.add(Task(id="T2", name="Feature", status=TaskStatus.ACTIVE))
            tx.add(Task(id="T3", name="Docs update", parent_id="T2"))

        with store.transaction() as tx:
            assert [t.id for t in tx.find(priority="high")] == ["T1"]
            assert [t.id for t in tx.find(status="active")] == ["T2"]
            assert [t.id for t in tx.find(assignee="ana")] == ["T1"]
            assert [t.id for t in tx.find(parent_id="T2")] == ["T3"]
            assert [t.id for t in tx.find(search="docs")] == ["T3"]

    def test_next_id_is_sequential(self, store: TaskStore) -> None:
        with store.transaction() as tx:
            assert tx.next_id() == "TASK-001"
            tx.add(Task(id="TASK-001"))
            tx.add(Task(id="TASK-007"))
            assert tx.next_id() == "TASK-008"

    def test_exception_discards_changes(self, store: TaskStore) -> None:
        with store.transaction() as tx:
            tx.add(Task(id="TASK-001", name="Keep"))

        with pytest.raises(RuntimeError):
            with store.transaction() as tx:
                tx.update("TASK-001", {"name": "Lost"})
                tx.add(Task(id="TASK-002"))
                raise RuntimeError("boom")

        tasks = store.read_snapshot()
        assert [t.id for t in tasks] == ["TASK-001"]
        assert tasks[0].name == "Keep"


class TestFileTaskStore:
    def test_persistence_survives_reload(self, state_dir: Path) -> None:
        store1 = FileTaskStore(state_dir)
        with store1.transaction() as tx:
            tx.add(Task(id="TASK-001", name="Persistent"))

        tasks = FileTaskStore(state_dir).read_snapshot()
        assert len(tasks) == 1
        assert tasks[0].name == "Persistent"

    def test_file_layout(self, state_dir: Path) -> None:
        store = FileTaskStore(state_dir)
        with store.transaction() as tx:
            tx.add(Task(id="TASK-001"))
            tx.append_history(HistoryEntry("TASK-001", "status", None, "todo", ChangeType.CREATE))

        data = yaml.safe_load(store.path.read_text(encoding="utf-8"))
        assert data["version"] == 1
        assert data["tasks"][0]["id"] == "TASK-001"
        assert data["history"][0]["change_type"] == "create"

    def test_read_only_transaction_does_not_write(self, state_dir: Path) -> None:
        store = FileTaskStore(state_dir)
        with store.transaction() as tx:
            tx.get("TASK-001")
        assert not store.path.exists()

    def test_corrupt_file_raises(self, state_dir: Path) -> None:
        store = FileTaskStore(state_dir)
        store.path.write_text("tasks: [unclosed", encoding="utf-8")
        with pytest.raises(yaml.YAMLError):
            store.read_snapshot()

    @pytest.mark.parametrize("content", [
        "- id: TASK-001\n  name: keep me\n",
        "just a string\n",
        "tasks: keep me\n",
    ])
    def test_non_mapping_file_is_not_overwritten(self, state_dir: Path, content: str) -> None:
        store = FileTaskStore(state_dir)
        store.path.write_text(content, encoding="utf-8")
        with pytest.raises(ValueError):
            with store.transaction() as tx:
                tx.add(Task(id=tx.next_id(), name="new"))
        assert store.path.read_text(encoding="utf-8") == content

    def test_custom_id_prefix(self, state_dir: Path) -> None:
        store = FileTaskStore(state_dir, id_prefix="BUG")
        with store.transaction() as tx:
            assert tx.next_id() == "BUG-001"


class TestMemoryTaskStore:
    def test_seed_tasks_are_copied(self) -> None:
        seed = [Task(id="A", name="orig")]
        store = MemoryTaskStore(seed)
        with store.transaction() as tx:
            tx.update("A", {"name": "changed"})
        assert seed[0].name == "orig"
        assert store.get_one("A").name == "changed"
