from __future__ import annotations

from pathlib import Path

import pytest

from fryler.db.store import FrylerStore, InvalidTaskError, StoreClosedError


def _store(tmp_path: Path) -> FrylerStore:
    return FrylerStore(tmp_path / "fryler.db").initialize()


def test_create_task_defaults(tmp_path: Path) -> None:
    store = _store(tmp_path)
    task = store.create_task("  Check weather ")
    assert task.id > 0
    assert task.title == "Check weather"
    assert task.status == "pending"
    assert task.priority == 3
    assert task.description == ""
    assert task.scheduled_at is None
    assert task.completed_at is None
    assert task.result is None
    assert task.prompt == "Check weather"


def test_create_task_rejects_invalid_input(tmp_path: Path) -> None:
    store = _store(tmp_path)
    with pytest.raises(InvalidTaskError):
        store.create_task("   ")
    with pytest.raises(InvalidTaskError):
        store.create_task("x", priority=9)
    with pytest.raises(InvalidTaskError):
        store.create_task("x", scheduled_at="not a date")
    assert store.list_tasks() == []


def test_due_tasks_include_unscheduled_and_past_only(tmp_path: Path) -> None:
    store = _store(tmp_path)
    a = store.create_task("now")
    b = store.create_task("past", scheduled_at="2000-01-01 00:00:00")
    store.create_task("future", scheduled_at="2999-01-01T00:00:00")
    done = store.create_task("already done")
    store.update_task_status(done.id, "active")
    store.update_task_status(done.id, "completed", "ok")

    due = store.get_due_tasks()
    assert [t.id for t in due] == [a.id, b.id]


def test_due_tasks_ignore_priority(tmp_path: Path) -> None:
    store = _store(tmp_path)
    low = store.create_task("low", priority=5)
    high = store.create_task("high", priority=1)
    assert [t.id for t in store.get_due_tasks()] == [low.id, high.id]


def test_status_transitions_follow_lifecycle(tmp_path: Path) -> None:
    store = _store(tmp_path)
    task = store.create_task("work")

    assert store.update_task_status(task.id, "completed", "too early") is False
    assert store.update_task_status(task.id, "active") is True
    active = store.get_task(task.id)
    assert active is not None
    assert active.status == "active"
    assert active.result is None
    assert active.completed_at is None

    assert store.update_task_status(task.id, "completed", "done") is True
    completed = store.get_task(task.id)
    assert completed is not None
    assert completed.status == "completed"
    assert completed.result == "done"
    assert completed.completed_at is not None

    assert store.update_task_status(task.id, "failed", "late") is False
    assert store.update_task_status(task.id, "active") is False
    assert store.get_task(task.id).result == "done"


def test_active_to_failed_sets_completed_at(tmp_path: Path) -> None:
    store = _store(tmp_path)
    task = store.create_task("work")
    store.update_task_status(task.id, "active")
    assert store.update_task_status(task.id, "failed", "boom") is True
    failed = store.get_task(task.id)
    assert failed.status == "failed"
    assert failed.result == "boom"
    assert failed.completed_at is not None


def test_unknown_target_status_raises(tmp_path: Path) -> None:
    store = _store(tmp_path)
    task = store.create_task("work")
    with pytest.raises(ValueError):
        store.update_task_status(task.id, "pending")


def test_cancel_only_pending(tmp_path: Path) -> None:
    store = _store(tmp_path)
    pending = store.create_task("cancel me")
    running = store.create_task("running")
    store.update_task_status(running.id, "active")

    assert store.cancel_task(pending.id) is True
    assert store.cancel_task(pending.id) is False
    assert store.cancel_task(running.id) is False
    cancelled = store.get_task(pending.id)
    assert cancelled.status == "failed"
    assert cancelled.completed_at is not None
    assert store.get_due_tasks() == []


def test_list_tasks_filters_by_status(tmp_path: Path) -> None:
    store = _store(tmp_path)
    first = store.create_task("one")
    store.create_task("two")
    store.update_task_status(first.id, "active")
    assert [t.title for t in store.list_tasks()] == ["one", "two"]
    assert [t.title for t in store.list_tasks("pending")] == ["two"]
    with pytest.raises(ValueError):
        store.list_tasks("bogus")


def test_memories_are_appended_and_searchable(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.create_memory("fact", "Lives somewhere SUNNY", "task-1")
    store.create_memory("preference", "Prefers tea", None)
    with pytest.raises(ValueError):
        store.create_memory("fact", "   ")

    assert [m.category for m in store.list_memories()] == ["fact", "preference"]
    assert [m.content for m in store.list_memories("preference")] == ["Prefers tea"]
    hits = store.search_memories("sunny")
    assert len(hits) == 1
    assert hits[0].source == "task-1"
    assert store.search_memories("  ") == []


def test_sessions_are_idempotent_and_monotone(tmp_path: Path) -> None:
    store = _store(tmp_path)
    created = store.create_session("abc", "[cli] hello")
    again = store.create_session("abc", "[cli] different")
    assert again.id == created.id
    assert again.title == "[cli] hello"
    assert len(store.list_sessions()) == 1

    assert store.update_session("abc", 3) is True
    assert store.update_session("abc", 1) is True
    assert store.get_session("abc").message_count == 3
    assert store.update_session("missing") is False


def test_find_latest_session_by_prefix(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.create_session("chat-1", "[chat] hi")
    store.create_session("cli-1", "[cli] one")
    store.create_session("cli-2", "[cli] two")
    latest = store.find_latest_session("[cli] ")
    assert latest is not None
    assert latest.claude_session_id == "cli-2"
    assert store.find_latest_session("[nothing] ") is None


def test_data_survives_reopen(tmp_path: Path) -> None:
    store = _store(tmp_path)
    task = store.create_task("persist me", cwd="/tmp")
    store.close()

    reopened = FrylerStore(tmp_path / "fryler.db").initialize()
    loaded = reopened.get_task(task.id)
    assert loaded is not None
    assert loaded.title == "persist me"
    assert loaded.cwd == "/tmp"


def test_closed_store_refuses_work(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.close()
    assert store.is_open is False
    with pytest.raises(StoreClosedError):
        store.list_tasks()
