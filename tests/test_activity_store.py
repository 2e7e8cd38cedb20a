# tests/test_activity_store.py

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from purposeful_day.activities.models import (
    Activity,
    ActivityTask,
    BaseTask,
    CompletedActivity,
    CompletedTask,
    DurationType,
)
from purposeful_day.activities.store import ActivityStore


def test_activity_save_load_update_delete(store: ActivityStore, timed_then_count: Activity) -> None:
    store.save_activity(timed_then_count)

    loaded = store.get_activity(timed_then_count.id)
    assert loaded is not None
    assert loaded.to_dict() == timed_then_count.to_dict()

    timed_then_count.name = "Mini v2"
    timed_then_count.tasks.append(ActivityTask("Rest", DurationType.TIMED, 30))
    store.save_activity(timed_then_count)
    assert store.count_activities() == 1
    reloaded = store.get_activity(timed_then_count.id)
    assert reloaded is not None
    assert reloaded.name == "Mini v2"
    assert [t.name for t in reloaded.tasks] == ["Plank", "Squats", "Rest"]

    store.delete_activity(timed_then_count.id)
    assert store.get_activity(timed_then_count.id) is None
    assert store.load_activities() == []


def test_blank_name_is_rejected(store: ActivityStore) -> None:
    with pytest.raises(ValueError):
        store.save_activity(Activity(name="   "))
    with pytest.raises(ValueError):
        store.save_base_task(BaseTask("", DurationType.TIMED, 10))


def test_base_tasks_and_task_from_template(store: ActivityStore) -> None:
    base = BaseTask("Burpees", DurationType.COUNT, 15)
    store.save_base_task(base)
    assert [b.name for b in store.load_base_tasks()] == ["Burpees"]

    task = ActivityTask.from_base_task(base)
    assert task.base_task_id == base.id
    assert task.duration_type == DurationType.COUNT
    assert task.duration == 15
    assert task.id != base.id

    store.delete_base_task(base.id)
    assert store.load_base_tasks() == []


def test_history_queries(store: ActivityStore) -> None:
    now = 1_700_000_000.0
    day = 24 * 3600

    def record(ts: float, name: str) -> CompletedActivity:
        task = CompletedTask(
            name="Plank",
            duration_type=DurationType.TIMED,
            planned_duration=10,
            actual_duration=9.5,
            completed_at=ts,
        )
        return CompletedActivity(activity_id="a1", name=name, completed_at=ts, tasks=(task,))

    store.save_completed_activity(record(now - 10 * day, "old"))
    store.save_completed_activity(record(now - 2 * day, "recent"))
    store.save_completed_activity(record(now - 1, "today"))

    assert [r.name for r in store.load_completed_activities()] == ["old", "recent", "today"]
    assert [r.name for r in store.completed_past_week(now)] == ["recent", "today"]
    assert [r.name for r in store.completed_between(now - 3 * day, now - day)] == ["recent"]
    assert store.load_completed_activities()[0].tasks[0].actual_duration == pytest.approx(9.5)

    oldest = store.load_completed_activities()[0]
    store.delete_completed_activity(oldest.id)
    assert [r.name for r in store.load_completed_activities()] == ["recent", "today"]


def test_seed_samples_only_when_empty(store: ActivityStore) -> None:
    assert store.seed_samples_if_empty() is True
    n = store.count_activities()
    assert n >= 2
    assert store.load_base_tasks()

    assert store.seed_samples_if_empty() is False
    assert store.count_activities() == n


def test_corrupt_rows_are_skipped(tmp_path: Path, timed_then_count: Activity) -> None:
    db = tmp_path / "activities.sqlite3"
    store = ActivityStore(db)
    store.save_activity(timed_then_count)

    conn = sqlite3.connect(db)
    try:
        conn.execute(
            "INSERT INTO activities(id, name, created_at, updated_at, data) VALUES (?, ?, ?, ?, ?)",
            ("broken", "Broken", 0.0, 0.0, "{not json"),
        )
        conn.commit()
    finally:
        conn.close()

    assert [a.id for a in store.load_activities()] == [timed_then_count.id]


def test_derived_values(timed_then_count: Activity) -> None:
    assert timed_then_count.total_duration == 10
    assert timed_then_count.task_count_by_type() == (1, 1)
    assert timed_then_count.formatted_total_duration() == "10s"
    assert timed_then_count.tasks[1].formatted_duration() == "3 reps"

    task = timed_then_count.tasks[0]
    task.progress = 2.5
    assert task.completion_percentage == pytest.approx(25.0)
    task.reset()
    assert task.progress == 0 and not task.is_completed


def test_task_add_remove_move(timed_then_count: Activity) -> None:
    timed_then_count.is_completed = True
    rest = ActivityTask("Rest", DurationType.TIMED, 30)
    timed_then_count.add_task(rest, index=1)
    assert [t.name for t in timed_then_count.tasks] == ["Plank", "Rest", "Squats"]
    assert timed_then_count.is_completed is False

    timed_then_count.move_task(0, 2)
    assert [t.name for t in timed_then_count.tasks] == ["Rest", "Squats", "Plank"]

    removed = timed_then_count.remove_task(0)
    assert removed is rest
    assert [t.name for t in timed_then_count.tasks] == ["Squats", "Plank"]

    with pytest.raises(IndexError):
        timed_then_count.remove_task(5)
    with pytest.raises(IndexError):
        timed_then_count.move_task(0, 2)
    with pytest.raises(ValueError):
        timed_then_count.add_task(ActivityTask("Nothing", DurationType.COUNT, 0))
