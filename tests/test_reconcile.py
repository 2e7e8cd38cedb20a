# tests/test_reconcile.py

from __future__ import annotations

import pytest

from purposeful_day.activities.models import TaskRunState
from purposeful_day.sync.messages import Command, CommandName, Snapshot
from purposeful_day.sync.reconcile import MirrorTimer, Reconciler, RecentCommandIds

from .fakes import FakeClock


def _snap(activity, index, state=None, *, origin="o1", sequence=None) -> Snapshot:
    return Snapshot(
        activity=activity.copy(),
        current_task_index=index,
        task_state=state,
        origin=origin if sequence is not None else None,
        sequence=sequence,
    )


def test_applying_same_snapshot_twice_is_idempotent(timed_then_count) -> None:
    rec = Reconciler()
    snap = _snap(timed_then_count, 0, TaskRunState.RUNNING)

    first = rec.apply(snap)
    state_after_first = rec.state.as_tuple()
    second = rec.apply(snap)

    assert first.applied and second.applied
    assert first.just_started is True
    assert second.just_started is False
    assert rec.state.as_tuple() == state_after_first


def test_older_sequence_cannot_roll_back(timed_then_count) -> None:
    rec = Reconciler()
    s1 = _snap(timed_then_count, 0, TaskRunState.RUNNING, sequence=1)
    after = timed_then_count.copy()
    after.tasks[0].is_completed = True
    after.tasks[0].progress = 10
    s2 = _snap(after, 1, TaskRunState.RUNNING, sequence=2)

    rec.apply(s1)
    rec.apply(s2)
    outcome = rec.apply(s1)

    assert outcome.applied is False
    assert rec.state.current_task_index == 1


def test_new_origin_resets_ordering(timed_then_count) -> None:
    rec = Reconciler()
    rec.apply(_snap(timed_then_count, 1, TaskRunState.RUNNING, origin="old", sequence=50))
    outcome = rec.apply(_snap(timed_then_count, 0, TaskRunState.RUNNING, origin="new", sequence=1))
    assert outcome.applied is True
    assert rec.state.current_task_index == 0


def test_unsequenced_snapshots_are_last_write_wins(timed_then_count) -> None:
    rec = Reconciler()
    rec.apply(_snap(timed_then_count, 1))
    rec.apply(_snap(timed_then_count, 0))
    assert rec.state.current_task_index == 0


def test_legacy_pause_inference(timed_then_count) -> None:
    rec = Reconciler()
    timed_then_count.tasks[0].progress = 4
    rec.apply(_snap(timed_then_count, 0))
    assert rec.state.paused is True
    assert rec.state.task_state == TaskRunState.PAUSED

    timed_then_count.tasks[0].progress = 0
    rec.apply(_snap(timed_then_count, 0))
    assert rec.state.paused is False
    assert rec.state.active is True


def test_explicit_state_beats_inference(timed_then_count) -> None:
    rec = Reconciler()
    # Running with progress would be "paused" under the legacy rule.
    timed_then_count.tasks[0].progress = 4
    rec.apply(_snap(timed_then_count, 0, TaskRunState.RUNNING))
    assert rec.state.paused is False

    # Paused at zero is representable only explicitly.
    timed_then_count.tasks[0].progress = 0
    rec.apply(_snap(timed_then_count, 0, TaskRunState.PAUSED))
    assert rec.state.paused is True


def test_not_started_is_not_active(timed_then_count) -> None:
    rec = Reconciler()
    outcome = rec.apply(_snap(timed_then_count, 0, TaskRunState.NOT_STARTED))
    assert rec.state.active is False
    assert outcome.just_started is False


def test_index_past_end_means_completed(timed_then_count) -> None:
    rec = Reconciler()
    rec.apply(_snap(timed_then_count, 1, TaskRunState.RUNNING))
    outcome = rec.apply(_snap(timed_then_count, 2, TaskRunState.COMPLETED))
    assert outcome.just_completed is True
    assert rec.state.completed is True
    assert rec.state.active is False
    assert rec.timer.remaining == 0

    again = rec.apply(_snap(timed_then_count, 2, TaskRunState.COMPLETED))
    assert again.just_completed is False


def test_timer_follows_authoritative_progress(timed_then_count) -> None:
    clock = FakeClock()
    rec = Reconciler(timer=MirrorTimer(clock=clock, max_tick_step=1.0))
    timed_then_count.tasks[0].progress = 3
    rec.apply(_snap(timed_then_count, 0, TaskRunState.RUNNING))
    assert rec.timer.remaining == pytest.approx(7.0)

    clock.advance(1.0)
    rec.timer.tick()
    assert rec.timer.remaining == pytest.approx(6.0)

    # Big gap is clamped like the engine.
    clock.advance(20.0)
    rec.timer.tick()
    assert rec.timer.remaining == pytest.approx(5.0)


def test_timer_stops_at_zero_without_deciding_anything(timed_then_count) -> None:
    clock = FakeClock()
    rec = Reconciler(timer=MirrorTimer(clock=clock, max_tick_step=1.0))
    timed_then_count.tasks[0].progress = 9
    rec.apply(_snap(timed_then_count, 0, TaskRunState.RUNNING))
    for _ in range(3):
        clock.advance(1.0)
        rec.timer.tick()
    assert rec.timer.remaining == 0
    assert rec.state.current_task_index == 0


def test_echoed_commands_adjust_display_only(timed_then_count) -> None:
    clock = FakeClock()
    rec = Reconciler(timer=MirrorTimer(clock=clock))
    assert rec.apply_command(Command.create(CommandName.PAUSE)) is False  # nothing mirrored yet

    rec.apply(_snap(timed_then_count, 0, TaskRunState.RUNNING))
    assert rec.apply_command(Command.create(CommandName.PAUSE)) is True
    assert rec.state.paused is True
    clock.advance(1.0)
    assert rec.timer.tick() is False

    assert rec.apply_command(Command.create(CommandName.RESUME)) is True
    assert rec.apply_command(Command.create(CommandName.EXTEND, seconds=5)) is True
    assert rec.timer.remaining == pytest.approx(15.0)
    assert rec.apply_command(Command.create(CommandName.EXTEND)) is False
    assert timed_then_count.tasks[0].duration == 10


def test_recent_command_ids_dedupe_and_forget() -> None:
    seen = RecentCommandIds(maxlen=2)
    a, b, c = (Command.create(CommandName.PAUSE) for _ in range(3))
    assert seen.seen_before(a) is False
    assert seen.seen_before(a) is True
    seen.seen_before(b)
    seen.seen_before(c)
    # `a` fell out of the window.
    assert seen.seen_before(a) is False
    # Commands without ids are never deduplicated.
    anon = Command(name=CommandName.PAUSE)
    assert seen.seen_before(anon) is False
    assert seen.seen_before(anon) is False


def test_finished_run_stays_cleared(timed_then_count) -> None:
    rec = Reconciler()
    rec.apply(_snap(timed_then_count, 0, TaskRunState.RUNNING, sequence=1))
    rec.clear(finished_activity_id=timed_then_count.id)

    done = timed_then_count.copy()
    for task in done.tasks:
        task.is_completed = True
    late = rec.apply(_snap(done, len(done.tasks), TaskRunState.COMPLETED, sequence=2))

    assert late.applied is False
    assert rec.state.activity is None

    # A new run of the same activity shows up again.
    again = rec.apply(_snap(timed_then_count, 0, TaskRunState.RUNNING, sequence=3))
    assert again.applied is True
    assert again.just_started is True
    assert rec.state.activity.id == timed_then_count.id
