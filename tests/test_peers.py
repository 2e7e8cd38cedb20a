# tests/test_peers.py

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import pytest

from purposeful_day.activities.models import Activity, ActivityTask, DurationType, TaskRunState
from purposeful_day.feedback import FeedbackCue
from purposeful_day.peers.handheld import HandheldPeer
from purposeful_day.peers.wrist import WristPeer
from purposeful_day.runner.engine import RunState
from purposeful_day.sync.messages import Command, CommandName, Snapshot
from purposeful_day.sync.protocol import SyncProtocol
from purposeful_day.sync.transport import LoopbackChannel, Tier

from .fakes import FakeClock, InMemoryRepo, RecordingFeedback


@dataclass
class Rig:
    channel: LoopbackChannel
    repo: InMemoryRepo
    clock: FakeClock
    handheld: HandheldPeer
    wrist: WristPeer
    handheld_cues: RecordingFeedback
    wrist_cues: RecordingFeedback
    activity: Activity

    async def settle(self, rounds: int = 20) -> None:
        """Let the inbound consumers and scheduled pushes run."""
        for _ in range(rounds):
            await asyncio.sleep(0)

    def tick(self, seconds: int) -> None:
        for _ in range(seconds):
            self.clock.advance(1.0)
            self.handheld.tick()


async def _rig(activity: Activity, *, poll: float = 10.0, retry: float = 0.05) -> Rig:
    channel = LoopbackChannel(reachable=True)
    repo = InMemoryRepo([activity])
    clock = FakeClock(100.0)
    hh_cues = RecordingFeedback()
    wr_cues = RecordingFeedback()

    handheld = HandheldPeer(
        SyncProtocol(channel.a, name="handheld", retry_delay_seconds=retry, poll_interval_seconds=poll),
        repo,
        repo,
        feedback=hh_cues,
        clock=clock,
        wall_clock=lambda: 1_700_000_000.0,
        countdown_seconds=0,
        max_tick_step=1.0,
    )
    wrist = WristPeer(
        SyncProtocol(channel.b, name="wrist", retry_delay_seconds=retry, poll_interval_seconds=poll),
        feedback=wr_cues,
        clock=clock,
        max_tick_step=1.0,
    )
    await handheld.start(run_ticker_loop=False)
    await wrist.start(run_ticker_loop=False)
    rig = Rig(channel, repo, clock, handheld, wrist, hh_cues, wr_cues, activity)
    await rig.settle()
    return rig


async def _stop(rig: Rig) -> None:
    await rig.wrist.stop()
    await rig.handheld.stop()


@pytest.mark.asyncio
async def test_wrist_gets_activity_list_on_start(timed_then_count) -> None:
    rig = await _rig(timed_then_count)
    try:
        assert [a.id for a in rig.wrist.activities] == [timed_then_count.id]
    finally:
        await _stop(rig)


@pytest.mark.asyncio
async def test_start_from_wrist_runs_on_handheld_and_mirrors_back(timed_then_count) -> None:
    rig = await _rig(timed_then_count)
    try:
        tier = await rig.wrist.start_activity(timed_then_count.id)
        await rig.settle()

        assert tier == Tier.IMMEDIATE
        assert rig.handheld.engine is not None
        assert rig.handheld.engine.state == RunState.RUNNING
        assert rig.wrist.mirror.active is True
        assert rig.wrist.mirror.task_state == TaskRunState.RUNNING
        assert rig.wrist.time_remaining == pytest.approx(10.0)
        assert FeedbackCue.TASK_START in rig.wrist_cues.cues

        rig.tick(3)
        await rig.settle()
        assert rig.wrist.mirror.activity.tasks[0].progress == pytest.approx(3.0)
        assert rig.wrist.time_remaining == pytest.approx(7.0)
    finally:
        await _stop(rig)


@pytest.mark.asyncio
async def test_pause_and_resume_from_wrist(timed_then_count) -> None:
    rig = await _rig(timed_then_count)
    try:
        await rig.handheld.start_activity(timed_then_count.id)
        rig.tick(2)
        await rig.settle()

        await rig.wrist.pause()
        await rig.settle()
        assert rig.handheld.engine.state == RunState.PAUSED
        assert rig.wrist.mirror.paused is True

        # Paused time is not credited.
        rig.tick(5)
        await rig.settle()
        assert rig.handheld.engine.current_task.progress == pytest.approx(2.0)

        await rig.wrist.resume()
        await rig.settle()
        assert rig.handheld.engine.state == RunState.RUNNING
        assert rig.wrist.mirror.paused is False
    finally:
        await _stop(rig)


@pytest.mark.asyncio
async def test_repeated_skip_for_same_task_is_a_noop(timed_then_count) -> None:
    rig = await _rig(timed_then_count)
    try:
        await rig.handheld.start_activity(timed_then_count.id)
        await rig.settle()

        await rig.wrist.skip()
        await rig.settle()
        assert rig.handheld.engine.current_task_index == 1
        assert FeedbackCue.TASK_COMPLETE in rig.wrist_cues.cues

        # A second skip raised against the old task (e.g. a late retry) changes nothing.
        await rig.handheld.handle_command(Command.create(CommandName.SKIP, taskIndex=0))
        assert rig.handheld.engine.current_task_index == 1
        assert rig.handheld.engine.state == RunState.RUNNING
    finally:
        await _stop(rig)


@pytest.mark.asyncio
async def test_duplicate_command_id_applies_once(timed_then_count) -> None:
    rig = await _rig(timed_then_count)
    try:
        await rig.handheld.start_activity(timed_then_count.id)
        cmd = Command.create(CommandName.EXTEND, seconds=5)
        await rig.handheld.handle_command(cmd)
        await rig.handheld.handle_command(cmd)
        assert rig.handheld.engine.current_task.duration == 15
    finally:
        await _stop(rig)


@pytest.mark.asyncio
async def test_extend_from_wrist_uses_default(timed_then_count) -> None:
    rig = await _rig(timed_then_count)
    try:
        await rig.handheld.start_activity(timed_then_count.id)
        await rig.settle()
        await rig.wrist.extend()
        await rig.settle()
        assert rig.handheld.engine.current_task.duration == 20
        assert rig.wrist.time_remaining == pytest.approx(20.0)
    finally:
        await _stop(rig)


@pytest.mark.asyncio
async def test_completion_is_recorded_and_announced(timed_then_count) -> None:
    rig = await _rig(timed_then_count)
    try:
        await rig.handheld.start_activity(timed_then_count.id)
        rig.tick(10)
        await rig.settle()
        for _ in range(3):
            await rig.handheld.increment()
        await rig.settle()

        assert rig.handheld.engine.state == RunState.COMPLETED
        assert len(rig.repo.history) == 1
        assert [t.actual_duration for t in rig.repo.history[0].tasks] == [10, 3]

        stored = rig.repo.activities[timed_then_count.id]
        assert stored.is_completed is True
        assert stored.last_completed_at == 1_700_000_000.0

        # Mirror saw the completion, then cleared on the completion notice.
        assert rig.wrist_cues.cues.count(FeedbackCue.ACTIVITY_COMPLETE) == 1
        assert rig.wrist.mirror.activity is None
        assert rig.wrist.activities[0].is_completed is True
    finally:
        await _stop(rig)


@pytest.mark.asyncio
async def test_completion_while_unreachable_cues_once_and_stays_cleared(timed_then_count) -> None:
    rig = await _rig(timed_then_count)
    try:
        await rig.handheld.start_activity(timed_then_count.id)
        rig.tick(2)
        await rig.settle()

        rig.channel.set_reachable(False)
        await rig.settle()
        rig.tick(8)
        await rig.settle()
        for _ in range(3):
            await rig.handheld.increment()
        await rig.settle()
        assert rig.handheld.engine.state == RunState.COMPLETED

        # The completion notice comes out of the durable queue ahead of the completed snapshot.
        rig.channel.set_reachable(True)
        await rig.settle()
        await asyncio.sleep(0.1)
        await rig.settle()

        assert rig.wrist_cues.cues.count(FeedbackCue.ACTIVITY_COMPLETE) == 1
        assert rig.wrist.mirror.activity is None
        assert rig.wrist.activities[0].is_completed is True
        assert len(rig.repo.history) == 1
    finally:
        await _stop(rig)


@pytest.mark.asyncio
async def test_commands_queued_while_unreachable_apply_once_on_reconnect(timed_then_count) -> None:
    rig = await _rig(timed_then_count)
    try:
        await rig.handheld.start_activity(timed_then_count.id)
        rig.tick(1)
        await rig.settle()

        pauses: list[str] = []

        def on_change(_engine, reason: str) -> None:
            if reason == "pause":
                pauses.append(reason)

        rig.handheld.engine.add_listener(on_change)

        rig.channel.set_reachable(False)
        await rig.settle()
        tier = await rig.wrist.pause()
        assert tier == Tier.DURABLE
        # Let the single durable retry fire too.
        await asyncio.sleep(0.1)
        assert rig.channel.b.pending >= 2
        assert rig.handheld.engine.state == RunState.RUNNING

        rig.channel.set_reachable(True)
        await rig.settle()

        assert rig.handheld.engine.state == RunState.PAUSED
        assert pauses == ["pause"]
        assert rig.wrist.mirror.paused is True
    finally:
        await _stop(rig)


@pytest.mark.asyncio
async def test_snapshot_while_unreachable_arrives_as_latest_state(timed_then_count) -> None:
    rig = await _rig(timed_then_count)
    try:
        rig.channel.set_reachable(False)
        await rig.settle()
        await rig.handheld.start_activity(timed_then_count.id)
        rig.tick(4)
        await rig.settle()
        assert rig.wrist.mirror.active is False

        rig.channel.set_reachable(True)
        await rig.settle()
        assert rig.wrist.mirror.active is True
        assert rig.wrist.mirror.activity.tasks[0].progress == pytest.approx(4.0)
    finally:
        await _stop(rig)


@pytest.mark.asyncio
async def test_polling_notices_missed_reachability_change(timed_then_count) -> None:
    rig = await _rig(timed_then_count, poll=0.05)
    try:
        rig.wrist.activities = []
        rig.channel.set_reachable(False, notify=False)
        await asyncio.sleep(0.15)
        assert rig.wrist.protocol.reachable is False

        rig.channel.set_reachable(True, notify=False)
        await asyncio.sleep(0.15)
        await rig.settle()
        assert rig.wrist.protocol.reachable is True
        # Back in reach: the mirror asked for the list again.
        assert [a.id for a in rig.wrist.activities] == [timed_then_count.id]
    finally:
        await _stop(rig)


@pytest.mark.asyncio
async def test_navigate_to_list_pauses_run(timed_then_count) -> None:
    rig = await _rig(timed_then_count)
    try:
        await rig.handheld.start_activity(timed_then_count.id)
        await rig.settle()
        await rig.wrist.navigate_to_list()
        await rig.settle()
        assert rig.handheld.engine.state == RunState.PAUSED
    finally:
        await _stop(rig)


@pytest.mark.asyncio
async def test_handheld_ignores_inbound_state(timed_then_count) -> None:
    rig = await _rig(timed_then_count)
    try:
        snap = Snapshot(activity=timed_then_count, current_task_index=0, task_state=TaskRunState.RUNNING)
        await rig.wrist.protocol.send_snapshot(snap)
        await rig.settle()
        assert rig.handheld.engine is None
        assert await rig.handheld.pause() is False
    finally:
        await _stop(rig)


@pytest.mark.asyncio
async def test_start_unknown_activity_is_ignored(timed_then_count) -> None:
    rig = await _rig(timed_then_count)
    try:
        assert await rig.handheld.start_activity("missing") is False
        assert rig.handheld.engine is None
    finally:
        await _stop(rig)


@pytest.mark.asyncio
async def test_collection_edits_reach_the_wrist(timed_then_count) -> None:
    rig = await _rig(timed_then_count)
    try:
        new = Activity(name="Stretch", tasks=[ActivityTask("Hamstrings", DurationType.TIMED, 30)])
        assert await rig.handheld.save_activity(new) is True
        await rig.settle()
        assert [a.name for a in rig.wrist.activities] == ["Mini", "Stretch"]

        edited = rig.repo.get_activity(new.id)
        edited.add_task(ActivityTask("Calves", DurationType.COUNT, 12))
        edited.move_task(1, 0)
        assert await rig.handheld.save_activity(edited) is True
        await rig.settle()
        mirrored = rig.wrist.activities[1]
        assert [t.name for t in mirrored.tasks] == ["Calves", "Hamstrings"]

        assert await rig.handheld.delete_activity(new.id) is True
        await rig.settle()
        assert [a.id for a in rig.wrist.activities] == [timed_then_count.id]
        assert await rig.handheld.delete_activity(new.id) is False
    finally:
        await _stop(rig)


@pytest.mark.asyncio
async def test_running_activity_cannot_be_edited_or_deleted(timed_then_count) -> None:
    rig = await _rig(timed_then_count)
    try:
        await rig.handheld.start_activity(timed_then_count.id)
        edited = rig.repo.get_activity(timed_then_count.id)
        edited.remove_task(0)
        assert await rig.handheld.save_activity(edited) is False
        assert await rig.handheld.delete_activity(timed_then_count.id) is False
        assert len(rig.repo.activities[timed_then_count.id].tasks) == 2

        await rig.handheld.abort()
        assert await rig.handheld.delete_activity(timed_then_count.id) is True
    finally:
        await _stop(rig)
