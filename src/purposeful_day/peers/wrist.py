# src/purposeful_day/peers/wrist.py

from __future__ import annotations

"""
Mirror peer.

Shows the authoritative peer's run and forwards user gestures as Commands. The
only local changes it makes are display-side (its own countdown timer), and each
of those corresponds to a Command it sends; the run itself is never mutated here.
"""

import asyncio
import logging
import time

from ..activities.models import Activity
from ..core.ports import Clock, FeedbackPlayer
from ..feedback import FeedbackCue, play_safely
from ..logging_setup import peer_context
from ..runner.ticker import run_ticker
from ..sync.messages import Command, CommandName
from ..sync.protocol import (
    ActivityListReceived,
    CommandReceived,
    EventStream,
    ReachabilityChanged,
    SnapshotReceived,
    SyncEvent,
    SyncProtocol,
)
from ..sync.reconcile import MirrorState, MirrorTimer, Reconciler, RecentCommandIds
from ..sync.transport import Tier

logger = logging.getLogger(__name__)

PEER_NAME = "wrist"


class WristPeer:
    def __init__(
            self,
            protocol: SyncProtocol,
            *,
            feedback: FeedbackPlayer | None = None,
            clock: Clock = time.monotonic,
            max_tick_step: float = 1.0,
            tick_interval_seconds: float = 0.5,
            default_extend_seconds: int = 10,
    ) -> None:
        self.protocol = protocol
        self.activities: list[Activity] = []
        self.reconciler = Reconciler(timer=MirrorTimer(clock=clock, max_tick_step=max_tick_step))

        self._feedback = feedback
        self._tick_interval = tick_interval_seconds
        self._default_extend = int(default_extend_seconds)
        self._seen = RecentCommandIds()
        self._stream: EventStream | None = None
        self._tasks: list[asyncio.Task[None]] = []

    # ---- read-outs ----

    @property
    def mirror(self) -> MirrorState:
        return self.reconciler.state

    @property
    def time_remaining(self) -> float:
        return self.reconciler.timer.remaining

    # ---- lifecycle ----

    async def start(self, *, run_ticker_loop: bool = True) -> None:
        await self.protocol.start()
        self._stream = self.protocol.events()
        self._tasks.append(
            asyncio.create_task(
                self._consume(self._stream),
                name="wrist-inbound",
                context=peer_context(PEER_NAME),
            )
        )
        if run_ticker_loop:
            self._tasks.append(
                asyncio.create_task(
                    run_ticker(self.tick, interval_seconds=self._tick_interval, name="wrist-ticker"),
                    name="wrist-ticker",
                    context=peer_context(PEER_NAME),
                )
            )
        if self.protocol.reachable:
            await self.request_activity_list()

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        await self.protocol.close()

    async def _consume(self, stream: EventStream) -> None:
        async for event in stream:
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("Wrist failed to handle %s", type(event).__name__)

    def tick(self, now: float | None = None) -> bool:
        timer = self.reconciler.timer
        before = timer.remaining
        changed = timer.tick(now)
        if changed and 0 < before and int(before) != int(timer.remaining) and timer.remaining <= 3:
            play_safely(self._feedback, FeedbackCue.COUNTDOWN)
        return changed

    # ---- user gestures -> commands ----

    async def _send(self, name: CommandName, **params) -> Tier:
        return await self.protocol.send_command(Command.create(name, **params))

    async def request_activity_list(self) -> Tier:
        return await self._send(CommandName.REQUEST_ACTIVITY_LIST)

    async def start_activity(self, activity_id: str) -> Tier:
        logger.info("Wrist requesting start of %s", activity_id)
        return await self._send(CommandName.START, activityId=activity_id)

    async def pause(self) -> Tier:
        # Optimistic display pause; the command is what actually pauses the run.
        self.reconciler.timer.pause()
        return await self._send(CommandName.PAUSE)

    async def resume(self) -> Tier:
        self.reconciler.timer.resume()
        return await self._send(CommandName.RESUME)

    async def skip(self) -> Tier:
        index = self.mirror.current_task_index if self.mirror.active else None
        return await self._send(CommandName.SKIP, taskIndex=index)

    async def extend(self, seconds: int | None = None) -> Tier:
        amount = self._default_extend if seconds is None else int(seconds)
        return await self._send(CommandName.EXTEND, seconds=amount)

    async def navigate_to_list(self) -> None:
        self.reconciler.timer.stop()
        await self._send(CommandName.PAUSE)
        await self._send(CommandName.NAVIGATE_TO_LIST)

    # ---- inbound ----

    async def handle_event(self, event: SyncEvent) -> None:
        if isinstance(event, SnapshotReceived):
            self._apply_snapshot(event)
        elif isinstance(event, ActivityListReceived):
            self.activities = list(event.activities)
            logger.info("Wrist received activity list: %d activities", len(self.activities))
        elif isinstance(event, CommandReceived):
            self._apply_command(event.command)
        elif isinstance(event, ReachabilityChanged):
            if event.reachable:
                await self.request_activity_list()

    def _apply_snapshot(self, event: SnapshotReceived) -> None:
        outcome = self.reconciler.apply(event.snapshot)
        if not outcome.applied:
            return
        state = self.mirror
        logger.debug(
            "Wrist mirror task=%s state=%s via %s",
            state.current_task_index,
            state.task_state.value,
            event.tier,
        )
        if outcome.just_started:
            play_safely(self._feedback, FeedbackCue.TASK_START)
        if outcome.just_completed:
            play_safely(self._feedback, FeedbackCue.ACTIVITY_COMPLETE)

    def _apply_command(self, command: Command) -> None:
        if self._seen.seen_before(command):
            return
        name = command.name
        if name in (CommandName.PAUSE, CommandName.RESUME, CommandName.EXTEND):
            if self.reconciler.apply_command(command):
                play_safely(self._feedback, FeedbackCue.CLICK)
        elif name == CommandName.SKIP:
            play_safely(self._feedback, FeedbackCue.TASK_COMPLETE)
        elif name == CommandName.ACTIVITY_COMPLETED:
            # The completed snapshot usually lands first and has already cued.
            if not self.mirror.completed:
                play_safely(self._feedback, FeedbackCue.ACTIVITY_COMPLETE)
            finished = command.get_str("activityId")
            if finished is None and self.mirror.activity is not None:
                finished = self.mirror.activity.id
            self.reconciler.clear(finished_activity_id=finished)
        else:
            logger.debug("Wrist ignoring command %s", name.value)
