# src/purposeful_day/peers/handheld.py

from __future__ import annotations

"""
Authoritative peer.

Owns the live run engine and the activity collection. Every mutation (local or
requested by the mirror through a Command) is followed by a fresh snapshot push,
and applied control operations are echoed back as Commands so the mirror can
react (e.g. acknowledge a skip with feedback).
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from ..activities.models import Activity, CompletedActivity
from ..core.ports import ActivityRepo, Clock, FeedbackPlayer, HistoryRepo
from ..logging_setup import peer_context
from ..runner.engine import DEFAULT_COUNTDOWN_SECONDS, DEFAULT_MAX_TICK_STEP, RunEngine, RunState
from ..runner.ticker import run_ticker
from ..sync.messages import Command, CommandName, Snapshot
from ..sync.protocol import (
    ActivityListReceived,
    CommandReceived,
    EventStream,
    ReachabilityChanged,
    SnapshotReceived,
    SyncEvent,
    SyncProtocol,
)
from ..sync.reconcile import RecentCommandIds

logger = logging.getLogger(__name__)

DEFAULT_EXTEND_SECONDS = 10
PEER_NAME = "handheld"


class HandheldPeer:
    def __init__(
            self,
            protocol: SyncProtocol,
            repo: ActivityRepo,
            history: HistoryRepo,
            *,
            feedback: FeedbackPlayer | None = None,
            clock: Clock = time.monotonic,
            wall_clock: Clock = time.time,
            countdown_seconds: int = DEFAULT_COUNTDOWN_SECONDS,
            max_tick_step: float = DEFAULT_MAX_TICK_STEP,
            tick_interval_seconds: float = 0.5,
            default_extend_seconds: int = DEFAULT_EXTEND_SECONDS,
    ) -> None:
        self.protocol = protocol
        self.repo = repo
        self.history = history
        self.engine: RunEngine | None = None

        self._feedback = feedback
        self._clock = clock
        self._wall_clock = wall_clock
        self._countdown_seconds = countdown_seconds
        self._max_tick_step = max_tick_step
        self._tick_interval = tick_interval_seconds
        self._default_extend = int(default_extend_seconds)

        # Snapshot ordering: a fresh epoch per process, monotonic sequence within it.
        self.origin = uuid.uuid4().hex
        self._sequence = 0
        self._last_pushed: tuple | None = None

        self._seen = RecentCommandIds()
        self._stream: EventStream | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._pending_push: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[None]] = set()

    # ---- lifecycle ----

    async def start(self, *, run_ticker_loop: bool = True) -> None:
        await self.protocol.start()
        self._stream = self.protocol.events()
        self._tasks.append(
            asyncio.create_task(
                self._consume(self._stream),
                name="handheld-inbound",
                context=peer_context(PEER_NAME),
            )
        )
        if run_ticker_loop:
            self._tasks.append(
                asyncio.create_task(
                    run_ticker(self.tick, interval_seconds=self._tick_interval, name="handheld-ticker"),
                    name="handheld-ticker",
                    context=peer_context(PEER_NAME),
                )
            )
        await self.send_activity_list()

    async def stop(self) -> None:
        tasks = [*self._tasks, *self._background]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        self._background.clear()
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        await self.protocol.close()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None] | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return None
        task = loop.create_task(coro, context=peer_context(PEER_NAME))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _consume(self, stream: EventStream) -> None:
        async for event in stream:
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("Handheld failed to handle %s", type(event).__name__)

    # ---- engine wiring ----

    def _ensure_engine(self, activity: Activity) -> RunEngine | None:
        if self.engine is None:
            self.engine = RunEngine(
                activity,
                clock=self._clock,
                wall_clock=self._wall_clock,
                feedback=self._feedback,
                countdown_seconds=self._countdown_seconds,
                max_tick_step=self._max_tick_step,
                on_complete=self._on_complete,
            )
            self.engine.add_listener(self._on_engine_change)
            return self.engine
        if self.engine.load(activity):
            return self.engine
        return None

    def _push_key(self) -> tuple | None:
        engine = self.engine
        if engine is None:
            return None
        task = engine.current_task
        return (
            engine.activity.id,
            engine.state,
            engine.current_task_index,
            None if task is None else (int(task.progress), task.duration, task.is_completed),
        )

    def _on_engine_change(self, engine: RunEngine, reason: str) -> None:
        # Ticks move progress a fraction at a time; only whole-second changes are worth a push.
        if reason == "tick" and self._push_key() == self._last_pushed:
            return
        self._schedule_push()

    def _schedule_push(self) -> None:
        if self._pending_push is not None and not self._pending_push.done():
            return
        self._pending_push = self._spawn(self._push_if_changed())

    async def _push_if_changed(self) -> None:
        if self._push_key() == self._last_pushed:
            return
        await self.push_snapshot()

    def _on_complete(self, record: CompletedActivity) -> None:
        try:
            self.history.save_completed_activity(record)
        except Exception:
            logger.exception("Failed to save history for activity=%s", record.activity_id)

        try:
            stored = self.repo.get_activity(record.activity_id)
            if stored is not None:
                stored.is_completed = True
                stored.last_completed_at = record.completed_at
                self.repo.save_activity(stored)
        except Exception:
            logger.exception("Failed to mark activity completed id=%s", record.activity_id)

        self._spawn(self._announce_completion(record.activity_id))

    async def _announce_completion(self, activity_id: str) -> None:
        await self.send_activity_list()
        await self.protocol.send_command(Command.create(CommandName.ACTIVITY_COMPLETED, activityId=activity_id))

    def tick(self, now: float | None = None) -> bool:
        if self.engine is None:
            return False
        return self.engine.tick(now)

    # ---- outbound ----

    def build_snapshot(self) -> Snapshot | None:
        engine = self.engine
        if engine is None:
            return None
        self._sequence += 1
        return Snapshot(
            activity=engine.activity.copy(),
            current_task_index=engine.current_task_index,
            task_state=engine.task_run_state(),
            origin=self.origin,
            sequence=self._sequence,
        )

    async def push_snapshot(self) -> None:
        snapshot = self.build_snapshot()
        if snapshot is None:
            return
        self._last_pushed = self._push_key()
        await self.protocol.send_snapshot(snapshot)

    async def send_activity_list(self) -> None:
        try:
            activities = self.repo.load_activities()
        except Exception:
            logger.exception("Failed to load activities for list push")
            return
        await self.protocol.send_activity_list(activities)

    # ---- collection edits ----

    def _is_running(self, activity_id: str) -> bool:
        engine = self.engine
        return engine is not None and engine.is_active and engine.activity.id == activity_id

    async def save_activity(self, activity: Activity) -> bool:
        """
        Create or update an activity, then re-send the list.

        Refused while that activity is being run. Blank names raise ValueError.
        """
        if self._is_running(activity.id):
            logger.warning("save refused: activity id=%s is running", activity.id)
            return False
        self.repo.save_activity(activity)
        logger.info("Activity saved id=%s name=%s tasks=%d", activity.id, activity.name, len(activity.tasks))
        await self.send_activity_list()
        return True

    async def delete_activity(self, activity_id: str) -> bool:
        if self._is_running(activity_id):
            logger.warning("delete refused: activity id=%s is running", activity_id)
            return False
        if self.repo.get_activity(activity_id) is None:
            return False
        self.repo.delete_activity(activity_id)
        logger.info("Activity deleted id=%s", activity_id)
        await self.send_activity_list()
        return True

    async def _after_mutation(self, echo: Command | None) -> None:
        if echo is not None:
            await self.protocol.send_command(echo)
        await self.push_snapshot()

    # ---- controls (presentation layer and remote commands share these) ----

    async def start_activity(self, activity_id: str) -> bool:
        try:
            activity = self.repo.get_activity(activity_id)
        except Exception:
            logger.exception("Failed to load activity id=%s", activity_id)
            return False
        if activity is None:
            logger.warning("start ignored: unknown activity id=%s", activity_id)
            return False

        engine = self._ensure_engine(activity)
        ok = engine is not None and engine.start()
        await self.push_snapshot()
        return ok

    async def _control(self, op: Callable[[RunEngine], bool], echo: Command | None) -> bool:
        engine = self.engine
        if engine is None:
            return False
        ok = op(engine)
        await self._after_mutation(echo if ok else None)
        return ok

    async def pause(self) -> bool:
        return await self._control(lambda e: e.pause(), Command.create(CommandName.PAUSE))

    async def resume(self) -> bool:
        return await self._control(lambda e: e.resume(), Command.create(CommandName.RESUME))

    async def skip(self, *, expected_index: int | None = None) -> bool:
        index = self.engine.current_task_index if self.engine is not None else None
        return await self._control(
            lambda e: e.complete_current_task(expected_index=expected_index),
            Command.create(CommandName.SKIP, taskIndex=index),
        )

    async def extend(self, seconds: int | None = None) -> bool:
        amount = self._default_extend if seconds is None else int(seconds)
        return await self._control(lambda e: e.extend(amount), Command.create(CommandName.EXTEND, seconds=amount))

    async def increment(self) -> bool:
        return await self._control(lambda e: e.increment(), None)

    async def decrement(self) -> bool:
        return await self._control(lambda e: e.decrement(), None)

    async def abort(self) -> bool:
        # Local only; the mirror learns about it from the next snapshot.
        return await self._control(lambda e: e.abort(), None)

    # ---- inbound ----

    async def handle_event(self, event: SyncEvent) -> None:
        if isinstance(event, CommandReceived):
            await self.handle_command(event.command)
        elif isinstance(event, ReachabilityChanged):
            if event.reachable:
                await self.send_activity_list()
                await self.push_snapshot()
        elif isinstance(event, (SnapshotReceived, ActivityListReceived)):
            # This side is the authority; the mirror never sends state.
            logger.debug("Handheld ignoring inbound %s", type(event).__name__)

    async def handle_command(self, command: Command) -> None:
        if self._seen.seen_before(command):
            logger.debug("Duplicate command %s id=%s ignored", command.name.value, command.command_id)
            return

        logger.info("Handheld <- %s %s", command.name.value, command.params or "")
        name = command.name

        if name == CommandName.START:
            activity_id = command.get_str("activityId")
            if activity_id:
                await self.start_activity(activity_id)
            return
        if name == CommandName.REQUEST_ACTIVITY_LIST:
            await self.send_activity_list()
            return
        if name == CommandName.ACTIVITY_COMPLETED:
            return

        handlers: dict[CommandName, Callable[[], Awaitable[bool]]] = {
            CommandName.PAUSE: self.pause,
            CommandName.RESUME: self.resume,
            CommandName.SKIP: lambda: self.skip(expected_index=command.get_int("taskIndex")),
            CommandName.EXTEND: lambda: self.extend(command.get_int("seconds", self._default_extend)),
            CommandName.NAVIGATE_TO_LIST: self._pause_if_running,
        }
        handler = handlers.get(name)
        if handler is None:
            return
        # Applied or not (wrong state, stale skip), a snapshot goes back either way.
        await handler()

    async def _pause_if_running(self) -> bool:
        if self.engine is not None and self.engine.state == RunState.RUNNING:
            return await self.pause()
        await self.push_snapshot()
        return False
