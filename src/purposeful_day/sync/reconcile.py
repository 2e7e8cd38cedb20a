# src/purposeful_day/sync/reconcile.py

from __future__ import annotations

"""
Receiver-side reconciliation.

A snapshot replaces the mirror wholesale; nothing is merged. Derived flags
(paused / active / just started / just completed) are computed from the snapshot,
preferring its explicit `taskState` and falling back to the legacy inference.

Ordering: when a snapshot carries (origin, sequence), anything not newer than the
last applied sequence from that origin is ignored, so duplicates and stragglers
from slower tiers cannot roll the mirror back. Snapshots without them are applied
unconditionally (last write wins).
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass

from ..activities.models import Activity, TaskRunState, infer_paused
from ..core.ports import Clock
from .messages import Command, CommandName, Snapshot

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MirrorState:
    activity: Activity | None = None
    current_task_index: int = 0
    task_state: TaskRunState = TaskRunState.NOT_STARTED
    active: bool = False
    paused: bool = False
    completed: bool = False

    def as_tuple(self) -> tuple:
        activity = None if self.activity is None else self.activity.to_dict()
        return (
            activity,
            self.current_task_index,
            self.task_state,
            self.active,
            self.paused,
            self.completed,
        )


@dataclass(slots=True, frozen=True)
class ReconcileOutcome:
    applied: bool
    just_started: bool = False
    just_completed: bool = False
    paused_changed: bool = False


IGNORED = ReconcileOutcome(applied=False)


class MirrorTimer:
    """
    Local display countdown for the mirror peer, kept live between snapshots.

    It never decides anything: reaching zero just stops the display until the
    authoritative peer's next snapshot moves on.
    """

    def __init__(self, *, clock: Clock = time.monotonic, max_tick_step: float = 1.0) -> None:
        self.remaining = 0.0
        self.running = False
        self.paused = False
        self._clock = clock
        self._max_step = max(0.0, float(max_tick_step))
        self._last: float | None = None

    def reset(self, remaining: float, *, running: bool, paused: bool) -> None:
        self.remaining = max(0.0, float(remaining))
        self.running = running
        self.paused = paused
        self._last = self._clock()

    def stop(self) -> None:
        self.running = False
        self._last = None

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False
        self._last = self._clock()

    def add(self, seconds: float) -> None:
        self.remaining += max(0.0, float(seconds))

    def tick(self, now: float | None = None) -> bool:
        now = self._clock() if now is None else now
        last, self._last = self._last, now
        if not self.running or self.paused or last is None or self.remaining <= 0:
            return False
        step = min(max(0.0, now - last), self._max_step)
        if step <= 0:
            return False
        self.remaining = max(0.0, self.remaining - step)
        return True


class RecentCommandIds:
    """Bounded memory of applied command ids; the same command over several tiers counts once."""

    def __init__(self, maxlen: int = 256) -> None:
        self._maxlen = max(1, int(maxlen))
        self._seen: OrderedDict[str, None] = OrderedDict()

    def seen_before(self, command: Command) -> bool:
        """Record the command id; True if it was already recorded."""
        cid = command.command_id
        if not cid:
            return False
        if cid in self._seen:
            self._seen.move_to_end(cid)
            return True
        self._seen[cid] = None
        while len(self._seen) > self._maxlen:
            self._seen.popitem(last=False)
        return False


def _snapshot_task_state(snapshot: Snapshot) -> TaskRunState:
    activity = snapshot.activity
    index = snapshot.current_task_index
    if snapshot.task_state is not None:
        return snapshot.task_state
    if index >= len(activity.tasks):
        return TaskRunState.COMPLETED
    task = activity.tasks[index]
    if task.is_completed:
        return TaskRunState.COMPLETED
    if infer_paused(activity, index):
        return TaskRunState.PAUSED
    return TaskRunState.RUNNING


class Reconciler:
    """Owns the mirror state and the display timer for one mirror peer."""

    def __init__(self, *, timer: MirrorTimer | None = None) -> None:
        self.state = MirrorState()
        self.timer = timer or MirrorTimer()
        self._origin: str | None = None
        self._sequence: int | None = None
        # Activity whose run was announced finished; its completed snapshots are not shown again.
        self._finished_id: str | None = None

    def _is_stale(self, snapshot: Snapshot) -> bool:
        if snapshot.origin is None or snapshot.sequence is None:
            return False
        if snapshot.origin != self._origin:
            return False
        return self._sequence is not None and snapshot.sequence <= self._sequence

    def apply(self, snapshot: Snapshot) -> ReconcileOutcome:
        if self._is_stale(snapshot):
            logger.debug(
                "Ignoring stale snapshot origin=%s seq=%s (last=%s)",
                snapshot.origin,
                snapshot.sequence,
                self._sequence,
            )
            return IGNORED
        if snapshot.origin is not None and snapshot.sequence is not None:
            self._origin = snapshot.origin
            self._sequence = snapshot.sequence

        prev = self.state
        activity = snapshot.activity
        index = snapshot.current_task_index
        task_state = _snapshot_task_state(snapshot)

        in_range = index < len(activity.tasks)
        if snapshot.task_state is not None:
            active = in_range and task_state != TaskRunState.NOT_STARTED
        else:
            active = in_range
        completed = bool(activity.tasks) and not in_range
        paused = active and task_state == TaskRunState.PAUSED

        if self._finished_id is not None and self._finished_id == activity.id:
            if completed:
                logger.debug("Ignoring completed snapshot of finished activity=%s", activity.id)
                return IGNORED
            # Anything else for that activity is a new run.
            self._finished_id = None

        self.state = MirrorState(
            activity=activity,
            current_task_index=index,
            task_state=task_state,
            active=active,
            paused=paused,
            completed=completed,
        )

        same_activity = prev.activity is not None and prev.activity.id == activity.id
        just_started = active and (not prev.active or not same_activity or prev.current_task_index != index)
        just_completed = completed and not (prev.completed and same_activity)

        if active:
            task = activity.tasks[index]
            remaining = max(0.0, float(task.duration) - float(task.progress)) if task.is_timed else 0.0
            # Trust the authority's progress over local accumulation.
            self.timer.reset(remaining, running=task.is_timed, paused=paused)
        else:
            self.timer.stop()
            self.timer.remaining = 0.0

        return ReconcileOutcome(
            applied=True,
            just_started=just_started,
            just_completed=just_completed,
            paused_changed=prev.paused != paused,
        )

    def apply_command(self, command: Command) -> bool:
        """
        Display-only effects of a command echoed by the authoritative peer.
        The next snapshot is still the source of truth.
        """
        if not self.state.active:
            return False
        if command.name == CommandName.PAUSE:
            self.state.paused = True
            self.timer.pause()
            return True
        if command.name == CommandName.RESUME:
            self.state.paused = False
            self.timer.resume()
            return True
        if command.name == CommandName.EXTEND:
            seconds = command.get_int("seconds")
            if seconds is None or seconds <= 0:
                return False
            self.timer.add(seconds)
            return True
        return False

    def clear(self, *, finished_activity_id: str | None = None) -> None:
        """
        Drop the mirror. With `finished_activity_id`, later completed snapshots of that
        activity (e.g. flushed from the latest-state slot after a reconnect) are ignored.
        """
        if finished_activity_id is not None:
            self._finished_id = finished_activity_id
        self.state = MirrorState()
        self.timer.stop()
        self.timer.remaining = 0.0
