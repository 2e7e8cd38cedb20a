# src/purposeful_day/runner/engine.py

from __future__ import annotations

"""
Local run engine.

State machine for one activity run on one peer:

    IDLE -> COUNTDOWN -> RUNNING <-> PAUSED -> COMPLETED
    COUNTDOWN / RUNNING / PAUSED -> ABORTED

Operations that are not valid in the current state are no-ops and return False,
so remote commands that arrive late, twice or out of order are harmless.

Time:
- the engine never sleeps; `tick()` is driven from outside (see runner.ticker)
- timed progress advances by clock delta since the previous tick, clamped to
  `max_tick_step` so a suspended process does not credit the whole gap to a task
- time spent PAUSED is never counted (resume re-bases the reference)
"""

import logging
import math
import time
from collections.abc import Callable
from enum import StrEnum

from ..activities.models import (
    Activity,
    ActivityTask,
    CompletedActivity,
    CompletedTask,
    DurationType,
    TaskRunState,
)
from ..core.ports import Clock, FeedbackPlayer
from ..feedback import FeedbackCue, play_safely

logger = logging.getLogger(__name__)

EngineListener = Callable[["RunEngine", str], None]
CompletionHandler = Callable[[CompletedActivity], None]

DEFAULT_COUNTDOWN_SECONDS = 3
DEFAULT_MAX_TICK_STEP = 1.0
FINAL_SECONDS_CUE = 3


class RunState(StrEnum):
    IDLE = "idle"
    COUNTDOWN = "countdown"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABORTED = "aborted"


STARTABLE_STATES = frozenset({RunState.IDLE, RunState.COMPLETED, RunState.ABORTED})
ACTIVE_STATES = frozenset({RunState.COUNTDOWN, RunState.RUNNING, RunState.PAUSED})


class RunEngine:
    def __init__(
        self,
        activity: Activity,
        *,
        clock: Clock = time.monotonic,
        wall_clock: Clock = time.time,
        feedback: FeedbackPlayer | None = None,
        countdown_seconds: int = DEFAULT_COUNTDOWN_SECONDS,
        max_tick_step: float = DEFAULT_MAX_TICK_STEP,
        on_complete: CompletionHandler | None = None,
    ) -> None:
        self.activity = activity
        self.state = RunState.IDLE
        self.current_task_index = 0
        self.countdown_value = 0

        self._clock = clock
        self._wall_clock = wall_clock
        self._feedback = feedback
        self._countdown_seconds = max(0, int(countdown_seconds))
        self._max_tick_step = max(0.0, float(max_tick_step))
        self._on_complete = on_complete

        self._countdown_deadline = 0.0
        self._last_tick: float | None = None
        self._history: list[CompletedTask] = []
        self._listeners: list[EngineListener] = []

        self.completed_record: CompletedActivity | None = None

    # ---- listeners ----

    def add_listener(self, listener: EngineListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EngineListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, reason: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(self, reason)
            except Exception:
                logger.exception("Engine listener failed reason=%s", reason)

    def _cue(self, cue: FeedbackCue) -> None:
        play_safely(self._feedback, cue)

    # ---- read-outs ----

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    @property
    def current_task(self) -> ActivityTask | None:
        if 0 <= self.current_task_index < len(self.activity.tasks):
            return self.activity.tasks[self.current_task_index]
        return None

    @property
    def next_task(self) -> ActivityTask | None:
        i = self.current_task_index + 1
        if 0 <= i < len(self.activity.tasks):
            return self.activity.tasks[i]
        return None

    @property
    def time_remaining(self) -> float:
        """Seconds left on the current timed task (0 for count tasks or no task)."""
        task = self.current_task
        if task is None or not task.is_timed:
            return 0.0
        return max(0.0, float(task.duration) - float(task.progress))

    def formatted_time_remaining(self) -> str:
        total = int(math.ceil(self.time_remaining))
        minutes, seconds = divmod(total, 60)
        return f"{minutes:02d}:{seconds:02d}"

    def progress_percentage(self) -> float:
        task = self.current_task
        return 0.0 if task is None else task.completion_percentage

    def task_run_state(self) -> TaskRunState:
        """Explicit state of the current task, as carried in snapshots."""
        task = self.current_task
        if task is None:
            return TaskRunState.COMPLETED if self.state == RunState.COMPLETED else TaskRunState.NOT_STARTED
        if task.is_completed:
            return TaskRunState.COMPLETED
        if self.state == RunState.RUNNING:
            return TaskRunState.RUNNING
        if self.state == RunState.PAUSED:
            return TaskRunState.PAUSED
        return TaskRunState.NOT_STARTED

    # ---- lifecycle ----

    def load(self, activity: Activity) -> bool:
        """Swap in another activity. Only while no run is active."""
        if self.is_active:
            logger.debug("load ignored: run active state=%s", self.state)
            return False
        self.activity = activity
        self.state = RunState.IDLE
        self.current_task_index = 0
        self.completed_record = None
        self._history = []
        self._notify("load")
        return True

    def _reset_tasks(self) -> None:
        for task in self.activity.tasks:
            task.reset()
        self.current_task_index = 0
        self._history = []

    def start(self) -> bool:
        if self.state not in STARTABLE_STATES:
            logger.debug("start ignored: state=%s", self.state)
            return False
        if not self.activity.is_runnable:
            logger.warning("start ignored: activity %s has no tasks", self.activity.id)
            return False

        self._reset_tasks()
        self.activity.is_completed = False
        self.completed_record = None

        now = self._clock()
        self.state = RunState.COUNTDOWN
        self.countdown_value = self._countdown_seconds
        self._countdown_deadline = now + self._countdown_seconds
        logger.info("Run start activity=%s countdown=%ss", self.activity.name, self._countdown_seconds)

        if self._countdown_seconds == 0:
            self._begin(now)
        self._notify("start")
        return True

    def _begin(self, now: float) -> None:
        self.state = RunState.RUNNING
        self.countdown_value = 0
        self.current_task_index = 0
        self._start_current_task(now)

    def _start_current_task(self, now: float) -> None:
        self._last_tick = now
        self._cue(FeedbackCue.TASK_START)
        task = self.current_task
        if task is not None:
            logger.info(
                "Task %d/%d started name=%s type=%s duration=%s",
                self.current_task_index + 1,
                len(self.activity.tasks),
                task.name,
                task.duration_type.value,
                task.duration,
            )

    def abort(self) -> bool:
        if not self.is_active:
            return False
        self._reset_tasks()
        self.state = RunState.ABORTED
        self.countdown_value = 0
        self._last_tick = None
        logger.info("Run aborted activity=%s", self.activity.name)
        self._notify("abort")
        return True

    # ---- clock ----

    def tick(self, now: float | None = None) -> bool:
        """Advance countdown or timed progress. Returns True if state changed."""
        now = self._clock() if now is None else now

        if self.state == RunState.COUNTDOWN:
            remaining = self._countdown_deadline - now
            if remaining <= 0:
                self._begin(now)
                self._notify("begin")
                return True
            value = int(math.ceil(remaining))
            if value < self.countdown_value:
                self.countdown_value = value
                self._cue(FeedbackCue.COUNTDOWN)
                self._notify("countdown")
                return True
            return False

        if self.state != RunState.RUNNING:
            return False

        if self._advance(now):
            self._notify("tick")
            return True
        return False

    def _advance(self, now: float) -> bool:
        task = self.current_task
        last = self._last_tick
        self._last_tick = now
        if task is None or task.duration_type != DurationType.TIMED or task.is_completed:
            return False
        if last is None:
            return False

        step = min(max(0.0, now - last), self._max_tick_step)
        if step <= 0:
            return False

        before = self.time_remaining
        task.progress = float(task.progress) + step

        if task.progress >= task.duration:
            task.progress = task.duration
            self._complete_current(now, auto=True)
            return True

        after = self.time_remaining
        if math.ceil(after) < math.ceil(before) and 0 < math.ceil(after) <= FINAL_SECONDS_CUE:
            self._cue(FeedbackCue.COUNTDOWN)
        return True

    # ---- controls ----

    def pause(self) -> bool:
        if self.state != RunState.RUNNING:
            return False
        # Credit the time since the last tick before freezing.
        self._advance(self._clock())
        if self.state != RunState.RUNNING:
            self._notify("tick")
            return False
        self.state = RunState.PAUSED
        self._last_tick = None
        logger.info("Run paused task=%d", self.current_task_index)
        self._notify("pause")
        return True

    def resume(self) -> bool:
        if self.state != RunState.PAUSED:
            return False
        self.state = RunState.RUNNING
        self._last_tick = self._clock()
        logger.info("Run resumed task=%d", self.current_task_index)
        self._notify("resume")
        return True

    def complete_current_task(self, *, expected_index: int | None = None) -> bool:
        """
        Force-complete the current task (skip).

        `expected_index` makes a repeated skip for the same task a no-op.
        """
        if self.state not in (RunState.RUNNING, RunState.PAUSED):
            return False
        if expected_index is not None and expected_index != self.current_task_index:
            logger.debug(
                "skip ignored: expected task %s but current is %s",
                expected_index,
                self.current_task_index,
            )
            return False
        self._complete_current(self._clock(), auto=False)
        self._notify("skip")
        return True

    skip = complete_current_task

    def _complete_current(self, now: float, *, auto: bool) -> None:
        task = self.current_task
        if task is None:
            return

        task.is_completed = True
        actual = float(task.progress)
        if task.is_timed:
            actual = min(actual, float(task.duration))
        self._history.append(
            CompletedTask.from_task(task, actual_duration=actual, completed_at=self._wall_clock())
        )
        self._cue(FeedbackCue.TASK_COMPLETE)
        logger.info(
            "Task %d/%d %s name=%s actual=%.1f planned=%s",
            self.current_task_index + 1,
            len(self.activity.tasks),
            "completed" if auto else "skipped",
            task.name,
            actual,
            task.duration,
        )

        self.current_task_index += 1
        if self.current_task_index < len(self.activity.tasks):
            self.state = RunState.RUNNING
            self._start_current_task(now)
        else:
            self._complete_activity()

    def _complete_activity(self) -> None:
        self.state = RunState.COMPLETED
        self._last_tick = None
        completed_at = self._wall_clock()
        self.activity.is_completed = True
        self.activity.last_completed_at = completed_at

        record = CompletedActivity.from_run(self.activity, self._history, completed_at=completed_at)
        self._history = []
        self.completed_record = record
        self._cue(FeedbackCue.ACTIVITY_COMPLETE)
        logger.info(
            "Activity completed name=%s tasks=%d total=%.1f",
            record.name,
            len(record.tasks),
            record.total_duration,
        )

        if self._on_complete is not None:
            try:
                self._on_complete(record)
            except Exception:
                logger.exception("Completion handler failed activity=%s", record.activity_id)

    def extend(self, seconds: int) -> bool:
        """Add `seconds` to the current timed task's target (and so to the time remaining)."""
        if self.state not in (RunState.RUNNING, RunState.PAUSED):
            return False
        task = self.current_task
        if task is None or not task.is_timed or task.is_completed:
            return False
        seconds = int(seconds)
        if seconds <= 0:
            return False
        task.duration += seconds
        self._cue(FeedbackCue.CLICK)
        logger.info("Task %d extended by %ss -> %ss", self.current_task_index, seconds, task.duration)
        self._notify("extend")
        return True

    def increment(self) -> bool:
        if self.state != RunState.RUNNING:
            return False
        task = self.current_task
        if task is None or task.is_timed or task.is_completed:
            return False
        task.progress = int(task.progress) + 1
        if task.progress >= task.duration:
            self._complete_current(self._clock(), auto=True)
        self._notify("increment")
        return True

    def decrement(self) -> bool:
        if self.state != RunState.RUNNING:
            return False
        task = self.current_task
        if task is None or task.is_timed or task.is_completed or task.progress <= 0:
            return False
        task.progress = int(task.progress) - 1
        self._notify("decrement")
        return True
