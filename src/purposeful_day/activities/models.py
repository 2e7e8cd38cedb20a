# src/purposeful_day/activities/models.py

from __future__ import annotations

"""
Activity / task value types.

Both peers serialize these with the same camelCase JSON shape, so the dict
produced by `to_dict()` on one side is what `from_dict()` reads on the other.
Timestamps are unix seconds (float).
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


def new_id() -> str:
    return str(uuid.uuid4())


class DurationType(StrEnum):
    """How a task's duration is measured."""

    TIMED = "timed"  # seconds
    COUNT = "count"  # repetitions

    @classmethod
    def parse(cls, raw: Any) -> DurationType:
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ValueError(f"unknown duration type: {raw!r}") from None


class TaskRunState(StrEnum):
    """
    Explicit per-task run state carried in snapshots.

    Older payloads do not carry it; see `infer_paused` for the fallback rule.
    """

    NOT_STARTED = "notStarted"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"

    @classmethod
    def from_wire(cls, raw: Any) -> TaskRunState | None:
        if raw is None:
            return None
        try:
            return cls(str(raw))
        except ValueError:
            return None


def format_seconds(seconds: int | float) -> str:
    """40 -> '40s', 90 -> '1m 30s', 3900 -> '1h 5m'."""
    s = max(0, int(seconds))
    if s < 60:
        return f"{s}s"
    if s < 3600:
        minutes, rest = divmod(s, 60)
        return f"{minutes}m {rest}s" if rest else f"{minutes}m"
    hours, rest = divmod(s, 3600)
    minutes = rest // 60
    return f"{hours}h {minutes}m" if minutes else f"{hours}h"


def _opt_float(raw: Any) -> float | None:
    return None if raw is None else float(raw)


@dataclass(slots=True)
class BaseTask:
    """Reusable template used to pre-fill a new ActivityTask."""

    name: str
    default_duration_type: DurationType
    default_duration: int
    id: str = field(default_factory=new_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "defaultDurationType": self.default_duration_type.value,
            "defaultDuration": int(self.default_duration),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BaseTask:
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            default_duration_type=DurationType.parse(data["defaultDurationType"]),
            default_duration=int(data["defaultDuration"]),
        )


@dataclass(slots=True)
class ActivityTask:
    """
    One step of an Activity.

    `duration` is the target (seconds for TIMED, repetitions for COUNT).
    `progress` is elapsed seconds or repetitions done; for TIMED tasks it can be
    fractional and can briefly overshoot `duration` until completion clamps it.
    """

    name: str
    duration_type: DurationType
    duration: int
    id: str = field(default_factory=new_id)
    base_task_id: str | None = None
    is_completed: bool = False
    progress: float = 0

    @classmethod
    def from_base_task(cls, base: BaseTask) -> ActivityTask:
        return cls(
            name=base.name,
            duration_type=base.default_duration_type,
            duration=base.default_duration,
            base_task_id=base.id,
        )

    @property
    def is_timed(self) -> bool:
        return self.duration_type == DurationType.TIMED

    @property
    def completion_percentage(self) -> float:
        if self.duration <= 0:
            return 0.0
        return min(float(self.progress) / float(self.duration) * 100.0, 100.0)

    def reset(self) -> None:
        self.is_completed = False
        self.progress = 0

    def formatted_duration(self) -> str:
        if self.is_timed:
            return format_seconds(self.duration)
        return f"{self.duration} reps"

    def formatted_progress(self) -> str:
        if self.is_timed:
            return format_seconds(self.progress)
        return f"{int(self.progress)}/{self.duration}"

    def to_dict(self) -> dict[str, Any]:
        progress = self.progress
        if float(progress).is_integer():
            progress = int(progress)
        return {
            "id": self.id,
            "baseTaskId": self.base_task_id,
            "name": self.name,
            "durationType": self.duration_type.value,
            "duration": int(self.duration),
            "isCompleted": bool(self.is_completed),
            "progress": progress,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActivityTask:
        progress = float(data.get("progress", 0) or 0)
        if progress < 0:
            raise ValueError("task progress must be >= 0")
        base_id = data.get("baseTaskId")
        return cls(
            id=str(data["id"]),
            base_task_id=str(base_id) if base_id is not None else None,
            name=str(data["name"]),
            duration_type=DurationType.parse(data["durationType"]),
            duration=int(data["duration"]),
            is_completed=bool(data.get("isCompleted", False)),
            progress=progress,
        )


@dataclass(slots=True)
class Activity:
    """An ordered sequence of tasks run as one session. Task order is execution order."""

    name: str
    tasks: list[ActivityTask] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    is_completed: bool = False
    created_at: float = field(default_factory=time.time)
    last_completed_at: float | None = None

    @property
    def is_runnable(self) -> bool:
        return bool(self.tasks)

    @property
    def total_duration(self) -> int:
        """Planned seconds across timed tasks only."""
        return sum(t.duration for t in self.tasks if t.is_timed)

    def formatted_total_duration(self) -> str:
        return format_seconds(self.total_duration)

    def task_count_by_type(self) -> tuple[int, int]:
        timed = sum(1 for t in self.tasks if t.is_timed)
        return timed, len(self.tasks) - timed

    def task_index(self, task_id: str) -> int | None:
        for i, t in enumerate(self.tasks):
            if t.id == task_id:
                return i
        return None

    def add_task(self, task: ActivityTask, index: int | None = None) -> None:
        if task.duration <= 0:
            raise ValueError("task duration must be positive")
        if index is None:
            self.tasks.append(task)
        else:
            self.tasks.insert(max(0, min(index, len(self.tasks))), task)
        self.is_completed = False

    def remove_task(self, index: int) -> ActivityTask:
        if not 0 <= index < len(self.tasks):
            raise IndexError(f"no task at position {index}")
        return self.tasks.pop(index)

    def move_task(self, src: int, dst: int) -> None:
        """Move the task at `src` so it ends up at position `dst`."""
        n = len(self.tasks)
        if not 0 <= src < n or not 0 <= dst < n:
            raise IndexError(f"task positions out of range: {src} -> {dst}")
        self.tasks.insert(dst, self.tasks.pop(src))

    def copy(self) -> Activity:
        return Activity.from_dict(self.to_dict())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "tasks": [t.to_dict() for t in self.tasks],
            "isCompleted": bool(self.is_completed),
            "createdAt": float(self.created_at),
            "lastCompletedAt": self.last_completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Activity:
        tasks_raw = data.get("tasks") or []
        if not isinstance(tasks_raw, list):
            raise ValueError("activity tasks must be a list")
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            tasks=[ActivityTask.from_dict(t) for t in tasks_raw],
            is_completed=bool(data.get("isCompleted", False)),
            created_at=float(data.get("createdAt") or 0.0),
            last_completed_at=_opt_float(data.get("lastCompletedAt")),
        )


@dataclass(slots=True, frozen=True)
class CompletedTask:
    """History record for one finished task: planned vs actual."""

    name: str
    duration_type: DurationType
    planned_duration: int
    actual_duration: float
    completed_at: float
    id: str = field(default_factory=new_id)

    @classmethod
    def from_task(
        cls,
        task: ActivityTask,
        *,
        actual_duration: float,
        completed_at: float | None = None,
    ) -> CompletedTask:
        return cls(
            name=task.name,
            duration_type=task.duration_type,
            planned_duration=int(task.duration),
            actual_duration=actual_duration,
            completed_at=time.time() if completed_at is None else completed_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "durationType": self.duration_type.value,
            "plannedDuration": self.planned_duration,
            "actualDuration": self.actual_duration,
            "completedAt": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CompletedTask:
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            duration_type=DurationType.parse(data["durationType"]),
            planned_duration=int(data["plannedDuration"]),
            actual_duration=float(data["actualDuration"]),
            completed_at=float(data["completedAt"]),
        )


@dataclass(slots=True, frozen=True)
class CompletedActivity:
    """History record created once, when the last task of a run finishes."""

    activity_id: str
    name: str
    completed_at: float
    tasks: tuple[CompletedTask, ...]
    id: str = field(default_factory=new_id)

    @classmethod
    def from_run(
        cls,
        activity: Activity,
        tasks: list[CompletedTask],
        *,
        completed_at: float | None = None,
    ) -> CompletedActivity:
        return cls(
            activity_id=activity.id,
            name=activity.name,
            completed_at=time.time() if completed_at is None else completed_at,
            tasks=tuple(tasks),
        )

    @property
    def total_duration(self) -> float:
        return sum(t.actual_duration for t in self.tasks)

    def formatted_total_duration(self) -> str:
        return format_seconds(self.total_duration)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "activityId": self.activity_id,
            "name": self.name,
            "completedAt": self.completed_at,
            "tasks": [t.to_dict() for t in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CompletedActivity:
        return cls(
            id=str(data["id"]),
            activity_id=str(data["activityId"]),
            name=str(data["name"]),
            completed_at=float(data["completedAt"]),
            tasks=tuple(CompletedTask.from_dict(t) for t in data.get("tasks") or []),
        )


def infer_paused(activity: Activity, task_index: int) -> bool:
    """
    Legacy pause inference shared by both peers: the active task is paused when
    it has progress and is not completed.

    A task genuinely paused at zero elapsed time is indistinguishable from one
    that has not started; snapshots that carry `taskState` avoid the question.
    """
    if task_index < 0 or task_index >= len(activity.tasks):
        return False
    task = activity.tasks[task_index]
    return task.progress > 0 and not task.is_completed


def sample_activities() -> list[Activity]:
    def timed(name: str, seconds: int) -> ActivityTask:
        return ActivityTask(name=name, duration_type=DurationType.TIMED, duration=seconds)

    def count(name: str, reps: int) -> ActivityTask:
        return ActivityTask(name=name, duration_type=DurationType.COUNT, duration=reps)

    return [
        Activity(
            name="Push-day Workout",
            tasks=[
                timed("Push Ups", 40),
                timed("Rest", 20),
                timed("Bear Crawl", 40),
                timed("Rest", 20),
                timed("Mountain Climbers", 40),
                timed("Rest", 20),
            ],
        ),
        Activity(
            name="Maximum Effort Workout",
            tasks=[
                count("Push Ups", 100),
                timed("Rest", 60),
                count("Squats", 50),
                timed("Rest", 60),
                count("Sit Ups", 30),
            ],
        ),
    ]


def sample_base_tasks() -> list[BaseTask]:
    return [
        BaseTask("Push Ups", DurationType.TIMED, 40),
        BaseTask("Rest", DurationType.TIMED, 20),
        BaseTask("Bear Crawl", DurationType.TIMED, 40),
        BaseTask("Mountain Climbers", DurationType.TIMED, 40),
        BaseTask("Squats", DurationType.COUNT, 50),
        BaseTask("Sit Ups", DurationType.COUNT, 30),
    ]
