# tests/fakes.py

from __future__ import annotations

from dataclasses import dataclass, field

from purposeful_day.activities.models import Activity, BaseTask, CompletedActivity
from purposeful_day.core.ports import InboundHandler, ReachabilityHandler
from purposeful_day.feedback import FeedbackCue
from purposeful_day.sync.transport import PeerUnreachableError, TransportError


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@dataclass(slots=True)
class RecordingFeedback:
    cues: list[FeedbackCue] = field(default_factory=list)

    def play(self, cue: FeedbackCue) -> None:
        self.cues.append(cue)


class BrokenFeedback:
    def play(self, cue: FeedbackCue) -> None:
        raise RuntimeError("speaker on fire")


class InMemoryRepo:
    """
    ActivityRepo + HistoryRepo kept in dicts.

    Used where the test is about run/sync behaviour, not SQLite.
    """

    def __init__(self, activities: list[Activity] | None = None) -> None:
        self.activities: dict[str, Activity] = {a.id: a for a in activities or []}
        self.base_tasks: dict[str, BaseTask] = {}
        self.history: list[CompletedActivity] = []

    def load_activities(self) -> list[Activity]:
        return [a.copy() for a in self.activities.values()]

    def get_activity(self, activity_id: str) -> Activity | None:
        a = self.activities.get(activity_id)
        return None if a is None else a.copy()

    def save_activity(self, activity: Activity) -> None:
        self.activities[activity.id] = activity.copy()

    def delete_activity(self, activity_id: str) -> None:
        self.activities.pop(activity_id, None)

    def load_base_tasks(self) -> list[BaseTask]:
        return list(self.base_tasks.values())

    def save_base_task(self, task: BaseTask) -> None:
        self.base_tasks[task.id] = task

    def delete_base_task(self, task_id: str) -> None:
        self.base_tasks.pop(task_id, None)

    def save_completed_activity(self, record: CompletedActivity) -> None:
        self.history.append(record)

    def load_completed_activities(self) -> list[CompletedActivity]:
        return list(self.history)

    def delete_completed_activity(self, record_id: str) -> None:
        self.history = [r for r in self.history if r.id != record_id]


class RecordingLink:
    """
    PeerLink that records every write per tier and delivers nothing.

    `reachable` and `fail_immediate` are plain attributes flipped by tests.
    """

    def __init__(self, *, reachable: bool = True) -> None:
        self.reachable = reachable
        self.fail_immediate = False
        self.immediate: list[bytes] = []
        self.immediate_attempts = 0
        self.durable: list[bytes] = []
        self.latest: list[tuple[str, bytes]] = []
        self.inbound: InboundHandler | None = None
        self.reachability: ReachabilityHandler | None = None

    def is_reachable(self) -> bool:
        return self.reachable

    async def send_immediate(self, payload: bytes) -> None:
        self.immediate_attempts += 1
        if not self.reachable:
            raise PeerUnreachableError("unreachable")
        if self.fail_immediate:
            raise TransportError("dropped")
        self.immediate.append(payload)

    def enqueue_durable(self, payload: bytes) -> None:
        self.durable.append(payload)

    def update_latest(self, topic: str, payload: bytes) -> None:
        self.latest.append((topic, payload))

    def set_inbound_handler(self, handler: InboundHandler | None) -> None:
        self.inbound = handler

    def set_reachability_handler(self, handler: ReachabilityHandler | None) -> None:
        self.reachability = handler

    # ---- test helpers ----

    def deliver(self, payload: bytes, tier: str = "immediate") -> None:
        assert self.inbound is not None, "protocol not started"
        self.inbound(payload, tier)
