# src/purposeful_day/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The run engine, sync protocol and peers depend on Protocols instead of concrete
implementations. This keeps storage/transport/feedback swappable and makes
testing easier.
"""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

Clock = Callable[[], float]
# Monotonic seconds. time.monotonic in production, a fake in tests.

InboundHandler = Callable[[bytes, str], None]
# (payload, tier name). Called by the transport, possibly from a foreign thread.

ReachabilityHandler = Callable[[bool], None]


class ActivityRepo(Protocol):
    def load_activities(self) -> list[Any]: ...
    def get_activity(self, activity_id: str) -> Any | None: ...
    def save_activity(self, activity: Any) -> None: ...
    def delete_activity(self, activity_id: str) -> None: ...

    def load_base_tasks(self) -> list[Any]: ...
    def save_base_task(self, task: Any) -> None: ...
    def delete_base_task(self, task_id: str) -> None: ...


class HistoryRepo(Protocol):
    def save_completed_activity(self, record: Any) -> None: ...
    def load_completed_activities(self) -> list[Any]: ...
    def delete_completed_activity(self, record_id: str) -> None: ...


class FeedbackPlayer(Protocol):
    """Audio/haptic cues. Fire-and-forget; implementations may raise, callers must not care."""

    def play(self, cue: Any) -> None: ...  # FeedbackCue (kept as Any to avoid import coupling)


class PeerLink(Protocol):
    """
    One endpoint of a bidirectional peer session with three delivery tiers.

    - send_immediate: low latency, only while reachable; raises TransportError on failure
    - enqueue_durable: delivered eventually, once reachable; unordered
    - update_latest: single slot per topic; a later write replaces an earlier one
    """

    def is_reachable(self) -> bool: ...

    def send_immediate(self, payload: bytes) -> Awaitable[None]: ...
    def enqueue_durable(self, payload: bytes) -> None: ...
    def update_latest(self, topic: str, payload: bytes) -> None: ...

    def set_inbound_handler(self, handler: InboundHandler | None) -> None: ...
    def set_reachability_handler(self, handler: ReachabilityHandler | None) -> None: ...
