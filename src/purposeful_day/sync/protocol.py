# src/purposeful_day/sync/protocol.py

from __future__ import annotations

"""
Synchronization protocol: sender-side tiered delivery and the inbound event stream.

Sender policy:
- Command: immediate tier when reachable. On failure, or when unreachable, the
  command goes to the durable queue and (unless it is a transient query) to the
  latest-state slot. When unreachable at send time a single durable retry is
  scheduled after retry_delay_seconds, if the peer is still unreachable then.
- Snapshot / List (full state): immediate tier when reachable, otherwise the
  latest-state slot. Older full states are worthless once a newer one exists, so
  they never build a durable backlog.

Inbound: every payload from any tier is decoded on the protocol's event loop and
published as one SyncEvent on a single-consumer stream. Payloads that fail to
decode are dropped; recovery is the sender's fallback tiers.
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from ..activities.models import Activity
from ..core.ports import PeerLink
from ..logging_setup import peer_context
from .messages import (
    LIST_KEY,
    SNAPSHOT_KEY,
    TRANSIENT_COMMANDS,
    ActivityList,
    Command,
    DecodeError,
    Snapshot,
    decode_message,
    encode_message,
)
from .transport import Tier, TransportError

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY_SECONDS = 2.0
DEFAULT_POLL_INTERVAL_SECONDS = 5.0


@dataclass(slots=True, frozen=True)
class SnapshotReceived:
    snapshot: Snapshot
    tier: str


@dataclass(slots=True, frozen=True)
class CommandReceived:
    command: Command
    tier: str


@dataclass(slots=True, frozen=True)
class ActivityListReceived:
    activities: tuple[Activity, ...]
    tier: str


@dataclass(slots=True, frozen=True)
class ReachabilityChanged:
    reachable: bool


SyncEvent = SnapshotReceived | CommandReceived | ActivityListReceived | ReachabilityChanged

_CLOSED = object()


class EventStream:
    """Async iterator over inbound SyncEvents. Only one may be open per protocol."""

    def __init__(self, protocol: SyncProtocol) -> None:
        self._protocol = protocol
        self._closed = False

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> SyncEvent:
        if self._closed:
            raise StopAsyncIteration
        item = await self._protocol._queue.get()
        if item is _CLOSED:
            self._closed = True
            raise StopAsyncIteration
        return item

    def drain(self) -> list[SyncEvent]:
        """Return whatever is queued right now without waiting."""
        out: list[SyncEvent] = []
        queue = self._protocol._queue
        while not queue.empty():
            item = queue.get_nowait()
            if item is _CLOSED:
                self._closed = True
                break
            out.append(item)
        return out

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._protocol._release(self)


class SyncProtocol:
    def __init__(
            self,
            link: PeerLink,
            *,
            name: str = "peer",
            retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
            poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self.name = name
        self._link = link
        self._retry_delay = max(0.0, float(retry_delay_seconds))
        self._poll_interval = max(0.05, float(poll_interval_seconds))

        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._stream: EventStream | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._retries: set[asyncio.TimerHandle] = set()
        self._reachable = False

    # ---- lifecycle ----

    @property
    def reachable(self) -> bool:
        return self._reachable

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._reachable = bool(self._link.is_reachable())
        self._link.set_inbound_handler(self._on_inbound)
        self._link.set_reachability_handler(self._on_reachability)
        self._poll_task = asyncio.create_task(
            self._poll_reachability(),
            name=f"{self.name}-reachability",
            context=peer_context(self.name),
        )
        logger.info("%s sync started reachable=%s", self.name, self._reachable)

    async def close(self) -> None:
        self._link.set_inbound_handler(None)
        self._link.set_reachability_handler(None)
        for handle in list(self._retries):
            handle.cancel()
        self._retries.clear()
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        self._queue.put_nowait(_CLOSED)

    def events(self) -> EventStream:
        """Claim the inbound stream. A second live consumer is a wiring bug."""
        if self._stream is not None:
            raise RuntimeError(f"{self.name}: inbound event stream already claimed")
        self._stream = EventStream(self)
        return self._stream

    def _release(self, stream: EventStream) -> None:
        if self._stream is stream:
            self._stream = None

    # ---- send ----

    async def send_command(self, command: Command) -> Tier:
        payload = encode_message(command)

        if self._link.is_reachable():
            try:
                await self._link.send_immediate(payload)
                logger.debug("%s -> %s via immediate", self.name, command.name.value)
                return Tier.IMMEDIATE
            except TransportError as e:
                logger.warning("%s: immediate send of %s failed: %s", self.name, command.name.value, e)
            self._fallback_command(command, payload)
            return Tier.DURABLE

        logger.info("%s: peer not reachable, queueing %s", self.name, command.name.value)
        self._fallback_command(command, payload)
        self._schedule_retry(command, payload)
        return Tier.DURABLE

    def _fallback_command(self, command: Command, payload: bytes) -> None:
        self._enqueue_durable(payload, command.name.value)
        if command.name not in TRANSIENT_COMMANDS:
            self._update_latest(command.topic, payload)

    def _schedule_retry(self, command: Command, payload: bytes) -> None:
        loop = self._loop or asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def _retry() -> None:
            if handle is not None:
                self._retries.discard(handle)
            if self._link.is_reachable():
                return
            logger.info("%s: peer still not reachable, retrying %s", self.name, command.name.value)
            self._enqueue_durable(payload, command.name.value)

        handle = loop.call_later(self._retry_delay, _retry, context=peer_context(self.name))
        self._retries.add(handle)

    async def send_snapshot(self, snapshot: Snapshot) -> Tier:
        return await self._send_state(encode_message(snapshot), SNAPSHOT_KEY)

    async def send_activity_list(self, activities: Sequence[Activity]) -> Tier:
        return await self._send_state(encode_message(ActivityList(activities=tuple(activities))), LIST_KEY)

    async def _send_state(self, payload: bytes, topic: str) -> Tier:
        if self._link.is_reachable():
            try:
                await self._link.send_immediate(payload)
                return Tier.IMMEDIATE
            except TransportError as e:
                logger.warning("%s: immediate send of %s failed: %s", self.name, topic, e)
        self._update_latest(topic, payload)
        return Tier.LATEST

    def _enqueue_durable(self, payload: bytes, label: str) -> None:
        try:
            self._link.enqueue_durable(payload)
        except Exception:
            logger.warning("%s: durable enqueue of %s failed", self.name, label, exc_info=True)

    def _update_latest(self, topic: str, payload: bytes) -> None:
        try:
            self._link.update_latest(topic, payload)
        except Exception:
            logger.warning("%s: latest-state update of %s failed", self.name, topic, exc_info=True)

    # ---- inbound ----

    def _call_on_loop(self, fn, *args) -> None:
        loop = self._loop
        if loop is None:
            fn(*args)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            fn(*args)
        else:
            loop.call_soon_threadsafe(fn, *args)

    def _on_inbound(self, payload: bytes, tier: str) -> None:
        self._call_on_loop(self._process_inbound, payload, tier)

    def _process_inbound(self, payload: bytes, tier: str) -> None:
        try:
            message = decode_message(payload)
        except DecodeError as e:
            logger.debug("%s: dropping undecodable %s payload: %s", self.name, tier, e)
            return

        if isinstance(message, Snapshot):
            event: SyncEvent = SnapshotReceived(snapshot=message, tier=tier)
        elif isinstance(message, ActivityList):
            event = ActivityListReceived(activities=message.activities, tier=tier)
        else:
            event = CommandReceived(command=message, tier=tier)
        self._queue.put_nowait(event)

    def _on_reachability(self, reachable: bool) -> None:
        self._call_on_loop(self._set_reachable, bool(reachable))

    def _set_reachable(self, reachable: bool) -> None:
        if reachable == self._reachable:
            return
        self._reachable = reachable
        logger.info("%s: peer reachable=%s", self.name, reachable)
        self._queue.put_nowait(ReachabilityChanged(reachable=reachable))

    async def _poll_reachability(self) -> None:
        """
        Fallback for missed reachability notifications: every poll interval compare
        the link's answer with the last known value.
        """
        while True:
            await asyncio.sleep(self._poll_interval)
            try:
                actual = bool(self._link.is_reachable())
            except Exception:
                logger.exception("%s: reachability check failed", self.name)
                continue
            if actual != self._reachable:
                logger.info("%s: reachability change found by polling", self.name)
                self._set_reachable(actual)
