# src/purposeful_day/sync/transport.py

from __future__ import annotations

"""
Transport channel.

`PeerLink` (core.ports) is the contract. This module holds the error types, the
tier names, and an in-process loopback link pair used by the console app and the
tests: two endpoints sharing one reachability flag.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import StrEnum

from ..core.ports import InboundHandler, ReachabilityHandler

logger = logging.getLogger(__name__)


class Tier(StrEnum):
    IMMEDIATE = "immediate"
    DURABLE = "durable"
    LATEST = "latest"


class TransportError(Exception):
    """A send on some tier failed. Callers fall back to the next tier."""


class PeerUnreachableError(TransportError):
    pass


@dataclass(slots=True)
class LinkStats:
    immediate_sent: int = 0
    immediate_failed: int = 0
    durable_enqueued: int = 0
    latest_written: int = 0
    delivered: dict[str, int] = field(default_factory=dict)


class LoopbackEndpoint:
    """
    One side of a LoopbackChannel.

    - immediate: delivered synchronously to the other side's handler while reachable
    - durable: FIFO outbox flushed whenever the channel is (or becomes) reachable
    - latest: one slot per topic, flushed with the outbox, later writes replace earlier
    """

    def __init__(self, channel: LoopbackChannel, name: str) -> None:
        self.name = name
        self.stats = LinkStats()
        self._channel = channel
        self._peer: LoopbackEndpoint | None = None
        self._outbox: deque[bytes] = deque()
        self._latest: dict[str, bytes] = {}
        self._inbound: InboundHandler | None = None
        self._reachability: ReachabilityHandler | None = None

    def __repr__(self) -> str:
        return f"LoopbackEndpoint({self.name!r})"

    # ---- PeerLink ----

    def is_reachable(self) -> bool:
        return self._channel.reachable

    async def send_immediate(self, payload: bytes) -> None:
        if not self._channel.reachable:
            self.stats.immediate_failed += 1
            raise PeerUnreachableError(f"{self.name}: peer not reachable")
        if self._channel.drop_immediate:
            self.stats.immediate_failed += 1
            raise TransportError(f"{self.name}: link dropped mid-transfer")
        self.stats.immediate_sent += 1
        self._deliver_to_peer(payload, Tier.IMMEDIATE)
        # Ack round-trip.
        await asyncio.sleep(0)

    def enqueue_durable(self, payload: bytes) -> None:
        self.stats.durable_enqueued += 1
        self._outbox.append(payload)
        if self._channel.reachable:
            self.flush()

    def update_latest(self, topic: str, payload: bytes) -> None:
        self.stats.latest_written += 1
        self._latest[topic] = payload
        if self._channel.reachable:
            self.flush()

    def set_inbound_handler(self, handler: InboundHandler | None) -> None:
        self._inbound = handler

    def set_reachability_handler(self, handler: ReachabilityHandler | None) -> None:
        self._reachability = handler

    # ---- internals ----

    @property
    def pending(self) -> int:
        return len(self._outbox) + len(self._latest)

    def flush(self) -> None:
        if not self._channel.reachable:
            return
        while self._outbox:
            self._deliver_to_peer(self._outbox.popleft(), Tier.DURABLE)
        latest, self._latest = self._latest, {}
        for payload in latest.values():
            self._deliver_to_peer(payload, Tier.LATEST)

    def _deliver_to_peer(self, payload: bytes, tier: Tier) -> None:
        peer = self._peer
        if peer is None:
            return
        self.stats.delivered[tier.value] = self.stats.delivered.get(tier.value, 0) + 1
        handler = peer._inbound
        if handler is None:
            logger.debug("%s: no inbound handler on peer; dropping %s payload", self.name, tier.value)
            return
        handler(payload, tier.value)

    def _reachability_changed(self, reachable: bool) -> None:
        handler = self._reachability
        if handler is not None:
            handler(reachable)


class LoopbackChannel:
    """Two connected endpoints in one process. `reachable` is shared by both sides."""

    def __init__(self, *, reachable: bool = True, names: tuple[str, str] = ("handheld", "wrist")) -> None:
        self.reachable = bool(reachable)
        # Fault injection: immediate sends fail while set.
        self.drop_immediate = False
        self.a = LoopbackEndpoint(self, names[0])
        self.b = LoopbackEndpoint(self, names[1])
        self.a._peer = self.b
        self.b._peer = self.a

    def set_reachable(self, reachable: bool, *, notify: bool = True) -> None:
        """
        Flip reachability. With notify=False the endpoints are not told, which is how a
        missed change notification looks to the protocol (its polling must catch it).
        """
        reachable = bool(reachable)
        if reachable == self.reachable:
            return
        self.reachable = reachable
        logger.info("Loopback link reachable=%s", reachable)
        if notify:
            self.a._reachability_changed(reachable)
            self.b._reachability_changed(reachable)
        if reachable:
            self.a.flush()
            self.b.flush()
