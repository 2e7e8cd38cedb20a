# src/purposeful_day/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the SQLite store, the loopback link and both peers into AppState.
"""

from __future__ import annotations

import logging
import time

from ..activities.store import ActivityStore
from ..config import get_settings
from ..core.state import AppState
from ..feedback import ConsoleFeedback
from ..peers.handheld import HandheldPeer
from ..peers.wrist import WristPeer
from ..sync.protocol import SyncProtocol
from ..sync.transport import LoopbackChannel

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def _protocol(link, settings, name: str) -> SyncProtocol:
    return SyncProtocol(
        link,
        name=name,
        retry_delay_seconds=settings.command_retry_delay_seconds,
        poll_interval_seconds=settings.reachability_poll_seconds,
    )


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings(). Peers are built but not started;
    call start_peers() from inside the event loop.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = ActivityStore(settings.db_path)
    if settings.seed_samples:
        try:
            store.seed_samples_if_empty()
        except Exception:
            logger.exception("Failed to seed sample activities.")

    feedback = ConsoleFeedback(label="handheld")
    channel = LoopbackChannel(reachable=True)

    handheld = HandheldPeer(
        _protocol(channel.a, settings, "handheld"),
        store,
        store,
        feedback=feedback,
        clock=time.monotonic,
        wall_clock=time.time,
        countdown_seconds=settings.countdown_seconds,
        max_tick_step=settings.max_tick_step_seconds,
        tick_interval_seconds=settings.tick_interval_seconds,
        default_extend_seconds=settings.default_extend_seconds,
    )
    wrist = WristPeer(
        _protocol(channel.b, settings, "wrist"),
        feedback=ConsoleFeedback(label="wrist"),
        clock=time.monotonic,
        max_tick_step=settings.max_tick_step_seconds,
        tick_interval_seconds=settings.tick_interval_seconds,
        default_extend_seconds=settings.default_extend_seconds,
    )

    return AppState(
        settings=settings,
        store=store,
        channel=channel,
        handheld=handheld,
        wrist=wrist,
        feedback=feedback,
    )


async def start_peers(state: AppState) -> None:
    await state.handheld.start()
    await state.wrist.start()


async def stop_peers(state: AppState) -> None:
    """Best-effort shutdown; one peer failing to stop must not keep the other running."""
    for peer in (state.wrist, state.handheld):
        try:
            await peer.stop()
        except Exception:
            logger.exception("Failed to stop %s", type(peer).__name__)
    state.store.close()
