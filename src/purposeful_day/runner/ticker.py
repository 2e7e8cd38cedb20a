# src/purposeful_day/runner/ticker.py

from __future__ import annotations

"""
Periodic tick source.

A small loop that calls a tick function every interval_seconds on the event loop
that owns the run state. No threads: the tick, inbound messages and user input are
all processed on the same loop, so state is never touched concurrently.
"""

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


async def run_ticker(
        tick: Callable[[], object],
        *,
        interval_seconds: float = 0.5,
        name: str = "ticker",
) -> None:
    """
    Call `tick()` every interval_seconds until cancelled.

    A failing tick is logged and the loop keeps going; the next tick re-reads the
    clock so nothing is lost beyond the engine's per-tick clamp.

    To stop the ticker, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))
    logger.debug("%s started interval=%.2fs", name, sleep_s)

    while True:
        try:
            tick()
        except Exception:
            logger.exception("%s tick failed", name)
        await asyncio.sleep(sleep_s)
