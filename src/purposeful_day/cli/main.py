# src/purposeful_day/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, starts both peers on one event loop, then
runs the console REPL (optional) until it exits or a signal arrives.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from ..cli.bootstrap import create_initial_state, start_peers, stop_peers
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def _run(state: AppState) -> None:
    await start_peers(state)

    stop_main = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows event loops).
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop_main.set)

    try:
        if state.settings.console_enabled:
            console = asyncio.create_task(run_console_loop(state), name="console")
            stopper = asyncio.create_task(stop_main.wait(), name="signals")
            done, pending = await asyncio.wait({console, stopper}, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
        else:
            logger.info("Console disabled. Peers are running. Press Ctrl+C to stop.")
            await stop_main.wait()
    finally:
        await stop_peers(state)


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    setup_logging(
        log_dir=settings.data_dir,
        console_level=console_level,
        tick_interval_seconds=settings.tick_interval_seconds,
    )

    logger.info("Starting %s...", settings.app_name)

    state = create_initial_state(settings=settings)

    try:
        asyncio.run(_run(state))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        logger.info("Bye.")


if __name__ == "__main__":
    main()
