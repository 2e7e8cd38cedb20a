# src/purposeful_day/logging_setup.py

from __future__ import annotations

import contextvars
import logging
import sys
from pathlib import Path

# Which peer the current asyncio task works for. Peers start their tasks in a
# context where this is set, so engine/store/protocol records get tagged too.
current_peer: contextvars.ContextVar[str] = contextvars.ContextVar("current_peer", default="app")

_QUIET_PREFIXES = ("purposeful_day.runner.ticker", "purposeful_day.sync.transport")


def peer_context(name: str) -> contextvars.Context:
    """A copy of the current context with `current_peer` set, for asyncio.create_task(context=...)."""
    ctx = contextvars.copy_context()
    ctx.run(current_peer.set, name)
    return ctx


class _PeerTagFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.peer = current_peer.get()
        return True


class _ConsoleNoiseFilter(logging.Filter):
    """
    Make interactive console usable:
    - allow most purposeful_day logs
    - per-tick chatter (ticker, transport deliveries) only at WARNING+
    - Python warnings (captured as 'py.warnings') and third-party noise only at ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("purposeful_day."):
            if name.startswith(_QUIET_PREFIXES):
                return record.levelno >= logging.WARNING
            return True

        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/purposeful_day",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    tick_interval_seconds: float | None = None,
) -> Path:
    """
    Console gets a filtered, peer-tagged stream for interactive use; the file
    under `log_dir` gets everything. Returns the log file path.

    With a sub-second `tick_interval_seconds` the ticker and transport loggers are
    capped at INFO even in the file, since they would otherwise log several
    lines per tick.

    Call this ONCE, very early (before first logger.info).
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "purposeful_day.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(peer)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    tagger = _PeerTagFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(tagger)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(fmt)
    file_handler.addFilter(tagger)
    root.addHandler(file_handler)

    if tick_interval_seconds is not None and tick_interval_seconds < 1.0:
        for name in _QUIET_PREFIXES:
            logging.getLogger(name).setLevel(logging.INFO)

    logging.captureWarnings(True)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    return log_file
