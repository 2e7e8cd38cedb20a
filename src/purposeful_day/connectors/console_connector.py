# src/purposeful_day/connectors/console_connector.py

from __future__ import annotations

import asyncio
import io
import logging
import os
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)

PROMPT = ">>> "


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


class StdinLineReader:
    """
    Reads stdin lines on the event loop through loop.add_reader.

    Cancelling a waiting `readline()` leaves nothing behind, unlike input() in a
    worker thread, which would keep the executor (and so interpreter shutdown)
    blocked until Enter is pressed.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, fd: int) -> None:
        self._loop = loop
        self._fd = fd
        self._buf = b""
        self._lines: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False
        loop.add_reader(fd, self._on_readable)

    @classmethod
    def open(cls, stream=None) -> StdinLineReader | None:
        """None when the stream has no descriptor or the loop cannot watch it (e.g. Windows proactor)."""
        stream = sys.stdin if stream is None else stream
        try:
            fd = stream.fileno()
        except (AttributeError, ValueError, io.UnsupportedOperation):
            return None
        try:
            return cls(asyncio.get_running_loop(), fd)
        except (NotImplementedError, OSError, ValueError):
            return None

    def _on_readable(self) -> None:
        try:
            chunk = os.read(self._fd, 4096)
        except OSError:
            logger.exception("stdin read failed")
            chunk = b""
        if not chunk:
            if self._buf:
                self._lines.put_nowait(self._buf.decode("utf-8", errors="replace"))
                self._buf = b""
            self._lines.put_nowait(None)
            self.close()
            return
        self._buf += chunk
        *complete, self._buf = self._buf.split(b"\n")
        for raw in complete:
            self._lines.put_nowait(raw.decode("utf-8", errors="replace").rstrip("\r"))

    async def readline(self, prompt: str = "") -> str:
        if prompt:
            print(prompt, end="", flush=True)
        line = await self._lines.get()
        if line is None:
            self._lines.put_nowait(None)
            raise EOFError
        return line

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._loop.remove_reader(self._fd)


async def run_console_loop(state: AppState) -> None:
    """
    Interactive REPL over both peers.

    Lines come from StdinLineReader where the loop can watch stdin. Otherwise
    input() runs in a worker thread, and after Ctrl+C the process exits only
    once Enter is pressed.
    """
    logger.info("Console connector started (link=%s).", state.channel.reachable)
    reader = StdinLineReader.open()
    hint = "" if reader is not None else " (after Ctrl+C, press Enter to finish)"
    _print_ts(f"[CONSOLE] Use /help for commands, /list to see activities. Use /exit to quit{hint}.\n")

    try:
        while True:
            try:
                if reader is not None:
                    user_input = (await reader.readline(PROMPT)).strip()
                else:
                    user_input = (await asyncio.to_thread(input, PROMPT)).strip()
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            try:
                response = await command_registry.handle(state, user_input, emit=_print_ts)
            except Exception:
                logger.exception("Command handler crashed.")
                response = "Internal error while handling a command."

            if response is None:
                response = "Commands start with '/'. Use /help to list them."
            _print_ts(response)
    finally:
        if reader is not None:
            reader.close()

    logger.info("Console connector finished.")
