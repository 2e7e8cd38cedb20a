# src/purposeful_day/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..activities.store import ActivityStore
from ..feedback import ConsoleFeedback
from ..peers.handheld import HandheldPeer
from ..peers.wrist import WristPeer
from ..sync.transport import LoopbackChannel


@dataclass(slots=True)
class AppState:
    """
    Global application state container.

    Holds the storage, the link between the two peers and both peers themselves.
    Connectors and slash commands receive this object and drive the peers through it.
    """

    settings: Any  # Settings (kept as Any so tests can pass a SimpleNamespace)

    store: ActivityStore
    channel: LoopbackChannel
    handheld: HandheldPeer
    wrist: WristPeer
    feedback: ConsoleFeedback
