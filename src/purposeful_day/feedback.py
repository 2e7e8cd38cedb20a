# src/purposeful_day/feedback.py

from __future__ import annotations

import logging
import sys
from enum import StrEnum

from .core.ports import FeedbackPlayer

logger = logging.getLogger(__name__)


class FeedbackCue(StrEnum):
    TASK_START = "task_start"
    TASK_COMPLETE = "task_complete"
    ACTIVITY_COMPLETE = "activity_complete"
    COUNTDOWN = "countdown"
    CLICK = "click"


class ConsoleFeedback:
    """
    Feedback player for terminals: logs each cue, optionally rings the bell.

    Stands in for the sound/haptic layer of a real device.
    """

    def __init__(self, *, enabled: bool = True, bell: bool = False, label: str = "") -> None:
        self.enabled = bool(enabled)
        self.bell = bool(bell)
        self.label = label

    def play(self, cue: FeedbackCue) -> None:
        if not self.enabled:
            return
        logger.info("%s cue=%s", self.label or "feedback", cue.value)
        if self.bell and cue != FeedbackCue.CLICK:
            sys.stderr.write("\a")
            sys.stderr.flush()


def play_safely(player: FeedbackPlayer | None, cue: FeedbackCue) -> None:
    """Feedback must never affect run or sync state: swallow and log any failure."""
    if player is None:
        return
    try:
        player.play(cue)
    except Exception:
        logger.debug("Feedback cue %s failed.", cue, exc_info=True)
