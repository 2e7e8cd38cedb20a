# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from purposeful_day.activities.models import Activity, ActivityTask, DurationType
from purposeful_day.activities.store import ActivityStore

from .fakes import FakeClock, RecordingFeedback


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with bootstrap and AppState.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated from the environment and any local .env.
    """
    return SimpleNamespace(
        app_name="purposeful-day-test",
        log_level="DEBUG",
        data_dir=tmp_path,
        db_path=tmp_path / "activities.sqlite3",
        seed_samples=True,
        tick_interval_seconds=0.01,
        max_tick_step_seconds=1.0,
        countdown_seconds=0,
        default_extend_seconds=10,
        reachability_poll_seconds=0.05,
        command_retry_delay_seconds=0.05,
        console_enabled=False,
    )


@pytest.fixture()
def store(tmp_path: Path) -> ActivityStore:
    return ActivityStore(tmp_path / "activities.sqlite3")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(100.0)


@pytest.fixture()
def feedback() -> RecordingFeedback:
    return RecordingFeedback()


@pytest.fixture()
def timed_then_count() -> Activity:
    """Timed(10s) followed by Count(3): the smallest activity that exercises both task kinds."""
    return Activity(
        name="Mini",
        tasks=[
            ActivityTask(name="Plank", duration_type=DurationType.TIMED, duration=10),
            ActivityTask(name="Squats", duration_type=DurationType.COUNT, duration=3),
        ],
    )
