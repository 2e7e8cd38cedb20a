# src/purposeful_day/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- Every timing knob of the run engine and the sync protocol is tunable here,
  so tests and demos can shrink intervals without touching code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "PDAY"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv() -> None:
    """Load a local .env; real environment variables always win."""
    load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data (ignored by git) ----
    data_dir: Path
    db_path: Path
    seed_samples: bool

    # ---- Run engine ----
    tick_interval_seconds: float
    max_tick_step_seconds: float
    countdown_seconds: int
    default_extend_seconds: int

    # ---- Sync ----
    reachability_poll_seconds: float
    command_retry_delay_seconds: float

    # ---- Connectors ----
    console_enabled: bool

    @staticmethod
    def from_env() -> "Settings":
        _load_dotenv()

        app_name = _env(_k("APP_NAME"), "purposeful-day") or "purposeful-day"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/purposeful_day"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "activities.sqlite3")
        seed_samples = _env_bool(_k("SEED_SAMPLES"), True)

        # Non-positive timings would stall the loops; fall back to defaults.
        tick_interval = _env_float(_k("TICK_INTERVAL_SECONDS"), 0.5)
        if tick_interval <= 0:
            tick_interval = 0.5
        max_tick_step = _env_float(_k("MAX_TICK_STEP_SECONDS"), 1.0)
        if max_tick_step <= 0:
            max_tick_step = 1.0
        countdown = max(0, _env_int(_k("COUNTDOWN_SECONDS"), 3))
        default_extend = _env_int(_k("DEFAULT_EXTEND_SECONDS"), 10)
        if default_extend <= 0:
            default_extend = 10

        poll = _env_float(_k("REACHABILITY_POLL_SECONDS"), 5.0)
        if poll <= 0:
            poll = 5.0
        retry_delay = max(0.0, _env_float(_k("COMMAND_RETRY_DELAY_SECONDS"), 2.0))

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            db_path=db_path,
            seed_samples=seed_samples,
            tick_interval_seconds=tick_interval,
            max_tick_step_seconds=max_tick_step,
            countdown_seconds=countdown,
            default_extend_seconds=default_extend,
            reachability_poll_seconds=poll,
            command_retry_delay_seconds=retry_delay,
            console_enabled=console_enabled,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
