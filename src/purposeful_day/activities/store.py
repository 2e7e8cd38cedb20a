# src/purposeful_day/activities/store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any, TypeVar

from .models import Activity, BaseTask, CompletedActivity, sample_activities, sample_base_tasks

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ActivityStore:
    """
    SQLite store for activities, base task templates and completion history.

    Every entity is stored as its wire JSON in a `data` column keyed by id, so the
    row shape never has to follow model changes. Writes are last-write-wins.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "activities.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_activities()
        except Exception:
            total = -1
        logger.info("ActivityStore ready db=%s activities=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS activities (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    data TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS base_tasks (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    updated_at REAL NOT NULL,
                    data TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS completed_activities (
                    id TEXT PRIMARY KEY,
                    activity_id TEXT NOT NULL,
                    completed_at REAL NOT NULL,
                    data TEXT NOT NULL
                )
                """
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_completed_at ON completed_activities(completed_at)"
            )
            conn.commit()
        finally:
            conn.close()

    def _load_rows(self, sql: str, params: Iterable[Any], parse: Callable[[dict[str, Any]], T]) -> list[T]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(sql, tuple(params))
            rows = cur.fetchall()
        finally:
            conn.close()

        out: list[T] = []
        for row in rows:
            try:
                out.append(parse(json.loads(row["data"])))
            except Exception:
                logger.exception("Skipping corrupt row id=%s", row["id"])
        return out

    def _execute(self, sql: str, params: Iterable[Any]) -> None:
        conn = self._get_conn()
        try:
            conn.execute(sql, tuple(params))
            conn.commit()
        finally:
            conn.close()

    # ---- activities ----

    def count_activities(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM activities")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def load_activities(self) -> list[Activity]:
        return self._load_rows(
            "SELECT id, data FROM activities ORDER BY created_at ASC, rowid ASC",
            (),
            Activity.from_dict,
        )

    def get_activity(self, activity_id: str) -> Activity | None:
        found = self._load_rows(
            "SELECT id, data FROM activities WHERE id = ?",
            (activity_id,),
            Activity.from_dict,
        )
        return found[0] if found else None

    def save_activity(self, activity: Activity) -> None:
        if not activity.name or not activity.name.strip():
            raise ValueError("activity name is required")
        self._execute(
            """
            INSERT INTO activities(id, name, created_at, updated_at, data)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                updated_at = excluded.updated_at,
                data = excluded.data
            """,
            (
                activity.id,
                activity.name.strip(),
                float(activity.created_at),
                time.time(),
                json.dumps(activity.to_dict(), ensure_ascii=False),
            ),
        )
        logger.debug("Activity saved id=%s name=%s tasks=%d", activity.id, activity.name, len(activity.tasks))

    def delete_activity(self, activity_id: str) -> None:
        self._execute("DELETE FROM activities WHERE id = ?", (activity_id,))
        logger.debug("Activity deleted id=%s", activity_id)

    # ---- base tasks ----

    def load_base_tasks(self) -> list[BaseTask]:
        return self._load_rows(
            "SELECT id, data FROM base_tasks ORDER BY rowid ASC",
            (),
            BaseTask.from_dict,
        )

    def save_base_task(self, task: BaseTask) -> None:
        if not task.name or not task.name.strip():
            raise ValueError("base task name is required")
        self._execute(
            """
            INSERT INTO base_tasks(id, name, updated_at, data)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                updated_at = excluded.updated_at,
                data = excluded.data
            """,
            (task.id, task.name.strip(), time.time(), json.dumps(task.to_dict(), ensure_ascii=False)),
        )

    def delete_base_task(self, task_id: str) -> None:
        self._execute("DELETE FROM base_tasks WHERE id = ?", (task_id,))

    # ---- history ----

    def load_completed_activities(self) -> list[CompletedActivity]:
        return self._load_rows(
            "SELECT id, data FROM completed_activities ORDER BY completed_at ASC",
            (),
            CompletedActivity.from_dict,
        )

    def save_completed_activity(self, record: CompletedActivity) -> None:
        self._execute(
            """
            INSERT OR REPLACE INTO completed_activities(id, activity_id, completed_at, data)
            VALUES (?, ?, ?, ?)
            """,
            (
                record.id,
                record.activity_id,
                float(record.completed_at),
                json.dumps(record.to_dict(), ensure_ascii=False),
            ),
        )
        logger.info("History saved activity=%s tasks=%d", record.name, len(record.tasks))

    def delete_completed_activity(self, record_id: str) -> None:
        self._execute("DELETE FROM completed_activities WHERE id = ?", (record_id,))
        logger.debug("History record deleted id=%s", record_id)

    def completed_between(self, start_ts: float, end_ts: float) -> list[CompletedActivity]:
        return self._load_rows(
            """
            SELECT id, data FROM completed_activities
            WHERE completed_at >= ? AND completed_at <= ?
            ORDER BY completed_at ASC
            """,
            (float(start_ts), float(end_ts)),
            CompletedActivity.from_dict,
        )

    def completed_past_week(self, now_ts: float | None = None) -> list[CompletedActivity]:
        now = time.time() if now_ts is None else now_ts
        return self.completed_between(now - 7 * 24 * 3600, now)

    # ---- seeding ----

    def seed_samples_if_empty(self) -> bool:
        """Write sample activities/base tasks into an empty store. Returns True if anything was written."""
        seeded = False
        if self.count_activities() == 0:
            for activity in sample_activities():
                self.save_activity(activity)
            seeded = True
        if not self.load_base_tasks():
            for task in sample_base_tasks():
                self.save_base_task(task)
            seeded = True
        if seeded:
            logger.info("Seeded sample data into %s", self._db_path)
        return seeded
