# src/purposeful_day/sync/messages.py

from __future__ import annotations

"""
Message taxonomy and wire codec.

A wire message is one UTF-8 JSON object with exactly one taxonomy key:

    Snapshot  {"activityUpdate": {"activity": {...}, "currentTaskIndex": 0,
                                  "taskState": "running", "origin": "...", "sequence": 7}}
    List      {"activityList": [{...}, ...]}
    Command   {"pauseActivity": true, "commandId": "...", ...optional scalars}

`taskState`, `origin` and `sequence` are optional; peers that do not send them are
still understood (see sync.reconcile).

Receivers scan for the Snapshot key first, then the List key, then walk the fixed
command-name order and take the first match.
"""

import json
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ..activities.models import Activity, TaskRunState

SNAPSHOT_KEY = "activityUpdate"
LIST_KEY = "activityList"


class CommandName(StrEnum):
    START = "startActivity"
    PAUSE = "pauseActivity"
    RESUME = "resumeActivity"
    SKIP = "skipTask"
    EXTEND = "extendTime"
    REQUEST_ACTIVITY_LIST = "requestActivityList"
    NAVIGATE_TO_LIST = "navigateToList"
    ACTIVITY_COMPLETED = "activityCompleted"


# Receiver match order.
COMMAND_ORDER: tuple[CommandName, ...] = (
    CommandName.START,
    CommandName.PAUSE,
    CommandName.RESUME,
    CommandName.SKIP,
    CommandName.EXTEND,
    CommandName.REQUEST_ACTIVITY_LIST,
    CommandName.ACTIVITY_COMPLETED,
    CommandName.NAVIGATE_TO_LIST,
)

# Queries only make sense "now"; they never go to the latest-state tier.
TRANSIENT_COMMANDS = frozenset({CommandName.REQUEST_ACTIVITY_LIST})

Scalar = str | int | float | bool | None


class DecodeError(ValueError):
    """Malformed or truncated payload."""


@dataclass(slots=True, frozen=True)
class Command:
    name: CommandName
    params: dict[str, Scalar] = field(default_factory=dict)
    command_id: str | None = None

    @classmethod
    def create(cls, name: CommandName, **params: Scalar) -> Command:
        clean = {k: v for k, v in params.items() if v is not None}
        return cls(name=name, params=clean, command_id=uuid.uuid4().hex)

    def get_int(self, key: str, default: int | None = None) -> int | None:
        raw = self.params.get(key)
        if isinstance(raw, bool) or raw is None:
            return default
        try:
            return int(raw)
        except (TypeError, ValueError):
            return default

    def get_str(self, key: str) -> str | None:
        raw = self.params.get(key)
        return raw if isinstance(raw, str) and raw else None

    @property
    def topic(self) -> str:
        return self.name.value


@dataclass(slots=True, frozen=True)
class Snapshot:
    activity: Activity
    current_task_index: int
    task_state: TaskRunState | None = None
    origin: str | None = None
    sequence: int | None = None

    topic = SNAPSHOT_KEY


@dataclass(slots=True, frozen=True)
class ActivityList:
    activities: tuple[Activity, ...]

    topic = LIST_KEY


Message = Snapshot | ActivityList | Command


# ---- encode ----

def message_to_dict(message: Message) -> dict[str, Any]:
    if isinstance(message, Snapshot):
        body: dict[str, Any] = {
            "activity": message.activity.to_dict(),
            "currentTaskIndex": int(message.current_task_index),
        }
        if message.task_state is not None:
            body["taskState"] = message.task_state.value
        if message.origin is not None:
            body["origin"] = message.origin
        if message.sequence is not None:
            body["sequence"] = int(message.sequence)
        return {SNAPSHOT_KEY: body}

    if isinstance(message, ActivityList):
        return {LIST_KEY: [a.to_dict() for a in message.activities]}

    out: dict[str, Any] = {message.name.value: True}
    for key, value in message.params.items():
        if key in out:
            continue
        out[key] = value
    if message.command_id:
        out["commandId"] = message.command_id
    return out


def encode_message(message: Message) -> bytes:
    return json.dumps(message_to_dict(message), ensure_ascii=False, separators=(",", ":")).encode("utf-8")


# ---- decode ----

def _decode_snapshot(body: Any) -> Snapshot:
    if not isinstance(body, dict):
        raise DecodeError("snapshot body must be an object")
    try:
        activity = Activity.from_dict(body["activity"])
        index = body["currentTaskIndex"]
        if isinstance(index, bool) or not isinstance(index, int) or index < 0:
            raise DecodeError("currentTaskIndex must be a non-negative int")
        sequence = body.get("sequence")
        if sequence is not None and (isinstance(sequence, bool) or not isinstance(sequence, int)):
            raise DecodeError("sequence must be an int")
        origin = body.get("origin")
        return Snapshot(
            activity=activity,
            current_task_index=index,
            task_state=TaskRunState.from_wire(body.get("taskState")),
            origin=str(origin) if origin is not None else None,
            sequence=sequence,
        )
    except DecodeError:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"bad snapshot: {e!r}") from e


def _decode_list(body: Any) -> ActivityList:
    if not isinstance(body, list):
        raise DecodeError("activity list must be an array")
    try:
        return ActivityList(activities=tuple(Activity.from_dict(a) for a in body))
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"bad activity list: {e!r}") from e


def _decode_command(data: dict[str, Any]) -> Command:
    for name in COMMAND_ORDER:
        if data.get(name.value) is None:
            continue
        params: dict[str, Scalar] = {}
        for key, value in data.items():
            if key == name.value or key == "commandId":
                continue
            if isinstance(value, (str, int, float, bool)) or value is None:
                params[key] = value
        command_id = data.get("commandId")
        return Command(
            name=name,
            params=params,
            command_id=str(command_id) if command_id is not None else None,
        )
    raise DecodeError(f"no known taxonomy key in {sorted(data)!r}")


def message_from_dict(data: Any) -> Message:
    if not isinstance(data, dict):
        raise DecodeError("message must be a JSON object")
    if SNAPSHOT_KEY in data:
        return _decode_snapshot(data[SNAPSHOT_KEY])
    if LIST_KEY in data:
        return _decode_list(data[LIST_KEY])
    return _decode_command(data)


def decode_message(payload: bytes | str) -> Message:
    """Strict decode; raises DecodeError."""
    try:
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        data = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"not JSON: {e}") from e
    return message_from_dict(data)
