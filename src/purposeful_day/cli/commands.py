# src/purposeful_day/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import cast

from ..activities.models import Activity, ActivityTask, DurationType, format_seconds
from ..core.state import AppState
from ..runner.engine import RunState
from ..sync.transport import LinkStats

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], Awaitable[str]]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /start, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except Exception:
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return await h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return await h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _ts_local(ts: float) -> str:
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M")


def _parse_int(raw: str) -> int | None:
    try:
        return int(raw)
    except ValueError:
        return None


def _resolve_activity(activities: list[Activity], ref: str) -> Activity | None:
    """`ref` is a 1-based position in the list or an id prefix."""
    n = _parse_int(ref)
    if n is not None and 1 <= n <= len(activities):
        return activities[n - 1]
    matches = [a for a in activities if a.id.startswith(ref)]
    return matches[0] if len(matches) == 1 else None


def _ok(applied: bool, done: str) -> str:
    return done if applied else "Not applicable in the current state."


async def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


async def cmd_status(state: AppState, args: list[str]) -> str:
    link = "UP" if state.channel.reachable else "DOWN"
    engine = state.handheld.engine
    lines = ["Status:", f"  Link: {link}"]

    if engine is None:
        lines.append("  Handheld: idle (no activity loaded)")
    else:
        task = engine.current_task
        line = f"  Handheld: {engine.activity.name} [{engine.state.value}]"
        if engine.state == RunState.COUNTDOWN:
            line += f" starting in {engine.countdown_value}"
        elif task is not None and engine.is_active:
            line += f" task {engine.current_task_index + 1}/{len(engine.activity.tasks)} {task.name}"
            if task.is_timed:
                line += f" {engine.formatted_time_remaining()} left"
            else:
                line += f" {int(task.progress)}/{task.duration} reps"
            nxt = engine.next_task
            if nxt is not None:
                line += f" (next: {nxt.name})"
        lines.append(line)

    mirror = state.wrist.mirror
    if mirror.activity is None:
        lines.append("  Wrist: waiting")
    elif mirror.completed:
        lines.append(f"  Wrist: {mirror.activity.name} completed")
    elif mirror.active:
        task = mirror.activity.tasks[mirror.current_task_index]
        flag = " (paused)" if mirror.paused else ""
        left = format_seconds(state.wrist.time_remaining) if task.is_timed else f"{task.duration} reps"
        lines.append(f"  Wrist: {task.name} {left}{flag}")
    else:
        lines.append(f"  Wrist: {mirror.activity.name} (not started)")
    lines.append(f"  Wrist activities: {len(state.wrist.activities)}")
    lines.append(f"  Handheld link: {_format_stats(state.channel.a.stats)}")
    lines.append(f"  Wrist link: {_format_stats(state.channel.b.stats)}")
    return "\n".join(lines)


def _format_stats(stats: LinkStats) -> str:
    received = ", ".join(f"{tier}={n}" for tier, n in sorted(stats.delivered.items())) or "none"
    return (
        f"sent immediate={stats.immediate_sent} (failed {stats.immediate_failed}), "
        f"durable={stats.durable_enqueued}, latest={stats.latest_written}; delivered {received}"
    )


async def cmd_list(state: AppState, args: list[str]) -> str:
    activities = state.store.load_activities()
    if not activities:
        return "No activities."
    lines = ["Activities:"]
    for i, a in enumerate(activities, start=1):
        timed, count = a.task_count_by_type()
        done = " [done]" if a.is_completed else ""
        lines.append(
            f"  {i}. {a.name} ({a.id[:8]}) - {len(a.tasks)} tasks, "
            f"{timed} timed / {count} count, {a.formatted_total_duration()}{done}"
        )
    return "\n".join(lines)


async def cmd_new(state: AppState, args: list[str]) -> str:
    name = " ".join(args).strip()
    if not name:
        return "Usage: /new <name>"
    activity = Activity(name=name)
    await state.handheld.save_activity(activity)
    return f"Created {activity.name} ({activity.id[:8]}). Add tasks with /addtask."


async def cmd_delete(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /delete <number|id>"
    activity = _resolve_activity(state.store.load_activities(), args[0])
    if activity is None:
        return f"No such activity: {args[0]}"
    if not await state.handheld.delete_activity(activity.id):
        return f"{activity.name} is running; abort it first."
    return f"Deleted {activity.name}."


async def cmd_basetasks(state: AppState, args: list[str]) -> str:
    bases = state.store.load_base_tasks()
    if not bases:
        return "No base tasks."
    lines = ["Base tasks:"]
    for i, b in enumerate(bases, start=1):
        if b.default_duration_type == DurationType.TIMED:
            unit = format_seconds(b.default_duration)
        else:
            unit = f"{b.default_duration} reps"
        lines.append(f"  {i}. {b.name} ({b.default_duration_type.value}, {unit})")
    return "\n".join(lines)


def _task_from_args(state: AppState, args: list[str]) -> ActivityTask | None:
    """`timed <seconds> <name>` | `count <reps> <name>` | `base <number>`."""
    kind = args[0].lower()
    if kind == "base" and len(args) == 2:
        bases = state.store.load_base_tasks()
        n = _parse_int(args[1])
        if n is None or not 1 <= n <= len(bases):
            return None
        return ActivityTask.from_base_task(bases[n - 1])
    if kind in (DurationType.TIMED, DurationType.COUNT) and len(args) >= 3:
        amount = _parse_int(args[1])
        name = " ".join(args[2:]).strip()
        if amount is None or amount <= 0 or not name:
            return None
        return ActivityTask(name, DurationType(kind), amount)
    return None


async def _edit_activity(
    state: AppState,
    ref: str,
    edit: Callable[[Activity], None],
    done: Callable[[Activity], str],
) -> str:
    activity = _resolve_activity(state.store.load_activities(), ref)
    if activity is None:
        return f"No such activity: {ref}"
    try:
        edit(activity)
    except (IndexError, ValueError) as e:
        return f"Cannot change {activity.name}: {e}"
    if not await state.handheld.save_activity(activity):
        return f"{activity.name} is running; abort it first."
    return done(activity)


async def cmd_addtask(state: AppState, args: list[str]) -> str:
    usage = "Usage: /addtask <activity> timed <seconds> <name> | count <reps> <name> | base <number>"
    if len(args) < 2:
        return usage
    task = _task_from_args(state, args[1:])
    if task is None:
        return usage
    return await _edit_activity(
        state,
        args[0],
        lambda a: a.add_task(task),
        lambda a: f"Added {task.name} to {a.name}.",
    )


async def cmd_rmtask(state: AppState, args: list[str]) -> str:
    pos = _parse_int(args[1]) if len(args) == 2 else None
    if pos is None:
        return "Usage: /rmtask <activity> <task number>"
    return await _edit_activity(
        state,
        args[0],
        lambda a: a.remove_task(pos - 1),
        lambda a: f"Removed task from {a.name}.",
    )


async def cmd_movetask(state: AppState, args: list[str]) -> str:
    src = _parse_int(args[1]) if len(args) == 3 else None
    dst = _parse_int(args[2]) if len(args) == 3 else None
    if src is None or dst is None:
        return "Usage: /movetask <activity> <from> <to>"
    return await _edit_activity(
        state,
        args[0],
        lambda a: a.move_task(src - 1, dst - 1),
        lambda a: f"Reordered {a.name}.",
    )


async def cmd_tasks(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /tasks <activity>"
    activity = _resolve_activity(state.store.load_activities(), args[0])
    if activity is None:
        return f"No such activity: {args[0]}"
    if not activity.tasks:
        return f"{activity.name} has no tasks."
    lines = [f"{activity.name}:"]
    for i, t in enumerate(activity.tasks, start=1):
        lines.append(f"  {i}. {t.name} ({t.formatted_duration()})")
    return "\n".join(lines)


async def cmd_start(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /start <number|id>"
    activity = _resolve_activity(state.store.load_activities(), args[0])
    if activity is None:
        return f"No such activity: {args[0]}"
    ok = await state.handheld.start_activity(activity.id)
    return _ok(ok, f"Starting {activity.name}.")


async def cmd_pause(state: AppState, args: list[str]) -> str:
    return _ok(await state.handheld.pause(), "Paused.")


async def cmd_resume(state: AppState, args: list[str]) -> str:
    return _ok(await state.handheld.resume(), "Resumed.")


async def cmd_skip(state: AppState, args: list[str]) -> str:
    return _ok(await state.handheld.skip(), "Task completed.")


async def cmd_extend(state: AppState, args: list[str]) -> str:
    seconds = _parse_int(args[0]) if args else None
    if args and (seconds is None or seconds <= 0):
        return "Usage: /extend [seconds]"
    return _ok(await state.handheld.extend(seconds), "Extended.")


async def cmd_inc(state: AppState, args: list[str]) -> str:
    return _ok(await state.handheld.increment(), "+1")


async def cmd_dec(state: AppState, args: list[str]) -> str:
    return _ok(await state.handheld.decrement(), "-1")


async def cmd_abort(state: AppState, args: list[str]) -> str:
    return _ok(await state.handheld.abort(), "Run aborted.")


async def cmd_wrist(state: AppState, args: list[str]) -> str:
    """
    /wrist start <n|id>  -> ask the handheld to start an activity
    /wrist pause|resume|skip|back
    /wrist extend [s]
    /wrist list          -> show the mirrored activity list (or request it)
    """
    if not args:
        return "Usage: /wrist start <n|id> | pause | resume | skip | extend [s] | list | back"

    wrist = state.wrist
    sub = args[0].lower()

    if sub == "start":
        if len(args) < 2:
            return "Usage: /wrist start <number|id>"
        activity = _resolve_activity(wrist.activities, args[1])
        if activity is None:
            return f"Wrist does not know activity {args[1]}. Try /wrist list."
        tier = await wrist.start_activity(activity.id)
        return f"Wrist sent start for {activity.name} via {tier}."
    if sub == "pause":
        return f"Wrist sent pause via {await wrist.pause()}."
    if sub == "resume":
        return f"Wrist sent resume via {await wrist.resume()}."
    if sub == "skip":
        return f"Wrist sent skip via {await wrist.skip()}."
    if sub == "extend":
        seconds = _parse_int(args[1]) if len(args) > 1 else None
        return f"Wrist sent extend via {await wrist.extend(seconds)}."
    if sub in ("back", "nav"):
        await wrist.navigate_to_list()
        return "Wrist navigated back to the list."
    if sub == "list":
        if not wrist.activities:
            tier = await wrist.request_activity_list()
            return f"Wrist has no list yet; requested via {tier}."
        lines = ["Wrist activities:"]
        for i, a in enumerate(wrist.activities, start=1):
            lines.append(f"  {i}. {a.name} ({len(a.tasks)} tasks)")
        return "\n".join(lines)

    return f"Unknown /wrist subcommand: {sub}"


async def cmd_link(state: AppState, args: list[str]) -> str:
    """
    /link on|off        -> flip reachability and notify both sides
    /link off quiet     -> flip without notifying (polling has to notice)
    """
    if not args:
        return f"Link is {'UP' if state.channel.reachable else 'DOWN'}. Use /link on or /link off."
    arg = args[0].lower()
    quiet = len(args) > 1 and args[1].lower() == "quiet"
    if arg in ("on", "up", "1"):
        state.channel.set_reachable(True, notify=not quiet)
        return "Link UP."
    if arg in ("off", "down", "0"):
        state.channel.set_reachable(False, notify=not quiet)
        return "Link DOWN."
    return "Usage: /link on | /link off [quiet]"


async def cmd_history(state: AppState, args: list[str]) -> str:
    """
    /history        -> all completed activities
    /history week   -> the last seven days only
    """
    if args and args[0].lower() == "week":
        records = state.store.completed_past_week()
    else:
        records = state.store.load_completed_activities()
    if not records:
        return "No completed activities yet."
    lines = ["History:"]
    for r in records:
        lines.append(f"  {_ts_local(r.completed_at)} {r.name} - {r.formatted_total_duration()}")
        for t in r.tasks:
            unit = "s" if t.duration_type == DurationType.TIMED else " reps"
            lines.append(f"      {t.name}: {t.actual_duration:g}{unit} of {t.planned_duration}{unit}")
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show run, mirror and link status.", aliases=["s"])
registry.register("list", cmd_list, help_text="List stored activities.", aliases=["ls"])
registry.register("start", cmd_start, help_text="Start an activity: /start <number|id>.")
registry.register("pause", cmd_pause, help_text="Pause the running task.")
registry.register("resume", cmd_resume, help_text="Resume a paused task.")
registry.register("skip", cmd_skip, help_text="Complete the current task now.", aliases=["next"])
registry.register("extend", cmd_extend, help_text="Add time to the current timed task: /extend [seconds].")
registry.register("inc", cmd_inc, help_text="Count task: one more repetition.", aliases=["+"])
registry.register("dec", cmd_dec, help_text="Count task: one repetition fewer.", aliases=["-"])
registry.register("abort", cmd_abort, help_text="Abandon the current run.")
registry.register(
    "wrist", cmd_wrist, help_text="Act from the wrist side: /wrist start|pause|resume|skip|extend|list|back."
)
registry.register("link", cmd_link, help_text="Toggle peer reachability: /link on | /link off [quiet].")
registry.register("history", cmd_history, help_text="Completed activities: /history [week].")
registry.register("new", cmd_new, help_text="Create an empty activity: /new <name>.")
registry.register("delete", cmd_delete, help_text="Delete an activity: /delete <number|id>.", aliases=["rm"])
registry.register("tasks", cmd_tasks, help_text="Show an activity's tasks: /tasks <activity>.")
registry.register("basetasks", cmd_basetasks, help_text="List task templates for /addtask ... base <n>.")
registry.register(
    "addtask",
    cmd_addtask,
    help_text="Append a task: /addtask <activity> timed <s> <name> | count <reps> <name> | base <n>.",
)
registry.register("rmtask", cmd_rmtask, help_text="Remove a task: /rmtask <activity> <task number>.")
registry.register("movetask", cmd_movetask, help_text="Reorder tasks: /movetask <activity> <from> <to>.")
