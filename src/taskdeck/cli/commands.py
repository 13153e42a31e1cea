# src/taskdeck/cli/commands.py

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime

from ..core.errors import InvalidTransition, UnknownTask
from ..core.state import AppState
from ..tasks import task_api
from ..tasks.task_models import Task, ViewFilter

CommandHandler = Callable[[AppState, list[str]], str]

logger = logging.getLogger(__name__)

_VIEW_ALIASES: dict[str, ViewFilter] = {
    "all": ViewFilter.ALL,
    "today": ViewFilter.TODAY_ACTIVE,
    "done": ViewFilter.TODAY_COMPLETED,
    "completed": ViewFilter.TODAY_COMPLETED,
    "upcoming": ViewFilter.UPCOMING,
}

_LINK_RE = re.compile(r"\[([^\]]*)\]\(([^)]*)\)")


class CommandRegistry:
    """Simple slash-command registry used by the console connector (/help, /list, ...)."""

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

    def handle(self, state: AppState, line: str) -> str | None:
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
            return handler(state, args)
        except UnknownTask as e:
            return f"{e}. Use /list to refresh."
        except InvalidTransition as e:
            return f"Not possible right now: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _ts_local(ts: float | None) -> str:
    if ts is None:
        return "never"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def plain_text(text: str) -> str:
    """Strip common markdown markers and turn [label](url) into 'label (url)'."""
    cleaned = _LINK_RE.sub(r"\1 (\2)", text)
    for marker in ("**", "*", "_"):
        cleaned = cleaned.replace(marker, "")
    return cleaned


def format_task(index: int, task: Task) -> str:
    mark = "✓" if task.completed else " "
    line = f"{index:>3}. [{mark}] {plain_text(task.title)}"
    desc = plain_text(task.short_description())
    if desc:
        line += f" - {desc}"
    if task.sync_failed:
        line += "  !sync"
    return line


def _pick(state: AppState, args: list[str], usage: str) -> Task:
    if not args or not args[0].isdigit():
        raise ValueError(usage)
    n = int(args[0])
    if n < 1 or n > len(state.last_view):
        raise ValueError(f"No task #{n} in the last list. Use /list first.")
    return state.last_view[n - 1]


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_list(state: AppState, args: list[str]) -> str:
    view = ViewFilter.ALL
    if args and args[0].lower() in _VIEW_ALIASES:
        view = _VIEW_ALIASES[args[0].lower()]
        args = args[1:]
    query = " ".join(args) or None

    tasks = list(state.store.snapshot_for_view(view, query=query))
    state.last_view = tasks
    if not tasks:
        return f"No tasks ({view.value})."
    lines = [f"{view.value} ({len(tasks)}):"]
    lines.extend(format_task(i, t) for i, t in enumerate(tasks, start=1))
    return "\n".join(lines)


def _set(state: AppState, args: list[str], completed: bool | None, usage: str) -> str:
    try:
        task = _pick(state, args, usage)
    except ValueError as e:
        return str(e)
    if completed is None:
        updated, _ = task_api.toggle_completed(state, task.id)
    else:
        updated, _ = task_api.set_completed(state, task.id, completed)
    verb = "completed" if updated.completed else "reopened"
    return f'Task "{plain_text(updated.title)}" {verb}.'


def cmd_done(state: AppState, args: list[str]) -> str:
    return _set(state, args, True, "Usage: /done N")


def cmd_undo(state: AppState, args: list[str]) -> str:
    return _set(state, args, False, "Usage: /undo N")


def cmd_toggle(state: AppState, args: list[str]) -> str:
    return _set(state, args, None, "Usage: /toggle N")


def cmd_move(state: AppState, args: list[str]) -> str:
    usage = "Usage: /move N POS (POS is 1-based in the full list)"
    try:
        task = _pick(state, args, usage)
    except ValueError as e:
        return str(e)
    if len(args) < 2 or not args[1].isdigit() or int(args[1]) < 1:
        return usage
    moved = task_api.move_task(state, task.id, int(args[1]) - 1)
    return f'Task "{plain_text(moved.title)}" moved to position {args[1]}.'


def cmd_sync(state: AppState, args: list[str]) -> str:
    if state.engine is None:
        return "Sync is not running."
    state.engine.request_pull()
    return "Sync requested."


def cmd_status(state: AppState, args: list[str]) -> str:
    engine = state.engine
    live = state.action_log.live()
    status = engine.status.value if engine is not None else "disabled"
    lines = [
        "Status:",
        f"  sync: {status}",
        f"  tasks: {state.store.count()}",
        f"  pending actions: {len(live)}",
        f"  failures: {len(state.action_log.failures())}",
    ]
    if engine is not None:
        lines.append(f"  last pull: {_ts_local(engine.last_pull_at)}")
        if engine.last_error:
            lines.append(f"  last error: {engine.last_error}")
    return "\n".join(lines)


def cmd_failures(state: AppState, args: list[str]) -> str:
    exhausted = state.action_log.failures()
    with state.lock:
        surfaced = list(state.failures)
    if not exhausted and not surfaced:
        return "No sync failures."

    lines: list[str] = []
    if exhausted:
        lines.append("Waiting for /retry:")
        for a in exhausted:
            task = state.store.get(a.task_id)
            title = plain_text(task.title) if task else a.task_id
            lines.append(f"  {a.action_id[:8]} {a.kind.value} \"{title}\" ({a.last_error})")
    rejected = [f for f in surfaced if not f.retryable]
    if rejected:
        lines.append("Rejected by the server:")
        for f in rejected:
            lines.append(f"  {f.action_id[:8]} {f.kind.value} {f.task_id} ({f.reason}) at {_ts_local(f.at)}")
    return "\n".join(lines) if lines else "No sync failures."


def cmd_retry(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /retry ACTION_ID (prefix from /failures)"
    prefix = args[0].lower()
    matches = [a for a in state.action_log.failures() if a.action_id.startswith(prefix)]
    if not matches:
        return f"No failed action matches {prefix}."
    if len(matches) > 1:
        return f"Ambiguous prefix {prefix}; use more characters."
    action = task_api.retry_failed(state, matches[0].action_id)
    return f"Retrying {action.kind.value} for task {action.task_id}."


registry.register("help", cmd_help, "Show this help", aliases=["h", "?"])
registry.register("list", cmd_list, "List tasks: /list [all|today|done|upcoming] [search]", aliases=["ls"])
registry.register("done", cmd_done, "Complete task N from the last list")
registry.register("undo", cmd_undo, "Reopen task N from the last list")
registry.register("toggle", cmd_toggle, "Toggle task N from the last list", aliases=["t"])
registry.register("move", cmd_move, "Move task N to position POS (local only)", aliases=["mv"])
registry.register("sync", cmd_sync, "Pull from the server now")
registry.register("status", cmd_status, "Show sync status")
registry.register("failures", cmd_failures, "Show sync failures")
registry.register("retry", cmd_retry, "Retry a failed action")
