# src/taskdeck/connectors/console_connector.py

from __future__ import annotations

import logging
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}")


def _flush_failures(state: AppState, seen: int) -> int:
    """Print failures surfaced by the sync engine since the last prompt."""
    with state.lock:
        failures = list(state.failures)
    for f in failures[seen:]:
        if f.retryable:
            _print_ts(f"[SYNC FAILED] {f.kind.value} {f.task_id}: {f.reason} (see /failures, /retry)")
        else:
            _print_ts(f"[SYNC REJECTED] {f.kind.value} {f.task_id}: {f.reason}")
    return len(failures)


def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Use /help for commands, /list to show tasks, /exit to quit.\n")
    print(command_registry.handle(state, "/list today"))

    seen_failures = 0
    while True:
        seen_failures = _flush_failures(state, seen_failures)
        try:
            user_input = input(">>> ").strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit", "/q"):
            logger.info("Console exit command received.")
            break

        try:
            reply = command_registry.handle(state, user_input)
        except Exception:
            logger.exception("Command handler crashed.")
            reply = "Internal error while handling a command."

        if reply is None:
            reply = "Commands start with '/'. Use /help."
        print(reply)
