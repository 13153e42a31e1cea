# src/taskdeck/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then starts:
- the sync engine in a background thread (when a token is configured),
- the console REPL in the main thread (optional).
"""

from __future__ import annotations

import asyncio
import logging
import signal
import threading

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..logging_setup import setup_logging
from ..sync.runner import SyncBackgroundRunner, start_sync_in_background

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    state = create_initial_state(settings=settings)

    runner: SyncBackgroundRunner | None = None
    if settings.sync_enabled and not settings.offline:
        runner = start_sync_in_background(state.engine)
    else:
        logger.info("Background sync disabled; intents stay queued locally.")

    # Use an Event so main can wait without a busy while-loop.
    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    try:
        signal.signal(signal.SIGTERM, _handle_signal)
        if not settings.console_enabled:
            signal.signal(signal.SIGINT, _handle_signal)
    except (ValueError, OSError):
        # not in the main thread, or the platform lacks the signal
        pass

    try:
        if settings.console_enabled:
            run_console_loop(state)
            stop_main.set()
        else:
            logger.info("Console disabled. Running background sync only. Press Ctrl+C to stop.")
            stop_main.wait()
    finally:
        if runner is not None:
            runner.stop()
            runner.join(timeout=10.0)
        else:
            try:
                asyncio.run(state.gateway.aclose())
            except Exception:
                logger.debug("Gateway close failed.", exc_info=True)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
