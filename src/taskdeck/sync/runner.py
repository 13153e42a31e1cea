# src/taskdeck/sync/runner.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from dataclasses import dataclass

from .engine import SyncEngine

logger = logging.getLogger(__name__)


@dataclass
class SyncBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except RuntimeError:
            logger.debug("Failed to signal sync stop.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_sync_in_background(engine: SyncEngine) -> SyncBackgroundRunner | None:
    """
    Start the sync engine in a background thread with its own event loop.

    Why a thread:
    - console REPL is blocking (input()).
    - the engine is async (pull/push loops, timers).
    """
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(engine.run(stop_event))
        except Exception:
            logger.exception("Sync engine crashed.")
        finally:
            with contextlib.suppress(Exception):
                loop.run_until_complete(engine.aclose())
            with contextlib.suppress(Exception):
                loop.run_until_complete(loop.shutdown_asyncgens())
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="taskdeck-sync", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Sync thread did not initialize properly.")
        return None

    logger.info("Sync background thread started.")
    return SyncBackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
