# src/taskdeck/sync/engine.py

"""
Sync engine.

One reconciliation cycle goes Idle -> Fetching -> Merging -> Pushing -> Idle.
Fetching and Pushing fail independently; a failure in one never blocks the other.

Merge policy: the remote service is authoritative, except for completion state
of tasks with an unresolved local intent (or one confirmed within the grace
window). A pull that still shows such a task active may be reading data from
before our push landed, so local intent wins until the push round-trip settles.

Every failure inside the engine becomes a state transition (failed, void) plus
a log line; nothing propagates to the caller. In-memory round state is never
needed to resume: the next launch works purely from the persisted store and log.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TypeVar

from ..core.errors import NetworkError, RemoteError
from ..core.ports import FailureSink, RemoteGateway
from ..tasks.action_log import PendingActionLog
from ..tasks.task_models import ActionKind, PendingAction, SyncFailure
from ..tasks.task_store import TaskStore
from .backoff import BackoffPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (NetworkError, TimeoutError, OSError)


class SyncPhase(StrEnum):
    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"
    PUSHING = "pushing"


class SyncStatus(StrEnum):
    """Connection summary shown in the status line."""

    ONLINE = "online"
    OFFLINE = "offline"
    SYNCING = "syncing"
    ERROR = "error"


@dataclass(slots=True)
class PushReport:
    confirmed: int = 0
    failed: int = 0
    voided: int = 0
    exhausted: int = 0
    claimed: int = 0


class SyncEngine:
    def __init__(
        self,
        store: TaskStore,
        action_log: PendingActionLog,
        gateway: RemoteGateway,
        *,
        on_failure: FailureSink | None = None,
        request_timeout: float = 10.0,
        batch_size: int = 16,
        pull_interval: float = 60.0,
        push_interval: float = 5.0,
        backoff: BackoffPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._log = action_log
        self._gateway = gateway
        self._on_failure = on_failure
        self._request_timeout = max(0.1, float(request_timeout))
        self._batch_size = max(1, int(batch_size))
        self._pull_interval = max(0.5, float(pull_interval))
        self._push_interval = max(0.1, float(push_interval))
        self._backoff = backoff or BackoffPolicy()
        self._clock = clock

        self._merge_lock = asyncio.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._push_wake: asyncio.Event | None = None
        self._pull_wake: asyncio.Event | None = None

        self.phase = SyncPhase.IDLE
        self.status = SyncStatus.OFFLINE
        self.last_error: str | None = None
        self.last_pull_at: float | None = None
        self.pull_failures = 0
        self.pull_retry_at: float | None = None

    # ---- helpers ----

    async def _call(self, make: Callable[[], Awaitable[T]]) -> T:
        """Run one remote call with the per-call timeout (TimeoutError is transient)."""
        return await asyncio.wait_for(make(), timeout=self._request_timeout)

    def _notify(self, failure: SyncFailure) -> None:
        if self._on_failure is None:
            return
        try:
            self._on_failure(failure)
        except Exception:
            logger.exception("Failure sink raised task_id=%s", failure.task_id)

    def _pull_failed(self, error: str, *, status: SyncStatus) -> None:
        self.pull_failures += 1
        delay = self._backoff.delay(self.pull_failures)
        self.pull_retry_at = self._clock() + delay
        self.status = status
        self.last_error = error
        logger.info(
            "Pull failed (%s) attempt=%s retry_in=%.1fs: %s",
            status.value,
            self.pull_failures,
            delay,
            error,
        )

    # ---- pull ----

    async def pull(self) -> bool:
        """
        Fetch the authoritative task list and merge it into the store.

        On failure the store is left untouched and the next pull is scheduled
        with backoff. Returns True when a merge was applied.
        """
        self.phase = SyncPhase.FETCHING
        self.status = SyncStatus.SYNCING
        observed = self._store.revision
        try:
            try:
                remote_tasks = await self._call(self._gateway.fetch_tasks)
            except TRANSIENT_ERRORS as e:
                self._pull_failed(str(e) or e.__class__.__name__, status=SyncStatus.OFFLINE)
                return False
            except RemoteError as e:
                self._pull_failed(f"{e.reason}: {e}", status=SyncStatus.ERROR)
                return False
            except Exception as e:
                logger.exception("fetch_tasks crashed")
                self._pull_failed(e.__class__.__name__, status=SyncStatus.ERROR)
                return False

            self.phase = SyncPhase.MERGING
            async with self._merge_lock:
                protected = self._log.intended_states()
                try:
                    report = self._store.upsert_from_remote(
                        remote_tasks,
                        observed_revision=observed,
                        protected=protected,
                    )
                except OSError as e:
                    logger.exception("Merge could not be persisted")
                    self._pull_failed(str(e), status=SyncStatus.ERROR)
                    return False
        finally:
            self.phase = SyncPhase.IDLE

        self.pull_failures = 0
        self.pull_retry_at = None
        self.last_pull_at = self._clock()
        self.status = SyncStatus.ONLINE
        self.last_error = None
        logger.info(
            "Pulled %s task(s): added=%s updated=%s removed=%s kept_local=%s",
            len(remote_tasks),
            report.added,
            report.updated,
            report.removed,
            report.kept_local,
        )
        return True

    # ---- push ----

    async def _send(self, action: PendingAction):
        if action.kind == ActionKind.COMPLETE:
            return await self._call(lambda: self._gateway.complete_task(action.task_id, action.action_id))
        return await self._call(lambda: self._gateway.uncomplete_task(action.task_id, action.action_id))

    async def push_pending(self) -> PushReport:
        """
        Push one batch of pending actions.

        ack (incl. "already in target state") -> confirmed
        NetworkError / timeout / unexpected   -> failed (retried after backoff)
        RemoteError                           -> confirmed-void, surfaced, never retried
        """
        report = PushReport()
        try:
            batch = self._log.next_batch(self._batch_size)
        except OSError:
            logger.exception("Could not claim pending actions")
            return report
        if not batch:
            return report

        report.claimed = len(batch)
        self.phase = SyncPhase.PUSHING
        try:
            for action in batch:
                await self._push_one(action, report)
        finally:
            self.phase = SyncPhase.IDLE

        if report.confirmed and not report.failed:
            self.status = SyncStatus.ONLINE
        elif report.failed and not report.confirmed:
            self.status = SyncStatus.OFFLINE
        logger.info(
            "Push round: claimed=%s confirmed=%s failed=%s voided=%s exhausted=%s",
            report.claimed,
            report.confirmed,
            report.failed,
            report.voided,
            report.exhausted,
        )
        return report

    async def _push_one(self, action: PendingAction, report: PushReport) -> None:
        if action.kind == ActionKind.REORDER:
            # local-only; nothing to send
            async with self._merge_lock:
                self._settle(lambda: self._log.mark_confirmed(action.action_id))
            report.confirmed += 1
            return

        try:
            ack = await self._send(action)
        except RemoteError as e:
            reason = f"{e.reason}: {e}" if str(e) != e.reason else e.reason
            async with self._merge_lock:
                superseded = self._superseded(action)
                self._settle(lambda: self._log.mark_void(action.action_id, reason))
                if not superseded:
                    self._settle(lambda: self._store.mark_sync_failed(action.task_id, reason))
            report.voided += 1
            if superseded:
                # the user already replaced this intent; nothing to surface
                logger.info(
                    "Rejected superseded action action_id=%s task_id=%s: %s",
                    action.action_id,
                    action.task_id,
                    reason,
                )
                return
            self.last_error = reason
            self._notify(
                SyncFailure(
                    task_id=action.task_id,
                    action_id=action.action_id,
                    kind=action.kind,
                    reason=reason,
                    retryable=False,
                )
            )
            return
        except Exception as e:
            if isinstance(e, TRANSIENT_ERRORS):
                error = str(e) or e.__class__.__name__
            else:
                logger.exception("Push crashed action_id=%s", action.action_id)
                error = e.__class__.__name__
            await self._push_failed(action, error, report)
            return

        async with self._merge_lock:
            self._settle(lambda: self._log.mark_confirmed(action.action_id))
            self._settle(lambda: self._store.clear_sync_failed(action.task_id))
        report.confirmed += 1
        if ack is not None and getattr(ack, "already_in_state", False):
            logger.debug("Remote already in target state task_id=%s", action.task_id)

    async def _push_failed(self, action: PendingAction, error: str, report: PushReport) -> None:
        async with self._merge_lock:
            failed = self._settle(lambda: self._log.mark_failed(action.action_id, error))
            report.failed += 1
            if failed is None or not failed.exhausted:
                return
            reason = f"gave up after {failed.attempt_count} attempts: {error}"
            self._settle(lambda: self._store.mark_sync_failed(action.task_id, reason))
        report.exhausted += 1
        self.last_error = reason
        self._notify(
            SyncFailure(
                task_id=action.task_id,
                action_id=action.action_id,
                kind=action.kind,
                reason=reason,
                retryable=True,
            )
        )

    def _superseded(self, action: PendingAction) -> bool:
        """True when a newer intent voided `action` while it was in flight."""
        current = self._log.get(action.action_id)
        if current is None or current.void:
            return True
        return any(
            a.action_id != action.action_id and a.kind.is_completion == action.kind.is_completion
            for a in self._log.live_for(action.task_id)
        )

    @staticmethod
    def _settle(fn: Callable[[], T]) -> T | None:
        """Apply a bookkeeping write; a failed disk write is logged, the in-flight entry is recovered on next load."""
        try:
            return fn()
        except OSError:
            logger.exception("Could not persist sync bookkeeping")
            return None

    # ---- cycles / loops ----

    async def run_cycle(self) -> tuple[bool, PushReport]:
        pulled = await self.pull()
        pushed = await self.push_pending()
        return pulled, pushed

    def restore_local_intents(self) -> int:
        """
        Re-apply every live completion intent to the store.

        Covers a crash between enqueue and the optimistic store write.
        """
        restored = 0
        for task_id, target in self._log.intended_states().items():
            task = self._store.get(task_id)
            if task is None or task.completed == target:
                continue
            self._store.apply_local_completion(task_id, target)
            restored += 1
        if restored:
            logger.info("Restored %s local intent(s) from the action log", restored)
        return restored

    def wake(self) -> None:
        """Thread-safe nudge: push soon (a new intent was recorded)."""
        self._set_threadsafe(self._push_wake)

    def request_pull(self) -> None:
        """Thread-safe nudge: pull now, skipping any backoff window."""
        self.pull_retry_at = None
        self._set_threadsafe(self._pull_wake)
        self._set_threadsafe(self._push_wake)

    def _set_threadsafe(self, event: asyncio.Event | None) -> None:
        loop = self._loop
        if loop is None or event is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(event.set)
        except RuntimeError:
            logger.debug("Sync loop is gone; wake ignored.")

    @staticmethod
    async def _wait(event: asyncio.Event, timeout: float) -> None:
        try:
            await asyncio.wait_for(event.wait(), timeout=max(0.0, timeout))
        except TimeoutError:
            pass
        finally:
            event.clear()

    def _next_pull_delay(self) -> float:
        if self.pull_retry_at is not None:
            return max(0.0, self.pull_retry_at - self._clock())
        return self._pull_interval

    def _next_push_delay(self, report: PushReport) -> float:
        if report.claimed >= self._batch_size:
            return 0.0
        delay = self._push_interval
        due = self._log.next_due_at()
        if due is not None:
            delay = min(delay, max(0.0, due - self._clock()))
        return delay

    async def _pull_loop(self, pull_wake: asyncio.Event) -> None:
        while True:
            await self.pull()
            await self._wait(pull_wake, self._next_pull_delay())

    async def _push_loop(self, push_wake: asyncio.Event) -> None:
        while True:
            report = await self.push_pending()
            await self._wait(push_wake, self._next_push_delay(report))

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Run the pull loop and the push loop until stop_event is set.

        Both are cancelled on stop; whatever round was in progress is simply
        abandoned (the persisted log is the only state that matters).
        """
        self._loop = asyncio.get_running_loop()
        self._pull_wake = asyncio.Event()
        self._push_wake = asyncio.Event()

        loops = [
            asyncio.create_task(self._pull_loop(self._pull_wake), name="taskdeck-pull"),
            asyncio.create_task(self._push_loop(self._push_wake), name="taskdeck-push"),
        ]
        logger.info("Sync engine started (pull every %.0fs, push every %.1fs)", self._pull_interval, self._push_interval)
        try:
            await stop_event.wait()
        finally:
            for t in loops:
                t.cancel()
            await asyncio.gather(*loops, return_exceptions=True)
            self._loop = None
            logger.info("Sync engine stopped.")

    async def aclose(self) -> None:
        try:
            await self._gateway.aclose()
        except Exception:
            logger.debug("Gateway close failed.", exc_info=True)
