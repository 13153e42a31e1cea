# src/taskdeck/tasks/action_log.py

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import replace
from pathlib import Path
from typing import Any

from ..core.errors import CorruptSnapshot, InvalidTransition, UnknownTask
from ..sync.backoff import BackoffPolicy
from .persistence import quarantine, read_record, write_record
from .task_models import ActionKind, ActionStatus, PendingAction
from .task_store import TaskStore

logger = logging.getLogger(__name__)

RECORD_KIND = "pending_actions"

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_CONFIRMED_GRACE_SECONDS = 600.0


class PendingActionLog:
    """
    Durable queue of user intents not yet confirmed by the remote service.

    Guarantees:
    - at most one live completion intent per task (a new one voids the old),
    - next_batch hands each pending entry to exactly one caller (claimed as
      in_flight under the lock, persisted before returning),
    - failed entries come back only after their backoff window; once the
      attempt budget is spent they stay failed (exhausted) until retried by hand,
    - confirmed entries linger for a grace window, then get compacted away.

    Entries are frozen and copy-on-write, like TaskStore, so everything the
    log hands out is safe to share.
    """

    def __init__(
        self,
        path: str | Path,
        store: TaskStore,
        *,
        backoff: BackoffPolicy | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        confirmed_grace_seconds: float = DEFAULT_CONFIRMED_GRACE_SECONDS,
        clock: Callable[[], float] = time.time,
        actions: Iterable[PendingAction] = (),
    ) -> None:
        self._path = Path(path)
        self._store = store
        self._backoff = backoff or BackoffPolicy()
        self._max_attempts = max(1, int(max_attempts))
        self._grace = max(0.0, float(confirmed_grace_seconds))
        self._clock = clock
        self._lock = threading.RLock()
        self._actions: dict[str, PendingAction] = {a.action_id: a for a in actions}

    # ---- loading ----

    @classmethod
    def read(cls, path: str | Path, store: TaskStore, **kwargs: Any) -> PendingActionLog:
        """Strict load: raises CorruptSnapshot if the persisted layout is unreadable."""
        doc = read_record(path, RECORD_KIND)
        if doc is None:
            return cls(path, store, **kwargs)

        raw_actions = doc.get("actions")
        if not isinstance(raw_actions, list):
            raise CorruptSnapshot(path, "'actions' is not a list")
        try:
            actions = [PendingAction.from_dict(r) for r in raw_actions]
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptSnapshot(path, f"bad action record: {e}") from e

        # A crash mid-push leaves entries in_flight; the idempotency token makes
        # replaying them safe.
        recovered = 0
        for i, a in enumerate(actions):
            if a.status == ActionStatus.IN_FLIGHT:
                actions[i] = replace(a, status=ActionStatus.PENDING)
                recovered += 1
        if recovered:
            logger.info("Recovered %s in-flight action(s) as pending", recovered)

        return cls(path, store, actions=actions, **kwargs)

    @classmethod
    def load(cls, path: str | Path, store: TaskStore, **kwargs: Any) -> PendingActionLog:
        try:
            log = cls.read(path, store, **kwargs)
        except CorruptSnapshot as e:
            logger.warning("%s; starting with an empty action log.", e)
            quarantine(path)
            log = cls(path, store, **kwargs)
        logger.info("PendingActionLog ready path=%s live=%s", path, len(log.live()))
        return log

    # ---- low-level helpers ----

    @property
    def path(self) -> Path:
        return self._path

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def _persist(self) -> None:
        ordered = sorted(self._actions.values(), key=lambda a: a.created_at)
        write_record(self._path, RECORD_KIND, {"actions": [a.to_dict() for a in ordered]})

    def _commit(self, backup: dict[str, PendingAction]) -> None:
        try:
            self._persist()
        except OSError:
            self._actions = backup
            logger.exception("PendingActionLog persist failed path=%s", self._path)
            raise

    def _require(self, action_id: str) -> PendingAction:
        action = self._actions.get(action_id)
        if action is None:
            raise KeyError(f"Unknown action: {action_id}")
        return action

    def _void(self, action: PendingAction, now: float, reason: str) -> None:
        self._actions[action.action_id] = replace(
            action,
            status=ActionStatus.CONFIRMED,
            void=True,
            resolved_at=now,
            next_attempt_at=None,
            last_error=reason,
        )

    def _compact_locked(self, now: float) -> int:
        expired = [
            a.action_id
            for a in self._actions.values()
            if a.status == ActionStatus.CONFIRMED and (a.resolved_at or 0.0) + self._grace <= now
        ]
        for action_id in expired:
            del self._actions[action_id]
        return len(expired)

    # ---- queries ----

    def get(self, action_id: str) -> PendingAction | None:
        return self._actions.get(action_id)

    def entries(self) -> list[PendingAction]:
        with self._lock:
            return sorted(self._actions.values(), key=lambda a: a.created_at)

    def live(self) -> list[PendingAction]:
        return [a for a in self.entries() if a.is_live]

    def live_for(self, task_id: str, kind: ActionKind | None = None) -> list[PendingAction]:
        return [
            a
            for a in self.live()
            if a.task_id == task_id and (kind is None or a.kind == kind)
        ]

    def failures(self) -> list[PendingAction]:
        """Entries whose attempt budget is spent; surfaced to the user, never dropped."""
        return [a for a in self.entries() if a.status == ActionStatus.FAILED and a.exhausted]

    def next_due_at(self) -> float | None:
        """Earliest moment a backed-off entry becomes eligible again."""
        with self._lock:
            due = [
                a.next_attempt_at
                for a in self._actions.values()
                if a.status == ActionStatus.FAILED and not a.exhausted and a.next_attempt_at is not None
            ]
        return min(due) if due else None

    def has_pending(self) -> bool:
        with self._lock:
            return any(a.status == ActionStatus.PENDING for a in self._actions.values())

    def intended_states(self, now: float | None = None) -> dict[str, bool]:
        """
        task id -> completed state the user asked for, for every task whose
        completion intent is unresolved, or was confirmed within the grace window.

        The merge uses this map to keep a pull from reverting a local completion
        the remote service has not reflected yet.
        """
        if now is None:
            now = self._clock()
        out: dict[str, bool] = {}
        for a in self.entries():  # oldest first, so newer intents win
            target = a.kind.target_completed
            if target is None or a.void:
                continue
            if a.status == ActionStatus.CONFIRMED and (a.resolved_at or 0.0) + self._grace <= now:
                continue
            out[a.task_id] = target
        return out

    # ---- mutations ----

    def enqueue(self, task_id: str, kind: ActionKind | str) -> str:
        """
        Record a new intent and return its action_id.

        A live completion intent for the same task is voided (Confirmed-void)
        and replaced by a fresh entry; Reorder intents supersede only Reorder.
        Re-enqueueing the same kind over a backed-off entry keeps its attempt
        count and retry time.
        """
        kind = ActionKind(kind)
        if self._store.get(task_id) is None:
            raise UnknownTask(task_id)

        with self._lock:
            backup = dict(self._actions)
            now = self._clock()
            backed_off: PendingAction | None = None

            for a in list(self._actions.values()):
                if a.task_id != task_id or not a.is_live:
                    continue
                if a.kind.is_completion == kind.is_completion:
                    if a.kind == kind and a.status == ActionStatus.FAILED and not a.exhausted:
                        backed_off = a
                    self._void(a, now, f"superseded by {kind.value}")
                    logger.debug("Superseded action_id=%s task_id=%s", a.action_id, task_id)

            action = PendingAction(
                action_id=uuid.uuid4().hex,
                task_id=task_id,
                kind=kind,
                created_at=now,
            )
            if backed_off is not None:
                # repeating the same intent does not skip its backoff window
                action = replace(
                    action,
                    status=ActionStatus.FAILED,
                    attempt_count=backed_off.attempt_count,
                    last_attempt_at=backed_off.last_attempt_at,
                    next_attempt_at=backed_off.next_attempt_at,
                    last_error=backed_off.last_error,
                )
            self._actions[action.action_id] = action
            self._commit(backup)

        logger.info("Enqueued action_id=%s task_id=%s kind=%s", action.action_id, task_id, kind.value)
        return action.action_id

    def next_batch(self, max_n: int) -> list[PendingAction]:
        """
        Claim up to max_n pending entries, oldest first, as in_flight.

        Failed entries whose backoff window has elapsed are moved back to
        pending first.
        """
        if max_n <= 0:
            return []

        with self._lock:
            backup = dict(self._actions)
            now = self._clock()
            changed = False

            for a in list(self._actions.values()):
                if (
                    a.status == ActionStatus.FAILED
                    and not a.exhausted
                    and a.next_attempt_at is not None
                    and a.next_attempt_at <= now
                ):
                    self._actions[a.action_id] = replace(a, status=ActionStatus.PENDING, next_attempt_at=None)
                    changed = True

            pending = sorted(
                (a for a in self._actions.values() if a.status == ActionStatus.PENDING),
                key=lambda a: a.created_at,
            )[:max_n]

            batch: list[PendingAction] = []
            for a in pending:
                claimed = replace(
                    a,
                    status=ActionStatus.IN_FLIGHT,
                    attempt_count=a.attempt_count + 1,
                    last_attempt_at=now,
                )
                self._actions[a.action_id] = claimed
                batch.append(claimed)
                changed = True

            if changed:
                self._commit(backup)

        if batch:
            logger.debug("Claimed %s action(s) for push", len(batch))
        return batch

    def mark_confirmed(self, action_id: str) -> PendingAction:
        with self._lock:
            action = self._require(action_id)
            if action.status == ActionStatus.CONFIRMED:
                # voided while in flight; the newer intent carries on
                return action
            if action.status != ActionStatus.IN_FLIGHT:
                raise InvalidTransition(f"{action_id}: {action.status.value} -> confirmed")

            backup = dict(self._actions)
            now = self._clock()
            confirmed = replace(
                action,
                status=ActionStatus.CONFIRMED,
                resolved_at=now,
                next_attempt_at=None,
                last_error=None,
            )
            self._actions[action_id] = confirmed
            self._compact_locked(now)
            self._commit(backup)

        logger.info("Confirmed action_id=%s task_id=%s", action_id, action.task_id)
        return confirmed

    def mark_failed(self, action_id: str, error: str | None = None) -> PendingAction:
        """
        Transient failure: schedule a retry after the backoff window, or mark
        the entry exhausted once max_attempts is reached.
        """
        with self._lock:
            action = self._require(action_id)
            if action.status == ActionStatus.CONFIRMED:
                return action
            if action.status != ActionStatus.IN_FLIGHT:
                raise InvalidTransition(f"{action_id}: {action.status.value} -> failed")

            backup = dict(self._actions)
            now = self._clock()
            if action.attempt_count >= self._max_attempts:
                failed = replace(
                    action,
                    status=ActionStatus.FAILED,
                    exhausted=True,
                    next_attempt_at=None,
                    last_error=error,
                )
            else:
                failed = replace(
                    action,
                    status=ActionStatus.FAILED,
                    next_attempt_at=now + self._backoff.delay(action.attempt_count),
                    last_error=error,
                )
            self._actions[action_id] = failed
            self._commit(backup)

        if failed.exhausted:
            logger.warning(
                "Action exhausted action_id=%s task_id=%s attempts=%s error=%s",
                action_id,
                failed.task_id,
                failed.attempt_count,
                error,
            )
        else:
            logger.info(
                "Action failed action_id=%s attempt=%s retry_in=%.1fs error=%s",
                action_id,
                failed.attempt_count,
                (failed.next_attempt_at or now) - now,
                error,
            )
        return failed

    def mark_void(self, action_id: str, error: str | None = None) -> PendingAction:
        """Definitive rejection: resolve the entry without ever retrying it."""
        with self._lock:
            action = self._require(action_id)
            if action.status == ActionStatus.CONFIRMED:
                return action

            backup = dict(self._actions)
            now = self._clock()
            self._void(action, now, error or "rejected")
            self._compact_locked(now)
            self._commit(backup)
            voided = self._actions[action_id]

        logger.warning("Voided action_id=%s task_id=%s error=%s", action_id, action.task_id, error)
        return voided

    def retry(self, action_id: str) -> PendingAction:
        """Give an exhausted (or backed-off) entry a fresh attempt budget."""
        with self._lock:
            action = self._require(action_id)
            if action.status != ActionStatus.FAILED:
                raise InvalidTransition(f"{action_id}: {action.status.value} -> pending (retry)")

            backup = dict(self._actions)
            retried = replace(
                action,
                status=ActionStatus.PENDING,
                attempt_count=0,
                exhausted=False,
                next_attempt_at=None,
            )
            self._actions[action_id] = retried
            self._commit(backup)

        logger.info("Manual retry action_id=%s task_id=%s", action_id, action.task_id)
        return retried

    def compact(self) -> int:
        with self._lock:
            backup = dict(self._actions)
            removed = self._compact_locked(self._clock())
            if removed:
                self._commit(backup)
        return removed
