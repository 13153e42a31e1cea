# src/taskdeck/tasks/task_models.py

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any


class ActionKind(StrEnum):
    """
    What a pending action asks the remote service to do.

    REORDER is local-only: it is recorded for completeness but never produces
    a remote call.
    """

    COMPLETE = "complete"
    UNCOMPLETE = "uncomplete"
    REORDER = "reorder"

    @property
    def is_completion(self) -> bool:
        return self in (ActionKind.COMPLETE, ActionKind.UNCOMPLETE)

    @property
    def target_completed(self) -> bool | None:
        if self == ActionKind.COMPLETE:
            return True
        if self == ActionKind.UNCOMPLETE:
            return False
        return None


class ActionStatus(StrEnum):
    """
    Lifecycle: pending -> in_flight -> confirmed | failed -> pending (retry).
    Confirmed is terminal (void or not).
    """

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @classmethod
    def from_db(cls, raw: str | None) -> ActionStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


class ViewFilter(StrEnum):
    ALL = "all"
    TODAY_ACTIVE = "today_active"
    TODAY_COMPLETED = "today_completed"
    UPCOMING = "upcoming"


@dataclass(slots=True, frozen=True)
class Due:
    """Due date as reported by the remote service."""

    date: str
    is_recurring: bool = False
    datetime: str | None = None
    string: str = ""
    timezone: str | None = None

    def local_date(self) -> date | None:
        """
        Calendar date in local time.

        Accepts "YYYY-MM-DD" or an RFC 3339 datetime (in `date` or `datetime`).
        Returns None if neither parses.
        """
        raw = (self.date or "").strip()
        if len(raw) == 10:
            try:
                return date.fromisoformat(raw)
            except ValueError:
                return None
        candidate = raw if "T" in raw else (self.datetime or "")
        if "T" not in candidate:
            return None
        try:
            dt = datetime.fromisoformat(candidate.replace("Z", "+00:00"))
        except ValueError:
            return None
        if dt.tzinfo is not None:
            dt = dt.astimezone()
        return dt.date()

    @classmethod
    def from_dict(cls, raw: Any) -> Due | None:
        if not isinstance(raw, dict) or not raw.get("date"):
            return None
        return cls(
            date=str(raw["date"]),
            is_recurring=bool(raw.get("is_recurring", False)),
            datetime=raw.get("datetime"),
            string=str(raw.get("string") or ""),
            timezone=raw.get("timezone"),
        )


@dataclass(slots=True, frozen=True)
class Task:
    id: str
    title: str
    description: str = ""
    completed: bool = False
    completed_at: float | None = None
    due: Due | None = None
    priority: int = 1

    # client-only
    local_order: int = 0
    revision: int = 0
    sync_failed: bool = False
    sync_error: str | None = None

    def __post_init__(self) -> None:
        # A completed task may arrive without a timestamp (remote payloads);
        # TaskStore stamps it with its own clock before storing it.
        if not self.completed and self.completed_at is not None:
            object.__setattr__(self, "completed_at", None)

    def short_description(self, limit: int = 100) -> str:
        text = self.description.strip()
        if len(text) > limit:
            return text[:limit] + "..."
        return text

    def completed_on(self) -> date | None:
        if not self.completed or self.completed_at is None:
            return None
        return datetime.fromtimestamp(self.completed_at).date()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["due"] = asdict(self.due) if self.due is not None else None
        return data

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Task:
        if not isinstance(raw, dict):
            raise ValueError("task record must be an object")
        task_id = raw.get("id")
        if task_id is None or str(task_id) == "":
            raise ValueError("task record without id")
        completed_at = raw.get("completed_at")
        return cls(
            id=str(task_id),
            title=str(raw.get("title") or ""),
            description=str(raw.get("description") or ""),
            completed=bool(raw.get("completed", False)),
            completed_at=float(completed_at) if completed_at is not None else None,
            due=Due.from_dict(raw.get("due")),
            priority=int(raw.get("priority") or 1),
            local_order=int(raw.get("local_order") or 0),
            revision=int(raw.get("revision") or 0),
            sync_failed=bool(raw.get("sync_failed", False)),
            sync_error=raw.get("sync_error"),
        )


@dataclass(slots=True, frozen=True)
class PendingAction:
    action_id: str
    task_id: str
    kind: ActionKind
    created_at: float
    attempt_count: int = 0
    last_attempt_at: float | None = None
    status: ActionStatus = ActionStatus.PENDING

    next_attempt_at: float | None = None
    void: bool = False
    exhausted: bool = False
    resolved_at: float | None = None
    last_error: str | None = None

    @property
    def is_live(self) -> bool:
        """Not yet resolved by the remote service (includes exhausted failures)."""
        return self.status != ActionStatus.CONFIRMED

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> PendingAction:
        if not isinstance(raw, dict):
            raise ValueError("action record must be an object")
        return cls(
            action_id=str(raw["action_id"]),
            task_id=str(raw["task_id"]),
            kind=ActionKind(raw["kind"]),
            created_at=float(raw["created_at"]),
            attempt_count=int(raw.get("attempt_count") or 0),
            last_attempt_at=raw.get("last_attempt_at"),
            status=ActionStatus.from_db(raw.get("status")),
            next_attempt_at=raw.get("next_attempt_at"),
            void=bool(raw.get("void", False)),
            exhausted=bool(raw.get("exhausted", False)),
            resolved_at=raw.get("resolved_at"),
            last_error=raw.get("last_error"),
        )


@dataclass(slots=True, frozen=True)
class Ack:
    """Positive answer from the remote service."""

    already_in_state: bool = False


@dataclass(slots=True, frozen=True)
class SyncFailure:
    """
    A failure surfaced to the UI.

    retryable=True: attempt budget exhausted, the user may retry by hand.
    retryable=False: the remote service rejected the intent for good.
    """

    task_id: str
    action_id: str
    kind: ActionKind
    reason: str
    retryable: bool
    at: float = field(default_factory=time.time)
