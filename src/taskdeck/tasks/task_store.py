# src/taskdeck/tasks/task_store.py

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import date
from pathlib import Path
from typing import Any

from ..core.errors import CorruptSnapshot, UnknownTask
from .persistence import quarantine, read_record, write_record
from .task_models import Task, ViewFilter

logger = logging.getLogger(__name__)

RECORD_KIND = "tasks"

# Gap left between local_order values of newly seen tasks, so most reorders
# only touch the moved task.
ORDER_STEP = 1024


def _sort_key(task: Task) -> tuple[int, str]:
    return (task.local_order, task.id)


@dataclass(slots=True, frozen=True)
class MergeReport:
    added: int = 0
    updated: int = 0
    removed: int = 0
    kept_local: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)


class TaskStore:
    """
    Local task cache.

    Mutations:
    - run under a single lock (one writer at a time),
    - are copy-on-write (Task is frozen; a change stores a new record),
    - persist the whole store atomically before returning.

    Reads (snapshot_for_view) never take the lock: after every mutation an
    immutable, pre-sorted tuple is published and readers filter that.
    """

    def __init__(
        self,
        path: str | Path = "tasks.json",
        *,
        clock: Callable[[], float] = time.time,
        tasks: Iterable[Task] = (),
        revision: int = 0,
    ) -> None:
        self._path = Path(path)
        self._clock = clock
        self._lock = threading.RLock()
        self._tasks: dict[str, Task] = {}
        for t in tasks:
            if t.completed and t.completed_at is None:
                t = replace(t, completed_at=clock())
            self._tasks[t.id] = t
        self._revision = max([revision, *(t.revision for t in self._tasks.values())])
        self._published: tuple[Task, ...] = ()
        self._publish()

    # ---- loading ----

    @classmethod
    def read(cls, path: str | Path, *, clock: Callable[[], float] = time.time) -> TaskStore:
        """Strict load: raises CorruptSnapshot if the persisted layout is unreadable."""
        doc = read_record(path, RECORD_KIND)
        if doc is None:
            return cls(path, clock=clock)

        raw_tasks = doc.get("tasks")
        if not isinstance(raw_tasks, list):
            raise CorruptSnapshot(path, "'tasks' is not a list")
        try:
            tasks = [Task.from_dict(r) for r in raw_tasks]
            revision = int(doc.get("revision") or 0)
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptSnapshot(path, f"bad task record: {e}") from e

        return cls(path, clock=clock, tasks=tasks, revision=revision)

    @classmethod
    def load(cls, path: str | Path, *, clock: Callable[[], float] = time.time) -> TaskStore:
        """Load the persisted snapshot; a corrupt one is moved aside and we start empty."""
        try:
            store = cls.read(path, clock=clock)
        except CorruptSnapshot as e:
            logger.warning("%s; starting with an empty task store.", e)
            quarantine(path)
            store = cls(path, clock=clock)
        logger.info("TaskStore ready path=%s total=%s revision=%s", path, store.count(), store.revision)
        return store

    # ---- low-level helpers ----

    @property
    def path(self) -> Path:
        return self._path

    @property
    def revision(self) -> int:
        return self._revision

    def _bump(self) -> int:
        self._revision += 1
        return self._revision

    def _publish(self) -> None:
        self._published = tuple(sorted(self._tasks.values(), key=_sort_key))

    def _persist(self) -> None:
        payload: dict[str, Any] = {
            "revision": self._revision,
            "tasks": [t.to_dict() for t in sorted(self._tasks.values(), key=_sort_key)],
        }
        write_record(self._path, RECORD_KIND, payload)

    def _commit(self, backup: tuple[dict[str, Task], int]) -> None:
        """Persist, then publish. On a failed write, roll memory back and re-raise."""
        try:
            self._persist()
        except OSError:
            self._tasks, self._revision = backup
            logger.exception("TaskStore persist failed path=%s", self._path)
            raise
        self._publish()

    def _backup(self) -> tuple[dict[str, Task], int]:
        return dict(self._tasks), self._revision

    def _require(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise UnknownTask(task_id)
        return task

    # ---- queries ----

    def count(self) -> int:
        return len(self._published)

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def tasks(self) -> tuple[Task, ...]:
        return self._published

    def snapshot_for_view(
        self,
        view: ViewFilter = ViewFilter.ALL,
        *,
        query: str | None = None,
        today: date | None = None,
    ) -> tuple[Task, ...]:
        """
        Render-ready, read-only list ordered by (local_order, id).

        Hot path: no lock, no I/O. The published tuple is already sorted, so this
        is a single linear filter.
        """
        published = self._published
        if today is None:
            today = date.today()
        needle = (query or "").strip().lower()

        def visible(t: Task) -> bool:
            if view == ViewFilter.TODAY_ACTIVE:
                if t.completed or t.due is None or t.due.local_date() != today:
                    return False
            elif view == ViewFilter.TODAY_COMPLETED:
                if t.completed_on() != today:
                    return False
            elif view == ViewFilter.UPCOMING:
                if t.completed:
                    return False
                if t.due is not None:
                    d = t.due.local_date()
                    if d is None or d <= today:
                        return False
            if needle and needle not in t.title.lower() and needle not in t.description.lower():
                return False
            return True

        return tuple(t for t in published if visible(t))

    # ---- remote merge ----

    def upsert_from_remote(
        self,
        tasks: Iterable[Task],
        *,
        observed_revision: int | None = None,
        protected: Mapping[str, bool] | None = None,
        complete: bool = True,
    ) -> MergeReport:
        """
        Merge an authoritative fetch into the store.

        - local_order / sync_failed of known tasks are never overwritten.
        - completion fields stay local for ids in `protected` (task id -> locally
          intended completed state) and for tasks mutated locally after
          `observed_revision` (the fetch is older than the local write).
        - with complete=True, known tasks missing from the fetch are deleted,
          unless protected.
        """
        protected = protected or {}
        incoming: dict[str, Task] = {}
        for t in tasks:
            incoming[t.id] = t

        added = updated = removed = kept_local = 0

        with self._lock:
            backup = self._backup()
            now = self._clock()
            next_order = max((t.local_order for t in self._tasks.values()), default=-ORDER_STEP) + ORDER_STEP

            for task_id, remote in incoming.items():
                existing = self._tasks.get(task_id)

                completed, completed_at = remote.completed, remote.completed_at
                stale = (
                    existing is not None
                    and observed_revision is not None
                    and existing.revision > observed_revision
                )
                if task_id in protected or stale:
                    if task_id in protected:
                        want = bool(protected[task_id])
                    else:
                        want = existing.completed  # type: ignore[union-attr]
                    if want != remote.completed:
                        kept_local += 1
                    completed = want
                    if not want:
                        completed_at = None
                    elif existing is not None and existing.completed:
                        completed_at = existing.completed_at
                    elif remote.completed:
                        completed_at = remote.completed_at
                    else:
                        completed_at = now
                if completed and completed_at is None:
                    keep = existing is not None and existing.completed
                    completed_at = existing.completed_at if keep else now  # type: ignore[union-attr]

                if existing is None:
                    self._tasks[task_id] = replace(
                        remote,
                        completed=completed,
                        completed_at=completed_at,
                        local_order=next_order,
                        revision=self._bump(),
                        sync_failed=False,
                        sync_error=None,
                    )
                    next_order += ORDER_STEP
                    added += 1
                    continue

                merged = replace(
                    existing,
                    title=remote.title,
                    description=remote.description,
                    due=remote.due,
                    priority=remote.priority,
                    completed=completed,
                    completed_at=completed_at,
                )
                if merged != existing:
                    self._tasks[task_id] = replace(merged, revision=self._bump())
                    updated += 1

            if complete:
                for task_id in [tid for tid in self._tasks if tid not in incoming]:
                    if task_id in protected:
                        continue
                    del self._tasks[task_id]
                    self._bump()
                    removed += 1

            report = MergeReport(added=added, updated=updated, removed=removed, kept_local=kept_local)
            if report.changed:
                self._commit(backup)

        logger.debug(
            "Merged remote tasks added=%s updated=%s removed=%s kept_local=%s",
            added,
            updated,
            removed,
            kept_local,
        )
        return report

    # ---- local mutations ----

    def apply_local_completion(self, task_id: str, completed: bool) -> Task:
        """Optimistically set completion; raises UnknownTask if the task is absent."""
        with self._lock:
            task = self._require(task_id)
            if task.completed == completed:
                return task

            backup = self._backup()
            updated = replace(
                task,
                completed=completed,
                completed_at=self._clock() if completed else None,
                revision=self._bump(),
            )
            self._tasks[task_id] = updated
            self._commit(backup)

        logger.debug("Local completion task_id=%s completed=%s", task_id, completed)
        return updated

    def reorder(self, task_id: str, new_position: int) -> Task:
        """
        Move a task to `new_position` in the All ordering.

        Only the moved task changes when there is room between its new
        neighbours; otherwise the run of following tasks that would collide is
        shifted by one. Local only.
        """
        with self._lock:
            task = self._require(task_id)
            others = sorted((t for t in self._tasks.values() if t.id != task_id), key=_sort_key)
            pos = max(0, min(int(new_position), len(others)))

            prev = others[pos - 1] if pos > 0 else None
            nxt = others[pos] if pos < len(others) else None

            shifted: list[Task] = []
            if prev is None and nxt is None:
                new_order = task.local_order
            elif nxt is None:
                new_order = prev.local_order + ORDER_STEP  # type: ignore[union-attr]
            elif prev is None:
                new_order = nxt.local_order - ORDER_STEP
            elif nxt.local_order - prev.local_order >= 2:
                new_order = (prev.local_order + nxt.local_order) // 2
            else:
                new_order = prev.local_order + 1
                cursor = new_order
                for follower in others[pos:]:
                    if follower.local_order > cursor:
                        break
                    cursor += 1
                    shifted.append(replace(follower, local_order=cursor))

            backup = self._backup()
            moved = replace(task, local_order=new_order, revision=self._bump())
            self._tasks[task_id] = moved
            for s in shifted:
                self._tasks[s.id] = replace(s, revision=self._bump())
            self._commit(backup)

        logger.debug(
            "Reordered task_id=%s position=%s order=%s shifted=%s",
            task_id,
            pos,
            new_order,
            len(shifted),
        )
        return moved

    def mark_sync_failed(self, task_id: str, error: str) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or (task.sync_failed and task.sync_error == error):
                return
            backup = self._backup()
            self._tasks[task_id] = replace(task, sync_failed=True, sync_error=error, revision=self._bump())
            self._commit(backup)

    def clear_sync_failed(self, task_id: str) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or not task.sync_failed:
                return
            backup = self._backup()
            self._tasks[task_id] = replace(task, sync_failed=False, sync_error=None, revision=self._bump())
            self._commit(backup)
