# tests/test_action_log.py

from __future__ import annotations

import random
from dataclasses import FrozenInstanceError

import pytest

from taskdeck.core.errors import InvalidTransition, UnknownTask
from taskdeck.tasks.action_log import PendingActionLog
from taskdeck.tasks.task_models import ActionKind, ActionStatus
from taskdeck.tasks.task_store import TaskStore

from .conftest import make_tasks


@pytest.fixture()
def seeded(store: TaskStore) -> TaskStore:
    store.upsert_from_remote(make_tasks(5))
    return store


def _reload(action_log: PendingActionLog, store: TaskStore, clock) -> PendingActionLog:
    return PendingActionLog.read(action_log.path, store, clock=clock)


def test_enqueue_unknown_task_raises(action_log: PendingActionLog) -> None:
    with pytest.raises(UnknownTask):
        action_log.enqueue("ghost", ActionKind.COMPLETE)


def test_new_completion_intent_supersedes_the_live_one(seeded, action_log: PendingActionLog) -> None:
    first = action_log.enqueue("T1", ActionKind.COMPLETE)
    second = action_log.enqueue("T1", ActionKind.UNCOMPLETE)

    live = action_log.live_for("T1")
    assert [a.action_id for a in live] == [second]

    old = action_log.get(first)
    assert old.status == ActionStatus.CONFIRMED
    assert old.void is True


def test_reorder_does_not_supersede_completion(seeded, action_log: PendingActionLog) -> None:
    action_log.enqueue("T1", ActionKind.COMPLETE)
    action_log.enqueue("T1", ActionKind.REORDER)
    assert {a.kind for a in action_log.live_for("T1")} == {ActionKind.COMPLETE, ActionKind.REORDER}


def test_at_most_one_live_completion_per_task(seeded, action_log: PendingActionLog) -> None:
    rng = random.Random(7)
    ids = [f"T{i}" for i in range(1, 6)]
    for _ in range(200):
        op = rng.random()
        if op < 0.6:
            action_log.enqueue(rng.choice(ids), rng.choice([ActionKind.COMPLETE, ActionKind.UNCOMPLETE]))
        elif op < 0.8:
            for a in action_log.next_batch(rng.randint(1, 3)):
                if rng.random() < 0.5:
                    action_log.mark_confirmed(a.action_id)
                else:
                    action_log.mark_failed(a.action_id, "flaky")
        else:
            action_log.compact()

        for task_id in ids:
            live = [a for a in action_log.live_for(task_id) if a.kind.is_completion]
            assert len(live) <= 1


def test_next_batch_claims_each_entry_once(seeded, action_log: PendingActionLog) -> None:
    for i in range(1, 4):
        action_log.enqueue(f"T{i}", ActionKind.COMPLETE)

    first = action_log.next_batch(2)
    second = action_log.next_batch(10)
    third = action_log.next_batch(10)

    assert [a.task_id for a in first] == ["T1", "T2"]
    assert [a.task_id for a in second] == ["T3"]
    assert third == []
    assert all(a.status == ActionStatus.IN_FLIGHT and a.attempt_count == 1 for a in first + second)


def test_failed_entry_waits_for_its_backoff_window(seeded, action_log: PendingActionLog, clock) -> None:
    action_id = action_log.enqueue("T1", ActionKind.COMPLETE)
    (claimed,) = action_log.next_batch(1)

    failed = action_log.mark_failed(claimed.action_id, "timeout")
    assert failed.status == ActionStatus.FAILED
    # attempt 1: 2s +/- 20%
    assert clock.now + 1.6 <= failed.next_attempt_at <= clock.now + 2.4
    assert action_log.next_due_at() == failed.next_attempt_at

    assert action_log.next_batch(1) == []

    clock.advance(3)
    (again,) = action_log.next_batch(1)
    assert again.action_id == action_id
    assert again.attempt_count == 2


def test_entry_is_exhausted_after_max_attempts(seeded, store, backoff, clock, settings) -> None:
    log = PendingActionLog(settings.actions_path, store, backoff=backoff, max_attempts=3, clock=clock)
    action_id = log.enqueue("T1", ActionKind.COMPLETE)

    for _ in range(3):
        clock.advance(1000)
        (a,) = log.next_batch(1)
        last = log.mark_failed(a.action_id, "down")

    assert last.exhausted is True
    assert last.status == ActionStatus.FAILED
    assert [a.action_id for a in log.failures()] == [action_id]
    # never dropped, never retried automatically
    clock.advance(10_000)
    assert log.next_batch(1) == []
    assert log.compact() == 0
    assert log.live_for("T1")[0].action_id == action_id

    retried = log.retry(action_id)
    assert retried.status == ActionStatus.PENDING
    assert retried.attempt_count == 0
    assert log.failures() == []


def test_retry_only_from_failed(seeded, action_log: PendingActionLog) -> None:
    action_id = action_log.enqueue("T1", ActionKind.COMPLETE)
    with pytest.raises(InvalidTransition):
        action_log.retry(action_id)


def test_confirm_requires_in_flight(seeded, action_log: PendingActionLog) -> None:
    action_id = action_log.enqueue("T1", ActionKind.COMPLETE)
    with pytest.raises(InvalidTransition):
        action_log.mark_confirmed(action_id)


def test_superseded_in_flight_entry_stays_void_when_acked(seeded, action_log: PendingActionLog) -> None:
    action_log.enqueue("T1", ActionKind.COMPLETE)
    (claimed,) = action_log.next_batch(1)
    action_log.enqueue("T1", ActionKind.UNCOMPLETE)

    result = action_log.mark_confirmed(claimed.action_id)

    assert result.void is True
    assert action_log.intended_states() == {"T1": False}


def test_in_flight_entries_come_back_as_pending_after_restart(seeded, action_log, clock) -> None:
    action_id = action_log.enqueue("T1", ActionKind.COMPLETE)
    action_log.next_batch(1)

    reloaded = _reload(action_log, seeded, clock)

    entry = reloaded.get(action_id)
    assert entry.status == ActionStatus.PENDING
    assert entry.attempt_count == 1
    assert [a.action_id for a in reloaded.next_batch(5)] == [action_id]


def test_confirmed_entries_are_compacted_after_grace(seeded, action_log, clock) -> None:
    action_log.enqueue("T1", ActionKind.COMPLETE)
    (a,) = action_log.next_batch(1)
    action_log.mark_confirmed(a.action_id)

    assert action_log.intended_states() == {"T1": True}
    assert action_log.compact() == 0

    clock.advance(601)
    assert action_log.intended_states() == {}
    assert action_log.compact() == 1
    assert action_log.entries() == []


def test_corrupt_log_starts_empty(seeded, settings, clock) -> None:
    settings.actions_path.write_text("[]", "utf-8")
    log = PendingActionLog.load(settings.actions_path, seeded, clock=clock)
    assert log.entries() == []
    assert list(settings.actions_path.parent.glob("pending_actions.json.corrupt-*"))


def test_handed_out_entries_are_read_only(seeded, action_log: PendingActionLog) -> None:
    action_id = action_log.enqueue("T1", ActionKind.COMPLETE)
    (claimed,) = action_log.next_batch(1)

    with pytest.raises(FrozenInstanceError):
        claimed.status = ActionStatus.PENDING
    with pytest.raises(FrozenInstanceError):
        action_log.entries()[0].attempt_count = 0

    assert action_log.get(action_id).status == ActionStatus.IN_FLIGHT
    assert action_log.next_batch(1) == []


def test_repeating_an_intent_keeps_its_backoff_window(seeded, action_log: PendingActionLog, clock) -> None:
    first = action_log.enqueue("T1", ActionKind.COMPLETE)
    (claimed,) = action_log.next_batch(1)
    failed = action_log.mark_failed(claimed.action_id, "timeout")

    second = action_log.enqueue("T1", ActionKind.COMPLETE)

    assert second != first
    assert action_log.get(first).void is True
    entry = action_log.get(second)
    assert entry.status == ActionStatus.FAILED
    assert entry.attempt_count == 1
    assert entry.next_attempt_at == failed.next_attempt_at
    assert action_log.next_batch(1) == []

    clock.advance(3)
    (again,) = action_log.next_batch(1)
    assert again.action_id == second
    assert again.attempt_count == 2


def test_opposite_intent_starts_without_backoff(seeded, action_log: PendingActionLog) -> None:
    action_log.enqueue("T1", ActionKind.COMPLETE)
    (claimed,) = action_log.next_batch(1)
    action_log.mark_failed(claimed.action_id, "timeout")

    undo = action_log.enqueue("T1", ActionKind.UNCOMPLETE)

    entry = action_log.get(undo)
    assert entry.status == ActionStatus.PENDING
    assert entry.attempt_count == 0
    assert [a.action_id for a in action_log.next_batch(1)] == [undo]
