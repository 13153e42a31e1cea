# tests/conftest.py

from __future__ import annotations

import random
from pathlib import Path
from types import SimpleNamespace

import pytest

from taskdeck.core.state import AppState
from taskdeck.sync.backoff import BackoffPolicy
from taskdeck.sync.engine import SyncEngine
from taskdeck.tasks.action_log import PendingActionLog
from taskdeck.tasks.task_models import Task
from taskdeck.tasks.task_store import TaskStore

from .fakes import FakeClock, FakeGateway, RecordingSink


def make_tasks(n: int, prefix: str = "T") -> list[Task]:
    return [Task(id=f"{prefix}{i}", title=f"task {i}") for i in range(1, n + 1)]


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="taskdeck-test",
        log_level="DEBUG",
        api_token=None,
        api_base_url="https://example.invalid/api/v1",
        request_timeout_seconds=1.0,
        data_dir=tmp_path,
        tasks_path=tmp_path / "tasks.json",
        actions_path=tmp_path / "pending_actions.json",
        pull_interval_seconds=60.0,
        push_interval_seconds=5.0,
        push_batch_size=16,
        max_attempts=10,
        backoff_base_seconds=2.0,
        backoff_cap_seconds=300.0,
        backoff_jitter=0.2,
        confirmed_grace_seconds=600.0,
        console_enabled=False,
        sync_enabled=False,
        offline=True,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def backoff() -> BackoffPolicy:
    return BackoffPolicy(rng=random.Random(1234))


@pytest.fixture()
def store(settings: SimpleNamespace, clock: FakeClock) -> TaskStore:
    return TaskStore.load(settings.tasks_path, clock=clock)


@pytest.fixture()
def action_log(
    settings: SimpleNamespace, store: TaskStore, backoff: BackoffPolicy, clock: FakeClock
) -> PendingActionLog:
    return PendingActionLog.load(
        settings.actions_path,
        store,
        backoff=backoff,
        max_attempts=settings.max_attempts,
        confirmed_grace_seconds=settings.confirmed_grace_seconds,
        clock=clock,
    )


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def engine(
    store: TaskStore,
    action_log: PendingActionLog,
    gateway: FakeGateway,
    sink: RecordingSink,
    backoff: BackoffPolicy,
    clock: FakeClock,
) -> SyncEngine:
    return SyncEngine(
        store,
        action_log,
        gateway,
        on_failure=sink,
        request_timeout=1.0,
        batch_size=16,
        backoff=backoff,
        clock=clock,
    )


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    store: TaskStore,
    action_log: PendingActionLog,
    gateway: FakeGateway,
    engine: SyncEngine,
) -> AppState:
    """AppState wired with the same store/log/engine the other fixtures expose."""
    st = AppState(settings=settings, store=store, action_log=action_log, gateway=gateway)
    st.engine = engine
    return st
