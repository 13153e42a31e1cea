# tests/test_bootstrap.py

from __future__ import annotations

import time

from taskdeck.cli.bootstrap import build_gateway, create_initial_state
from taskdeck.config import Settings
from taskdeck.remote.offline import OfflineGateway
from taskdeck.sync.runner import start_sync_in_background
from taskdeck.tasks import task_api

from .conftest import make_tasks
from .fakes import FakeGateway


def test_without_token_the_gateway_is_offline(settings) -> None:
    assert isinstance(build_gateway(settings), OfflineGateway)


def test_initial_state_restores_logged_intents(settings) -> None:
    state = create_initial_state(settings=settings, gateway=FakeGateway())
    state.store.upsert_from_remote(make_tasks(2))
    task_api.set_completed(state, "T1", True)

    again = create_initial_state(settings=settings, gateway=FakeGateway())
    assert again.engine is not None
    assert again.store.get("T1").completed is True
    assert len(again.action_log.live_for("T1")) == 1


def test_background_runner_syncs_and_stops(settings) -> None:
    gateway = FakeGateway()
    gateway.add(*make_tasks(2))
    state = create_initial_state(settings=settings, gateway=gateway)

    runner = start_sync_in_background(state.engine)
    assert runner is not None
    try:
        deadline = time.time() + 5
        while state.store.count() < 2 and time.time() < deadline:
            time.sleep(0.01)
        assert state.store.count() == 2

        task_api.set_completed(state, "T2", True)
        while not gateway.remote["T2"].completed and time.time() < deadline:
            time.sleep(0.01)
        assert gateway.remote["T2"].completed is True
    finally:
        runner.stop()
        runner.join(timeout=5)
    assert not runner.thread.is_alive()


def test_settings_from_env(monkeypatch, tmp_path) -> None:
    for name in ("TASKDECK_API_TOKEN", "TASKDECK_TASKS_PATH", "TASKDECK_ACTIONS_PATH"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TODOIST_API_TOKEN", "tok")
    monkeypatch.setenv("TASKDECK_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("TASKDECK_MAX_ATTEMPTS", "not a number")
    monkeypatch.setenv("TASKDECK_SYNC_ENABLED", "no")

    s = Settings.from_env()

    assert s.api_token == "tok"
    assert s.offline is False
    assert s.tasks_path == tmp_path / "tasks.json"
    assert s.max_attempts == 10
    assert s.sync_enabled is False
