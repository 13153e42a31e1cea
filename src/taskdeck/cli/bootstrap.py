# src/taskdeck/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- loads the persisted task store and action log (corrupt files -> start empty),
- wires the remote gateway and the sync engine into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import RemoteGateway
from ..core.state import AppState
from ..remote.offline import OfflineGateway
from ..remote.todoist import TodoistGateway
from ..sync.backoff import BackoffPolicy
from ..sync.engine import SyncEngine
from ..tasks.action_log import PendingActionLog
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_path.parent.mkdir(parents=True, exist_ok=True)
    settings.actions_path.parent.mkdir(parents=True, exist_ok=True)


def build_gateway(settings) -> RemoteGateway:
    """Todoist when a token is configured, otherwise the offline gateway."""
    try:
        return TodoistGateway(
            settings.api_token or "",
            base_url=settings.api_base_url,
            timeout_seconds=settings.request_timeout_seconds,
        )
    except RuntimeError:
        logger.warning("No API token configured; running offline from the local cache.")
        return OfflineGateway()


def create_initial_state(*, settings=None, gateway: RemoteGateway | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings (and the gateway) injectable makes the app easier to test
    and avoids hidden global config reads. If settings is None, falls back to
    get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    backoff = BackoffPolicy(
        base_seconds=settings.backoff_base_seconds,
        cap_seconds=settings.backoff_cap_seconds,
        jitter=settings.backoff_jitter,
    )
    store = TaskStore.load(settings.tasks_path)
    action_log = PendingActionLog.load(
        settings.actions_path,
        store,
        backoff=backoff,
        max_attempts=settings.max_attempts,
        confirmed_grace_seconds=settings.confirmed_grace_seconds,
    )

    state = AppState(
        settings=settings,
        store=store,
        action_log=action_log,
        gateway=gateway if gateway is not None else build_gateway(settings),
    )
    state.engine = SyncEngine(
        store,
        action_log,
        state.gateway,
        on_failure=state.record_failure,
        request_timeout=settings.request_timeout_seconds,
        batch_size=settings.push_batch_size,
        pull_interval=settings.pull_interval_seconds,
        push_interval=settings.push_interval_seconds,
        backoff=backoff,
    )
    state.engine.restore_local_intents()
    return state
