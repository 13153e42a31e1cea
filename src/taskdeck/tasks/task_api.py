# src/taskdeck/tasks/task_api.py

"""
High-level helpers the front end calls.

Each helper is one user-visible action: bounded local work (store + log
writes), never a network call. The sync engine is only nudged.
"""

from __future__ import annotations

import logging

from ..core.errors import UnknownTask
from ..core.state import AppState
from .task_models import ActionKind, PendingAction, Task

logger = logging.getLogger(__name__)


def _nudge(state: AppState) -> None:
    engine = state.engine
    if engine is not None:
        engine.wake()


def set_completed(state: AppState, task_id: str, completed: bool) -> tuple[Task, str]:
    """
    Complete / uncomplete a task optimistically and queue the intent.

    The intent is logged first: if we crash before the store write, startup
    re-applies it from the log (SyncEngine.restore_local_intents). Raises
    UnknownTask for ids the store does not know.
    """
    kind = ActionKind.COMPLETE if completed else ActionKind.UNCOMPLETE
    action_id = state.action_log.enqueue(task_id, kind)
    try:
        task = state.store.apply_local_completion(task_id, completed)
    except UnknownTask:
        # deleted by a merge between the two calls
        state.action_log.mark_void(action_id, "task disappeared locally")
        raise

    logger.info("User set task_id=%s completed=%s action_id=%s", task_id, completed, action_id)
    _nudge(state)
    return task, action_id


def toggle_completed(state: AppState, task_id: str) -> tuple[Task, str]:
    task = state.store.get(task_id)
    if task is None:
        raise UnknownTask(task_id)
    return set_completed(state, task_id, not task.completed)


def move_task(state: AppState, task_id: str, position: int) -> Task:
    """Local-only reorder; never creates a pending action."""
    return state.store.reorder(task_id, position)


def retry_failed(state: AppState, action_id: str) -> PendingAction:
    """Give an exhausted action a fresh attempt budget and push soon."""
    action = state.action_log.retry(action_id)
    state.store.clear_sync_failed(action.task_id)
    _nudge(state)
    return action
