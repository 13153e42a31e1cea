# src/taskdeck/core/state.py

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from ..tasks.action_log import PendingActionLog
from ..tasks.task_models import SyncFailure, Task
from ..tasks.task_store import TaskStore
from .ports import RemoteGateway

MAX_REMEMBERED_FAILURES = 50


@dataclass
class AppState:
    """
    Explicitly owned application context.

    Built once by cli.bootstrap and handed to every component; nothing in the
    package reaches for module-level singletons.
    """

    settings: Any
    store: TaskStore
    action_log: PendingActionLog
    gateway: RemoteGateway
    engine: Any = None  # SyncEngine (kept as Any to avoid an import cycle)

    failures: deque[SyncFailure] = field(default_factory=lambda: deque(maxlen=MAX_REMEMBERED_FAILURES))
    last_view: list[Task] = field(default_factory=list)
    lock: threading.RLock = field(default_factory=threading.RLock)

    def record_failure(self, failure: SyncFailure) -> None:
        with self.lock:
            self.failures.append(failure)
