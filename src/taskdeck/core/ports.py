# src/taskdeck/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The sync engine depends on Protocols instead of concrete implementations.
This keeps the remote service swappable (Todoist, offline, test doubles).
"""

from typing import Protocol

from ..tasks.task_models import Ack, SyncFailure, Task


class RemoteGateway(Protocol):
    """
    Network side of the sync engine.

    fetch_tasks raises NetworkError on transient failures.
    complete_task / uncomplete_task take the action_id as an idempotency token
    and raise NetworkError (transient) or RemoteError (definitive).
    """

    async def fetch_tasks(self) -> list[Task]: ...

    async def complete_task(self, task_id: str, action_id: str) -> Ack: ...

    async def uncomplete_task(self, task_id: str, action_id: str) -> Ack: ...

    async def aclose(self) -> None: ...


class FailureSink(Protocol):
    """UI-side port: receives failures the user has to see."""

    def __call__(self, failure: SyncFailure) -> None: ...
