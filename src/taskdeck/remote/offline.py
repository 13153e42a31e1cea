# src/taskdeck/remote/offline.py

from __future__ import annotations

from ..core.errors import NetworkError
from ..tasks.task_models import Ack, Task


class OfflineGateway:
    """
    Gateway used when no API token is configured.

    Every call fails as a transient network error, so the app runs purely
    from the local cache and keeps intents queued until a real gateway is
    configured.
    """

    reason = "offline mode: no API token configured"

    async def fetch_tasks(self) -> list[Task]:
        raise NetworkError(self.reason)

    async def complete_task(self, task_id: str, action_id: str) -> Ack:
        raise NetworkError(self.reason)

    async def uncomplete_task(self, task_id: str, action_id: str) -> Ack:
        raise NetworkError(self.reason)

    async def aclose(self) -> None:
        return
