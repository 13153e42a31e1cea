# src/taskdeck/core/errors.py

"""
Error taxonomy.

- CorruptSnapshot: persisted state unreadable -> start empty, never crash.
- UnknownTask: an intent references a task id the store does not know.
- NetworkError: transient remote failure (timeout, 5xx, 429). Retried with backoff.
- RemoteError: definitive rejection (deleted remotely, forbidden). Never retried.
- InvalidTransition: a pending action was moved backwards through its lifecycle.
"""

from __future__ import annotations

from pathlib import Path


class TaskdeckError(Exception):
    """Base class for all taskdeck errors."""


class CorruptSnapshot(TaskdeckError):
    def __init__(self, path: str | Path, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Corrupt snapshot {self.path}: {reason}")


class UnknownTask(TaskdeckError, KeyError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(task_id)

    def __str__(self) -> str:
        return f"Unknown task: {self.task_id}"


class NetworkError(TaskdeckError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RemoteError(TaskdeckError):
    """
    The remote service refused the request and retrying cannot help.

    reason is one of: "not_found", "forbidden", "rejected".
    """

    def __init__(self, reason: str, message: str = "", *, status_code: int | None = None) -> None:
        self.reason = reason
        self.status_code = status_code
        super().__init__(message or reason)


class InvalidTransition(TaskdeckError, ValueError):
    pass
