# src/taskdeck/remote/todoist.py

"""
Todoist gateway.

Implements the RemoteGateway port over the Todoist REST API with httpx:
- GET  /tasks                                   active tasks (cursor pagination)
- GET  /tasks/completed/by_completion_date      tasks completed today
- POST /tasks/{id}/close, /tasks/{id}/reopen    completion changes

The action_id travels as X-Request-Id so a retried call is recognised as a
duplicate instead of being applied twice.
"""

from __future__ import annotations

import logging
from datetime import datetime, time as dtime, timedelta, timezone
from typing import Any

import httpx

from ..core.errors import NetworkError, RemoteError
from ..tasks.task_models import Ack, Due, Task

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.todoist.com/api/v1"
DEFAULT_TIMEOUT_SECONDS = 10.0
PAGE_LIMIT = 200
MAX_PAGES = 50

_NOT_FOUND = {404, 410}
_FORBIDDEN = {401, 403}
_TRANSIENT = {408, 425, 429}


def _parse_timestamp(raw: Any) -> float | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    try:
        dt = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def task_from_api(raw: dict[str, Any], *, completed: bool | None = None) -> Task:
    """
    Build a Task from a Todoist task object.

    Accepts both API generations: `checked` (v1) and `is_completed` (REST v2),
    `completed_at` / `completed_date`.
    """
    if completed is None:
        completed = bool(raw.get("checked", raw.get("is_completed", False)))
    completed_at = _parse_timestamp(raw.get("completed_at") or raw.get("completed_date"))
    return Task(
        id=str(raw.get("task_id") or raw.get("id")),
        title=str(raw.get("content") or ""),
        description=str(raw.get("description") or ""),
        completed=completed,
        completed_at=completed_at if completed else None,
        due=Due.from_dict(raw.get("due")),
        priority=int(raw.get("priority") or 1),
    )


def _today_bounds() -> tuple[str, str]:
    """Today's [since, until) in UTC ISO format, using the local calendar day."""
    local_tz = datetime.now().astimezone().tzinfo
    start = datetime.combine(datetime.now().date(), dtime.min, tzinfo=local_tz)
    end = start + timedelta(days=1)
    fmt = "%Y-%m-%dT%H:%M:%SZ"
    return (
        start.astimezone(timezone.utc).strftime(fmt),
        end.astimezone(timezone.utc).strftime(fmt),
    )


class TodoistGateway:
    """httpx-based RemoteGateway for Todoist."""

    def __init__(
        self,
        api_token: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_token or not api_token.strip():
            raise RuntimeError("Todoist API token is not set. Set TASKDECK_API_TOKEN in your .env.")

        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_token.strip()}"},
            timeout=httpx.Timeout(timeout_seconds, connect=min(5.0, timeout_seconds)),
            transport=transport,
        )

    # ---- low-level helpers ----

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        logger.debug("Sending %s %s params=%s", method, url, params)
        try:
            response = await self._client.request(method, url, params=params, headers=headers)
        except httpx.TimeoutException as e:
            raise NetworkError(f"timeout: {method} {url}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"{e.__class__.__name__}: {e}") from e

        status = response.status_code
        logger.debug("Response HTTP status: %s", status)
        if response.is_success:
            return response

        body = response.text[:200] if response.text else "No body"
        if status in _NOT_FOUND:
            raise RemoteError("not_found", f"HTTP {status}: {body}", status_code=status)
        if status in _FORBIDDEN:
            raise RemoteError("forbidden", f"HTTP {status}: {body}", status_code=status)
        if status in _TRANSIENT or status >= 500:
            raise NetworkError(f"HTTP {status}: {body}", status_code=status)
        logger.error("Error response body: %s", body)
        raise RemoteError("rejected", f"HTTP {status}: {body}", status_code=status)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"invalid JSON from {response.request.url}") from e

    async def _paginate(self, url: str, params: dict[str, Any], items_key: str) -> list[dict[str, Any]]:
        """Collect every page of a cursor-paginated listing (or a bare JSON list)."""
        out: list[dict[str, Any]] = []
        cursor: str | None = None
        for _ in range(MAX_PAGES):
            page_params = dict(params)
            if cursor:
                page_params["cursor"] = cursor
            data = self._json(await self._request("GET", url, params=page_params))

            if isinstance(data, list):
                out.extend(x for x in data if isinstance(x, dict))
                return out
            if not isinstance(data, dict):
                raise NetworkError(f"unexpected payload from {url}")

            out.extend(x for x in data.get(items_key) or [] if isinstance(x, dict))
            cursor = data.get("next_cursor")
            if not cursor:
                return out
        logger.warning("Stopped paginating %s after %s pages", url, MAX_PAGES)
        return out

    # ---- RemoteGateway ----

    async def fetch_active_tasks(self) -> list[Task]:
        raw = await self._paginate("/tasks", {"limit": PAGE_LIMIT}, "results")
        return [task_from_api(r) for r in raw]

    async def fetch_completed_today(self) -> list[Task]:
        since, until = _today_bounds()
        raw = await self._paginate(
            "/tasks/completed/by_completion_date",
            {"since": since, "until": until, "limit": PAGE_LIMIT},
            "items",
        )
        # everything in this listing is completed, whatever the flags say
        return [task_from_api(r, completed=True) for r in raw]

    async def fetch_tasks(self) -> list[Task]:
        active = await self.fetch_active_tasks()
        completed = await self.fetch_completed_today()
        seen = {t.id for t in active}
        merged = active + [t for t in completed if t.id not in seen]
        logger.debug("Retrieved %s active + %s completed task(s)", len(active), len(completed))
        return merged

    async def complete_task(self, task_id: str, action_id: str) -> Ack:
        await self._request("POST", f"/tasks/{task_id}/close", headers={"X-Request-Id": action_id})
        return Ack()

    async def uncomplete_task(self, task_id: str, action_id: str) -> Ack:
        await self._request("POST", f"/tasks/{task_id}/reopen", headers={"X-Request-Id": action_id})
        return Ack()

    async def aclose(self) -> None:
        await self._client.aclose()
