# tests/test_todoist_gateway.py

from __future__ import annotations

import httpx
import pytest

from taskdeck.core.errors import NetworkError, RemoteError
from taskdeck.remote.offline import OfflineGateway
from taskdeck.remote.todoist import TodoistGateway, task_from_api

BASE_URL = "https://api.todoist.test/api/v1"


def _gateway(handler) -> TodoistGateway:
    return TodoistGateway("secret", base_url=BASE_URL, transport=httpx.MockTransport(handler))


def test_missing_token_is_rejected() -> None:
    with pytest.raises(RuntimeError):
        TodoistGateway("  ")


def test_task_from_api_maps_fields() -> None:
    task = task_from_api(
        {
            "id": "42",
            "content": "**Buy** milk",
            "description": "2%",
            "is_completed": True,
            "completed_at": "2026-10-19T08:30:00Z",
            "priority": 4,
            "due": {"date": "2026-10-19", "is_recurring": True, "string": "every day"},
        }
    )
    assert task.id == "42"
    assert task.title == "**Buy** milk"
    assert task.completed is True
    assert task.completed_at == 1792398600.0
    assert task.priority == 4
    assert task.due is not None and task.due.is_recurring is True


@pytest.mark.asyncio
async def test_fetch_tasks_follows_cursor_and_adds_completed_today() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/api/v1/tasks":
            if request.url.params.get("cursor") == "page2":
                return httpx.Response(200, json={"results": [{"id": "2", "content": "b"}], "next_cursor": None})
            return httpx.Response(200, json={"results": [{"id": "1", "content": "a"}], "next_cursor": "page2"})
        if request.url.path == "/api/v1/tasks/completed/by_completion_date":
            return httpx.Response(
                200,
                json={
                    "items": [
                        {"task_id": "3", "content": "c", "completed_at": "2026-10-19T10:00:00Z"},
                        {"id": "1", "content": "a"},
                    ]
                },
            )
        return httpx.Response(404)

    gw = _gateway(handler)
    try:
        tasks = await gw.fetch_tasks()
    finally:
        await gw.aclose()

    assert [t.id for t in tasks] == ["1", "2", "3"]
    assert [t.completed for t in tasks] == [False, False, True]
    assert all(r.headers["Authorization"] == "Bearer secret" for r in seen)
    assert "since" in seen[-1].url.params and "until" in seen[-1].url.params


@pytest.mark.asyncio
async def test_completion_calls_carry_the_action_id() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    gw = _gateway(handler)
    try:
        await gw.complete_task("7", "act-1")
        await gw.uncomplete_task("7", "act-2")
    finally:
        await gw.aclose()

    assert [(r.method, r.url.path) for r in seen] == [
        ("POST", "/api/v1/tasks/7/close"),
        ("POST", "/api/v1/tasks/7/reopen"),
    ]
    assert [r.headers["X-Request-Id"] for r in seen] == ["act-1", "act-2"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "reason"),
    [(404, "not_found"), (410, "not_found"), (401, "forbidden"), (403, "forbidden"), (400, "rejected")],
)
async def test_definitive_http_errors(status: int, reason: str) -> None:
    gw = _gateway(lambda request: httpx.Response(status, text="nope"))
    try:
        with pytest.raises(RemoteError) as exc:
            await gw.complete_task("1", "a")
    finally:
        await gw.aclose()
    assert exc.value.reason == reason
    assert exc.value.status_code == status


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [429, 500, 503])
async def test_transient_http_errors(status: int) -> None:
    gw = _gateway(lambda request: httpx.Response(status))
    try:
        with pytest.raises(NetworkError) as exc:
            await gw.fetch_tasks()
    finally:
        await gw.aclose()
    assert exc.value.status_code == status


@pytest.mark.asyncio
async def test_transport_failures_become_network_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    gw = _gateway(handler)
    try:
        with pytest.raises(NetworkError):
            await gw.complete_task("1", "a")
    finally:
        await gw.aclose()


@pytest.mark.asyncio
async def test_offline_gateway_fails_transiently() -> None:
    gw = OfflineGateway()
    with pytest.raises(NetworkError):
        await gw.fetch_tasks()
    with pytest.raises(NetworkError):
        await gw.complete_task("1", "a")
