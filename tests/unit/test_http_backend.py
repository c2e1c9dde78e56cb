"""Unit tests for the httpx REST collaborator.

Tests:
  - Endpoint paths and query parameters per scope
  - Idempotent calls retry, accept never does
  - httpx failures surface as NetworkFailureError
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Callable

import httpx
import pytest

from agentdesk.core.exceptions import NetworkFailureError
from agentdesk.services.clients.base import GroupScope
from agentdesk.services.clients.http import HttpSupportBackend


def _backend(
    handler: Callable[[httpx.Request], httpx.Response], max_retries: int = 3
) -> tuple[HttpSupportBackend, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(
        transport=httpx.MockTransport(recording), base_url="http://backend.test"
    )
    backend = HttpSupportBackend(client, max_retries=max_retries, backoff_base_seconds=0)
    return backend, requests


class TestEndpoints:
    @pytest.mark.asyncio
    async def test_fetch_groups_per_scope(self) -> None:
        backend, requests = _backend(
            lambda r: httpx.Response(200, json=[{"customer": {"id": 1}, "department": "Sales"}])
        )

        queue = await backend.fetch_groups(GroupScope.QUEUE)
        await backend.fetch_groups(GroupScope.CHAT)

        assert queue[0]["department"] == "Sales"
        assert [r.url.path for r in requests] == ["/queues/chatgroups", "/chat/chatgroups"]

    @pytest.mark.asyncio
    async def test_fetch_messages_params(self) -> None:
        backend, requests = _backend(
            lambda r: httpx.Response(200, json={"messages": [{"chat_id": 1}]})
        )
        before = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)

        rows = await backend.fetch_messages(GroupScope.CHAT, 5, before=before, limit=10)

        assert rows == [{"chat_id": 1}]
        request = requests[0]
        assert request.url.path == "/chat/5"
        assert request.url.params["limit"] == "10"
        assert request.url.params["before"] == before.isoformat()

    @pytest.mark.asyncio
    async def test_fetch_messages_first_page_has_no_before(self) -> None:
        backend, requests = _backend(lambda r: httpx.Response(200, json={}))

        rows = await backend.fetch_messages(GroupScope.QUEUE, 5)

        assert rows == []
        assert requests[0].url.path == "/queues/5"
        assert "before" not in requests[0].url.params

    @pytest.mark.asyncio
    async def test_accept(self) -> None:
        backend, requests = _backend(
            lambda r: httpx.Response(200, json={"success": True, "data": {"sys_user_id": 7}})
        )

        result = await backend.accept_session(30)

        assert result.success is True
        assert result.assigned_agent_id == 7
        assert requests[0].method == "POST"
        assert requests[0].url.path == "/queues/30/accept"

    @pytest.mark.asyncio
    async def test_transfer_body(self) -> None:
        backend, requests = _backend(lambda r: httpx.Response(200, json={"success": True}))

        assert await backend.transfer_session(30, 2) is True
        assert requests[0].url.path == "/chat/30/transfer"
        assert json.loads(requests[0].content) == {"deptId": 2}

    @pytest.mark.asyncio
    async def test_departments(self) -> None:
        backend, _ = _backend(
            lambda r: httpx.Response(
                200, json=[{"dept_id": 1, "dept_name": "Billing", "dept_is_active": True}]
            )
        )

        departments = await backend.fetch_departments()

        assert departments[0].name == "Billing"


class TestRetries:
    @pytest.mark.asyncio
    async def test_get_retried_until_success(self) -> None:
        responses = iter([httpx.Response(503), httpx.Response(503), httpx.Response(200, json=[])])
        backend, requests = _backend(lambda r: next(responses))

        assert await backend.fetch_groups(GroupScope.CHAT) == []
        assert len(requests) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_network_failure(self) -> None:
        backend, requests = _backend(lambda r: httpx.Response(500), max_retries=2)

        with pytest.raises(NetworkFailureError):
            await backend.fetch_departments()
        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_accept_never_retried(self) -> None:
        backend, requests = _backend(lambda r: httpx.Response(502))

        with pytest.raises(NetworkFailureError):
            await backend.accept_session(30)
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_connection_error_wrapped(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        backend, _ = _backend(refuse, max_retries=1)

        with pytest.raises(NetworkFailureError) as exc_info:
            await backend.fetch_groups(GroupScope.QUEUE)
        assert exc_info.value.code == "NETWORK_FAILURE"

    @pytest.mark.asyncio
    async def test_invalid_json_wrapped(self) -> None:
        backend, _ = _backend(lambda r: httpx.Response(200, content=b"<html>"), max_retries=1)

        with pytest.raises(NetworkFailureError):
            await backend.fetch_groups(GroupScope.QUEUE)


class TestResponseShapes:
    @pytest.mark.asyncio
    async def test_group_list_must_be_a_list(self) -> None:
        backend, _ = _backend(lambda r: httpx.Response(200, json={"groups": []}))

        with pytest.raises(NetworkFailureError):
            await backend.fetch_groups(GroupScope.CHAT)

    @pytest.mark.asyncio
    async def test_group_rows_must_be_objects(self) -> None:
        backend, _ = _backend(lambda r: httpx.Response(200, json=["customer"]))

        with pytest.raises(NetworkFailureError):
            await backend.fetch_groups(GroupScope.QUEUE)

    @pytest.mark.asyncio
    async def test_message_page_must_be_an_object(self) -> None:
        backend, _ = _backend(lambda r: httpx.Response(200, json=[{"chat_id": 1}]))

        with pytest.raises(NetworkFailureError):
            await backend.fetch_messages(GroupScope.CHAT, 5)

    @pytest.mark.asyncio
    async def test_malformed_department_rows(self) -> None:
        backend, _ = _backend(lambda r: httpx.Response(200, json=[{"dept_id": 1}]))

        with pytest.raises(NetworkFailureError):
            await backend.fetch_departments()
