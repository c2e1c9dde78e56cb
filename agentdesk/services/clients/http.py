"""REST collaborator backed by httpx.

Endpoints:
- GET  /queues/chatgroups, /chat/chatgroups   group lists per scope
- GET  /queues/{client_id}, /chat/{client_id} message pages (limit, before)
- POST /queues/{chat_group_id}/accept         accept (fire-once, no retries)
- POST /chat/{chat_group_id}/transfer         transfer to {deptId}
- GET  /departments                           department catalog

Idempotent calls retry with exponential backoff (1s, 2s, 4s by default).
Every httpx failure is re-raised as NetworkFailureError so callers only
handle the package's own hierarchy.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from agentdesk.core.config import settings
from agentdesk.core.exceptions import NetworkFailureError
from agentdesk.schemas.session import AcceptResult, Department
from agentdesk.services.clients.base import GroupScope, SupportBackend

logger = structlog.get_logger(__name__)

_SCOPE_PREFIX = {
    GroupScope.QUEUE: "/queues",
    GroupScope.CHAT: "/chat",
}


def _expect(data: Any, shape: type, url: str) -> Any:
    """Check a decoded body against the expected JSON shape. An empty body is empty."""
    if data is None:
        return shape()
    if not isinstance(data, shape):
        logger.warning("backend_response_unexpected", url=url, body_type=type(data).__name__)
        raise NetworkFailureError(
            f"{url} returned {type(data).__name__}, expected {shape.__name__}"
        )
    return data


def _rows(data: Any, url: str) -> list[dict[str, Any]]:
    rows = _expect(data, list, url)
    if not all(isinstance(row, dict) for row in rows):
        raise NetworkFailureError(f"{url} returned non-object rows")
    return rows


class HttpSupportBackend(SupportBackend):
    """Thin wrapper over httpx.AsyncClient with typed helpers.

    The client carries the agent's auth cookies; pass an existing
    ``httpx.AsyncClient`` to share a login session.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        base_url: str | None = None,
        max_retries: int | None = None,
        backoff_base_seconds: float = 1.0,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.backend_url,
            timeout=settings.request_timeout_seconds,
        )
        self._max_retries = max(
            1, max_retries if max_retries is not None else settings.request_max_retries
        )
        self._backoff_base = backoff_base_seconds

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        retry: bool,
        **kwargs: Any,
    ) -> Any:
        attempts = self._max_retries if retry else 1
        for attempt in range(attempts):
            try:
                response = await self._client.request(method, url, **kwargs)
                response.raise_for_status()
                return response.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(
                    "backend_request_failed",
                    method=method,
                    url=url,
                    attempt=attempt + 1,
                    error=str(e),
                )
                if attempt < attempts - 1:
                    await asyncio.sleep(self._backoff_base * (2**attempt))
                    continue
                raise NetworkFailureError(f"{method} {url} failed: {e}") from e

    # ------------------------------------------------------------------
    # SupportBackend
    # ------------------------------------------------------------------

    async def fetch_groups(self, scope: GroupScope) -> list[dict[str, Any]]:
        url = f"{_SCOPE_PREFIX[scope]}/chatgroups"
        data = await self._request("GET", url, retry=True)
        return _rows(data, url)

    async def fetch_messages(
        self,
        scope: GroupScope,
        session_id: int | str,
        before: datetime | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"limit": limit}
        if before is not None:
            params["before"] = before.isoformat()
        url = f"{_SCOPE_PREFIX[scope]}/{session_id}"
        data = await self._request("GET", url, retry=True, params=params)
        return _rows(_expect(data, dict, url).get("messages"), url)

    async def accept_session(self, chat_group_id: int | str) -> AcceptResult:
        url = f"/queues/{chat_group_id}/accept"
        data = _expect(await self._request("POST", url, retry=False), dict, url)
        assigned = (data.get("data") or {}).get("sys_user_id")
        logger.info(
            "session_accept_response",
            chat_group_id=str(chat_group_id),
            success=bool(data.get("success")),
        )
        return AcceptResult(success=bool(data.get("success")), assigned_agent_id=assigned)

    async def transfer_session(
        self, chat_group_id: int | str, target_dept_id: int | str
    ) -> bool:
        url = f"/chat/{chat_group_id}/transfer"
        data = await self._request("POST", url, retry=True, json={"deptId": target_dept_id})
        return bool(_expect(data, dict, url).get("success"))

    async def fetch_departments(self) -> list[Department]:
        data = await self._request("GET", "/departments", retry=True)
        try:
            return [Department.model_validate(row) for row in _rows(data, "/departments")]
        except ValidationError as e:
            raise NetworkFailureError(f"/departments returned malformed rows: {e}") from e
