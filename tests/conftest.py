"""Shared pytest fixtures for the agentdesk test suite.

Provides:
  - mock_backend: in-memory SupportBackend with server-side paging and call tracking
  - mock_transport: in-memory RealtimeTransport recording emits, delivering events
  - notifier: RecordingNotifier capturing error / success toasts
  - identity, permissions, no_permissions
  - connection: ConnectionManager over mock_transport, no reconnect delay

No network access in any test; every collaborator below is in-memory.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from agentdesk.core.exceptions import NetworkFailureError, TransportNotConnectedError
from agentdesk.schemas.message import parse_timestamp
from agentdesk.schemas.session import AcceptResult, AgentIdentity, Department
from agentdesk.services.clients.base import (
    EventHandler,
    GroupScope,
    Notifier,
    RealtimeTransport,
    SupportBackend,
)
from agentdesk.services.permissions import Capability, StaticPermissions
from agentdesk.services.sync.connection import ConnectionManager

BASE_TIME = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


def message_payload(
    chat_id: int | str | None,
    body: str = "hello",
    *,
    minutes: int = 0,
    sender_type: str = "client",
    **extra: Any,
) -> dict[str, Any]:
    """Raw backend message row, ``minutes`` after BASE_TIME."""
    payload: dict[str, Any] = {
        "chat_body": body,
        "chat_created_at": (BASE_TIME + timedelta(minutes=minutes)).isoformat(),
        "sender_type": sender_type,
        "sender_name": "Customer",
        **extra,
    }
    if chat_id is not None:
        payload["chat_id"] = chat_id
    return payload


def group_row(
    session_id: int,
    chat_group_id: int | str,
    department: str | None = "Billing",
    **customer: Any,
) -> dict[str, Any]:
    """REST chat group row ``{customer, department}``."""
    return {
        "customer": {
            "id": session_id,
            "chat_group_id": chat_group_id,
            "name": f"Customer {session_id}",
            **customer,
        },
        "department": department,
    }


# ---------------------------------------------------------------------------
# Mock Support Backend
# ---------------------------------------------------------------------------


class MockSupportBackend(SupportBackend):
    """In-memory REST backend. Pages are cut from a full history per session."""

    def __init__(self) -> None:
        self.groups: dict[GroupScope, list[dict[str, Any]]] = {
            GroupScope.QUEUE: [],
            GroupScope.CHAT: [],
        }
        self.history: dict[str, list[dict[str, Any]]] = {}
        self.departments: list[Department] = []
        self.accept_result = AcceptResult(success=True, assigned_agent_id=7)
        self.transfer_result = True
        self.failing: set[str] = set()
        self.message_gate: asyncio.Event | None = None
        self.accept_gate: asyncio.Event | None = None

        self.group_calls: list[GroupScope] = []
        self.message_calls: list[dict[str, Any]] = []
        self.accept_calls: list[int | str] = []
        self.transfer_calls: list[tuple[int | str, int | str]] = []
        self.department_calls = 0

    def _maybe_fail(self, name: str) -> None:
        if name in self.failing:
            raise NetworkFailureError(f"{name} failed")

    async def fetch_groups(self, scope: GroupScope) -> list[dict[str, Any]]:
        self.group_calls.append(scope)
        self._maybe_fail("fetch_groups")
        return list(self.groups[scope])

    async def fetch_messages(
        self,
        scope: GroupScope,
        session_id: int | str,
        before: datetime | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        self.message_calls.append(
            {"scope": scope, "session_id": session_id, "before": before, "limit": limit}
        )
        if self.message_gate is not None:
            await self.message_gate.wait()
        self._maybe_fail("fetch_messages")
        rows = self.history.get(str(session_id), [])
        if before is not None:
            rows = [r for r in rows if parse_timestamp(r["chat_created_at"]) < before]
        return list(rows[-limit:])

    async def accept_session(self, chat_group_id: int | str) -> AcceptResult:
        self.accept_calls.append(chat_group_id)
        if self.accept_gate is not None:
            await self.accept_gate.wait()
        self._maybe_fail("accept_session")
        return self.accept_result

    async def transfer_session(
        self, chat_group_id: int | str, target_dept_id: int | str
    ) -> bool:
        self.transfer_calls.append((chat_group_id, target_dept_id))
        self._maybe_fail("transfer_session")
        return self.transfer_result

    async def fetch_departments(self) -> list[Department]:
        self.department_calls += 1
        self._maybe_fail("fetch_departments")
        return list(self.departments)


# ---------------------------------------------------------------------------
# Mock Realtime Transport
# ---------------------------------------------------------------------------


class MockTransport(RealtimeTransport):
    """In-memory realtime transport with multi-handler fan-out."""

    def __init__(self) -> None:
        self._connected = False
        self.handlers: dict[str, list[EventHandler]] = {}
        self.emitted: list[tuple[str, dict[str, Any]]] = []
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.fail_connect = False
        self.failing_emits: set[str] = set()

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.fail_connect:
            raise NetworkFailureError("connect failed")
        self._connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self._connected = False

    async def emit(self, event: str, payload: dict[str, Any] | None = None) -> None:
        if not self._connected:
            raise TransportNotConnectedError()
        if event in self.failing_emits:
            raise NetworkFailureError(f"emit {event} failed")
        self.emitted.append((event, payload or {}))

    def on(self, event: str, handler: EventHandler) -> None:
        handlers = self.handlers.setdefault(event, [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self.handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    async def deliver(self, event: str, data: Any) -> None:
        """Simulate a server broadcast to every registered handler."""
        for handler in list(self.handlers.get(event, ())):
            await handler(data)

    def emitted_named(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.emitted if name == event]


# ---------------------------------------------------------------------------
# Recording Notifier
# ---------------------------------------------------------------------------


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.errors: list[str] = []
        self.successes: list[str] = []

    def report_error(self, message: str) -> None:
        self.errors.append(message)

    def report_success(self, message: str) -> None:
        self.successes.append(message)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_backend() -> MockSupportBackend:
    return MockSupportBackend()


@pytest.fixture
def mock_transport() -> MockTransport:
    return MockTransport()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def identity() -> AgentIdentity:
    """Signed-in agent with user id 7."""
    return AgentIdentity(user_id=7)


@pytest.fixture
def permissions() -> StaticPermissions:
    """Every console capability granted."""
    return StaticPermissions(
        [
            Capability.MESSAGE,
            Capability.END_CHAT,
            Capability.TRANSFER,
            Capability.ACCEPT_CHAT,
        ]
    )


@pytest.fixture
def no_permissions() -> StaticPermissions:
    return StaticPermissions()


@pytest.fixture
def connection(mock_transport: MockTransport) -> ConnectionManager:
    return ConnectionManager(mock_transport, reconnect_delay=0)
