"""Abstract collaborator interfaces.

The sync engine never imports a concrete REST client or transport.
Concrete collaborators are created once by ``open_console`` (or by tests)
and injected into every component.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

from agentdesk.schemas.session import AcceptResult, Department

EventHandler = Callable[[Any], Awaitable[None]]


class GroupScope(str, Enum):
    """Which backend list a console mode reads from."""

    QUEUE = "queue"
    CHAT = "chat"


class SupportBackend(ABC):
    """REST collaborator. Every call raises NetworkFailureError on failure."""

    @abstractmethod
    async def fetch_groups(self, scope: GroupScope) -> list[dict[str, Any]]:
        """Return ``[{customer: {...}, department}]`` rows for the scope."""
        ...

    @abstractmethod
    async def fetch_messages(
        self,
        scope: GroupScope,
        session_id: int | str,
        before: datetime | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Return up to ``limit`` raw messages older than ``before``, oldest first."""
        ...

    @abstractmethod
    async def accept_session(self, chat_group_id: int | str) -> AcceptResult:
        """Assign a queued session to the caller. Must never be retried blindly."""
        ...

    @abstractmethod
    async def transfer_session(
        self, chat_group_id: int | str, target_dept_id: int | str
    ) -> bool:
        """Route a session to another department. Returns the success flag."""
        ...

    @abstractmethod
    async def fetch_departments(self) -> list[Department]:
        """Return the department catalog (transfer destinations)."""
        ...


class RealtimeTransport(ABC):
    """Persistent realtime connection collaborator."""

    @property
    @abstractmethod
    def connected(self) -> bool: ...

    @abstractmethod
    async def connect(self) -> None: ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection. The next ``connect`` must start fresh."""
        ...

    @abstractmethod
    async def emit(self, event: str, payload: dict[str, Any] | None = None) -> None: ...

    @abstractmethod
    def on(self, event: str, handler: EventHandler) -> None: ...

    @abstractmethod
    def off(self, event: str, handler: EventHandler) -> None: ...


class PermissionChecker(ABC):
    """Synchronous capability lookup for the signed-in agent."""

    @abstractmethod
    def has_capability(self, name: str) -> bool: ...


class Notifier(ABC):
    """Fire-and-forget user feedback (toasts in the console UI)."""

    @abstractmethod
    def report_error(self, message: str) -> None: ...

    @abstractmethod
    def report_success(self, message: str) -> None: ...
