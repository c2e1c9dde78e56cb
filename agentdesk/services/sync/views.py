"""View Composition Layer: Queue mode and Chat mode.

Each ConsoleView owns one Message Store, one Department Directory, one
Session Action Engine and one Realtime Reconciler. Both views share the
process-wide ConnectionManager; neither ever tears the connection down.

The view is the error boundary: any AgentDeskError raised by the engine is
reported to the notifier and the operation returns False.
"""

from __future__ import annotations

from enum import Enum
from functools import partial
from typing import Awaitable

import structlog

from agentdesk.core.config import settings
from agentdesk.core.exceptions import AgentDeskError, NetworkFailureError
from agentdesk.schemas.message import Message
from agentdesk.schemas.session import (
    AgentIdentity,
    Department,
    EndedSession,
    Session,
    SessionStatus,
)
from agentdesk.services.clients.base import (
    GroupScope,
    Notifier,
    PermissionChecker,
    SupportBackend,
)
from agentdesk.services.sync.actions import SessionActionEngine
from agentdesk.services.sync.connection import ConnectionManager
from agentdesk.services.sync.directory import DepartmentDirectory, sessions_from_groups
from agentdesk.services.sync.message_store import MessageStore
from agentdesk.services.sync.reconciler import RealtimeReconciler

logger = structlog.get_logger(__name__)


class ConsoleMode(str, Enum):
    QUEUE = "queue"
    CHAT = "chat"


_SCOPE = {ConsoleMode.QUEUE: GroupScope.QUEUE, ConsoleMode.CHAT: GroupScope.CHAT}
_LIST_STATUS = {ConsoleMode.QUEUE: SessionStatus.QUEUED, ConsoleMode.CHAT: SessionStatus.ACTIVE}


class ConsoleView:
    """One console mode wired onto the shared connection."""

    def __init__(
        self,
        mode: ConsoleMode,
        backend: SupportBackend,
        connection: ConnectionManager,
        permissions: PermissionChecker,
        notifier: Notifier,
        identity: AgentIdentity,
        *,
        debounce_seconds: float | None = None,
        cooldown_seconds: float | None = None,
        page_size: int | None = None,
        end_chat_delay: float | None = None,
    ) -> None:
        self.mode = mode
        self._backend = backend
        self._connection = connection
        self._notifier = notifier
        self._scope = _SCOPE[mode]
        self._list_status = _LIST_STATUS[mode]
        self._opened = False

        self.store = MessageStore(
            partial(backend.fetch_messages, self._scope),
            notifier,
            local_user_id=identity.user_id,
            page_size=page_size,
        )
        self.directory = DepartmentDirectory(
            self._fetch_sessions,
            notifier,
            debounce_seconds=debounce_seconds,
            cooldown_seconds=cooldown_seconds,
        )
        self.engine = SessionActionEngine(
            self.store,
            self.directory,
            backend,
            connection.transport,
            permissions,
            notifier,
            identity,
            end_chat_delay=end_chat_delay,
        )
        self.reconciler = RealtimeReconciler(
            connection,
            self.store,
            self.directory,
            self.engine,
            notifier,
            identity,
            list_status=self._list_status,
            remove_on_accept_broadcast=mode is ConsoleMode.QUEUE,
        )

    async def _fetch_sessions(self) -> list[Session]:
        rows = await self._backend.fetch_groups(self._scope)
        return sessions_from_groups(rows, self._list_status)

    async def _guard(self, action: Awaitable[bool], failure: str) -> bool:
        try:
            return await action
        except NetworkFailureError as e:
            logger.warning("console_action_failed", mode=self.mode.value, error=e.message)
            self._notifier.report_error(failure)
        except AgentDeskError as e:
            logger.info("console_action_refused", mode=self.mode.value, code=e.code)
            self._notifier.report_error(e.message)
        return False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Attach listeners, then load the session list and department catalog."""
        if self._opened:
            return
        self._opened = True
        self._connection.add_disconnect_hook(self._on_disconnect)
        try:
            await self.reconciler.attach()
        except NetworkFailureError as e:
            logger.error("console_realtime_unavailable", mode=self.mode.value, error=e.message)
            self._notifier.report_error("Failed to connect to live updates")
        await self.directory.refresh()
        await self.refresh_departments()
        logger.info("console_view_opened", mode=self.mode.value, sessions=len(self.directory))

    async def _on_disconnect(self) -> None:
        await self.engine.clear_focus()

    async def close(self) -> None:
        """Detach listeners and cancel timers. The shared connection stays open."""
        if not self._opened:
            return
        self._opened = False
        self._connection.remove_disconnect_hook(self._on_disconnect)
        self.engine.close()
        self.directory.close()
        await self.reconciler.detach()
        logger.info("console_view_closed", mode=self.mode.value)

    async def refresh(self) -> bool:
        return await self.directory.refresh()

    async def refresh_departments(self) -> bool:
        try:
            departments = await self._backend.fetch_departments()
        except NetworkFailureError as e:
            logger.warning("departments_fetch_failed", error=e.message)
            self._notifier.report_error("Failed to fetch departments")
            return False
        self.engine.set_departments(departments)
        return True

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def select(self, session: Session | int | str) -> bool:
        """Focus a session (or a listed session by its routing key)."""
        if not isinstance(session, Session):
            found = self.directory.find(session)
            if found is None:
                logger.info("select_unknown_session", chat_group_id=str(session))
                return False
            session = found

        async def _select() -> bool:
            await self.engine.select(session)
            return True

        return await self._guard(_select(), "Failed to open conversation")

    async def load_more(self) -> bool:
        """Fetch an older page. Returns False when nothing was requested."""
        if self.store.is_loading_more or not self.store.has_more:
            return False
        if self.engine.focused is None:
            return False
        before = len(self.store.messages)
        await self.store.load_more()
        return len(self.store.messages) > before

    async def accept(self, session: Session | None = None) -> bool:
        return await self._guard(self.engine.accept(session), "Failed to accept chat")

    async def send(self, body: str) -> bool:
        return await self._guard(self.engine.send(body), "Failed to send message")

    async def end_chat(self) -> bool:
        return await self._guard(self.engine.end_chat(), "Failed to end chat")

    async def transfer(self, target_dept_id: int | str) -> bool:
        return await self._guard(self.engine.transfer(target_dept_id), "Failed to transfer chat")

    def select_department(self, name: str) -> str:
        return self.directory.select_department(name)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def sessions(self) -> list[Session]:
        """Sessions of the selected department (all of them under ALL)."""
        return self.directory.filtered_view()

    @property
    def departments(self) -> list[str]:
        return self.directory.departments

    @property
    def selected_department(self) -> str:
        return self.directory.selected_department

    @property
    def messages(self) -> list[Message]:
        return self.store.messages

    @property
    def has_more(self) -> bool:
        return self.store.has_more

    @property
    def is_loading_more(self) -> bool:
        return self.store.is_loading_more

    @property
    def focused(self) -> Session | None:
        return self.engine.focused

    @property
    def chat_ended(self) -> bool:
        return self.engine.chat_ended

    @property
    def ended_sessions(self) -> dict[str, EndedSession]:
        return self.engine.ended_sessions

    @property
    def transfer_destinations(self) -> list[Department]:
        return self.engine.transfer_destinations()


def queue_view(
    backend: SupportBackend,
    connection: ConnectionManager,
    permissions: PermissionChecker,
    notifier: Notifier,
    identity: AgentIdentity,
    **kwargs,
) -> ConsoleView:
    """Queue mode: debounced list refresh, accept broadcasts drop queued rows."""
    kwargs.setdefault("debounce_seconds", settings.queue_debounce_seconds)
    return ConsoleView(
        ConsoleMode.QUEUE, backend, connection, permissions, notifier, identity, **kwargs
    )


def chat_view(
    backend: SupportBackend,
    connection: ConnectionManager,
    permissions: PermissionChecker,
    notifier: Notifier,
    identity: AgentIdentity,
    **kwargs,
) -> ConsoleView:
    """Chat mode: immediate list refresh."""
    kwargs.setdefault("debounce_seconds", None)
    return ConsoleView(
        ConsoleMode.CHAT, backend, connection, permissions, notifier, identity, **kwargs
    )
