"""Session Action Engine: select / accept / send / end / transfer.

Per-session state machine:
    queued -> active                    accept
    queued | active -> queued(new dept) transfer
    active -> ended                     end (archived, never deleted)

Every mutating action checks its capability before touching the store,
the directory, the backend or the transport. Errors are raised as
AgentDeskError subclasses; the view layer reports them to the agent.
Actions that are merely redundant (a second accept, a blank message)
return False without raising.
"""

from __future__ import annotations

from functools import partial
from typing import Awaitable, Callable

import structlog

from agentdesk.core.config import settings
from agentdesk.core.exceptions import (
    AcceptRejectedError,
    AgentDeskError,
    CapabilityDeniedError,
    InvalidTransferError,
    NoFocusedSessionError,
)
from agentdesk.schemas.events import SocketEvent
from agentdesk.schemas.message import system_message
from agentdesk.schemas.session import (
    AgentIdentity,
    Department,
    EndedSession,
    Session,
    SessionStatus,
)
from agentdesk.services.clients.base import (
    Notifier,
    PermissionChecker,
    RealtimeTransport,
    SupportBackend,
)
from agentdesk.services.permissions import Capability
from agentdesk.services.sync.directory import DepartmentDirectory
from agentdesk.services.sync.message_store import MessageStore
from agentdesk.services.sync.scheduling import DelayedTask

logger = structlog.get_logger(__name__)

FocusListener = Callable[[Session | None, Session | None], Awaitable[None]]


class SessionActionEngine:
    """Agent actions over one console mode's store and directory."""

    def __init__(
        self,
        store: MessageStore,
        directory: DepartmentDirectory,
        backend: SupportBackend,
        transport: RealtimeTransport,
        permissions: PermissionChecker,
        notifier: Notifier,
        identity: AgentIdentity,
        *,
        end_chat_delay: float | None = None,
        end_chat_message: str | None = None,
    ) -> None:
        self.store = store
        self.directory = directory
        self._backend = backend
        self._transport = transport
        self._permissions = permissions
        self._notifier = notifier
        self._identity = identity
        self._end_chat_delay = (
            settings.end_chat_delay_seconds if end_chat_delay is None else end_chat_delay
        )
        self._end_chat_message = end_chat_message or settings.end_chat_message

        self._focused: Session | None = None
        self._chat_ended = False
        self._ended: dict[str, EndedSession] = {}
        self._departments: list[Department] = []
        self._accepts_in_flight: set[str] = set()
        self._claimed: set[str] = set()
        self._clear_task = DelayedTask("end_chat_clear_focus")
        self._focus_listeners: list[FocusListener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def focused(self) -> Session | None:
        return self._focused

    @property
    def chat_ended(self) -> bool:
        return self._chat_ended

    @property
    def ended_sessions(self) -> dict[str, EndedSession]:
        return dict(self._ended)

    @property
    def departments(self) -> list[Department]:
        return list(self._departments)

    def set_departments(self, departments: list[Department]) -> None:
        self._departments = list(departments)

    def add_focus_listener(self, listener: FocusListener) -> None:
        self._focus_listeners.append(listener)

    def remove_focus_listener(self, listener: FocusListener) -> None:
        if listener in self._focus_listeners:
            self._focus_listeners.remove(listener)

    async def _set_focus(self, session: Session | None) -> None:
        previous, self._focused = self._focused, session
        previous_key = previous.room_key if previous else None
        current_key = session.room_key if session else None
        if previous_key == current_key:
            return
        for listener in list(self._focus_listeners):
            await listener(previous, session)

    def _require(self, capability: str, action: str) -> None:
        if not self._permissions.has_capability(capability):
            logger.info("action_denied", capability=capability, user_id=self._identity.user_id)
            raise CapabilityDeniedError(action)

    def _require_focus(self) -> Session:
        if self._focused is None:
            raise NoFocusedSessionError()
        return self._focused

    # ------------------------------------------------------------------
    # Focus
    # ------------------------------------------------------------------

    async def select(self, session: Session) -> None:
        """Focus a session, reset its window, join its room, load the first page."""
        self._clear_task.cancel()
        self._chat_ended = str(session.session_id) in self._ended
        self.store.focus(session.session_id)
        await self._set_focus(session)
        await self.store.load(session.session_id)
        logger.info(
            "session_selected",
            session_id=session.session_id,
            chat_group_id=session.room_key,
        )

    async def clear_focus(self) -> None:
        self._clear_task.cancel()
        self.store.focus(None)
        await self._set_focus(None)

    # ------------------------------------------------------------------
    # Accept
    # ------------------------------------------------------------------

    async def accept(self, session: Session | None = None) -> bool:
        """Claim a queued session. Fire-once: never retried, never doubled."""
        self._require(Capability.ACCEPT_CHAT, "accept chats")
        target = session or self._require_focus()
        key = target.room_key

        listed = self.directory.find(key)
        if key in self._accepts_in_flight or (listed is None and key in self._claimed):
            logger.info("accept_ignored", chat_group_id=key, reason="already_claimed")
            return False
        current = listed or target
        if current.status is not SessionStatus.QUEUED or current.is_accepted:
            logger.info("accept_ignored", chat_group_id=key, reason=current.status.value)
            return False

        self._accepts_in_flight.add(key)
        try:
            result = await self._backend.accept_session(current.chat_group_id)
        finally:
            self._accepts_in_flight.discard(key)

        if not result.success:
            logger.warning("accept_rejected", chat_group_id=key)
            raise AcceptRejectedError()

        accepted = current.model_copy(
            update={
                "is_accepted": True,
                "assigned_agent_id": result.assigned_agent_id,
                "status": SessionStatus.ACTIVE,
            }
        )
        self._claimed.add(key)
        self.directory.remove(key)
        if self._focused is not None and self._focused.room_key == key:
            self._focused = accepted

        try:
            await self._transport.emit(
                SocketEvent.ACCEPT_CHAT.value,
                {"chatGroupId": current.chat_group_id, "agentId": result.assigned_agent_id},
            )
        except AgentDeskError as e:
            # The backend already assigned the session; peers converge on the
            # next group-list broadcast.
            logger.warning("accept_broadcast_failed", chat_group_id=key, error=e.message)

        logger.info(
            "session_accepted",
            chat_group_id=key,
            assigned_agent_id=result.assigned_agent_id,
        )
        return True

    def mark_claimed(self, chat_group_id: int | str, agent_id: int | str | None) -> None:
        """Apply an authoritative accept broadcast over any local prediction."""
        key = str(chat_group_id)
        self._claimed.add(key)
        if self._focused is not None and self._focused.room_key == key:
            self._focused = self._focused.model_copy(
                update={
                    "is_accepted": True,
                    "assigned_agent_id": agent_id,
                    "status": SessionStatus.ACTIVE,
                }
            )

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send(self, body: str) -> bool:
        """Emit a message intent. The broadcast echo appends it to the store."""
        self._require(Capability.MESSAGE, "send messages")
        text = body.rstrip("\n")
        if not text.strip() or self._focused is None:
            return False

        await self._transport.emit(
            SocketEvent.SEND_MESSAGE.value,
            {
                "chat_body": text,
                "chat_group_id": self._focused.chat_group_id,
                "sys_user_id": self._identity.user_id,
                "client_id": None,
            },
        )
        logger.debug("message_send_emitted", chat_group_id=self._focused.room_key)
        return True

    # ------------------------------------------------------------------
    # End
    # ------------------------------------------------------------------

    async def end_chat(self) -> bool:
        """End the focused chat locally, archive it, clear focus after a delay."""
        self._require(Capability.END_CHAT, "end chats")
        focused = self._require_focus()

        banner = system_message(self._end_chat_message, focused.session_id)
        self.store.append_local(banner)
        self._chat_ended = True
        self._ended[str(focused.session_id)] = EndedSession(
            session=focused.model_copy(update={"status": SessionStatus.ENDED}),
            messages=self.store.messages,
            ended_at=banner.server_timestamp,
        )
        self._clear_task.schedule(
            self._end_chat_delay, partial(self._clear_after_end, focused.room_key)
        )
        logger.info("chat_ended", session_id=focused.session_id, chat_group_id=focused.room_key)
        return True

    async def _clear_after_end(self, room_key: str) -> None:
        if self._focused is not None and self._focused.room_key == room_key:
            await self.clear_focus()

    # ------------------------------------------------------------------
    # Transfer
    # ------------------------------------------------------------------

    def _department(self, dept_id: int | str) -> Department | None:
        for department in self._departments:
            if str(department.dept_id) == str(dept_id):
                return department
        return None

    def transfer_destinations(self) -> list[Department]:
        """Active departments, plus inactive ones that already hold a session."""
        routed = set(self.directory.departments[1:])
        return [d for d in self._departments if d.is_active or d.name in routed]

    async def transfer(self, target_dept_id: int | str) -> bool:
        """Route the focused session to another department."""
        self._require(Capability.TRANSFER, "transfer chats")
        focused = self._require_focus()

        target = self._department(target_dept_id)
        if target is not None:
            if target.name == focused.department:
                raise InvalidTransferError("Chat is already in that department")
            if target not in self.transfer_destinations():
                raise InvalidTransferError(f"Department {target.name} is inactive")

        success = await self._backend.transfer_session(focused.chat_group_id, target_dept_id)
        if not success:
            logger.warning("transfer_rejected", chat_group_id=focused.room_key)
            self._notifier.report_error("Failed to transfer chat")
            return False

        self.directory.remove(focused.room_key)
        self._chat_ended = False
        await self.clear_focus()
        self._notifier.report_success("Chat transferred successfully")
        logger.info(
            "chat_transferred",
            chat_group_id=focused.room_key,
            target_dept_id=target_dept_id,
        )
        return True

    def close(self) -> None:
        self._clear_task.cancel()
