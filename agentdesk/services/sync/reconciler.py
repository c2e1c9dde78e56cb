"""Realtime Transport Reconciler.

Turns inbound realtime events into Message Store and Department Directory
mutations for one console mode, and keeps the transport's room membership
in step with the focused session.

Room switching always leaves the previous room before joining the next
one. Events are applied in receipt order; every apply is idempotent, so a
duplicate or replayed broadcast is harmless and no resequencing is needed.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog
from pydantic import ValidationError

from agentdesk.core.exceptions import AgentDeskError
from agentdesk.schemas.events import (
    INBOUND_EVENTS,
    AcceptBroadcastEvent,
    DeliveryEvent,
    GroupListChangedEvent,
    InboundEvent,
    MessageEvent,
    MoveToTopEvent,
    RoomMembershipEvent,
    parse_inbound,
)
from agentdesk.schemas.message import message_from_payload
from agentdesk.schemas.session import AgentIdentity, Session, SessionStatus
from agentdesk.services.clients.base import EventHandler, Notifier
from agentdesk.services.sync.actions import SessionActionEngine
from agentdesk.services.sync.connection import ConnectionManager
from agentdesk.services.sync.directory import DepartmentDirectory
from agentdesk.services.sync.message_store import MessageStore

logger = structlog.get_logger(__name__)


class RealtimeReconciler:
    """Applies one console mode's share of the shared realtime stream."""

    def __init__(
        self,
        connection: ConnectionManager,
        store: MessageStore,
        directory: DepartmentDirectory,
        engine: SessionActionEngine,
        notifier: Notifier,
        identity: AgentIdentity,
        *,
        list_status: SessionStatus = SessionStatus.ACTIVE,
        remove_on_accept_broadcast: bool = False,
    ) -> None:
        self._connection = connection
        self._store = store
        self._directory = directory
        self._engine = engine
        self._notifier = notifier
        self._identity = identity
        self._list_status = list_status
        self._remove_on_accept = remove_on_accept_broadcast

        self._room: str | None = None
        self._room_id: int | str | None = None
        self._room_lock = asyncio.Lock()
        self._attached = False
        self._handlers: dict[str, EventHandler] = {
            event.value: self._listener(event.value) for event in INBOUND_EVENTS
        }
        self._appliers: dict[str, Callable[[Any], Awaitable[None]]] = {
            "message": self._apply_message,
            "group_list_changed": self._apply_group_list_changed,
            "move_to_top": self._apply_move_to_top,
            "accept_broadcast": self._apply_accept_broadcast,
            "room_membership": self._apply_room_membership,
            "delivery": self._apply_delivery,
        }
        engine.add_focus_listener(self.handle_focus_change)

    @property
    def current_room(self) -> str | None:
        return self._room

    @property
    def attached(self) -> bool:
        return self._attached

    # ------------------------------------------------------------------
    # Listener lifecycle
    # ------------------------------------------------------------------

    def _listener(self, event: str) -> EventHandler:
        async def listener(data: Any) -> None:
            await self.handle(event, data)

        return listener

    async def attach(self) -> None:
        """Register this mode's listeners, then connect if needed.

        Listeners survive a failed connect, so a later reconnect delivers
        events without re-attaching.
        """
        if not self._attached:
            for event, handler in self._handlers.items():
                self._connection.transport.on(event, handler)
            self._attached = True
            logger.debug("reconciler_attached", list_status=self._list_status.value)
        await self._connection.ensure_connected()

    async def detach(self) -> None:
        """Remove this mode's listeners and leave its room. The connection stays up."""
        if self._attached:
            for event, handler in self._handlers.items():
                self._connection.transport.off(event, handler)
            self._attached = False
        await self.leave_room()
        logger.debug("reconciler_detached", list_status=self._list_status.value)

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    def _room_payload(self, key: str, room_id: int | str) -> dict[str, Any]:
        return {
            key: room_id,
            "userType": self._identity.user_type,
            "userId": self._identity.user_id,
        }

    async def _leave_locked(self) -> None:
        room_id, self._room, self._room_id = self._room_id, None, None
        if room_id is None:
            return
        key = str(room_id)
        try:
            left = await self._connection.leave_room(
                key, self._room_payload("roomId", room_id)
            )
        except AgentDeskError as e:
            logger.warning("room_leave_failed", chat_group_id=key, error=e.message)
            return
        if left:
            logger.info("room_left", chat_group_id=key, user_id=self._identity.user_id)
        else:
            logger.debug("room_still_held", chat_group_id=key)

    async def leave_room(self) -> None:
        async with self._room_lock:
            await self._leave_locked()

    async def handle_focus_change(
        self, previous: Session | None, current: Session | None
    ) -> None:
        """Leave the previous room, then join the newly focused session's room."""
        async with self._room_lock:
            target = current.room_key if current is not None else None
            if target == self._room:
                return
            await self._leave_locked()
            if current is None:
                return
            if self._identity.user_id is None:
                logger.warning("room_join_skipped_no_user", chat_group_id=target)
                return
            try:
                await self._connection.join_room(
                    target, self._room_payload("groupId", current.chat_group_id)
                )
            except AgentDeskError as e:
                logger.warning("room_join_failed", chat_group_id=target, error=e.message)
                self._notifier.report_error("Failed to join conversation")
                return
            self._room, self._room_id = target, current.chat_group_id
            logger.info("room_joined", chat_group_id=target, user_id=self._identity.user_id)

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    async def handle(self, event: str, data: Any) -> None:
        """Parse a raw transport event and apply it."""
        try:
            parsed = parse_inbound(event, data)
        except (ValueError, ValidationError) as e:
            logger.warning("inbound_event_malformed", socket_event=event, error=str(e))
            return
        if parsed is not None:
            await self.dispatch(parsed)

    async def dispatch(self, event: InboundEvent) -> None:
        await self._appliers[event.kind](event)

    async def _apply_message(self, event: MessageEvent) -> None:
        focused = self._engine.focused
        if focused is None or self._room is None or self._room != focused.room_key:
            logger.debug("message_without_room_discarded")
            return
        room = event.chat_group_id
        if room is not None and str(room) != self._room:
            logger.debug("message_stale_room_discarded", chat_group_id=str(room))
            return
        try:
            message = message_from_payload(
                event.payload,
                session_id=focused.session_id,
                local_user_id=self._identity.user_id,
            )
        except (ValueError, ValidationError) as e:
            logger.warning("inbound_message_malformed", error=str(e))
            return
        self._store.apply_incoming(message)

    async def _apply_group_list_changed(self, event: GroupListChangedEvent) -> None:
        await self._directory.request_refresh()

    def _owns_customer(self, customer: dict[str, Any]) -> bool:
        """Whether a moved customer belongs in this mode's list."""
        assigned = customer.get("sys_user_id")
        if self._list_status is SessionStatus.QUEUED:
            return not customer.get("isAccepted") and assigned is None
        if self._directory.find(customer["chat_group_id"]) is not None:
            return True
        return assigned is not None and str(assigned) == str(self._identity.user_id)

    async def _apply_move_to_top(self, event: MoveToTopEvent) -> None:
        customer = event.customer
        try:
            if not self._owns_customer(customer):
                logger.debug(
                    "move_to_top_other_list",
                    chat_group_id=str(customer["chat_group_id"]),
                    list_status=self._list_status.value,
                )
                return
            listed = self._directory.find(customer["chat_group_id"])
            session = Session.from_customer(
                customer,
                status=self._list_status,
                accepted=listed.is_accepted if listed is not None else None,
            )
        except (KeyError, ValidationError) as e:
            logger.warning("move_to_top_malformed", error=str(e))
            return
        self._directory.move_to_top(session)

    async def _apply_accept_broadcast(self, event: AcceptBroadcastEvent) -> None:
        if event.chat_group_id is None:
            return
        self._engine.mark_claimed(event.chat_group_id, event.agent_id)
        if self._remove_on_accept:
            self._directory.remove(event.chat_group_id)
        logger.info(
            "accept_broadcast_applied",
            chat_group_id=str(event.chat_group_id),
            agent_id=event.agent_id,
        )

    async def _apply_room_membership(self, event: RoomMembershipEvent) -> None:
        logger.info(
            "room_member_joined" if event.joined else "room_member_left",
            chat_group_id=str(event.chat_group_id),
            user_type=event.user_type,
            user_id=event.user_id,
        )

    async def _apply_delivery(self, event: DeliveryEvent) -> None:
        if event.delivered:
            logger.debug("message_delivered", chat_id=event.chat_id)
            return
        logger.warning("message_delivery_failed", error=event.error)
        self._notifier.report_error(event.error or "Message could not be delivered")
