"""The one realtime connection shared by every console mode.

Queue mode and Chat mode register their own listeners on the same
transport and only ever remove those listeners on teardown. The
connection itself is opened on first use and torn down only on logout
or console shutdown.

Room membership is per socket, so it lives here too: each mode holds the
rooms it shows, and the socket leaves a room only when its last holder
releases it.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog

from agentdesk.core.config import settings
from agentdesk.core.exceptions import AgentDeskError
from agentdesk.schemas.events import SocketEvent
from agentdesk.services.clients.base import RealtimeTransport

logger = structlog.get_logger(__name__)

DisconnectHook = Callable[[], Awaitable[None]]


class ConnectionManager:
    """Explicit lifecycle for the process-wide realtime transport."""

    def __init__(
        self,
        transport: RealtimeTransport,
        *,
        reconnect_delay: float | None = None,
    ) -> None:
        self.transport = transport
        self._reconnect_delay = (
            settings.reconnect_delay_seconds if reconnect_delay is None else reconnect_delay
        )
        self._hooks: list[DisconnectHook] = []
        self._lock = asyncio.Lock()
        self._rooms: dict[str, int] = {}
        self._rooms_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self.transport.connected

    def holders(self, room_key: str) -> int:
        return self._rooms.get(room_key, 0)

    def add_disconnect_hook(self, hook: DisconnectHook) -> None:
        """Run ``hook`` before every teardown (each mode leaves its room)."""
        self._hooks.append(hook)

    def remove_disconnect_hook(self, hook: DisconnectHook) -> None:
        if hook in self._hooks:
            self._hooks.remove(hook)

    async def ensure_connected(self) -> None:
        async with self._lock:
            if not self.transport.connected:
                await self.transport.connect()
                logger.info("realtime_connected")

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    async def join_room(self, room_key: str, payload: dict[str, Any]) -> None:
        """Take a hold on ``room_key``. Only the first holder emits the join.

        A failed join raises and leaves no hold behind.
        """
        async with self._rooms_lock:
            count = self._rooms.get(room_key, 0)
            if count == 0:
                await self.transport.emit(SocketEvent.JOIN_CHAT_GROUP.value, payload)
            self._rooms[room_key] = count + 1
            logger.debug("room_held", chat_group_id=room_key, holders=count + 1)

    async def leave_room(self, room_key: str, payload: dict[str, Any]) -> bool:
        """Release a hold on ``room_key``. Returns True when the socket left it."""
        async with self._rooms_lock:
            count = self._rooms.get(room_key, 0)
            if count > 1:
                self._rooms[room_key] = count - 1
                logger.debug("room_released", chat_group_id=room_key, holders=count - 1)
                return False
            if count == 0:
                return False
            del self._rooms[room_key]
            await self.transport.emit(SocketEvent.LEAVE_ROOM.value, payload)
            return True

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _run_hooks(self) -> None:
        for hook in list(self._hooks):
            try:
                await hook()
            except AgentDeskError as e:
                logger.warning("disconnect_hook_failed", error=e.message)

    async def _disconnect(self, reason: str) -> None:
        await self._run_hooks()
        await self.transport.disconnect()
        # A new socket starts in no rooms.
        self._rooms.clear()
        logger.info("realtime_disconnected", reason=reason)

    async def logout(self) -> None:
        """Leave rooms, drop the connection, reconnect with a fresh client.

        The fresh client guarantees that no auth state from the previous
        login is reused by the socket.
        """
        async with self._lock:
            await self._disconnect("logout")
            await asyncio.sleep(self._reconnect_delay)
            await self.transport.connect()
            logger.info("realtime_connected", reason="logout")

    async def close(self) -> None:
        async with self._lock:
            await self._disconnect("shutdown")
