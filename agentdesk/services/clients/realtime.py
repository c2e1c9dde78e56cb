"""Realtime collaborator backed by python-socketio.

python-socketio keeps a single handler per event, but both console modes
listen to the same events on the shared connection. The transport
therefore registers one dispatcher per event with the client and fans
out to every handler registered through ``on``.

``disconnect`` discards the client object so the next ``connect`` builds
a new one; no cookies or session state from a previous login survive.
"""

from __future__ import annotations

from typing import Any

import socketio
from socketio import exceptions as socketio_exceptions
import structlog

from agentdesk.core.config import settings
from agentdesk.core.exceptions import NetworkFailureError, TransportNotConnectedError
from agentdesk.services.clients.base import EventHandler, RealtimeTransport

logger = structlog.get_logger(__name__)


class SocketIOTransport(RealtimeTransport):
    """Socket.IO client with multi-handler fan-out."""

    def __init__(
        self,
        url: str | None = None,
        *,
        headers: dict[str, str] | None = None,
        transports: list[str] | None = None,
    ) -> None:
        self._url = url or settings.realtime_url
        self._headers = headers or {}
        self._transports = transports or ["websocket", "polling"]
        self._client: socketio.AsyncClient | None = None
        self._handlers: dict[str, list[EventHandler]] = {}

    @property
    def connected(self) -> bool:
        return self._client is not None and self._client.connected

    def _new_client(self) -> socketio.AsyncClient:
        client = socketio.AsyncClient(reconnection=True)
        client.on("connect", self._on_connect)
        client.on("disconnect", self._on_disconnect)
        for event in self._handlers:
            client.on(event, self._dispatcher(event))
        return client

    async def _on_connect(self) -> None:
        logger.info("socket_connected", url=self._url)

    async def _on_disconnect(self, *args: Any) -> None:
        logger.info("socket_disconnected", url=self._url)

    def _dispatcher(self, event: str) -> EventHandler:
        async def dispatch(data: Any = None, *args: Any) -> None:
            for handler in list(self._handlers.get(event, ())):
                try:
                    await handler(data)
                except Exception as e:
                    logger.error("socket_handler_failed", socket_event=event, error=str(e))

        return dispatch

    async def connect(self) -> None:
        if self.connected:
            return
        if self._client is None:
            self._client = self._new_client()
        try:
            await self._client.connect(
                self._url, headers=self._headers, transports=self._transports
            )
        except socketio_exceptions.ConnectionError as e:
            logger.error("socket_connect_failed", url=self._url, error=str(e))
            raise NetworkFailureError(f"Realtime connect failed: {e}") from e

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.disconnect()

    async def emit(self, event: str, payload: dict[str, Any] | None = None) -> None:
        if not self.connected:
            raise TransportNotConnectedError()
        try:
            await self._client.emit(event, payload or {})
        except socketio_exceptions.SocketIOError as e:
            logger.error("socket_emit_failed", socket_event=event, error=str(e))
            raise NetworkFailureError(f"Realtime emit {event} failed: {e}") from e

    def on(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.setdefault(event, [])
        if not handlers and self._client is not None:
            self._client.on(event, self._dispatcher(event))
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)
