"""Console entrypoint.

One ConnectionManager (and so one realtime connection) is created per
console and shared by the Queue and Chat views. REST and realtime
collaborators default to the httpx and python-socketio implementations;
tests pass in-memory ones.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator

import structlog

from agentdesk.core.config import settings
from agentdesk.core.logging_config import configure_logging
from agentdesk.schemas.session import AgentIdentity
from agentdesk.services.clients.base import (
    Notifier,
    PermissionChecker,
    RealtimeTransport,
    SupportBackend,
)
from agentdesk.services.clients.http import HttpSupportBackend
from agentdesk.services.clients.realtime import SocketIOTransport
from agentdesk.services.notifications import LogNotifier
from agentdesk.services.sync.connection import ConnectionManager
from agentdesk.services.sync.views import ConsoleView, chat_view, queue_view

configure_logging()

logger = structlog.get_logger(__name__)


@dataclass
class Console:
    """Both console modes over one shared connection."""

    queue: ConsoleView
    chat: ConsoleView
    connection: ConnectionManager

    async def logout(self) -> None:
        """Leave every room and reconnect with a fresh realtime client."""
        await self.connection.logout()


@asynccontextmanager
async def open_console(
    identity: AgentIdentity,
    permissions: PermissionChecker,
    *,
    backend: SupportBackend | None = None,
    transport: RealtimeTransport | None = None,
    notifier: Notifier | None = None,
) -> AsyncGenerator[Console, None]:
    """Console startup and shutdown lifecycle."""
    # --- Startup ---
    logger.info("console_startup", env=settings.app_env, user_id=identity.user_id)

    owns_backend = backend is None
    backend = backend or HttpSupportBackend()
    notifier = notifier or LogNotifier()
    connection = ConnectionManager(transport or SocketIOTransport())

    queue = queue_view(backend, connection, permissions, notifier, identity)
    chat = chat_view(backend, connection, permissions, notifier, identity)
    await queue.open()
    await chat.open()

    logger.info("console_ready")
    try:
        yield Console(queue=queue, chat=chat, connection=connection)
    finally:
        # --- Shutdown ---
        logger.info("console_shutdown")
        await queue.close()
        await chat.close()
        await connection.close()
        if owns_backend and isinstance(backend, HttpSupportBackend):
            await backend.aclose()
