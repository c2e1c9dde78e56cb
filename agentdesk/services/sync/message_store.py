"""Per-session paginated message window with a backward cursor.

Every merge (page fetch, realtime push, local system line) goes through
the same dedup-by-id pass, so a replayed broadcast or a page fetched twice
never shows a message twice.

Only one session is focused at a time. ``focus()`` starts a new
generation; fetch results that come back for an older generation are
discarded instead of being applied to the wrong conversation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable

import structlog

from agentdesk.core.config import settings
from agentdesk.core.exceptions import NetworkFailureError
from agentdesk.schemas.message import Message, messages_from_page
from agentdesk.services.clients.base import Notifier

logger = structlog.get_logger(__name__)

FetchPage = Callable[[int | str, datetime | None, int], Awaitable[list[dict[str, Any]]]]


@dataclass(frozen=True)
class LoadResult:
    messages: list[Message]
    has_more: bool


def _key(message: Message) -> str:
    # REST sends numeric chat ids, socket payloads sometimes send strings.
    return str(message.id)


def merge_messages(
    existing: Iterable[Message], page: Iterable[Message], append: bool
) -> list[Message]:
    """Combine a fetched page with the current window, first-seen order wins.

    ``append=True`` prepends the (older) page to the window; otherwise the
    page replaces it. Idempotent: merging the same page twice is a no-op.
    """
    combined = [*page, *existing] if append else list(page)
    seen: set[str] = set()
    merged: list[Message] = []
    for message in combined:
        key = _key(message)
        if key in seen:
            continue
        seen.add(key)
        merged.append(message)
    return merged


class MessageStore:
    """Loaded message window for the focused session."""

    def __init__(
        self,
        fetch_page: FetchPage,
        notifier: Notifier,
        *,
        local_user_id: int | str | None = None,
        page_size: int | None = None,
    ) -> None:
        self._fetch_page = fetch_page
        self._notifier = notifier
        self._local_user_id = local_user_id
        self.page_size = page_size or settings.messages_per_page

        self._session_id: int | str | None = None
        self._generation = 0
        self._messages: list[Message] = []
        self._ids: set[str] = set()
        self._cursor: datetime | None = None
        self._has_more = True

        self._load_in_flight: int | None = None
        self._loading_more: int | None = None
        self._pushed_during_load: list[Message] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> int | str | None:
        return self._session_id

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def cursor(self) -> datetime | None:
        """Timestamp of the oldest message of the most recently fetched page."""
        return self._cursor

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def is_loading(self) -> bool:
        return self._load_in_flight == self._generation

    @property
    def is_loading_more(self) -> bool:
        """Scroll handlers must check this before requesting another page."""
        return self._loading_more == self._generation

    def snapshot(self) -> LoadResult:
        return LoadResult(messages=list(self._messages), has_more=self._has_more)

    def _is_current(self, session_id: int | str, generation: int) -> bool:
        return generation == self._generation and str(session_id) == str(self._session_id)

    def _replace(self, messages: list[Message]) -> None:
        self._messages = messages
        self._ids = {_key(m) for m in messages}

    # ------------------------------------------------------------------
    # Focus
    # ------------------------------------------------------------------

    def focus(self, session_id: int | str | None) -> None:
        """Reset the window for a newly selected session (or none)."""
        self._generation += 1
        self._session_id = session_id
        self._replace([])
        self._cursor = None
        self._has_more = True
        self._pushed_during_load = []
        logger.debug("message_store_focused", session_id=session_id)

    def set_local_user_id(self, user_id: int | str | None) -> None:
        self._local_user_id = user_id

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(
        self,
        session_id: int | str,
        before: datetime | None = None,
        append: bool = False,
    ) -> LoadResult:
        """Fetch one page and merge it into the window.

        A non-append load is dropped while another load is in flight for
        the focused session. An append load is a no-op once ``has_more`` is
        cleared, and never asks for anything newer than the cursor.
        """
        if str(session_id) != str(self._session_id):
            self.focus(session_id)

        if not append and self.is_loading:
            logger.debug("message_load_skipped_in_flight", session_id=session_id)
            return self.snapshot()

        if append:
            if not self._has_more:
                return self.snapshot()
            if self._cursor is not None and (before is None or before > self._cursor):
                before = self._cursor

        generation = self._generation
        self._load_in_flight = generation
        if append:
            self._loading_more = generation
        else:
            self._pushed_during_load = []

        try:
            raw = await self._fetch_page(session_id, before, self.page_size)
            page = messages_from_page(
                raw,
                session_id=session_id,
                local_user_id=self._local_user_id,
                fallback_prefix=before.isoformat() if before else "head",
            )
        except (NetworkFailureError, ValueError) as e:
            logger.warning(
                "message_load_failed",
                session_id=session_id,
                append=append,
                error=str(e),
            )
            if self._is_current(session_id, generation):
                self._notifier.report_error("Failed to load messages")
            return self.snapshot()
        finally:
            if self._load_in_flight == generation:
                self._load_in_flight = None
            if self._loading_more == generation:
                self._loading_more = None

        if not self._is_current(session_id, generation):
            logger.debug("message_load_stale_discarded", session_id=session_id)
            return self.snapshot()

        if append:
            merged = merge_messages(self._messages, page, append=True)
        else:
            # Pushes that landed while the first page was in flight survive the replace.
            merged = merge_messages(self._pushed_during_load, page, append=True)
            self._pushed_during_load = []
        self._replace(merged)

        if page:
            self._cursor = min(m.server_timestamp for m in page)
        if len(raw) < self.page_size:
            self._has_more = False

        logger.debug(
            "messages_loaded",
            session_id=session_id,
            fetched=len(page),
            window=len(self._messages),
            has_more=self._has_more,
        )
        return self.snapshot()

    async def load_more(self) -> LoadResult:
        """Fetch the next older page for the focused session."""
        if self._session_id is None:
            return self.snapshot()
        return await self.load(self._session_id, before=self._cursor, append=True)

    # ------------------------------------------------------------------
    # Single-message merges
    # ------------------------------------------------------------------

    def apply_incoming(self, message: Message) -> bool:
        """Append a realtime message unless its id is already in the window."""
        if self._session_id is None:
            return False
        key = _key(message)
        if key in self._ids:
            logger.debug("message_duplicate_absorbed", message_id=key)
            return False
        self._messages.append(message)
        self._ids.add(key)
        if self.is_loading:
            self._pushed_during_load.append(message)
        return True

    def append_local(self, message: Message) -> bool:
        """Append a client-generated line (e.g. the chat-ended banner)."""
        return self.apply_incoming(message)
