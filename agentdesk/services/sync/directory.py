"""Department Directory: sessions bucketed by department.

Rebuilt wholesale from REST snapshots (``populate``) and patched
incrementally by realtime events (``move_to_top``, ``remove``). A session
lives in exactly one bucket, and that bucket is always named after the
session's own ``department`` field.

Refreshes from the backend are gated by an in-flight guard and a
minimum-interval cooldown. A refresh blocked by either is not dropped: one
trailing refresh runs when the cooldown expires. Queue mode additionally
debounces group-list-changed bursts before they reach the cooldown.
"""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Iterable

import structlog
from pydantic import ValidationError

from agentdesk.core.config import settings
from agentdesk.core.exceptions import NetworkFailureError
from agentdesk.schemas.session import Session, SessionStatus
from agentdesk.services.clients.base import Notifier
from agentdesk.services.sync.scheduling import Cooldown, Debouncer, DelayedTask

logger = structlog.get_logger(__name__)

FetchSessions = Callable[[], Awaitable[list[Session]]]


def sessions_from_groups(
    rows: Iterable[dict[str, Any]], status: SessionStatus
) -> list[Session]:
    """Convert REST group rows, skipping malformed ones."""
    sessions: list[Session] = []
    for row in rows:
        try:
            sessions.append(Session.from_group(row, status))
        except (KeyError, ValidationError) as e:
            logger.warning("chat_group_row_skipped", error=str(e))
    return sessions


class DepartmentDirectory:
    """Bucketed-by-department index of the sessions one console mode shows."""

    def __init__(
        self,
        fetch_sessions: FetchSessions,
        notifier: Notifier,
        *,
        debounce_seconds: float | None = None,
        cooldown_seconds: float | None = None,
        all_label: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch_sessions = fetch_sessions
        self._notifier = notifier
        self.all_label = all_label or settings.default_department

        self._buckets: dict[str, list[Session]] = {}
        self._departments: list[str] = [self.all_label]
        self._selected = self.all_label

        self._cooldown = Cooldown(
            settings.fetch_cooldown_seconds if cooldown_seconds is None else cooldown_seconds,
            clock=clock,
        )
        self._refresh_in_flight = False
        self._trailing = DelayedTask("directory_trailing_refresh")
        self._debouncer = (
            Debouncer(debounce_seconds, self.refresh, name="directory_debounce")
            if debounce_seconds
            else None
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def departments(self) -> list[str]:
        """``[ALL, *departments holding at least one session]``."""
        return list(self._departments)

    @property
    def selected_department(self) -> str:
        return self._selected

    @property
    def buckets(self) -> dict[str, list[Session]]:
        return {name: list(sessions) for name, sessions in self._buckets.items()}

    @property
    def debounced(self) -> bool:
        return self._debouncer is not None

    def select_department(self, name: str) -> str:
        self._selected = name if name in self._departments else self.all_label
        return self._selected

    def filtered_view(self, selected: str | None = None) -> list[Session]:
        selected = self._selected if selected is None else selected
        if selected == self.all_label:
            return [s for sessions in self._buckets.values() for s in sessions]
        return list(self._buckets.get(selected, []))

    def find(self, chat_group_id: int | str) -> Session | None:
        key = str(chat_group_id)
        for sessions in self._buckets.values():
            for session in sessions:
                if session.room_key == key:
                    return session
        return None

    def __contains__(self, chat_group_id: object) -> bool:
        return self.find(chat_group_id) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return sum(len(sessions) for sessions in self._buckets.values())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _recompute_departments(self) -> None:
        self._departments = [
            self.all_label,
            *(name for name, sessions in self._buckets.items() if sessions),
        ]
        if self._selected not in self._departments:
            logger.debug("department_filter_reset", stale=self._selected)
            self._selected = self.all_label

    def populate(self, sessions: Iterable[Session]) -> None:
        """Replace every bucket from a REST snapshot."""
        buckets: dict[str, list[Session]] = {}
        seen: set[str] = set()
        for session in sessions:
            if session.room_key in seen:
                continue
            seen.add(session.room_key)
            buckets.setdefault(session.department, []).append(session)
        self._buckets = buckets
        self._recompute_departments()
        logger.debug(
            "directory_populated",
            sessions=len(seen),
            departments=len(buckets),
        )

    def _detach(self, key: str) -> Session | None:
        removed: Session | None = None
        for name in list(self._buckets):
            kept = []
            for session in self._buckets[name]:
                if session.room_key == key:
                    removed = removed or session
                else:
                    kept.append(session)
            if kept:
                self._buckets[name] = kept
            else:
                del self._buckets[name]
        return removed

    def move_to_top(self, session: Session) -> None:
        """Remove the session from wherever it is, insert at the head of its department.

        Unknown sessions are simply inserted.
        """
        self._detach(session.room_key)
        self._buckets.setdefault(session.department, []).insert(0, session)
        self._recompute_departments()
        logger.debug(
            "directory_moved_to_top",
            chat_group_id=session.room_key,
            department=session.department,
        )

    def remove(self, chat_group_id: int | str) -> Session | None:
        """Drop a session by routing key; empty buckets are deleted."""
        removed = self._detach(str(chat_group_id))
        self._recompute_departments()
        if removed is not None:
            logger.debug("directory_removed", chat_group_id=str(chat_group_id))
        return removed

    # ------------------------------------------------------------------
    # Backend sync
    # ------------------------------------------------------------------

    def _defer(self) -> None:
        if self._trailing.pending:
            return
        delay = self._cooldown.remaining() or self._cooldown.interval
        self._trailing.schedule(delay, self.refresh)

    async def refresh(self) -> bool:
        """Repopulate from the backend. Returns True when a snapshot was applied."""
        if self._refresh_in_flight or not self._cooldown.ready:
            logger.debug(
                "directory_refresh_deferred",
                in_flight=self._refresh_in_flight,
                cooldown_remaining=self._cooldown.remaining(),
            )
            self._defer()
            return False

        self._refresh_in_flight = True
        self._cooldown.mark()
        try:
            sessions = await self._fetch_sessions()
        except NetworkFailureError as e:
            logger.warning("directory_refresh_failed", error=str(e))
            self._notifier.report_error("Failed to load chat groups")
            return False
        finally:
            self._refresh_in_flight = False

        self.populate(sessions)
        return True

    async def request_refresh(self) -> None:
        """Entry point for group-list-changed broadcasts."""
        if self._debouncer is not None:
            self._debouncer.trigger()
        else:
            await self.refresh()

    async def wait_idle(self) -> None:
        """Wait for any pending debounced or trailing refresh to settle."""
        if self._debouncer is not None:
            await self._debouncer.wait()
        await self._trailing.wait()

    def close(self) -> None:
        if self._debouncer is not None:
            self._debouncer.cancel()
        self._trailing.cancel()
