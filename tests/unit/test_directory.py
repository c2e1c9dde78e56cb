"""Unit tests for the Department Directory.

Tests:
  - move_to_top relocates a session across departments
  - A session is never in more than one bucket
  - The department filter resets to ALL when its bucket disappears
  - Refresh cooldown, in-flight guard and trailing refresh
  - Debounced refresh requests collapse into one fetch
"""

from __future__ import annotations

import asyncio

import pytest

from agentdesk.core.exceptions import NetworkFailureError
from agentdesk.schemas.session import Session, SessionStatus
from agentdesk.services.sync.directory import DepartmentDirectory, sessions_from_groups
from conftest import RecordingNotifier, group_row


def _session(session_id: int, department: str) -> Session:
    return Session(
        session_id=session_id,
        chat_group_id=session_id * 10,
        department=department,
        status=SessionStatus.ACTIVE,
    )


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class SessionSource:
    """fetch_sessions stand-in with call counting."""

    def __init__(self, sessions: list[Session] | None = None) -> None:
        self.sessions = sessions or []
        self.calls = 0
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None

    async def __call__(self) -> list[Session]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.sessions)


def _directory(source: SessionSource | None = None, **kwargs) -> DepartmentDirectory:
    kwargs.setdefault("cooldown_seconds", 0)
    return DepartmentDirectory(source or SessionSource(), RecordingNotifier(), **kwargs)


def _bucket_ids(directory: DepartmentDirectory) -> dict[str, list[int]]:
    return {
        name: [s.session_id for s in sessions]
        for name, sessions in directory.buckets.items()
    }


class TestMutations:
    def test_move_to_top_changes_department(self) -> None:
        """{Sales: [S1], Support: [S2]} + S1 moved to Support -> {Support: [S1, S2]}."""
        directory = _directory()
        directory.populate([_session(1, "Sales"), _session(2, "Support")])

        directory.move_to_top(_session(1, "Support"))

        assert _bucket_ids(directory) == {"Support": [1, 2]}
        assert directory.departments == ["All", "Support"]

    def test_move_to_top_within_department(self) -> None:
        directory = _directory()
        directory.populate([_session(1, "Sales"), _session(2, "Sales"), _session(3, "Sales")])

        directory.move_to_top(_session(3, "Sales"))

        assert _bucket_ids(directory) == {"Sales": [3, 1, 2]}

    def test_move_to_top_unknown_session_inserted(self) -> None:
        directory = _directory()
        directory.populate([_session(1, "Sales")])

        directory.move_to_top(_session(4, "Billing"))

        assert _bucket_ids(directory) == {"Sales": [1], "Billing": [4]}

    def test_single_bucket_invariant(self) -> None:
        directory = _directory()
        directory.populate([_session(1, "Sales"), _session(2, "Support")])
        for dept in ["Support", "Billing", "Sales", "Billing"]:
            directory.move_to_top(_session(1, dept))

        locations = [
            name
            for name, sessions in directory.buckets.items()
            for s in sessions
            if s.session_id == 1
        ]
        assert locations == ["Billing"]
        for name, sessions in directory.buckets.items():
            assert all(s.department == name for s in sessions)

    def test_populate_dedups_by_room(self) -> None:
        directory = _directory()
        directory.populate([_session(1, "Sales"), _session(1, "Support")])
        assert _bucket_ids(directory) == {"Sales": [1]}
        assert len(directory) == 1

    def test_remove_drops_empty_bucket(self) -> None:
        directory = _directory()
        directory.populate([_session(1, "Sales"), _session(2, "Support")])

        removed = directory.remove("10")

        assert removed is not None and removed.session_id == 1
        assert directory.departments == ["All", "Support"]
        assert "10" not in directory
        assert directory.remove(999) is None

    def test_find_accepts_int_or_str(self) -> None:
        directory = _directory()
        directory.populate([_session(1, "Sales")])
        assert directory.find(10) is directory.find("10")


class TestFilter:
    def test_filtered_view(self) -> None:
        directory = _directory()
        directory.populate([_session(1, "Sales"), _session(2, "Support")])

        assert [s.session_id for s in directory.filtered_view()] == [1, 2]
        assert [s.session_id for s in directory.filtered_view("Support")] == [2]
        assert directory.filtered_view("Nowhere") == []

    def test_unknown_selection_falls_back_to_all(self) -> None:
        directory = _directory()
        directory.populate([_session(1, "Sales")])
        assert directory.select_department("Nowhere") == "All"

    def test_selection_resets_when_bucket_disappears(self) -> None:
        directory = _directory()
        directory.populate([_session(1, "Sales"), _session(2, "Support")])
        directory.select_department("Sales")

        directory.move_to_top(_session(1, "Support"))

        assert directory.selected_department == "All"
        assert [s.session_id for s in directory.filtered_view()] == [1, 2]


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_populates(self) -> None:
        source = SessionSource([_session(1, "Sales")])
        directory = _directory(source)

        assert await directory.refresh() is True
        assert _bucket_ids(directory) == {"Sales": [1]}

    @pytest.mark.asyncio
    async def test_failure_keeps_buckets_and_notifies(self) -> None:
        source = SessionSource([_session(1, "Sales")])
        notifier = RecordingNotifier()
        directory = DepartmentDirectory(source, notifier, cooldown_seconds=0)
        await directory.refresh()

        source.error = NetworkFailureError()
        assert await directory.refresh() is False

        assert _bucket_ids(directory) == {"Sales": [1]}
        assert notifier.errors == ["Failed to load chat groups"]

    @pytest.mark.asyncio
    async def test_cooldown_defers_to_one_trailing_refresh(self) -> None:
        clock = FakeClock()
        source = SessionSource([_session(1, "Sales")])
        directory = DepartmentDirectory(
            source, RecordingNotifier(), cooldown_seconds=0.02, clock=clock
        )

        assert await directory.refresh() is True
        source.sessions = [_session(2, "Support")]
        assert await directory.refresh() is False
        assert await directory.refresh() is False
        assert source.calls == 1

        clock.now += 1.0
        await directory.wait_idle()

        assert source.calls == 2
        assert _bucket_ids(directory) == {"Support": [2]}

    @pytest.mark.asyncio
    async def test_in_flight_guard(self) -> None:
        source = SessionSource([_session(1, "Sales")])
        source.gate = asyncio.Event()
        directory = _directory(source)

        first = asyncio.create_task(directory.refresh())
        await asyncio.sleep(0)
        assert await directory.refresh() is False
        source.gate.set()
        assert await first is True
        await directory.wait_idle()

        # The blocked call was not dropped: one trailing refresh ran.
        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_debounced_requests_collapse(self) -> None:
        source = SessionSource([_session(1, "Sales")])
        directory = _directory(source, debounce_seconds=0.02)
        assert directory.debounced

        for _ in range(5):
            await directory.request_refresh()
        assert source.calls == 0
        await directory.wait_idle()

        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_undebounced_request_is_immediate(self) -> None:
        source = SessionSource([_session(1, "Sales")])
        directory = _directory(source)

        await directory.request_refresh()

        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_close_cancels_pending(self) -> None:
        source = SessionSource()
        directory = _directory(source, debounce_seconds=0.01)
        await directory.request_refresh()

        directory.close()
        await asyncio.sleep(0.03)

        assert source.calls == 0


def test_sessions_from_groups_skips_malformed_rows() -> None:
    rows = [group_row(1, 10, "Sales"), {"customer": {"name": "no ids"}}, group_row(2, 20, None)]
    sessions = sessions_from_groups(rows, SessionStatus.QUEUED)
    assert [s.session_id for s in sessions] == [1, 2]
    assert sessions[1].department == "Unknown"
