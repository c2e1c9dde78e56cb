"""Explicit scheduled-task state for debounce, cooldown and delayed actions.

Each timer is an object owned by the component that uses it, so teardown
can cancel everything it owns instead of chasing loose timer handles.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)

Callback = Callable[[], Awaitable[None]]


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class DelayedTask:
    """At most one pending delayed call; rescheduling replaces it."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        """True while a call is waiting; a call that is currently running does not count."""
        task = self._task
        return task is not None and not task.done() and task is not _current_task()

    def schedule(self, delay: float, callback: Callback) -> None:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(
            self._run(delay, callback), name=self._name
        )

    async def _run(self, delay: float, callback: Callback) -> None:
        await asyncio.sleep(delay)
        try:
            await callback()
        except Exception as e:
            # Runs detached from any caller; nothing upstream can handle it.
            logger.error("scheduled_task_failed", task=self._name, error=str(e))

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    async def wait(self) -> None:
        """Block until the pending call (if any) has run or been cancelled."""
        task = self._task
        if task is not None and task is not _current_task():
            await asyncio.wait({task})


class Debouncer:
    """Trailing-edge debounce: only the last trigger in a window fires."""

    def __init__(self, delay: float, callback: Callback, name: str = "debounce") -> None:
        self.delay = delay
        self._callback = callback
        self._task = DelayedTask(name)

    @property
    def pending(self) -> bool:
        return self._task.pending

    def trigger(self) -> None:
        self._task.schedule(self.delay, self._callback)

    def cancel(self) -> None:
        self._task.cancel()

    async def wait(self) -> None:
        await self._task.wait()


class Cooldown:
    """Minimum interval between two starts of an operation."""

    def __init__(
        self, interval: float, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.interval = interval
        self._clock = clock
        self._last: float | None = None

    def remaining(self) -> float:
        if self._last is None:
            return 0.0
        return max(0.0, self.interval - (self._clock() - self._last))

    @property
    def ready(self) -> bool:
        return self.remaining() <= 0.0

    def mark(self) -> None:
        self._last = self._clock()
