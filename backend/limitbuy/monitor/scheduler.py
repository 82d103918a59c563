"""Scheduler -- arms the next monitoring tick.

Only one tick is ever pending: scheduling again replaces it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

import structlog

from limitbuy.utils.time import utc_now

log = structlog.get_logger()

TickCallback = Callable[[], Awaitable[object]]


@dataclass(frozen=True)
class SchedulerStatus:
    """Whether a tick is armed, and when it is due."""

    scheduled: bool
    due_at: datetime | None = None

    def remaining_minutes(self, now: datetime) -> int | None:
        if self.due_at is None:
            return None
        return max(0, round((self.due_at - now).total_seconds() / 60))


@runtime_checkable
class Scheduler(Protocol):
    """Schedule-next / cancel / status capability used by the monitor."""

    def schedule_next(self, interval_minutes: int) -> None:
        """Arm a tick in interval_minutes, replacing any armed tick."""
        ...

    def cancel(self) -> None:
        """Disarm the pending tick, if any."""
        ...

    def status(self) -> SchedulerStatus:
        """Current schedule."""
        ...


class AsyncioScheduler:
    """Scheduler backed by a single asyncio task.

    bind() the tick coroutine before scheduling. The callback may call
    schedule_next() itself: the firing task is detached before the
    callback runs, so re-arming never cancels the running tick.
    """

    def __init__(
        self,
        *,
        seconds_per_minute: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._seconds_per_minute = seconds_per_minute
        self._clock = clock
        self._callback: TickCallback | None = None
        self._task: asyncio.Task[None] | None = None
        self._due_at: datetime | None = None

    def bind(self, callback: TickCallback) -> None:
        self._callback = callback

    def schedule_next(self, interval_minutes: int) -> None:
        if self._callback is None:
            raise RuntimeError("AsyncioScheduler.bind() must be called first")
        self.cancel()
        delay = interval_minutes * self._seconds_per_minute
        self._due_at = self._clock() + timedelta(minutes=interval_minutes)
        self._task = asyncio.create_task(self._fire(delay))
        log.info("tick_scheduled", interval_minutes=interval_minutes)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            log.info("tick_cancelled")
        self._task = None
        self._due_at = None

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(scheduled=self._task is not None, due_at=self._due_at)

    async def _fire(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._task = None
        self._due_at = None
        assert self._callback is not None
        try:
            await self._callback()
        except Exception:
            log.exception("scheduled_tick_failed")
