"""FakeScheduler -- records schedule calls instead of arming timers.

Tests fire the pending tick explicitly with fire().
"""

from __future__ import annotations

from datetime import timedelta

from limitbuy.monitor.scheduler import SchedulerStatus, TickCallback
from limitbuy.utils.time import utc_now


class FakeScheduler:
    """In-memory Scheduler for testing."""

    def __init__(self) -> None:
        self.scheduled_intervals: list[int] = []
        self.cancel_count = 0
        self._pending: int | None = None
        self._callback: TickCallback | None = None

    def bind(self, callback: TickCallback) -> None:
        self._callback = callback

    @property
    def is_scheduled(self) -> bool:
        return self._pending is not None

    def schedule_next(self, interval_minutes: int) -> None:
        self.scheduled_intervals.append(interval_minutes)
        self._pending = interval_minutes

    def cancel(self) -> None:
        self.cancel_count += 1
        self._pending = None

    def status(self) -> SchedulerStatus:
        if self._pending is None:
            return SchedulerStatus(scheduled=False)
        return SchedulerStatus(
            scheduled=True,
            due_at=utc_now() + timedelta(minutes=self._pending),
        )

    async def fire(self) -> object:
        """Run the pending tick now, as if its timer elapsed."""
        if self._pending is None or self._callback is None:
            raise RuntimeError("no tick is scheduled")
        self._pending = None
        return await self._callback()
