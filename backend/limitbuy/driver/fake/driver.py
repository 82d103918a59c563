"""FakeDriver -- scripted in-memory venue for testing.

Lightweight implementation of Driver for unit testing the execution
controller and the monitor. Script prices and per-stage behavior at
construction, then inspect `calls` after the test.
"""

from __future__ import annotations

import asyncio
from collections import deque
from decimal import Decimal
from enum import Enum

from limitbuy.driver.errors import DriverRejectedError, DriverTimeoutError
from limitbuy.orders.types import ExternalReference


class StageBehavior(str, Enum):
    """How a fake stage responds."""

    ACCEPT = "accept"
    TIMEOUT = "timeout"  # raises DriverTimeoutError right away
    REJECT = "reject"
    HANG = "hang"  # never signals; the caller's timeout must fire


class FakeDriver:
    """In-memory Driver for testing.

    Prices are consumed from a queue; the last one sticks once the queue
    runs dry. None entries simulate an unreadable price.
    """

    def __init__(
        self,
        prices: list[Decimal | None] | None = None,
        stages: dict[int, StageBehavior] | None = None,
        reference: ExternalReference | None = None,
    ) -> None:
        self._prices: deque[Decimal | None] = deque(prices or [])
        self._last_price: Decimal | None = None
        self._stages: dict[int, StageBehavior] = stages or {}
        self._holds: dict[int, asyncio.Event] = {}
        self.reference = reference
        self.reference_error: Exception | None = None
        self.calls: list[tuple[str, object]] = []

    def set_price(self, price: Decimal | None) -> None:
        """Replace the price queue with a single sticky price."""
        self._prices.clear()
        self._last_price = price

    def set_stage(self, stage: int, behavior: StageBehavior) -> None:
        self._stages[stage] = behavior

    def hold_stage(self, stage: int) -> asyncio.Event:
        """Block a stage until the returned event is set."""
        event = asyncio.Event()
        self._holds[stage] = event
        return event

    @property
    def submitted_amounts(self) -> list[Decimal]:
        return [arg for name, arg in self.calls if name == "submit_amount"]  # type: ignore[misc]

    async def read_price(self) -> Decimal | None:
        if self._prices:
            self._last_price = self._prices.popleft()
        self.calls.append(("read_price", self._last_price))
        return self._last_price

    async def submit_amount(self, amount: Decimal) -> None:
        self.calls.append(("submit_amount", amount))
        await self._run_stage(1)

    async def confirm_stage2(self) -> None:
        self.calls.append(("confirm_stage2", None))
        await self._run_stage(2)

    async def confirm_stage3(self) -> None:
        self.calls.append(("confirm_stage3", None))
        await self._run_stage(3)

    async def try_get_last_order_reference(self) -> ExternalReference | None:
        self.calls.append(("try_get_last_order_reference", None))
        if self.reference_error is not None:
            raise self.reference_error
        return self.reference

    async def _run_stage(self, stage: int) -> None:
        hold = self._holds.get(stage)
        if hold is not None:
            await hold.wait()

        behavior = self._stages.get(stage, StageBehavior.ACCEPT)
        if behavior is StageBehavior.TIMEOUT:
            raise DriverTimeoutError(f"stage {stage} not ready")
        if behavior is StageBehavior.REJECT:
            raise DriverRejectedError(f"stage {stage} refused", reason="refused")
        if behavior is StageBehavior.HANG:
            await asyncio.Event().wait()
