"""Driver protocol -- abstract interface to the trading venue.

Reads the current price and drives the venue's three-stage purchase
flow. How a driver detects readiness (DOM observers, HTTP polling, ...)
is its own business; the core only sees these calls.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from limitbuy.orders.types import ExternalReference


@runtime_checkable
class Driver(Protocol):
    """Async venue capabilities used by the monitor and execution controller.

    Stage calls return once the venue signals the stage is accepted and
    raise DriverTimeoutError or DriverRejectedError otherwise. Callers
    also bound each call with their own timeout.
    """

    async def read_price(self) -> Decimal | None:
        """Current market price, or None when it cannot be read."""
        ...

    async def submit_amount(self, amount: Decimal) -> None:
        """Stage 1: enter the combined purchase amount."""
        ...

    async def confirm_stage2(self) -> None:
        """Stage 2: confirm payment."""
        ...

    async def confirm_stage3(self) -> None:
        """Stage 3: final confirmation; returns when the order is placed."""
        ...

    async def try_get_last_order_reference(self) -> ExternalReference | None:
        """The venue's reference for the order just placed, if visible."""
        ...
