"""Outbound, fire-and-forget notifications for whatever UI sits on top.

The core never waits on or reads anything back from a notifier. A
notifier that raises is logged and ignored.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol, runtime_checkable

import structlog

log = structlog.get_logger()


@runtime_checkable
class Notifier(Protocol):
    """Observational hooks: badge count, status text, price display."""

    def order_count_changed(self, pending_count: int) -> None:
        """Number of pending orders changed."""
        ...

    def status_changed(self, status: str) -> None:
        """Monitor status text changed (running, stopped, buying...)."""
        ...

    def price_changed(self, price: Decimal) -> None:
        """A new market price was sampled."""
        ...


class LoggingNotifier:
    """Default notifier: emits debug log lines only."""

    def order_count_changed(self, pending_count: int) -> None:
        log.debug("notify_order_count", pending_count=pending_count)

    def status_changed(self, status: str) -> None:
        log.debug("notify_status", status=status)

    def price_changed(self, price: Decimal) -> None:
        log.debug("notify_price", price=str(price))


class RecordingNotifier:
    """Keeps every notification in order. Useful for tests and UIs that poll."""

    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    def order_count_changed(self, pending_count: int) -> None:
        self.events.append(("order_count", pending_count))

    def status_changed(self, status: str) -> None:
        self.events.append(("status", status))

    def price_changed(self, price: Decimal) -> None:
        self.events.append(("price", price))

    def of_kind(self, kind: str) -> list[object]:
        return [value for k, value in self.events if k == kind]


def safe_notify(notifier: Notifier, method: str, *args: object) -> None:
    """Call a notifier hook, never letting its failure reach the core."""
    try:
        getattr(notifier, method)(*args)
    except Exception:
        log.exception("notifier_failed", hook=method)
