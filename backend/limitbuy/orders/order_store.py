"""Order store -- CRUD over orders and settings, persisted as one aggregate.

Orders and settings are written together under SETTINGS_KEY. Every
mutation re-reads the stored aggregate first, builds the new collection
on top of it, persists it, and only then swaps it in memory. A failed
write leaves the in-memory view untouched, and a CLI process and the
monitor sharing one database never overwrite each other's edits.

Total spent is never stored: it is folded over the executed orders on
every call, so it cannot drift from the persisted order list.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from datetime import datetime
from decimal import Decimal, InvalidOperation
from uuid import uuid4

import structlog

from limitbuy.errors import InvalidStateError, ValidationError
from limitbuy.notifications import LoggingNotifier, Notifier, safe_notify
from limitbuy.orders.types import (
    DEFAULT_REFRESH_INTERVAL_MINUTES,
    MIN_ORDER_AMOUNT,
    ExternalReference,
    Order,
    OrderStatus,
    Settings,
)
from limitbuy.persistence.store import SETTINGS_KEY, KeyValueStore
from limitbuy.utils.time import utc_now

log = structlog.get_logger()


def _to_decimal(value: Decimal | str | int, field_name: str) -> Decimal:
    """Parse user input into a finite Decimal, or raise ValidationError."""
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field_name} must be a number, got {value!r}") from exc
    if not result.is_finite():
        raise ValidationError(f"{field_name} must be finite, got {value!r}")
    return result


class OrderView:
    """Snapshot of orders with one status, taken when the view is created.

    Iterating filters lazily; iterating again starts over on the same
    snapshot, so later store mutations never show up in an existing view.
    """

    def __init__(self, snapshot: tuple[Order, ...], status: OrderStatus) -> None:
        self._snapshot = snapshot
        self._status = status

    def __iter__(self) -> Iterator[Order]:
        return (o for o in self._snapshot if o.status is self._status)

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __bool__(self) -> bool:
        return any(True for _ in self)

    def ids(self) -> list[str]:
        return [o.id for o in self]


class OrderStore:
    """Orders + settings aggregate over a KeyValueStore.

    Call load() once before use. refresh() picks up writes made by other
    processes; every mutation does so on its own.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        notifier: Notifier | None = None,
        default_refresh_interval_minutes: int = DEFAULT_REFRESH_INTERVAL_MINUTES,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._notifier = notifier or LoggingNotifier()
        self._id_factory = id_factory or (lambda: uuid4().hex)
        self._clock = clock
        self._settings = Settings(
            refresh_interval_minutes=default_refresh_interval_minutes
        )
        self._orders: tuple[Order, ...] = ()

    async def load(self) -> None:
        """Read the settings aggregate from the store."""
        if not await self.refresh():
            log.info("settings_defaults_used")
            return

        log.info(
            "settings_loaded",
            max_budget=str(self._settings.max_budget),
            refresh_interval_minutes=self._settings.refresh_interval_minutes,
            orders=len(self._orders),
            pending=len(self.pending_orders()),
        )

    async def refresh(self) -> bool:
        """Replace the in-memory view with the stored aggregate.

        Returns False (and keeps the current view) when nothing is stored.
        """
        data = await self._store.get(SETTINGS_KEY)
        if not data:
            return False

        self._settings = Settings(
            max_budget=Decimal(str(data.get("max_budget", "0"))),
            refresh_interval_minutes=int(
                data.get(
                    "refresh_interval_minutes",
                    self._settings.refresh_interval_minutes,
                )
            ),
        )
        self._orders = tuple(Order.from_dict(o) for o in data.get("orders", []))
        return True

    # --- Settings ---

    @property
    def settings(self) -> Settings:
        return self._settings

    async def save_settings(
        self,
        *,
        max_budget: Decimal | str | int,
        refresh_interval_minutes: int,
    ) -> Settings:
        """Validate and persist new settings.

        Raises:
            ValidationError: Negative budget or interval below one minute.
        """
        budget = _to_decimal(max_budget, "max_budget")
        if budget < 0:
            raise ValidationError(f"max_budget must be >= 0, got {budget}")
        if refresh_interval_minutes < 1:
            raise ValidationError(
                "refresh_interval_minutes must be >= 1, "
                f"got {refresh_interval_minutes}"
            )

        settings = Settings(
            max_budget=budget,
            refresh_interval_minutes=refresh_interval_minutes,
        )
        await self.refresh()
        await self._persist(settings, self._orders)
        self._settings = settings
        log.info(
            "settings_saved",
            max_budget=str(budget),
            refresh_interval_minutes=refresh_interval_minutes,
        )
        return settings

    # --- Orders ---

    async def add(
        self,
        target_price: Decimal | str | int,
        amount: Decimal | str | int,
        *,
        last_market_price: Decimal | None = None,
    ) -> Order:
        """Create a pending order.

        Args:
            target_price: Execute once the price is at or below this.
            amount: Currency amount to spend, at least MIN_ORDER_AMOUNT.
            last_market_price: Last sampled price, if the caller has one.
                A target above it would execute immediately and is refused.

        Raises:
            ValidationError: On any invalid parameter. Nothing is stored.
        """
        target = _to_decimal(target_price, "target_price")
        size = _to_decimal(amount, "amount")

        if target <= 0:
            raise ValidationError(f"target_price must be > 0, got {target}")
        if size < MIN_ORDER_AMOUNT:
            raise ValidationError(
                f"amount must be at least {MIN_ORDER_AMOUNT}, got {size}"
            )
        if last_market_price is not None and target > last_market_price:
            raise ValidationError(
                f"target_price {target} must be at or below the current "
                f"price {last_market_price}"
            )

        order = Order(
            id=self._id_factory(),
            target_price=target,
            amount=size,
            created_at=self._clock(),
        )
        await self.refresh()
        if self.get(order.id) is not None:
            raise ValidationError(f"duplicate order id {order.id}")

        await self._persist(self._settings, (*self._orders, order))
        self._orders = (*self._orders, order)

        log.info(
            "order_added",
            order_id=order.id,
            target_price=str(target),
            amount=str(size),
        )
        self._notify_count()
        return order

    async def remove(self, order_id: str) -> bool:
        """Hard-delete a pending order. Unknown or executed ids are a no-op."""
        await self.refresh()
        order = self.get(order_id)
        if order is None or not order.is_pending:
            log.debug("order_remove_ignored", order_id=order_id)
            return False

        remaining = tuple(o for o in self._orders if o.id != order_id)
        await self._persist(self._settings, remaining)
        self._orders = remaining

        log.info(
            "order_removed",
            order_id=order_id,
            target_price=str(order.target_price),
            amount=str(order.amount),
        )
        self._notify_count()
        return True

    async def mark_executed(
        self,
        order_id: str,
        executed_price: Decimal,
        external_reference: ExternalReference | None = None,
    ) -> Order:
        """Transition one order pending -> executed.

        Raises:
            InvalidStateError: Unknown order or not pending.
        """
        executed = await self.mark_batch_executed(
            [order_id], executed_price, external_reference
        )
        return executed[0]

    async def mark_batch_executed(
        self,
        order_ids: Iterable[str],
        executed_price: Decimal,
        external_reference: ExternalReference | None = None,
    ) -> list[Order]:
        """Transition every listed order pending -> executed in one write.

        All ids are checked before anything changes, so either every
        order is marked or none is.

        Raises:
            InvalidStateError: Any id unknown or not pending.
        """
        ids = list(order_ids)
        if len(set(ids)) != len(ids):
            raise InvalidStateError(f"duplicate order ids in batch: {ids}")
        await self.refresh()
        for order_id in ids:
            order = self.get(order_id)
            if order is None:
                raise InvalidStateError(f"Unknown order: {order_id}")
            if not order.is_pending:
                raise InvalidStateError(
                    f"Order {order_id} is {order.status.value}, expected pending"
                )

        filled_at = self._clock()
        wanted = set(ids)
        updated = tuple(
            o.executed(executed_price, filled_at, external_reference)
            if o.id in wanted
            else o
            for o in self._orders
        )
        await self._persist(self._settings, updated)
        self._orders = updated

        for order_id in ids:
            log.info(
                "order_executed",
                order_id=order_id,
                executed_price=str(executed_price),
                external_order_id=(
                    external_reference.order_id if external_reference else None
                ),
            )
        self._notify_count()
        return [o for o in updated if o.id in wanted]

    # --- Queries ---

    def get(self, order_id: str) -> Order | None:
        return next((o for o in self._orders if o.id == order_id), None)

    def all_orders(self) -> tuple[Order, ...]:
        return self._orders

    def pending_orders(self) -> OrderView:
        return OrderView(self._orders, OrderStatus.PENDING)

    def executed_orders(self) -> OrderView:
        return OrderView(self._orders, OrderStatus.EXECUTED)

    def total_spent(self) -> Decimal:
        """Sum of amounts over executed orders, recomputed every call."""
        return sum((o.amount for o in self.executed_orders()), Decimal("0"))

    def remaining_budget(self) -> Decimal:
        return self._settings.max_budget - self.total_spent()

    # --- Internal helpers ---

    async def _persist(self, settings: Settings, orders: tuple[Order, ...]) -> None:
        await self._store.set(
            SETTINGS_KEY,
            {
                "max_budget": str(settings.max_budget),
                "refresh_interval_minutes": settings.refresh_interval_minutes,
                "orders": [o.to_dict() for o in orders],
            },
        )

    def _notify_count(self) -> None:
        safe_notify(self._notifier, "order_count_changed", len(self.pending_orders()))
