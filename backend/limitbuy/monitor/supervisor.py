"""Monitoring supervisor -- the control loop.

Each tick samples the price, matches pending orders, picks a batch that
fits the remaining budget, hands it to the execution controller and
re-arms the scheduler. Stops itself (and stays stopped until an
explicit start) when the budget is unconfigured or exhausted or no
pending orders remain.

Safety-critical: never runs without a configured budget, and never lets
two executions overlap.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

import structlog

from limitbuy.activity_log import ActivityLog
from limitbuy.driver.driver import Driver
from limitbuy.errors import UnconfiguredBudgetError
from limitbuy.monitor.scheduler import Scheduler, SchedulerStatus
from limitbuy.notifications import LoggingNotifier, Notifier, safe_notify
from limitbuy.orders.execution import ExecutionController, RecoveryResult
from limitbuy.orders.matching import find_executable, select_batch
from limitbuy.orders.order_store import OrderStore
from limitbuy.orders.types import Order, PriceSample, Settings
from limitbuy.persistence.store import CURRENT_PRICE_KEY, KeyValueStore
from limitbuy.utils.time import utc_now

log = structlog.get_logger()


class TickOutcome(str, Enum):
    """What a single tick did."""

    NOT_RUNNING = "not_running"
    STOPPED_UNCONFIGURED = "stopped_unconfigured"
    SKIPPED_IN_FLIGHT = "skipped_in_flight"
    STOPPED_NO_PENDING = "stopped_no_pending"
    PRICE_UNAVAILABLE = "price_unavailable"
    NO_MATCH = "no_match"
    STOPPED_BUDGET_EXHAUSTED = "stopped_budget_exhausted"
    EXECUTED = "executed"
    FAILED = "failed"
    STOPPED_ERROR = "stopped_error"


@dataclass(frozen=True)
class MonitorStatus:
    """Read-only snapshot for status displays."""

    is_running: bool
    in_flight: bool
    settings: Settings
    current_price: PriceSample | None
    total_spent: Decimal
    remaining_budget: Decimal
    pending_count: int
    executed_count: int
    scheduler: SchedulerStatus


class MonitoringSupervisor:
    """Owns the monitoring loop for one venue.

    The `_busy` flag is set synchronously before the first await of a
    tick, so overlapping ticks on the event loop skip instead of racing.
    """

    def __init__(
        self,
        orders: OrderStore,
        controller: ExecutionController,
        driver: Driver,
        scheduler: Scheduler,
        store: KeyValueStore,
        *,
        notifier: Notifier | None = None,
        activity: ActivityLog | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._orders = orders
        self._controller = controller
        self._driver = driver
        self._scheduler = scheduler
        self._store = store
        self._notifier = notifier or LoggingNotifier()
        self._activity = activity
        self._clock = clock
        self._busy = False

    @property
    def is_running(self) -> bool:
        return self._controller.is_running

    @property
    def in_flight(self) -> bool:
        return self._busy or self._controller.in_flight

    # --- Control ---

    async def start(self) -> bool:
        """Start monitoring and tick immediately.

        Refused (returns False, nothing changes) when already running,
        when no budget is configured, or when there are no pending orders.
        """
        if self.is_running:
            log.info("start_ignored", reason="already_running")
            return False

        if not self._orders.settings.is_budget_configured:
            log.warning("start_refused", reason="budget_unconfigured")
            await self._record(
                "warn", "Max budget not configured - cannot start monitoring"
            )
            return False

        pending = len(self._orders.pending_orders())
        if pending == 0:
            log.warning("start_refused", reason="no_pending_orders")
            await self._record("warn", "No pending orders to monitor")
            return False

        await self._controller.set_running(True)
        log.info(
            "monitoring_started",
            pending=pending,
            max_budget=str(self._orders.settings.max_budget),
            total_spent=str(self._orders.total_spent()),
        )
        await self._record("info", "Starting limit order monitoring")
        safe_notify(self._notifier, "status_changed", "running")

        await self.tick()
        return True

    async def stop(self) -> None:
        """Stop monitoring. An execution already past IDLE runs to its end."""
        self._scheduler.cancel()
        await self._controller.set_running(False)
        log.info("monitoring_stopped")
        await self._record("info", "Monitoring stopped")
        safe_notify(self._notifier, "status_changed", "stopped")

    async def recover(self) -> RecoveryResult:
        """Restart policy: roll back interrupted purchases, resume if running.

        The order store must be loaded before calling this.
        """
        result = await self._controller.restore()
        log.info(
            "recovery_complete",
            outcome=result.outcome.value,
            was_running=result.was_running,
            discarded_order_ids=list(result.discarded_order_ids),
        )
        safe_notify(self._notifier, "order_count_changed", len(self._orders.pending_orders()))
        if result.was_running:
            await self._record("info", "Resuming monitoring after restart")
            safe_notify(self._notifier, "status_changed", "running")
            await self.tick()
        return result

    async def tick(self) -> TickOutcome:
        """One monitoring cycle. Safe to call at any time.

        Never raises: an unexpected failure (a store write, most likely)
        stops monitoring with every pending order left as it was.
        """
        if not self.is_running:
            log.debug("tick_ignored", reason="not_running")
            return TickOutcome.NOT_RUNNING

        try:
            return await self._guarded_tick()
        except Exception as exc:
            log.exception("tick_failed")
            await self._record("error", f"Monitoring stopped after an error: {exc}")
            try:
                await self.stop()
            except Exception:
                log.exception("monitoring_stop_failed")
            return TickOutcome.STOPPED_ERROR

    async def _guarded_tick(self) -> TickOutcome:
        # Pick up orders and settings edited by other processes
        await self._orders.refresh()

        if not self._orders.settings.is_budget_configured:
            log.warning("tick_stopping", reason="budget_unconfigured")
            await self._record(
                "warn", "Max budget not configured - stopping monitoring"
            )
            await self.stop()
            return TickOutcome.STOPPED_UNCONFIGURED

        if self.in_flight:
            log.info("tick_skipped", reason="execution_in_flight")
            return TickOutcome.SKIPPED_IN_FLIGHT

        self._busy = True
        try:
            return await self._evaluate()
        finally:
            self._busy = False

    # --- Order and settings management ---

    async def place_order(
        self,
        target_price: Decimal | str | int,
        amount: Decimal | str | int,
        *,
        restart_if_running: bool = True,
    ) -> Order:
        """Add a pending order, validated against the last sampled price.

        Restarts monitoring when running so the new order is picked up,
        unless restart_if_running is False.

        Raises:
            UnconfiguredBudgetError: No max budget set yet.
            ValidationError: Bad price or amount.
        """
        if not self._orders.settings.is_budget_configured:
            await self._record("warn", "Max budget not configured - cannot add orders")
            raise UnconfiguredBudgetError(
                "Max budget not configured - cannot add orders"
            )

        sample = await self.last_price()
        order = await self._orders.add(
            target_price,
            amount,
            last_market_price=sample.price if sample is not None else None,
        )
        await self._record(
            "info", f"Order added: ${order.amount} at ${order.target_price}"
        )

        if restart_if_running and self.is_running:
            log.info("monitoring_restart", reason="order_added")
            await self.stop()
            await self.start()
        return order

    async def remove_order(self, order_id: str) -> bool:
        """Delete a pending order. Orders in the current purchase are kept."""
        if order_id in self._controller.order_ids_in_flight:
            log.warning("order_remove_refused", order_id=order_id, reason="in_flight")
            await self._record("warn", "Order is being purchased and cannot be removed")
            return False

        order = self._orders.get(order_id)
        removed = await self._orders.remove(order_id)
        if removed and order is not None:
            await self._record(
                "info", f"Order removed: ${order.amount} at ${order.target_price}"
            )
        return removed

    async def update_settings(
        self,
        *,
        max_budget: Decimal | str | int,
        refresh_interval_minutes: int,
    ) -> Settings:
        """Save settings; re-arm a pending tick with the new interval.

        A process with no tick armed (the CLI, or a monitor mid-purchase)
        leaves the schedule alone; the monitor uses the new interval from
        its next re-arm.
        """
        settings = await self._orders.save_settings(
            max_budget=max_budget,
            refresh_interval_minutes=refresh_interval_minutes,
        )
        await self._record("info", "Settings saved")
        if self.is_running and self._scheduler.status().scheduled:
            self._rearm()
            await self._record(
                "info",
                f"Refresh interval updated to {settings.refresh_interval_minutes} minute(s)",
            )
        return settings

    # --- Queries ---

    async def last_price(self) -> PriceSample | None:
        return PriceSample.from_dict(await self._store.get(CURRENT_PRICE_KEY))

    async def status(self) -> MonitorStatus:
        return MonitorStatus(
            is_running=self.is_running,
            in_flight=self.in_flight,
            settings=self._orders.settings,
            current_price=await self.last_price(),
            total_spent=self._orders.total_spent(),
            remaining_budget=self._orders.remaining_budget(),
            pending_count=len(self._orders.pending_orders()),
            executed_count=len(self._orders.executed_orders()),
            scheduler=self._scheduler.status(),
        )

    # --- Internal helpers ---

    async def _evaluate(self) -> TickOutcome:
        pending = list(self._orders.pending_orders())
        if not pending:
            log.info("tick_stopping", reason="no_pending_orders")
            await self._record("info", "No pending orders - stopping monitoring")
            await self.stop()
            return TickOutcome.STOPPED_NO_PENDING

        price = await self._sample_price()
        if price is None:
            log.warning("price_unavailable")
            await self._record("warn", "Could not get current price")
            self._rearm()
            return TickOutcome.PRICE_UNAVAILABLE

        executable = find_executable(pending, price)
        if not executable:
            lowest = min(o.target_price for o in pending)
            log.info("price_above_targets", price=str(price), lowest_target=str(lowest))
            self._rearm()
            return TickOutcome.NO_MATCH

        settings = self._orders.settings
        batch = select_batch(executable, settings.max_budget, self._orders.total_spent())
        if batch.is_empty:
            log.warning(
                "tick_stopping",
                reason="budget_exhausted",
                executable=len(executable),
                max_budget=str(settings.max_budget),
                total_spent=str(self._orders.total_spent()),
            )
            await self._record(
                "warn", "All executable orders would exceed budget - stopping"
            )
            await self.stop()
            return TickOutcome.STOPPED_BUDGET_EXHAUSTED

        log.info(
            "orders_triggered",
            price=str(price),
            orders=len(batch.selected),
            targets=[str(o.target_price) for o in batch.selected],
            total_amount=str(batch.total_amount),
        )
        result = await self._controller.execute(batch, price)
        await self._after_execution()
        return TickOutcome.EXECUTED if result.succeeded else TickOutcome.FAILED

    async def _after_execution(self) -> None:
        if not self.is_running:
            return
        if not self._orders.pending_orders():
            log.info("tick_stopping", reason="all_orders_filled")
            await self._record("info", "All orders filled - stopping monitoring")
            await self.stop()
            return
        if self._orders.remaining_budget() <= 0:
            log.info("tick_stopping", reason="budget_spent")
            await self._record("info", "Max budget reached - stopping monitoring")
            await self.stop()
            return
        self._rearm()

    async def _sample_price(self) -> Decimal | None:
        try:
            price = await self._driver.read_price()
        except Exception:
            log.exception("price_read_crashed")
            return None
        if price is None:
            return None

        log.info("price_sampled", price=str(price))
        await self._store.set(
            CURRENT_PRICE_KEY,
            PriceSample(price=price, sampled_at=self._clock()).to_dict(),
        )
        safe_notify(self._notifier, "price_changed", price)
        return price

    def _rearm(self) -> None:
        if not self.is_running:
            return
        interval = self._orders.settings.refresh_interval_minutes
        self._scheduler.schedule_next(interval)
        log.debug("tick_rearmed", interval_minutes=interval)

    async def _record(self, level: str, message: str) -> None:
        if self._activity is None:
            return
        try:
            await self._activity.record(message, level)
        except Exception:
            log.exception("activity_record_failed")
