"""Execution controller -- drives one batch purchase through its stages.

Owns the execution progress record (monitoring flag, stage, order ids
in flight). Progress is persisted before the first venue call and after
every stage transition, so a restart always knows whether a purchase
was interrupted.

Failures are all-or-nothing: orders are only marked executed after the
final stage succeeds, and a failed attempt leaves every order pending.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import uuid4

import structlog

from limitbuy.activity_log import ActivityLog
from limitbuy.driver.driver import Driver
from limitbuy.driver.errors import (
    DriverError,
    DriverRejectedError,
    DriverTimeoutError,
)
from limitbuy.errors import InvalidStateError, ValidationError
from limitbuy.notifications import LoggingNotifier, Notifier, safe_notify
from limitbuy.orders.order_store import OrderStore
from limitbuy.orders.state_machine import ExecutionStateMachine
from limitbuy.orders.types import (
    BatchSelection,
    ExecutionProgress,
    ExecutionResult,
    ExecutionStage,
    ExecutionState,
    ExternalReference,
)
from limitbuy.persistence.store import RUNNING_STATE_KEY, KeyValueStore
from limitbuy.utils.logging import clear_batch_id, set_batch_id
from limitbuy.utils.time import utc_now

log = structlog.get_logger()

DEFAULT_SETTLE_DELAY_SECONDS = 5.0
DEFAULT_STAGE_TIMEOUT_SECONDS = 10.0


class RecoveryOutcome(str, Enum):
    """What restore() found in the persisted progress."""

    IDLE = "idle"
    RESUME = "resume"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class RecoveryResult:
    """Structured result of startup recovery for logging and test assertions."""

    outcome: RecoveryOutcome
    was_running: bool
    discarded_order_ids: tuple[str, ...] = ()
    interrupted_stage: ExecutionStage = ExecutionStage.NONE


class ExecutionController:
    """Runs batches through amount entry, payment confirm and final confirm.

    At most one execution is in flight. The in-flight flag is set before
    the first await in execute(), so concurrent callers cannot both pass
    the guard on a single event loop.
    """

    def __init__(
        self,
        driver: Driver,
        orders: OrderStore,
        store: KeyValueStore,
        *,
        settle_delay_seconds: float = DEFAULT_SETTLE_DELAY_SECONDS,
        stage_timeout_seconds: float = DEFAULT_STAGE_TIMEOUT_SECONDS,
        notifier: Notifier | None = None,
        activity: ActivityLog | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._driver = driver
        self._orders = orders
        self._store = store
        self._settle_delay = settle_delay_seconds
        self._stage_timeout = stage_timeout_seconds
        self._notifier = notifier or LoggingNotifier()
        self._activity = activity
        self._clock = clock
        self._sleep = sleep
        self._progress = ExecutionProgress()
        self._in_flight = False

    @property
    def progress(self) -> ExecutionProgress:
        return self._progress

    @property
    def in_flight(self) -> bool:
        return self._in_flight or self._progress.stage_in_progress

    @property
    def is_running(self) -> bool:
        return self._progress.is_running

    @property
    def order_ids_in_flight(self) -> frozenset[str]:
        return self._progress.order_ids_in_flight

    async def load(self) -> None:
        """Read persisted progress as-is, without the restart policy.

        For processes that inspect a monitor running elsewhere: the
        running flag and the orders in flight are whatever it last wrote.
        """
        self._progress = ExecutionProgress.from_dict(
            await self._store.get(RUNNING_STATE_KEY)
        )

    async def restore(self) -> RecoveryResult:
        """Apply the restart policy to persisted progress.

        A purchase interrupted mid-stage cannot be resumed: the venue's
        state is unknown from here. The in-flight marker is dropped and
        its orders stay pending. The monitoring flag is kept either way.
        The order store must be loaded first.
        """
        progress = ExecutionProgress.from_dict(await self._store.get(RUNNING_STATE_KEY))

        if progress.stage_in_progress:
            discarded = tuple(
                sorted(
                    order_id
                    for order_id in progress.order_ids_in_flight
                    if (order := self._orders.get(order_id)) is not None
                    and order.is_pending
                )
            )
            log.warning(
                "interrupted_execution_rolled_back",
                stage=int(progress.current_stage),
                order_ids=list(discarded),
                interrupted_at=str(progress.timestamp) if progress.timestamp else None,
            )
            self._progress = ExecutionProgress(
                is_running=progress.is_running,
                timestamp=self._clock(),
            )
            await self._write_progress()
            await self._record(
                "warn",
                f"Purchase interrupted at stage {int(progress.current_stage)}; "
                f"{len(discarded)} order(s) left pending",
            )
            return RecoveryResult(
                outcome=RecoveryOutcome.ROLLED_BACK,
                was_running=progress.is_running,
                discarded_order_ids=discarded,
                interrupted_stage=progress.current_stage,
            )

        self._progress = ExecutionProgress(
            is_running=progress.is_running,
            timestamp=progress.timestamp,
        )
        if progress.is_running:
            log.info("monitoring_state_restored")
            return RecoveryResult(outcome=RecoveryOutcome.RESUME, was_running=True)
        return RecoveryResult(outcome=RecoveryOutcome.IDLE, was_running=False)

    async def set_running(self, running: bool) -> None:
        """Persist the monitoring flag alongside the current progress.

        A failed write leaves a start without effect, but a stop always
        takes effect in memory.
        """
        progress = ExecutionProgress(
            is_running=running,
            stage_in_progress=self._progress.stage_in_progress,
            current_stage=self._progress.current_stage,
            order_ids_in_flight=self._progress.order_ids_in_flight,
            timestamp=self._clock(),
        )
        if not running:
            self._progress = progress
        await self._store.set(RUNNING_STATE_KEY, progress.to_dict())
        self._progress = progress

    async def execute(
        self,
        batch: BatchSelection,
        sampled_price: Decimal,
    ) -> ExecutionResult:
        """Run one combined purchase for every order in the batch.

        Driver failures never raise out of here; they come back as a
        FAILED result with a "stageN_<cause>" reason.

        Raises:
            InvalidStateError: Another execution is already in flight.
            ValidationError: The batch is empty.
        """
        if self.in_flight:
            raise InvalidStateError("An execution is already in flight")
        if batch.is_empty:
            raise ValidationError("Cannot execute an empty batch")

        self._in_flight = True
        batch_id = uuid4().hex
        set_batch_id(batch_id)
        try:
            return await self._run(batch, sampled_price, batch_id)
        finally:
            self._in_flight = False
            clear_batch_id()

    # --- Internal helpers ---

    async def _run(
        self,
        batch: BatchSelection,
        price: Decimal,
        batch_id: str,
    ) -> ExecutionResult:
        machine = ExecutionStateMachine()
        ids = batch.order_ids
        targets = [str(o.target_price) for o in batch.selected]

        log.info(
            "batch_started",
            orders=len(ids),
            total_amount=str(batch.total_amount),
            targets=targets,
            price=str(price),
        )
        for order in batch.selected:
            if price < order.target_price:
                log.info(
                    "better_price",
                    order_id=order.id,
                    target_price=str(order.target_price),
                    price=str(price),
                )
        safe_notify(self._notifier, "status_changed", "buying")

        try:
            machine.advance()
            await self._save_stage(machine.stage, ids)
            await self._run_stage(
                machine.stage,
                lambda: self._driver.submit_amount(batch.total_amount),
            )

            machine.advance()
            await self._save_stage(machine.stage, ids)
            await self._sleep(self._settle_delay)
            await self._run_stage(machine.stage, self._driver.confirm_stage2)

            machine.advance()
            await self._save_stage(machine.stage, ids)
            await self._sleep(self._settle_delay)
            await self._run_stage(machine.stage, self._driver.confirm_stage3)
        except DriverTimeoutError as exc:
            return await self._fail(machine, batch, price, batch_id, "timeout", exc)
        except DriverRejectedError as exc:
            return await self._fail(machine, batch, price, batch_id, "rejected", exc)
        except DriverError as exc:
            return await self._fail(machine, batch, price, batch_id, "error", exc)
        except Exception as exc:
            log.exception("stage_crashed", stage=int(machine.stage))
            return await self._fail(machine, batch, price, batch_id, "error", exc)

        reference = await self._fetch_reference()
        try:
            await self._orders.mark_batch_executed(ids, price, reference)
        except InvalidStateError as exc:
            # The venue accepted the purchase but the ledger refused it.
            log.error(
                "batch_record_failed",
                stage=int(machine.stage),
                order_ids=list(ids),
                error=str(exc),
            )
            machine.transition(ExecutionState.FAILED)
            await self._clear_stage()
            await self._record(
                "error",
                f"Purchase placed but orders could not be recorded: {exc}",
            )
            return ExecutionResult(
                batch_id=batch_id,
                state=ExecutionState.FAILED,
                order_ids=ids,
                total_amount=batch.total_amount,
                executed_price=price,
                reason="record_failed",
                external_reference=reference,
            )

        machine.advance()
        await self._clear_stage()

        log.info(
            "batch_completed",
            orders=len(ids),
            total_amount=str(batch.total_amount),
            price=str(price),
            total_spent=str(self._orders.total_spent()),
            external_order_id=reference.order_id if reference else None,
        )
        await self._record(
            "info",
            f"Batch complete: {len(ids)} order(s) filled at ${price} "
            f"for ${batch.total_amount}. Spent so far: ${self._orders.total_spent()}",
        )
        return ExecutionResult(
            batch_id=batch_id,
            state=ExecutionState.COMPLETED,
            order_ids=ids,
            total_amount=batch.total_amount,
            executed_price=price,
            external_reference=reference,
        )

    async def _run_stage(
        self,
        stage: ExecutionStage,
        call: Callable[[], Awaitable[None]],
    ) -> None:
        """Await one driver stage, bounded by the stage timeout."""
        log.info("stage_started", stage=int(stage))
        try:
            await asyncio.wait_for(call(), timeout=self._stage_timeout)
        except TimeoutError as exc:
            raise DriverTimeoutError(
                f"stage {int(stage)} not ready after {self._stage_timeout}s"
            ) from exc
        log.info("stage_completed", stage=int(stage))

    async def _fail(
        self,
        machine: ExecutionStateMachine,
        batch: BatchSelection,
        price: Decimal,
        batch_id: str,
        cause: str,
        exc: BaseException,
    ) -> ExecutionResult:
        stage = machine.stage
        reason = f"stage{int(stage)}_{cause}"
        if machine.state is not ExecutionState.IDLE:
            machine.transition(ExecutionState.FAILED)
        log.warning(
            "batch_failed",
            stage=int(stage),
            reason=reason,
            error=str(exc),
            order_ids=list(batch.order_ids),
        )
        await self._clear_stage()
        await self._record(
            "error",
            f"Batch failed at stage {int(stage)} ({cause}): {exc}. "
            f"{len(batch.order_ids)} order(s) remain pending",
        )
        return ExecutionResult(
            batch_id=batch_id,
            state=ExecutionState.FAILED,
            order_ids=batch.order_ids,
            total_amount=batch.total_amount,
            executed_price=price,
            reason=reason,
        )

    async def _fetch_reference(self) -> ExternalReference | None:
        try:
            return await asyncio.wait_for(
                self._driver.try_get_last_order_reference(),
                timeout=self._stage_timeout,
            )
        except Exception:
            log.exception("order_reference_lookup_failed")
            return None

    async def _save_stage(
        self,
        stage: ExecutionStage,
        order_ids: tuple[str, ...],
    ) -> None:
        self._progress = ExecutionProgress(
            is_running=self._progress.is_running,
            stage_in_progress=True,
            current_stage=stage,
            order_ids_in_flight=frozenset(order_ids),
            timestamp=self._clock(),
        )
        await self._write_progress()

    async def _clear_stage(self) -> None:
        self._progress = ExecutionProgress(
            is_running=self._progress.is_running,
            timestamp=self._clock(),
        )
        try:
            await self._write_progress()
        except Exception:
            # The next restore() rolls the stale marker back anyway
            log.exception("progress_clear_failed")
        safe_notify(
            self._notifier,
            "status_changed",
            "running" if self._progress.is_running else "stopped",
        )

    async def _write_progress(self) -> None:
        await self._store.set(RUNNING_STATE_KEY, self._progress.to_dict())

    async def _record(self, level: str, message: str) -> None:
        if self._activity is None:
            return
        try:
            await self._activity.record(message, level)
        except Exception:
            log.exception("activity_record_failed")
