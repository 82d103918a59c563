"""Runtime wiring -- builds the component graph and runs the monitor.

build_components() is shared by the CLI commands (which only touch
orders and settings, and read the monitor's running state) and
run_monitor() (the long-running loop).
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from dataclasses import dataclass

import httpx
import structlog

from limitbuy.activity_log import ActivityLog
from limitbuy.config import AppConfig
from limitbuy.driver.driver import Driver
from limitbuy.driver.http.driver import HttpDriver
from limitbuy.monitor.scheduler import AsyncioScheduler, Scheduler
from limitbuy.monitor.supervisor import MonitoringSupervisor
from limitbuy.notifications import LoggingNotifier, Notifier
from limitbuy.orders.execution import ExecutionController
from limitbuy.orders.order_store import OrderStore
from limitbuy.persistence.sqlite import open_sqlite_store
from limitbuy.persistence.store import KeyValueStore

log = structlog.get_logger()

# How often run_monitor checks whether the supervisor stopped itself
_IDLE_POLL_SECONDS = 1.0


@dataclass
class Components:
    """The wired object graph for one store and one venue."""

    store: KeyValueStore
    orders: OrderStore
    activity: ActivityLog
    controller: ExecutionController
    scheduler: Scheduler
    supervisor: MonitoringSupervisor


async def build_components(
    config: AppConfig,
    store: KeyValueStore,
    driver: Driver,
    *,
    scheduler: Scheduler | None = None,
    notifier: Notifier | None = None,
) -> Components:
    """Load persisted state and wire every component together."""
    notifier = notifier or LoggingNotifier()

    orders = OrderStore(
        store,
        notifier=notifier,
        default_refresh_interval_minutes=config.monitor.default_refresh_interval_minutes,
    )
    await orders.load()

    activity = ActivityLog(store, max_entries=config.monitor.activity_log_max_entries)
    await activity.load()

    controller = ExecutionController(
        driver,
        orders,
        store,
        settle_delay_seconds=config.execution.settle_delay_seconds,
        stage_timeout_seconds=config.execution.stage_timeout_seconds,
        notifier=notifier,
        activity=activity,
    )
    # The monitor replaces this with restore(); everyone else sees its state
    await controller.load()

    if scheduler is None:
        scheduler = AsyncioScheduler()

    supervisor = MonitoringSupervisor(
        orders,
        controller,
        driver,
        scheduler,
        store,
        notifier=notifier,
        activity=activity,
    )
    bind = getattr(scheduler, "bind", None)
    if bind is not None:
        bind(supervisor.tick)

    return Components(
        store=store,
        orders=orders,
        activity=activity,
        controller=controller,
        scheduler=scheduler,
        supervisor=supervisor,
    )


async def run_monitor(
    config: AppConfig,
    *,
    stop_event: asyncio.Event | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Recover, start monitoring and serve ticks until stopped.

    Returns False when monitoring could not be started. On SIGINT/SIGTERM
    the pending tick is cancelled but the running flag stays persisted,
    so the next run resumes where this one left off.
    """
    stop_event = stop_event or asyncio.Event()
    store, engine = await open_sqlite_store(config.db_path)
    try:
        async with HttpDriver(config.driver, transport=transport) as driver:
            components = await build_components(config, store, driver)
            supervisor = components.supervisor

            await supervisor.recover()
            if not supervisor.is_running and not await supervisor.start():
                return False

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                with contextlib.suppress(NotImplementedError, RuntimeError):
                    loop.add_signal_handler(sig, stop_event.set)

            while not stop_event.is_set():
                if not supervisor.is_running and not supervisor.in_flight:
                    log.info("monitor_loop_exit", reason="monitoring_stopped")
                    break
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(stop_event.wait(), timeout=_IDLE_POLL_SECONDS)

            components.scheduler.cancel()
            # There is no mid-stage abort: let a running purchase finish
            while supervisor.in_flight:
                await asyncio.sleep(_IDLE_POLL_SECONDS)
            log.info("monitor_loop_finished")
            return True
    finally:
        await engine.dispose()
