"""Shared test fixtures for limitbuy."""

from __future__ import annotations

from collections.abc import AsyncIterator
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from limitbuy.activity_log import ActivityLog
from limitbuy.driver.fake.driver import FakeDriver
from limitbuy.models.base import Base
from limitbuy.monitor.fake.scheduler import FakeScheduler
from limitbuy.monitor.supervisor import MonitoringSupervisor
from limitbuy.notifications import RecordingNotifier
from limitbuy.orders.execution import ExecutionController
from limitbuy.orders.order_store import OrderStore
from limitbuy.persistence.memory import MemoryKeyValueStore
from tests.factories import FixedClock, sequential_ids


@pytest.fixture
async def db_session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Create in-memory async SQLite with all tables."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver(prices=[Decimal("3.10")])


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
async def orders(
    kv: MemoryKeyValueStore,
    notifier: RecordingNotifier,
    clock: FixedClock,
) -> OrderStore:
    store = OrderStore(kv, notifier=notifier, id_factory=sequential_ids(), clock=clock)
    await store.load()
    return store


@pytest.fixture
async def activity(kv: MemoryKeyValueStore, clock: FixedClock) -> ActivityLog:
    log = ActivityLog(kv, clock=clock)
    await log.load()
    return log


async def _no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def controller(
    driver: FakeDriver,
    orders: OrderStore,
    kv: MemoryKeyValueStore,
    notifier: RecordingNotifier,
    activity: ActivityLog,
    clock: FixedClock,
) -> ExecutionController:
    """Controller with no settle delay and a short stage timeout."""
    return ExecutionController(
        driver,
        orders,
        kv,
        settle_delay_seconds=0,
        stage_timeout_seconds=0.05,
        notifier=notifier,
        activity=activity,
        clock=clock,
        sleep=_no_sleep,
    )


@pytest.fixture
def supervisor(
    orders: OrderStore,
    controller: ExecutionController,
    driver: FakeDriver,
    scheduler: FakeScheduler,
    kv: MemoryKeyValueStore,
    notifier: RecordingNotifier,
    activity: ActivityLog,
    clock: FixedClock,
) -> MonitoringSupervisor:
    sup = MonitoringSupervisor(
        orders,
        controller,
        driver,
        scheduler,
        kv,
        notifier=notifier,
        activity=activity,
        clock=clock,
    )
    scheduler.bind(sup.tick)
    return sup
