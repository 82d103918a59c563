"""Tests for OrderStore -- order CRUD, settings and spend accounting.

Tests cover: add validation, remove, single and batch execution marking
(all-or-nothing), persistence round trip through load(), derived total
spent, notifications, and two stores sharing one backing store.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from limitbuy.errors import InvalidStateError, ValidationError
from limitbuy.notifications import RecordingNotifier
from limitbuy.orders.order_store import OrderStore
from limitbuy.orders.types import ExternalReference, OrderStatus
from limitbuy.persistence.memory import MemoryKeyValueStore
from limitbuy.persistence.store import SETTINGS_KEY
from tests.factories import (
    FixedClock,
    make_executed_order,
    make_order,
    sequential_ids,
    settings_document,
)


class _FailingStore(MemoryKeyValueStore):
    async def set(self, key: str, value: object) -> None:
        raise OSError("disk full")


class TestLoad:
    async def test_defaults_when_nothing_stored(self, orders: OrderStore) -> None:
        assert orders.settings.max_budget == Decimal("0")
        assert orders.settings.refresh_interval_minutes == 5
        assert orders.all_orders() == ()

    async def test_default_interval_is_configurable(self) -> None:
        store = OrderStore(MemoryKeyValueStore(), default_refresh_interval_minutes=15)
        await store.load()
        assert store.settings.refresh_interval_minutes == 15

    async def test_loads_persisted_aggregate(self) -> None:
        pending = make_order(id="p", target_price="3.00", amount="100")
        executed = make_executed_order(id="e", amount="50", external_order_id="77")
        kv = MemoryKeyValueStore(
            {
                SETTINGS_KEY: settings_document(
                    [pending, executed], max_budget="300", refresh_interval_minutes=2
                )
            }
        )
        store = OrderStore(kv)
        await store.load()

        assert store.settings.max_budget == Decimal("300")
        assert store.settings.refresh_interval_minutes == 2
        assert store.get("p") == pending
        assert store.get("e") == executed
        assert store.total_spent() == Decimal("50")


class TestAdd:
    async def test_add_creates_pending_order(
        self, orders: OrderStore, clock: FixedClock
    ) -> None:
        order = await orders.add("3.00", "100")
        assert order.id == "order-1"
        assert order.status is OrderStatus.PENDING
        assert order.target_price == Decimal("3.00")
        assert order.amount == Decimal("100")
        assert order.created_at == clock.now
        assert orders.pending_orders().ids() == ["order-1"]

    async def test_add_persists(self, orders: OrderStore, kv: MemoryKeyValueStore) -> None:
        await orders.add("3.00", "100")
        saved = kv.snapshot()[SETTINGS_KEY]
        assert [o["id"] for o in saved["orders"]] == ["order-1"]
        assert saved["orders"][0]["amount"] == "100"

    async def test_minimum_amount_accepted(self, orders: OrderStore) -> None:
        order = await orders.add("3.00", "25")
        assert order.amount == Decimal("25")

    @pytest.mark.parametrize("amount", ["24.99", "0", "-10"])
    async def test_amount_below_minimum_rejected(
        self, orders: OrderStore, amount: str
    ) -> None:
        with pytest.raises(ValidationError):
            await orders.add("3.00", amount)
        assert orders.all_orders() == ()

    @pytest.mark.parametrize("target", ["0", "-1"])
    async def test_non_positive_target_rejected(
        self, orders: OrderStore, target: str
    ) -> None:
        with pytest.raises(ValidationError):
            await orders.add(target, "100")

    @pytest.mark.parametrize("value", ["abc", "NaN", "Infinity", ""])
    async def test_non_numeric_rejected(self, orders: OrderStore, value: str) -> None:
        with pytest.raises(ValidationError):
            await orders.add(value, "100")

    async def test_target_above_market_rejected(self, orders: OrderStore) -> None:
        with pytest.raises(ValidationError, match="current price"):
            await orders.add("3.20", "100", last_market_price=Decimal("3.10"))

    async def test_target_at_market_accepted(self, orders: OrderStore) -> None:
        order = await orders.add("3.10", "100", last_market_price=Decimal("3.10"))
        assert order.target_price == Decimal("3.10")

    async def test_duplicate_id_rejected(self) -> None:
        store = OrderStore(MemoryKeyValueStore(), id_factory=lambda: "same")
        await store.load()
        await store.add("3.00", "100")
        with pytest.raises(ValidationError, match="duplicate"):
            await store.add("2.00", "100")
        assert len(store.all_orders()) == 1

    async def test_failed_write_leaves_memory_untouched(self) -> None:
        store = OrderStore(_FailingStore())
        await store.load()
        with pytest.raises(OSError):
            await store.add("3.00", "100")
        assert store.all_orders() == ()

    async def test_add_notifies_pending_count(
        self, orders: OrderStore, notifier: RecordingNotifier
    ) -> None:
        await orders.add("3.00", "100")
        await orders.add("2.90", "100")
        assert notifier.of_kind("order_count") == [1, 2]


class TestRemove:
    async def test_remove_pending(self, orders: OrderStore) -> None:
        order = await orders.add("3.00", "100")
        assert await orders.remove(order.id) is True
        assert orders.get(order.id) is None

    async def test_remove_unknown_is_noop(self, orders: OrderStore) -> None:
        assert await orders.remove("missing") is False

    async def test_remove_executed_is_noop(self, orders: OrderStore) -> None:
        order = await orders.add("3.00", "100")
        await orders.mark_executed(order.id, Decimal("2.95"))
        assert await orders.remove(order.id) is False
        assert orders.get(order.id) is not None


class TestMarkExecuted:
    async def test_mark_executed_sets_fill_fields(
        self, orders: OrderStore, clock: FixedClock
    ) -> None:
        order = await orders.add("3.00", "100")
        ref = ExternalReference(order_id="9001", url="https://venue/orders/9001")
        executed = await orders.mark_executed(order.id, Decimal("2.95"), ref)

        assert executed.status is OrderStatus.EXECUTED
        assert executed.executed_price == Decimal("2.95")
        assert executed.filled_at == clock.now
        assert executed.external_reference == ref

    async def test_mark_unknown_raises(self, orders: OrderStore) -> None:
        with pytest.raises(InvalidStateError):
            await orders.mark_executed("missing", Decimal("1"))

    async def test_mark_twice_raises(self, orders: OrderStore) -> None:
        order = await orders.add("3.00", "100")
        await orders.mark_executed(order.id, Decimal("2.95"))
        with pytest.raises(InvalidStateError):
            await orders.mark_executed(order.id, Decimal("2.90"))
        assert orders.get(order.id).executed_price == Decimal("2.95")  # type: ignore[union-attr]

    async def test_batch_marks_all_with_one_write(
        self, orders: OrderStore, kv: MemoryKeyValueStore
    ) -> None:
        a = await orders.add("3.00", "100")
        b = await orders.add("2.90", "150")
        writes_before = len(kv.writes)

        marked = await orders.mark_batch_executed([a.id, b.id], Decimal("2.85"))

        assert [o.id for o in marked] == [a.id, b.id]
        assert all(o.executed_price == Decimal("2.85") for o in marked)
        assert kv.writes[writes_before:] == [SETTINGS_KEY]

    async def test_batch_is_all_or_nothing(self, orders: OrderStore) -> None:
        a = await orders.add("3.00", "100")
        with pytest.raises(InvalidStateError):
            await orders.mark_batch_executed([a.id, "missing"], Decimal("2.85"))
        assert orders.get(a.id).is_pending  # type: ignore[union-attr]
        assert orders.total_spent() == Decimal("0")

    async def test_batch_rejects_duplicate_ids(self, orders: OrderStore) -> None:
        a = await orders.add("3.00", "100")
        with pytest.raises(InvalidStateError):
            await orders.mark_batch_executed([a.id, a.id], Decimal("2.85"))
        assert orders.total_spent() == Decimal("0")


class TestQueries:
    async def test_total_spent_sums_executed_only(self, orders: OrderStore) -> None:
        a = await orders.add("3.00", "100")
        await orders.add("2.90", "150")
        await orders.mark_executed(a.id, Decimal("2.95"))
        assert orders.total_spent() == Decimal("100")

    async def test_remaining_budget(self, orders: OrderStore) -> None:
        await orders.save_settings(max_budget="300", refresh_interval_minutes=5)
        a = await orders.add("3.00", "100")
        await orders.mark_executed(a.id, Decimal("2.95"))
        assert orders.remaining_budget() == Decimal("200")

    async def test_views_are_snapshots(self, orders: OrderStore) -> None:
        await orders.add("3.00", "100")
        view = orders.pending_orders()
        await orders.add("2.90", "100")
        assert len(view) == 1
        assert len(list(view)) == 1
        assert len(orders.pending_orders()) == 2

    async def test_view_can_be_iterated_twice(self, orders: OrderStore) -> None:
        await orders.add("3.00", "100")
        view = orders.pending_orders()
        assert list(view) == list(view)

    async def test_empty_view_is_falsy(self, orders: OrderStore) -> None:
        assert not orders.executed_orders()


class TestSaveSettings:
    async def test_save_and_reload(self, kv: MemoryKeyValueStore) -> None:
        store = OrderStore(kv)
        await store.load()
        await store.add("3.00", "100")
        await store.save_settings(max_budget="500", refresh_interval_minutes=10)

        reloaded = OrderStore(kv)
        await reloaded.load()
        assert reloaded.settings.max_budget == Decimal("500")
        assert reloaded.settings.refresh_interval_minutes == 10
        assert len(reloaded.pending_orders()) == 1

    async def test_zero_budget_allowed(self, orders: OrderStore) -> None:
        saved = await orders.save_settings(max_budget="0", refresh_interval_minutes=5)
        assert not saved.is_budget_configured

    async def test_negative_budget_rejected(self, orders: OrderStore) -> None:
        with pytest.raises(ValidationError):
            await orders.save_settings(max_budget="-1", refresh_interval_minutes=5)

    async def test_interval_below_one_rejected(self, orders: OrderStore) -> None:
        with pytest.raises(ValidationError):
            await orders.save_settings(max_budget="100", refresh_interval_minutes=0)


class TestSharedBackingStore:
    """Two OrderStores over one KeyValueStore, as the CLI and monitor are."""

    async def _pair(self, kv: MemoryKeyValueStore) -> tuple[OrderStore, OrderStore]:
        first = OrderStore(kv, id_factory=sequential_ids("a"))
        second = OrderStore(kv, id_factory=sequential_ids("b"))
        await first.load()
        await second.load()
        return first, second

    async def test_mark_executed_keeps_order_added_elsewhere(
        self, kv: MemoryKeyValueStore
    ) -> None:
        monitor, cli = await self._pair(kv)
        mine = await monitor.add("3.00", "100")
        theirs = await cli.add("2.80", "50")

        await monitor.mark_executed(mine.id, Decimal("2.95"))

        saved = [o["id"] for o in kv.snapshot()[SETTINGS_KEY]["orders"]]
        assert saved == [mine.id, theirs.id]
        assert monitor.get(theirs.id) is not None

    async def test_remove_sees_order_added_elsewhere(
        self, kv: MemoryKeyValueStore
    ) -> None:
        monitor, cli = await self._pair(kv)
        theirs = await cli.add("2.80", "50")
        assert await monitor.remove(theirs.id) is True

        await cli.refresh()
        assert cli.all_orders() == ()

    async def test_settings_saved_elsewhere_survive_add(
        self, kv: MemoryKeyValueStore
    ) -> None:
        monitor, cli = await self._pair(kv)
        await cli.save_settings(max_budget="500", refresh_interval_minutes=2)

        await monitor.add("3.00", "100")

        assert monitor.settings.max_budget == Decimal("500")
        assert kv.snapshot()[SETTINGS_KEY]["max_budget"] == "500"

    async def test_refresh_without_stored_aggregate_keeps_view(
        self, kv: MemoryKeyValueStore
    ) -> None:
        store = OrderStore(kv, default_refresh_interval_minutes=7)
        assert await store.refresh() is False
        assert store.settings.refresh_interval_minutes == 7


class TestTotalSpentProperty:
    """Total spent always equals the sum over executed orders."""

    @given(
        amounts=st.lists(
            st.integers(min_value=25, max_value=1000), min_size=1, max_size=8
        ),
        execute_mask=st.lists(st.booleans(), min_size=8, max_size=8),
    )
    @settings(max_examples=100)
    def test_total_spent_matches_executed_amounts(
        self,
        amounts: list[int],
        execute_mask: list[bool],
    ) -> None:
        asyncio.run(self._check(amounts, execute_mask))

    async def _check(self, amounts: list[int], execute_mask: list[bool]) -> None:
        kv = MemoryKeyValueStore()
        store = OrderStore(kv, id_factory=sequential_ids())
        await store.load()
        added = [await store.add("3.00", amount) for amount in amounts]
        to_execute = [o.id for o, flag in zip(added, execute_mask) if flag]
        if to_execute:
            await store.mark_batch_executed(to_execute, Decimal("2.50"))

        expected = sum(
            (o.amount for o, flag in zip(added, execute_mask) if flag), Decimal("0")
        )
        assert store.total_spent() == expected
        reloaded = OrderStore(kv)
        await reloaded.load()
        assert reloaded.total_spent() == expected
