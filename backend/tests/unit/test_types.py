"""Tests for order domain types and their persisted JSON shape."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from limitbuy.orders.types import (
    BatchSelection,
    ExecutionProgress,
    ExecutionResult,
    ExecutionStage,
    ExecutionState,
    Order,
    OrderStatus,
    PriceSample,
    Settings,
)
from tests.factories import make_executed_order, make_order

_NOW = datetime(2026, 2, 14, 15, 0, tzinfo=UTC)


class TestOrder:
    def test_defaults_pending(self) -> None:
        order = make_order()
        assert order.is_pending
        assert not order.is_executed
        assert order.executed_price is None

    def test_executed_copy(self) -> None:
        order = make_order()
        executed = order.executed(Decimal("2.95"), _NOW)
        assert executed.status is OrderStatus.EXECUTED
        assert executed.filled_at == _NOW
        assert order.is_pending

    def test_frozen(self) -> None:
        order = make_order()
        with pytest.raises(AttributeError):
            order.amount = Decimal("1")  # type: ignore[misc]

    def test_to_dict_uses_strings_for_money(self) -> None:
        data = make_executed_order(external_order_id="55").to_dict()
        assert data["amount"] == "100"
        assert data["target_price"] == "3.00"
        assert data["executed_price"] == "2.95"
        assert data["status"] == "executed"
        assert data["filled_at"].endswith("Z")
        assert data["external_reference"] == {"order_id": "55", "url": None}

    def test_from_dict_tolerates_missing_optional_fields(self) -> None:
        order = Order.from_dict({"id": "x", "target_price": 3, "amount": "25"})
        assert order.status is OrderStatus.PENDING
        assert order.target_price == Decimal("3")
        assert order.created_at is None


class TestSettings:
    def test_zero_budget_is_unconfigured(self) -> None:
        assert not Settings().is_budget_configured
        assert Settings(max_budget=Decimal("0.01")).is_budget_configured


class TestBatchSelection:
    def test_empty(self) -> None:
        assert BatchSelection().is_empty
        assert BatchSelection().order_ids == ()


class TestExecutionProgress:
    def test_from_missing_is_idle(self) -> None:
        progress = ExecutionProgress.from_dict(None)
        assert not progress.is_running
        assert not progress.stage_in_progress
        assert progress.current_stage is ExecutionStage.NONE

    def test_persisted_shape(self) -> None:
        progress = ExecutionProgress(
            is_running=True,
            stage_in_progress=True,
            current_stage=ExecutionStage.PAYMENT_CONFIRM,
            order_ids_in_flight=frozenset({"b", "a"}),
            timestamp=_NOW,
        )
        assert progress.to_dict() == {
            "is_running": True,
            "stage_in_progress": True,
            "current_stage": 2,
            "order_ids_in_flight": ["a", "b"],
            "timestamp": "2026-02-14T15:00:00.000000Z",
        }
        assert ExecutionProgress.from_dict(progress.to_dict()) == progress


class TestExecutionResult:
    def test_succeeded_only_when_completed(self) -> None:
        base = {
            "batch_id": "b",
            "order_ids": ("a",),
            "total_amount": Decimal("25"),
            "executed_price": Decimal("1"),
        }
        assert ExecutionResult(state=ExecutionState.COMPLETED, **base).succeeded
        assert not ExecutionResult(state=ExecutionState.FAILED, **base).succeeded


class TestPriceSample:
    def test_missing_is_none(self) -> None:
        assert PriceSample.from_dict(None) is None
        assert PriceSample.from_dict({"price": None}) is None
        assert PriceSample.from_dict({"price": "3.1"}) is None

    def test_persisted_shape(self) -> None:
        sample = PriceSample(price=Decimal("3.10"), sampled_at=_NOW)
        assert sample.to_dict() == {
            "price": "3.10",
            "sampled_at": "2026-02-14T15:00:00.000000Z",
        }
