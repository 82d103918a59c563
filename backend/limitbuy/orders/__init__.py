"""Order management package."""

from limitbuy.orders.execution import (
    ExecutionController,
    RecoveryOutcome,
    RecoveryResult,
)
from limitbuy.orders.matching import find_executable, select_batch
from limitbuy.orders.order_store import OrderStore, OrderView
from limitbuy.orders.state_machine import ExecutionStateMachine, InvalidTransitionError
from limitbuy.orders.types import (
    MIN_ORDER_AMOUNT,
    BatchSelection,
    ExecutionProgress,
    ExecutionResult,
    ExecutionStage,
    ExecutionState,
    ExternalReference,
    Order,
    OrderStatus,
    PriceSample,
    Settings,
)

__all__ = [
    "MIN_ORDER_AMOUNT",
    "BatchSelection",
    "ExecutionController",
    "ExecutionProgress",
    "ExecutionResult",
    "ExecutionStage",
    "ExecutionState",
    "ExecutionStateMachine",
    "ExternalReference",
    "InvalidTransitionError",
    "Order",
    "OrderStatus",
    "OrderStore",
    "OrderView",
    "PriceSample",
    "RecoveryOutcome",
    "RecoveryResult",
    "Settings",
    "find_executable",
    "select_batch",
]
