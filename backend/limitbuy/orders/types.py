"""Order domain types shared across matching, execution and monitoring.

Frozen dataclasses for value objects. All monetary values use Decimal.
to_dict()/from_dict() give the JSON shape stored in the key-value store:
Decimals as strings, timestamps as ISO 8601 with a Z suffix.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Any

from limitbuy.utils.time import format_timestamp, parse_optional_timestamp

MIN_ORDER_AMOUNT = Decimal("25")
DEFAULT_REFRESH_INTERVAL_MINUTES = 5


class OrderStatus(str, Enum):
    """Order lifecycle. Cancellation is a hard delete, not a status."""

    PENDING = "pending"
    EXECUTED = "executed"


class ExecutionStage(IntEnum):
    """Numbered purchase stages as persisted in execution progress."""

    NONE = 0
    AMOUNT_ENTRY = 1
    PAYMENT_CONFIRM = 2
    FINAL_CONFIRM = 3


class ExecutionState(str, Enum):
    """States of a single execution attempt."""

    IDLE = "idle"
    STAGED_1 = "staged_1"
    STAGED_2 = "staged_2"
    STAGED_3 = "staged_3"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_EXECUTION_STATES = frozenset(
    {
        ExecutionState.COMPLETED,
        ExecutionState.FAILED,
    }
)

STAGE_FOR_STATE: dict[ExecutionState, ExecutionStage] = {
    ExecutionState.STAGED_1: ExecutionStage.AMOUNT_ENTRY,
    ExecutionState.STAGED_2: ExecutionStage.PAYMENT_CONFIRM,
    ExecutionState.STAGED_3: ExecutionStage.FINAL_CONFIRM,
}


@dataclass(frozen=True)
class ExternalReference:
    """Venue-side order correlation (order number and details link)."""

    order_id: str
    url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"order_id": self.order_id, "url": self.url}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExternalReference:
        return cls(order_id=str(data["order_id"]), url=data.get("url"))


@dataclass(frozen=True)
class Order:
    """A limit purchase: spend `amount` once price <= `target_price`."""

    id: str
    target_price: Decimal
    amount: Decimal
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime | None = None
    executed_price: Decimal | None = None
    filled_at: datetime | None = None
    external_reference: ExternalReference | None = None

    @property
    def is_pending(self) -> bool:
        return self.status is OrderStatus.PENDING

    @property
    def is_executed(self) -> bool:
        return self.status is OrderStatus.EXECUTED

    def executed(
        self,
        executed_price: Decimal,
        filled_at: datetime,
        external_reference: ExternalReference | None = None,
    ) -> Order:
        """Return the executed copy of this order. Fill fields are set once."""
        return replace(
            self,
            status=OrderStatus.EXECUTED,
            executed_price=executed_price,
            filled_at=filled_at,
            external_reference=external_reference,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "target_price": str(self.target_price),
            "amount": str(self.amount),
            "status": self.status.value,
            "created_at": (
                format_timestamp(self.created_at) if self.created_at else None
            ),
            "executed_price": (
                str(self.executed_price) if self.executed_price is not None else None
            ),
            "filled_at": format_timestamp(self.filled_at) if self.filled_at else None,
            "external_reference": (
                self.external_reference.to_dict() if self.external_reference else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Order:
        executed_price = data.get("executed_price")
        reference = data.get("external_reference")
        return cls(
            id=str(data["id"]),
            target_price=Decimal(str(data["target_price"])),
            amount=Decimal(str(data["amount"])),
            status=OrderStatus(data.get("status", OrderStatus.PENDING.value)),
            created_at=parse_optional_timestamp(data.get("created_at")),
            executed_price=(
                Decimal(str(executed_price)) if executed_price is not None else None
            ),
            filled_at=parse_optional_timestamp(data.get("filled_at")),
            external_reference=(
                ExternalReference.from_dict(reference) if reference else None
            ),
        )


@dataclass(frozen=True)
class Settings:
    """User settings. A zero budget means monitoring is disabled."""

    max_budget: Decimal = Decimal("0")
    refresh_interval_minutes: int = DEFAULT_REFRESH_INTERVAL_MINUTES

    @property
    def is_budget_configured(self) -> bool:
        return self.max_budget > 0


@dataclass(frozen=True)
class BatchSelection:
    """Orders chosen to execute together as one combined purchase."""

    selected: tuple[Order, ...] = ()
    total_amount: Decimal = Decimal("0")

    @property
    def is_empty(self) -> bool:
        return not self.selected

    @property
    def order_ids(self) -> tuple[str, ...]:
        return tuple(o.id for o in self.selected)


@dataclass(frozen=True)
class ExecutionProgress:
    """Persisted execution progress, read back after a restart."""

    is_running: bool = False
    stage_in_progress: bool = False
    current_stage: ExecutionStage = ExecutionStage.NONE
    order_ids_in_flight: frozenset[str] = field(default_factory=frozenset)
    timestamp: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "stage_in_progress": self.stage_in_progress,
            "current_stage": int(self.current_stage),
            "order_ids_in_flight": sorted(self.order_ids_in_flight),
            "timestamp": format_timestamp(self.timestamp) if self.timestamp else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ExecutionProgress:
        if not data:
            return cls()
        return cls(
            is_running=bool(data.get("is_running", False)),
            stage_in_progress=bool(data.get("stage_in_progress", False)),
            current_stage=ExecutionStage(int(data.get("current_stage", 0))),
            order_ids_in_flight=frozenset(data.get("order_ids_in_flight") or ()),
            timestamp=parse_optional_timestamp(data.get("timestamp")),
        )


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one execution attempt."""

    batch_id: str
    state: ExecutionState
    order_ids: tuple[str, ...]
    total_amount: Decimal
    executed_price: Decimal
    reason: str = ""
    external_reference: ExternalReference | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is ExecutionState.COMPLETED


@dataclass(frozen=True)
class PriceSample:
    """A market price read at a point in time."""

    price: Decimal
    sampled_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"price": str(self.price), "sampled_at": format_timestamp(self.sampled_at)}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PriceSample | None:
        if not data or data.get("price") is None:
            return None
        sampled_at = parse_optional_timestamp(data.get("sampled_at"))
        if sampled_at is None:
            return None
        return cls(price=Decimal(str(data["price"])), sampled_at=sampled_at)
