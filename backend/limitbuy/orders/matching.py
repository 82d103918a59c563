"""Matching engine -- which pending orders execute at a sampled price.

Pure functions: no I/O, no persistence, no logging.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal

from limitbuy.orders.types import BatchSelection, Order


def find_executable(orders: Iterable[Order], current_price: Decimal) -> list[Order]:
    """Pending orders whose target is at or above the current price.

    Sorted ascending by target price, lowest (deepest discount) first.
    sorted() is stable, so equal targets keep their original order.
    """
    eligible = [o for o in orders if o.is_pending and current_price <= o.target_price]
    return sorted(eligible, key=lambda o: o.target_price)


def select_batch(
    candidates: Sequence[Order],
    max_budget: Decimal,
    already_spent: Decimal,
) -> BatchSelection:
    """Choose the candidates that fit in the remaining budget.

    If everything fits, everything is selected. Otherwise one greedy pass
    in the given order keeps each candidate whose amount still fits and
    skips the ones that would overflow. No backtracking: earlier
    candidates always win over later ones.
    """
    remaining = max_budget - already_spent
    if remaining <= 0 or not candidates:
        return BatchSelection()

    total = sum((o.amount for o in candidates), Decimal("0"))
    if total <= remaining:
        return BatchSelection(selected=tuple(candidates), total_amount=total)

    selected: list[Order] = []
    running_total = Decimal("0")
    for order in candidates:
        if running_total + order.amount <= remaining:
            selected.append(order)
            running_total += order.amount

    return BatchSelection(selected=tuple(selected), total_amount=running_total)
