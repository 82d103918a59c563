"""Core error hierarchy.

All order and monitoring errors inherit from LimitBuyError so callers
at the CLI boundary can handle them in one place. Driver failures live
in limitbuy.driver.errors.
"""

from __future__ import annotations


class LimitBuyError(Exception):
    """Base exception for all limitbuy core errors."""


class ValidationError(LimitBuyError):
    """Bad order or settings parameters. Raised before any mutation."""


class InvalidStateError(LimitBuyError):
    """Operation attempted against an order or execution in the wrong state."""


class UnconfiguredBudgetError(LimitBuyError):
    """A max budget must be configured before orders can be monitored."""
