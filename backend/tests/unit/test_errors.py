"""Tests for the core and driver error hierarchies."""

from __future__ import annotations

import pytest

from limitbuy.driver.errors import (
    DriverConnectionError,
    DriverError,
    DriverRejectedError,
    DriverTimeoutError,
)
from limitbuy.errors import (
    InvalidStateError,
    LimitBuyError,
    UnconfiguredBudgetError,
    ValidationError,
)


class TestCoreErrors:
    @pytest.mark.parametrize(
        "error_cls", [ValidationError, InvalidStateError, UnconfiguredBudgetError]
    )
    def test_inherit_from_base(self, error_cls: type[Exception]) -> None:
        assert issubclass(error_cls, LimitBuyError)

    def test_driver_errors_are_separate(self) -> None:
        assert not issubclass(DriverError, LimitBuyError)


class TestDriverErrors:
    @pytest.mark.parametrize(
        "error_cls",
        [DriverTimeoutError, DriverRejectedError, DriverConnectionError],
    )
    def test_inherit_from_driver_error(self, error_cls: type[Exception]) -> None:
        assert issubclass(error_cls, DriverError)

    def test_rejected_keeps_reason(self) -> None:
        err = DriverRejectedError("stage 2 refused", reason="insufficient funds")
        assert err.reason == "insufficient funds"
        assert str(err) == "stage 2 refused"

    def test_rejected_reason_defaults_empty(self) -> None:
        assert DriverRejectedError("nope").reason == ""
