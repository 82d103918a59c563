"""Venue driver abstraction layer.

Re-exports the protocol and errors for convenient imports:
    from limitbuy.driver import Driver, DriverTimeoutError
"""

from limitbuy.driver.driver import Driver
from limitbuy.driver.errors import (
    DriverConnectionError,
    DriverError,
    DriverRejectedError,
    DriverTimeoutError,
)

__all__ = [
    "Driver",
    "DriverConnectionError",
    "DriverError",
    "DriverRejectedError",
    "DriverTimeoutError",
]
