"""Driver error hierarchy.

All venue-interaction exceptions inherit from DriverError, so the
execution controller can turn any of them into a failed stage.
"""

from __future__ import annotations


class DriverError(Exception):
    """Base exception for all driver-related errors."""


class DriverTimeoutError(DriverError):
    """A stage did not signal readiness before its timeout."""


class DriverRejectedError(DriverError):
    """The venue explicitly refused a stage.

    Stores the venue's reason when it gave one.
    """

    def __init__(self, message: str, reason: str = "") -> None:
        self.reason = reason
        super().__init__(message)


class DriverConnectionError(DriverError):
    """The venue could not be reached at all."""
