"""KeyValueStore protocol -- durable get/set used by every component.

Values are JSON-compatible documents (dicts, lists, strings, numbers,
booleans, None). Implementations must give read-after-write consistency
for a single writer and survive process restarts (the in-memory store
is the exception, for tests).
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

# Settings aggregate: max budget, refresh interval and the order list
SETTINGS_KEY = "settings"
# Execution progress + monitoring flag, read back on restart
RUNNING_STATE_KEY = "running_state"
# Last sampled market price
CURRENT_PRICE_KEY = "current_price"
# User-facing activity log
ACTIVITY_LOG_KEY = "logs"


@runtime_checkable
class KeyValueStore(Protocol):
    """Async durable key-value storage."""

    async def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value for key, or default when absent."""
        ...

    async def set(self, key: str, value: Any) -> None:
        """Store value under key, replacing any previous value."""
        ...
