"""Persistence facade.

Re-exports the store protocol, implementations and well-known keys:
    from limitbuy.persistence import KeyValueStore, SETTINGS_KEY
"""

from limitbuy.persistence.memory import MemoryKeyValueStore
from limitbuy.persistence.sqlite import SqliteKeyValueStore, open_sqlite_store
from limitbuy.persistence.store import (
    ACTIVITY_LOG_KEY,
    CURRENT_PRICE_KEY,
    RUNNING_STATE_KEY,
    SETTINGS_KEY,
    KeyValueStore,
)

__all__ = [
    "ACTIVITY_LOG_KEY",
    "CURRENT_PRICE_KEY",
    "RUNNING_STATE_KEY",
    "SETTINGS_KEY",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SqliteKeyValueStore",
    "open_sqlite_store",
]
