"""Database models package."""

from limitbuy.models.base import Base, create_sqlite_engine
from limitbuy.models.kv import KeyValueModel

__all__ = [
    "Base",
    "KeyValueModel",
    "create_sqlite_engine",
]
