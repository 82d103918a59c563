"""SQLAlchemy base, async engine factory, and SQLite pragmas."""

from __future__ import annotations

from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase

DEFAULT_BUSY_TIMEOUT_MS = 5000


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def set_sqlite_pragmas(
    dbapi_connection: Any,
    connection_record: Any,
) -> None:
    """Set SQLite pragmas on every new connection.

    SQLite pragmas are per-connection, not per-database, so they must be
    set every time. WAL + synchronous=FULL makes every committed write
    survive a process crash, which execution recovery relies on.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.execute(f"PRAGMA busy_timeout={DEFAULT_BUSY_TIMEOUT_MS}")
    cursor.close()


def register_engine_events(engine: Engine) -> None:
    """Register SQLite pragma listener on an engine."""
    event.listen(engine, "connect", set_sqlite_pragmas)


def create_sqlite_engine(db_path: str) -> AsyncEngine:
    """Create an aiosqlite engine with pragmas registered.

    An empty db_path or ":memory:" gives a private in-memory database.
    """
    if db_path in ("", ":memory:"):
        url = "sqlite+aiosqlite://"
    else:
        url = f"sqlite+aiosqlite:///{db_path}"
    engine = create_async_engine(url, echo=False)
    register_engine_events(engine.sync_engine)
    return engine
