"""SqliteKeyValueStore -- durable KeyValueStore on SQLAlchemy + aiosqlite.

Each set() is its own committed transaction, so a crash never leaves a
half-written document behind.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from limitbuy.models.base import Base, create_sqlite_engine
from limitbuy.models.kv import KeyValueModel
from limitbuy.utils.time import format_timestamp, utc_now

log = structlog.get_logger()


class SqliteKeyValueStore:
    """KeyValueStore backed by the kv_store table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, key: str, default: Any = None) -> Any:
        async with self._session_factory() as session:
            result = await session.execute(
                select(KeyValueModel.value).where(KeyValueModel.key == key)
            )
            raw = result.scalar_one_or_none()
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            log.error("kv_value_corrupt", key=key)
            return default

    async def set(self, key: str, value: Any) -> None:
        raw = json.dumps(value)
        now = format_timestamp(utc_now())
        stmt = insert(KeyValueModel).values(key=key, value=raw, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[KeyValueModel.key],
            set_={"value": raw, "updated_at": now},
        )
        async with self._session_factory() as session, session.begin():
            await session.execute(stmt)

    async def keys(self) -> list[str]:
        """All stored keys, sorted."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(KeyValueModel.key).order_by(KeyValueModel.key)
            )
            return list(result.scalars().all())


async def open_sqlite_store(db_path: str) -> tuple[SqliteKeyValueStore, AsyncEngine]:
    """Create the engine, ensure the schema exists, and return the store.

    The caller owns the engine and must dispose() it on shutdown.
    """
    if db_path not in ("", ":memory:"):
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    engine = create_sqlite_engine(db_path)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    return SqliteKeyValueStore(session_factory), engine
