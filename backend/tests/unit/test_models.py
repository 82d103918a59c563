"""Tests for SQLAlchemy models and the engine factory."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import text

from limitbuy.models import Base, KeyValueModel, create_sqlite_engine


class TestKeyValueModel:
    def test_table_registered(self) -> None:
        assert "kv_store" in Base.metadata.tables
        assert KeyValueModel.__tablename__ == "kv_store"

    def test_columns(self) -> None:
        columns = {c.name for c in Base.metadata.tables["kv_store"].columns}
        assert columns == {"key", "value", "updated_at"}


class TestEngineFactory:
    async def test_memory_engine(self) -> None:
        engine = create_sqlite_engine(":memory:")
        try:
            async with engine.connect() as conn:
                result = await conn.execute(text("SELECT 1"))
                assert result.scalar() == 1
        finally:
            await engine.dispose()

    async def test_file_engine_uses_wal(self, tmp_path: Path) -> None:
        engine = create_sqlite_engine(str(tmp_path / "wal.db"))
        try:
            async with engine.connect() as conn:
                mode = (await conn.execute(text("PRAGMA journal_mode"))).scalar()
                assert str(mode).lower() == "wal"
        finally:
            await engine.dispose()
