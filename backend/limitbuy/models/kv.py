"""Key-value table backing the persistence facade.

Table: kv_store
"""

from __future__ import annotations

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from limitbuy.models.base import Base


class KeyValueModel(Base):
    """One JSON document per key. Rows are overwritten in place."""

    __tablename__ = "kv_store"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)  # JSON document
    updated_at: Mapped[str] = mapped_column(String, nullable=False)
