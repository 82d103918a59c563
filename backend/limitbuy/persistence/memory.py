"""MemoryKeyValueStore -- in-process store for tests and dry runs.

Values are round-tripped through JSON on write so anything that would
not survive the SQLite store fails here too, and callers never share
mutable state with the store.
"""

from __future__ import annotations

import json
from typing import Any


class MemoryKeyValueStore:
    """Dict-backed KeyValueStore. Not durable across processes."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, str] = {}
        self.writes: list[str] = []
        for key, value in (initial or {}).items():
            self._data[key] = json.dumps(value)

    async def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)
        self.writes.append(key)

    def snapshot(self) -> dict[str, Any]:
        """Decoded copy of everything stored, for assertions."""
        return {key: json.loads(raw) for key, raw in self._data.items()}
