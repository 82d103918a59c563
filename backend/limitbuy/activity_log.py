"""User-facing activity log, persisted so it survives restarts.

This is the short human-readable history shown to the user (orders
added, batches filled, monitoring stopped...). Diagnostics go to
structlog; only user-relevant events are recorded here. The log keeps
the newest `max_entries` entries. Each write re-reads the stored list,
so entries recorded by a CLI process and by the monitor are both kept.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from limitbuy.persistence.store import ACTIVITY_LOG_KEY, KeyValueStore
from limitbuy.utils.time import format_timestamp, parse_timestamp, utc_now

log = structlog.get_logger()

DEFAULT_MAX_ENTRIES = 200
LEVELS = ("info", "warn", "error")


@dataclass(frozen=True)
class ActivityEntry:
    at: datetime
    level: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"at": format_timestamp(self.at), "level": self.level, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActivityEntry:
        return cls(
            at=parse_timestamp(data["at"]),
            level=data.get("level", "info"),
            message=data["message"],
        )

    def render(self) -> str:
        return f"[{self.at:%Y-%m-%d %H:%M:%S}] {self.level.upper():5} {self.message}"


class ActivityLog:
    """Bounded, persisted list of ActivityEntry."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._clock = clock
        self._entries: deque[ActivityEntry] = deque(maxlen=max_entries)

    async def load(self) -> None:
        saved = await self._store.get(ACTIVITY_LOG_KEY, [])
        self._entries.clear()
        for item in saved:
            try:
                self._entries.append(ActivityEntry.from_dict(item))
            except (KeyError, ValueError):
                log.warning("activity_entry_skipped", entry=item)

    async def record(self, message: str, level: str = "info") -> ActivityEntry:
        if level not in LEVELS:
            raise ValueError(f"level must be one of {LEVELS}, got {level}")
        entry = ActivityEntry(at=self._clock(), level=level, message=message)
        # Other processes append to the same list
        await self.load()
        self._entries.append(entry)
        await self._save()
        return entry

    async def info(self, message: str) -> ActivityEntry:
        return await self.record(message, "info")

    async def warn(self, message: str) -> ActivityEntry:
        return await self.record(message, "warn")

    async def error(self, message: str) -> ActivityEntry:
        return await self.record(message, "error")

    async def clear(self) -> None:
        self._entries.clear()
        await self._save()
        await self.info("Logs cleared")

    def entries(self) -> tuple[ActivityEntry, ...]:
        return tuple(self._entries)

    def export_text(self) -> str:
        """Plain-text dump, one line per entry, oldest first."""
        return "\n".join(e.render() for e in self._entries)

    async def _save(self) -> None:
        await self._store.set(ACTIVITY_LOG_KEY, [e.to_dict() for e in self._entries])
