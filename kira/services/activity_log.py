"""
In-memory activity ring buffer.
Captures key pipeline events (fetches, renders, cache traffic, pool restarts)
for the /admin/actions/activity view. Max 200 entries (oldest auto-dropped).
"""
from collections import deque
from datetime import datetime, timezone
from typing import TypedDict


class ActivityEntry(TypedDict):
    time: str      # HH:MM:SS UTC
    level: str     # "info" | "success" | "error" | "warn"
    category: str  # "fetch" | "render" | "cache" | "system"
    message: str


ACTIVITY_LOG: deque[ActivityEntry] = deque(maxlen=200)


def log_activity(level: str, category: str, message: str) -> None:
    ACTIVITY_LOG.appendleft(
        ActivityEntry(
            time=datetime.now(timezone.utc).strftime("%H:%M:%S"),
            level=level,
            category=category,
            message=message,
        )
    )


def recent(limit: int = 60, category: str | None = None) -> list[ActivityEntry]:
    """Newest-first entries, optionally narrowed to one category."""
    entries = (e for e in ACTIVITY_LOG if category is None or e["category"] == category)
    return [entry for _, entry in zip(range(limit), entries)]
