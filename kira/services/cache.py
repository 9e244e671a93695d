import logging
import time
from urllib.parse import quote
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from kira.services.activity_log import log_activity

logger = logging.getLogger(__name__)


def build_cache_key(
    kind: str,
    source: str,
    identity: str,
    style: str,
    size: str,
    step: int | None = None,
) -> str:
    parts = [kind, source, identity, style, size]
    if step is not None:
        parts.append(str(step))
    # parts are percent-encoded so a ":" inside one cannot shift the others
    return ":".join(quote(part, safe="") for part in parts)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    expires_at: float


class ResultCache:
    """
    TTL memo for rendered artifacts.
    Expired entries read as absent; sweep() drops them eagerly and is driven
    by the scheduler. Entries are replaced, never mutated.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0
        logger.info("Cache initialised with TTL %ss", ttl_seconds)

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at <= self._clock():
            self._entries.pop(key, None)
            entry = None

        if entry is None:
            self.misses += 1
            logger.debug("Cache miss: %s", key)
            return None

        self.hits += 1
        logger.debug("Cache hit: %s", key)
        return entry.value

    def put(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(
            key=key, value=value, expires_at=self._clock() + self.ttl_seconds
        )
        logger.info("Cached: %s", key)
        log_activity("info", "cache", f"Cached {key}")

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate_all(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        logger.info("Cache flushed (%d entries)", count)
        log_activity("warn", "cache", f"Cache flushed: {count} entries dropped")
        return count

    def sweep(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            self._entries.pop(key, None)
        if expired:
            logger.debug("Cache sweep removed %d expired entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, Any]:
        return {
            "keys": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "ttl_seconds": self.ttl_seconds,
        }
