"""
In-memory cache for the Data Manager Layer.

Keyed store of {data, timestamp, ttl} entries with:
- A staleness predicate (``age >= ttl``)
- Cache hit/miss logging for monitoring
- No eviction: staleness is only reported, the coordinator decides what to do
"""

import time
from collections.abc import Callable
from typing import Any

import structlog

from .types import CacheEntry, DomainKey

logger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 300.0


class CacheLayer:
    """
    Session-scoped cache of fetched domain payloads.

    Size is bounded by the number of distinct DomainKeys (the fixed domains
    plus one per requested month), so no eviction policy is needed.
    """

    def __init__(
        self,
        default_ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            default_ttl_seconds: TTL used when ``set`` is called without one
            clock: Monotonic time source (injectable for tests)
        """
        self._entries: dict[DomainKey, CacheEntry] = {}
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._stats = {"hits": 0, "misses": 0, "stale": 0, "writes": 0}

    def get(self, key: DomainKey) -> CacheEntry | None:
        """
        Get the entry for a key, fresh or stale.

        Callers must check ``is_stale`` themselves.
        """
        entry = self._entries.get(key)
        if entry is None:
            self._stats["misses"] += 1
            logger.debug("cache_miss", key=str(key))
            return None

        if self.is_stale(entry):
            self._stats["stale"] += 1
            logger.debug("cache_stale", key=str(key), age=round(self.age(entry), 1))
        else:
            self._stats["hits"] += 1
            logger.debug("cache_hit", key=str(key), age=round(self.age(entry), 1))
        return entry

    def get_fresh(self, key: DomainKey) -> CacheEntry | None:
        """Get the entry for a key only if it is still within its TTL."""
        entry = self.get(key)
        if entry is None or self.is_stale(entry):
            return None
        return entry

    def peek(self, key: DomainKey) -> CacheEntry | None:
        """Get the entry for a key without touching hit/miss statistics."""
        return self._entries.get(key)

    def set(
        self,
        key: DomainKey,
        data: Any,
        ttl_seconds: float | None = None,
    ) -> CacheEntry:
        """
        Store a payload stamped with the current time.

        Args:
            key: Domain key
            data: Payload to cache
            ttl_seconds: Time-to-live in seconds (default: layer default)

        Returns:
            The stored entry
        """
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        entry = CacheEntry(data=data, timestamp=self._clock(), ttl_seconds=ttl)
        self._entries[key] = entry
        self._stats["writes"] += 1
        logger.debug("cache_set", key=str(key), ttl=ttl)
        return entry

    def age(self, entry: CacheEntry) -> float:
        """Seconds since the entry was stored."""
        return entry.age(self._clock())

    def is_stale(self, entry: CacheEntry) -> bool:
        """True once ``age(entry) >= entry.ttl``."""
        return entry.is_stale(self._clock())

    def delete(self, key: DomainKey) -> bool:
        """Remove one entry. Returns True if it existed."""
        deleted = self._entries.pop(key, None) is not None
        logger.debug("cache_delete", key=str(key), deleted=deleted)
        return deleted

    def clear(self) -> int:
        """Remove every entry. Returns the number removed."""
        count = len(self._entries)
        self._entries.clear()
        logger.info("cache_cleared", entries=count)
        return count

    def keys(self) -> list[DomainKey]:
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        lookups = self._stats["hits"] + self._stats["misses"] + self._stats["stale"]
        hit_rate = (self._stats["hits"] / lookups * 100) if lookups > 0 else 0
        return {
            "entries": len(self._entries),
            **self._stats,
            "hit_rate_percent": round(hit_rate, 1),
        }
