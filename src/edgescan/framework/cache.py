"""
Per-source TTL cache.

SourceCache sits in front of a CacheStore. Staleness is evaluated lazily at read
time against each entry's own TTL; there is no eviction thread. A failed fetch
never reaches put(), so the last good value survives an outage and the runner can
still hand it to detectors as stale-but-usable data.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    source_name: str
    value: Any
    fetched_at: float
    ttl_seconds: float

    def is_stale(self, now: float) -> bool:
        return now - self.fetched_at > self.ttl_seconds


@dataclass(frozen=True)
class CacheLookup:
    """Result of SourceCache.get(). A miss has fetched_at=None and is always stale."""

    value: Any
    is_stale: bool
    fetched_at: Optional[float] = None
    age_seconds: Optional[float] = None  # measured with the cache clock

    @property
    def present(self) -> bool:
        return self.fetched_at is not None


class CacheStore(ABC):
    """Storage backend for cache entries, keyed by source name."""

    @abstractmethod
    def load(self, name: str) -> Optional[CacheEntry]:
        pass

    @abstractmethod
    def save(self, entry: CacheEntry) -> None:
        pass

    @abstractmethod
    def delete(self, name: str) -> bool:
        pass

    @abstractmethod
    def names(self) -> list[str]:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class InMemoryCacheStore(CacheStore):
    """Process-memory store. Lives as long as the process (or the test that built it)."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    def load(self, name: str) -> Optional[CacheEntry]:
        return self._entries.get(name)

    def save(self, entry: CacheEntry) -> None:
        # single assignment: readers see either the old entry or the new one
        self._entries[entry.source_name] = entry

    def delete(self, name: str) -> bool:
        return self._entries.pop(name, None) is not None

    def names(self) -> list[str]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()


class SourceCache:
    """
    TTL cache for source fetch results.

    Usage (SourceFetcher):
        cache = SourceCache()
        lookup = cache.get("kalshi")
        if lookup.is_stale:
            cache.put("kalshi", fresh_markets, ttl_seconds=120)
    """

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store if store is not None else InMemoryCacheStore()
        self._clock = clock

    def get(self, name: str) -> CacheLookup:
        """
        Look up a source's cached value.

        Returns:
            CacheLookup(value, is_stale, fetched_at, age_seconds). Fresh iff
            now - fetched_at <= ttl_seconds. A miss is (None, True, None).
        """
        entry = self._store.load(name)
        if entry is None:
            return CacheLookup(value=None, is_stale=True)
        now = self._clock()
        return CacheLookup(
            value=entry.value,
            is_stale=entry.is_stale(now),
            fetched_at=entry.fetched_at,
            age_seconds=now - entry.fetched_at,
        )

    def put(self, name: str, value: Any, ttl_seconds: float) -> CacheEntry:
        """
        Store a freshly fetched value, replacing any previous entry.

        Raises:
            ValueError: If ttl_seconds is not positive
        """
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be > 0 for '{name}', got {ttl_seconds}")
        entry = CacheEntry(
            source_name=name,
            value=value,
            fetched_at=self._clock(),
            ttl_seconds=ttl_seconds,
        )
        self._store.save(entry)
        return entry

    def invalidate(self, name: str) -> bool:
        """Drop one entry so the next read is a miss."""
        return self._store.delete(name)

    def clear(self) -> None:
        self._store.clear()
        logger.debug("Source cache cleared")

    def stats(self) -> dict[str, Any]:
        names = self._store.names()
        oldest: Optional[float] = None
        for name in names:
            entry = self._store.load(name)
            if entry is not None and (oldest is None or entry.fetched_at < oldest):
                oldest = entry.fetched_at
        return {"size": len(names), "names": sorted(names), "oldest_fetched_at": oldest}
