"""
In-process TTL caches.

TTLCache is a generic time-bounded map. QueryResultCache keys entries by a
content hash of the serialized query. CacheSweeper runs cleanup() on a fixed
period, independent of request traffic.

Caches are process-local and unlocked: safe under asyncio's cooperative
scheduling, not under thread-level mutation. A miss must always be
satisfiable by re-querying the record store.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from dealchat.models.query import Query

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    data: Any
    timestamp: float
    source: str | None = None


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    writes: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class TTLCache:
    """Map whose entries are treated as absent once older than ttl_seconds."""

    def __init__(
        self,
        ttl_seconds: float,
        *,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._is_fresh(entry, self._clock())

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            return None

        if not self._is_fresh(entry, self._clock()):
            del self._entries[key]
            self._stats.evictions += 1
            self._stats.misses += 1
            return None

        self._stats.hits += 1
        return entry.data

    def set(self, key: str, data: Any, *, source: str | None = None) -> None:
        self._entries[key] = CacheEntry(key=key, data=data, timestamp=self._clock(), source=source)
        self._stats.writes += 1

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate(self, pattern: str) -> int:
        """Drop entries whose key or source text contains pattern."""
        if not pattern:
            return 0
        doomed = [
            key
            for key, entry in self._entries.items()
            if pattern in key or (entry.source is not None and pattern in entry.source)
        ]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug(
                f"Invalidated {len(doomed)} {self.name} entries",
                extra={"cache": self.name, "pattern": pattern},
            )
        return len(doomed)

    def cleanup(self) -> int:
        """Remove every expired entry; returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if not self._is_fresh(entry, now)]
        for key in expired:
            del self._entries[key]
        self._stats.evictions += len(expired)
        return len(expired)

    def clear(self) -> int:
        size = len(self._entries)
        self._entries.clear()
        return size

    def stats(self) -> dict[str, Any]:
        return {
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "writes": self._stats.writes,
            "evictions": self._stats.evictions,
            "size": len(self._entries),
            "hit_rate": self._stats.hit_rate,
        }

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp < self.ttl_seconds


class QueryResultCache(TTLCache):
    """Short-lived cache of record store results keyed by query content."""

    def __init__(self, ttl_seconds: float = 60.0, *, clock: Callable[[], float] = time.monotonic):
        super().__init__(ttl_seconds, name="query_cache", clock=clock)

    @staticmethod
    def key_for(query: Query | str) -> str:
        soql = query.to_soql() if isinstance(query, Query) else str(query)
        return hashlib.sha256(soql.encode("utf-8")).hexdigest()

    def get(self, query: Query | str) -> Any | None:
        return super().get(self.key_for(query))

    def set(self, query: Query | str, data: Any, *, source: str | None = None) -> None:
        soql = query.to_soql() if isinstance(query, Query) else str(query)
        super().set(self.key_for(soql), data, source=source or soql)


class CacheSweeper:
    """Periodically purge expired entries from one or more caches."""

    def __init__(self, caches: Iterable[TTLCache], interval_seconds: float = 120.0):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.caches = list(caches)
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start sweeping on the running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def sweep(self) -> int:
        removed = 0
        for cache in self.caches:
            count = cache.cleanup()
            if count:
                logger.info(
                    f"Cleaned {count} expired {cache.name} entries",
                    extra={"cache": cache.name, "removed": count, "size": len(cache)},
                )
            removed += count
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            self.sweep()
