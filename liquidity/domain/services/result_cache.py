"""
Result Cache
============

Keyed, TTL-based memoization shared across engines.

- Every entry carries its own ttl; an entry is expired once
  ``now - written_at > ttl`` and reads after that report a miss (lazy expiry)
- Writes unconditionally overwrite
- Writes are serialized per key so sibling engine tasks never interleave
  writes to the same key
- An optional background sweep drops expired entries to bound memory

Usage:
    cache = ResultCache(default_ttl_seconds=15)
    await cache.set("engine:zscore", output, ttl_seconds=1.0)
    lookup = await cache.lookup("engine:zscore")
    if lookup.hit:
        ...
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, NamedTuple, Optional

from ...core.logger import get_logger
from ...core.time_manager import Clock, now

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    key: str
    payload: Any
    written_at: float
    ttl_seconds: float

    def is_expired(self, current_time: float) -> bool:
        return (current_time - self.written_at) > self.ttl_seconds


class CacheLookup(NamedTuple):
    hit: bool
    value: Any = None


class ResultCache:
    """In-memory TTL cache with per-key locking and hit/miss statistics."""

    def __init__(
        self,
        default_ttl_seconds: float = 15.0,
        max_entries: int = 15000,
        sweep_interval_seconds: float = 0.0,
        clock: Clock = now
    ):
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")

        self.default_ttl_seconds = default_ttl_seconds
        self.max_entries = max_entries
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock

        self._entries: Dict[str, CacheEntry] = {}
        self._key_locks: Dict[str, asyncio.Lock] = {}

        self._hits = 0
        self._misses = 0
        self._expirations = 0
        self._evictions = 0
        self._writes = 0

        self._running = False
        self._sweep_task: Optional[asyncio.Task] = None

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[key] = lock
        return lock

    def _read(self, key: str) -> CacheLookup:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return CacheLookup(False)

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._expirations += 1
            self._misses += 1
            return CacheLookup(False)

        self._hits += 1
        return CacheLookup(True, entry.payload)

    async def lookup(self, key: str) -> CacheLookup:
        """Return ``CacheLookup(hit, value)``; expired entries are dropped and reported as a miss."""
        return self._read(key)

    async def get(self, key: str, default: Any = None) -> Any:
        result = self._read(key)
        return result.value if result.hit else default

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        async with self._lock_for(key):
            self._write(key, value, ttl_seconds)

    def _write(self, key: str, value: Any, ttl_seconds: Optional[float]) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")

        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._make_room()

        self._entries[key] = CacheEntry(key=key, payload=value, written_at=self._clock(), ttl_seconds=ttl)
        self._writes += 1

    def _make_room(self) -> None:
        removed = self._sweep_expired()
        if removed == 0 and self._entries:
            oldest_key = min(self._entries.values(), key=lambda e: e.written_at).key
            del self._entries[oldest_key]
            self._key_locks.pop(oldest_key, None)
            self._evictions += 1

    async def invalidate(self, key: str) -> bool:
        async with self._lock_for(key):
            removed = self._entries.pop(key, None) is not None
        self._key_locks.pop(key, None)
        return removed

    async def clear(self) -> None:
        self._entries.clear()
        self._key_locks.clear()

    def sweep(self) -> int:
        """Drop every expired entry now; returns how many were removed."""
        return self._sweep_expired()

    def _sweep_expired(self) -> int:
        current = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(current)]
        for key in expired:
            del self._entries[key]
            lock = self._key_locks.get(key)
            if lock is not None and not lock.locked():
                del self._key_locks[key]
        self._expirations += len(expired)
        return len(expired)

    async def start(self) -> None:
        """Start the periodic sweep when a sweep interval is configured."""
        if self.sweep_interval_seconds <= 0:
            return
        if self._running:
            logger.warning("result_cache.sweep_already_running")
            return

        self._running = True
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("result_cache.sweep_started", {"interval_seconds": self.sweep_interval_seconds})

    async def stop(self) -> None:
        self._running = False
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.sweep_interval_seconds)
            removed = self._sweep_expired()
            if removed:
                logger.debug("result_cache.swept", {"removed": removed, "remaining": len(self._entries)})

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 4) if total else 0.0,
            "writes": self._writes,
            "expirations": self._expirations,
            "evictions": self._evictions,
        }
