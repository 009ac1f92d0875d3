"""
CacheManager - Async-compatible in-memory cache with per-entry TTL.

Features:
- TTL (Time To Live) for every entry
- Prefix-based bulk invalidation
- LRU eviction once max_size is reached
- Safe for concurrent coroutines

Key layout:
- calendar:busy:{startISO}:{endISO}                  remote busy periods
- slots:available:{startISO}:{endISO}:{duration}     computed available slots
- crm:contact:{email}                                CRM contact id lookups
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Generic, TypeVar

from loguru import logger

T = TypeVar("T")


class CacheKeys:
    """Cache key builders and invalidation prefixes."""

    CALENDAR_PREFIX = "calendar:"
    SLOTS_PREFIX = "slots:"
    CRM_PREFIX = "crm:"

    @staticmethod
    def calendar_busy_slots(start: datetime, end: datetime) -> str:
        return f"calendar:busy:{start.isoformat()}:{end.isoformat()}"

    @staticmethod
    def available_slots(start: datetime, end: datetime, duration: int) -> str:
        return f"slots:available:{start.isoformat()}:{end.isoformat()}:{duration}"

    @staticmethod
    def crm_contact(email: str) -> str:
        return f"crm:contact:{email.lower()}"


class CacheTTL:
    """Default TTLs per key family."""

    CALENDAR_BUSY_SLOTS = timedelta(minutes=5)
    AVAILABLE_SLOTS = timedelta(minutes=5)
    CRM_CONTACT = timedelta(minutes=30)


@dataclass
class CacheEntry(Generic[T]):
    """A single cache entry with metadata."""

    data: T
    timestamp: datetime
    ttl: timedelta

    def is_expired(self, now: datetime) -> bool:
        """Check if entry is past its TTL."""
        return now > self.timestamp + self.ttl


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    invalidations: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "invalidations": self.invalidations,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


class CacheManager:
    """
    Async-compatible TTL cache.

    Usage:
        cache = CacheManager(max_size=1000)

        slots = await cache.get(key)
        if slots is None:
            slots = await compute_slots()
            await cache.set(key, slots, ttl=CacheTTL.AVAILABLE_SLOTS)

        await cache.delete_by_pattern(CacheKeys.SLOTS_PREFIX)
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: timedelta = timedelta(minutes=5),
        debug: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._memory: dict[str, CacheEntry[Any]] = {}
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._debug = debug
        self._clock = clock
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    async def get(self, key: str) -> Any | None:
        """Get a live value from cache, or None on miss/expiry."""
        async with self._lock:
            entry = self._memory.get(key)
            if entry is None:
                self._stats.misses += 1
                self._log(f"MISS: {key[:80]}")
                return None

            if entry.is_expired(self._clock()):
                del self._memory[key]
                self._stats.misses += 1
                self._log(f"EXPIRED: {key[:80]}")
                return None

            self._stats.hits += 1
            self._log(f"HIT: {key[:80]}")
            return entry.data

    async def set(self, key: str, data: Any, ttl: timedelta | None = None) -> None:
        """
        Set value in cache.

        Args:
            key: Cache key
            data: Data to cache
            ttl: Time to live (uses default if not specified)
        """
        ttl = ttl or self._default_ttl
        entry = CacheEntry(data=data, timestamp=self._clock(), ttl=ttl)

        async with self._lock:
            # LRU eviction if at capacity
            if len(self._memory) >= self._max_size and key not in self._memory:
                self._evict_oldest()

            self._memory[key] = entry
            self._log(f"SET: {key[:80]} (TTL: {ttl.total_seconds()}s)")

    async def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        async with self._lock:
            if key in self._memory:
                del self._memory[key]
                self._log(f"DELETE: {key[:80]}")
                return True
            return False

    async def delete_by_pattern(self, prefix: str) -> int:
        """
        Invalidate every key starting with `prefix`.

        Returns:
            Number of entries invalidated
        """
        async with self._lock:
            keys_to_delete = [k for k in self._memory if k.startswith(prefix)]
            for key in keys_to_delete:
                del self._memory[key]

            self._stats.invalidations += len(keys_to_delete)
            if keys_to_delete:
                self._log(f"INVALIDATE: {len(keys_to_delete)} entries under '{prefix}'")

            return len(keys_to_delete)

    async def clear(self) -> None:
        """Clear all cache entries."""
        async with self._lock:
            count = len(self._memory)
            self._memory.clear()
            self._log(f"CLEAR: {count} entries removed")

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        async with self._lock:
            now = self._clock()
            expired_keys = [k for k, v in self._memory.items() if v.is_expired(now)]
            for key in expired_keys:
                del self._memory[key]

            if expired_keys:
                self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")

            return len(expired_keys)

    def keys(self) -> list[str]:
        """Keys currently held, including not-yet-collected expired ones."""
        return list(self._memory)

    def _evict_oldest(self) -> None:
        """Evict the oldest entry. Caller holds the lock."""
        if not self._memory:
            return

        oldest_key = min(
            self._memory.keys(),
            key=lambda k: self._memory[k].timestamp,
        )
        del self._memory[oldest_key]
        self._stats.evictions += 1
        self._log(f"EVICT: {oldest_key[:80]}")

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        self._stats.size = len(self._memory)
        self._stats.max_size = self._max_size
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[CacheManager] {message}")
