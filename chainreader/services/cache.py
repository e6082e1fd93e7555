"""
ResultCache - Per-key TTL store of the last successful value.

Features:
- TTL per entry, fixed by the caller's key family
- Stale entries are kept and served as a fallback value
- Entries are only removed by explicit invalidation or reset()
- Injectable clock so freshness boundaries can be tested exactly
"""

import hashlib
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Generic, TypeVar

from loguru import logger

T = TypeVar("T")

MAX_KEY_LENGTH = 200


def make_key(domain: str, *parts: Any) -> str:
    """
    Build a flat `<domain>_<discriminator...>` cache key.

    Hex addresses are lower-cased so identical logical queries share a key.
    Keys longer than MAX_KEY_LENGTH are hashed.
    """
    normalized = [
        str(part).lower() if isinstance(part, str) and part.startswith("0x") else str(part)
        for part in parts
    ]
    full_key = "_".join([domain, *normalized])

    # Hash long keys
    if len(full_key) > MAX_KEY_LENGTH:
        hash_val = hashlib.md5(full_key.encode()).hexdigest()[:16]
        return f"{domain}_{hash_val}"

    return full_key


@dataclass
class CacheEntry(Generic[T]):
    """A single cache entry with metadata."""

    key: str
    value: T
    stored_at: float
    ttl: timedelta

    def is_fresh(self, now: float) -> bool:
        """Fresh iff now - stored_at < ttl."""
        return now - self.stored_at < self.ttl.total_seconds()

    def age(self, now: float) -> float:
        return now - self.stored_at


@dataclass
class CacheResult(Generic[T]):
    """Result from cache lookup."""

    value: T
    is_fresh: bool
    stored_at: float

    @property
    def is_stale(self) -> bool:
        return not self.is_fresh


class ResultCache:
    """
    In-memory result cache with per-key TTL and stale fallback.

    Usage:
        cache = ResultCache(default_ttl=timedelta(seconds=30))

        cached = cache.get("bal_0xabc_native")
        if cached and cached.is_fresh:
            return cached.value

        value = await fetch()
        cache.set("bal_0xabc_native", value)
    """

    def __init__(
        self,
        default_ttl: timedelta = timedelta(seconds=15),
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
        debug: bool = False,
    ):
        if default_ttl < timedelta(0):
            raise ValueError("default_ttl must not be negative")

        self._entries: dict[str, CacheEntry[Any]] = {}
        self._default_ttl = default_ttl
        self._clock = clock
        self._name = name
        self._debug = debug
        self._stats = CacheStats()

    @property
    def default_ttl(self) -> timedelta:
        return self._default_ttl

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> CacheResult[Any] | None:
        """
        Get value from cache.

        Returns CacheResult (fresh or stale) if present, None otherwise.
        """
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            self._log(f"MISS: {key[:50]}...")
            return None

        is_fresh = entry.is_fresh(self._clock())
        if is_fresh:
            self._stats.hits += 1
            self._log(f"HIT: {key[:50]}...")
        else:
            self._stats.stale_hits += 1
            self._log(f"STALE HIT: {key[:50]}...")

        return CacheResult(value=entry.value, is_fresh=is_fresh, stored_at=entry.stored_at)

    def get_entry(self, key: str) -> CacheEntry[Any] | None:
        """Get the raw entry without touching statistics."""
        return self._entries.get(key)

    def set(self, key: str, value: Any, ttl: timedelta | None = None) -> CacheEntry[Any]:
        """
        Store or overwrite a value.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live (uses default if not specified)
        """
        ttl = self._default_ttl if ttl is None else ttl
        if ttl < timedelta(0):
            raise ValueError(f"TTL for {key} must not be negative")

        entry = CacheEntry(key=key, value=value, stored_at=self._clock(), ttl=ttl)
        self._entries[key] = entry
        self._log(f"SET: {key[:50]}... (TTL: {ttl.total_seconds()}s)")
        return entry

    def invalidate(self, key: str) -> bool:
        """Remove a specific key early."""
        if self._entries.pop(key, None) is None:
            return False
        self._stats.invalidations += 1
        self._log(f"INVALIDATE: {key[:50]}...")
        return True

    def invalidate_matching(self, pattern: str) -> int:
        """
        Invalidate all keys containing a pattern.

        Returns:
            Number of entries invalidated
        """
        keys_to_delete = [k for k in self._entries if pattern in k]
        for key in keys_to_delete:
            del self._entries[key]

        if keys_to_delete:
            self._stats.invalidations += len(keys_to_delete)
            self._log(f"INVALIDATE: {len(keys_to_delete)} entries matching '{pattern}'")

        return len(keys_to_delete)

    def clear(self) -> None:
        """Clear all cache entries."""
        count = len(self._entries)
        self._entries.clear()
        self._log(f"CLEAR: {count} entries removed")

    def reset(self) -> None:
        """Clear entries and statistics."""
        self.clear()
        self._stats = CacheStats()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._entries)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[{self._name}] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    stale_hits: int = 0
    invalidations: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate fresh hit rate."""
        total = self.hits + self.stale_hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "stale_hits": self.stale_hits,
            "invalidations": self.invalidations,
            "size": self.size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
