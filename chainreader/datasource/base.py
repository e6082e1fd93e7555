"""
Base consumer cache adapter.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, ClassVar, Generic, TypeVar

from loguru import logger

from chainreader.services.cache import ResultCache, make_key
from chainreader.services.client import ChainClient
from chainreader.services.deduplicator import RequestDeduplicator

T = TypeVar("T")


@dataclass
class AdapterResult(Generic[T]):
    """Value served to the UI, with availability and freshness."""

    value: T
    available: bool = True
    is_stale: bool = False
    stored_at: float | None = None


class BaseCacheAdapter(ABC, Generic[T]):
    """
    Abstract base class for domain cache adapters.

    All adapters should:
    - Use ChainClient for remote reads (retry, dedup, generic cache)
    - Keep their own TTL and `<domain>_<discriminator...>` key scheme
    - Never raise to the caller: serve the best value plus an availability flag
    - Offer force_refresh() for use after a confirmed transaction
    """

    ttl: ClassVar[timedelta] = timedelta(seconds=30)
    key_prefix: ClassVar[str] = ""

    def __init__(
        self,
        client: ChainClient,
        ttl: timedelta | None = None,
        settle_delay: float | None = None,
    ):
        self.client = client
        if ttl is not None:
            self.ttl = ttl
        self.settle_delay = client.settle_delay if settle_delay is None else settle_delay
        self.cache = ResultCache(
            default_ttl=self.ttl, clock=client.clock, name=self.name
        )
        self.deduplicator = RequestDeduplicator()

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this adapter."""
        ...

    def make_key(self, *parts: Any) -> str:
        return make_key(self.key_prefix, *parts)

    async def _read(
        self,
        key: str,
        fetch: Callable[[bool], Awaitable[T | None]],
        default: T,
        ttl: timedelta | None = None,
        bypass_cache: bool = False,
    ) -> AdapterResult[T]:
        """
        Serve key from the adapter cache or fetch it.

        fetch receives bypass_cache and returns None when nothing usable
        could be read; the last cached value (or default) is served then.
        """
        cached = self.cache.get(key)
        if cached and cached.is_fresh and not bypass_cache:
            return AdapterResult(value=cached.value, stored_at=cached.stored_at)

        async def do_fetch() -> T | None:
            value = await fetch(bypass_cache)
            if value is not None:
                self.cache.set(key, value, ttl)
            return value

        # A bypassing read must not join a fetch that may predate the invalidation
        dedup_key = f"{key}_fresh" if bypass_cache else key
        try:
            value = await self.deduplicator.dedupe(dedup_key, do_fetch)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[{self.name}] Read {key} failed: {e}")
            value = None

        if value is None:
            if cached is not None:
                return AdapterResult(
                    value=cached.value,
                    available=False,
                    is_stale=not cached.is_fresh,
                    stored_at=cached.stored_at,
                )
            return AdapterResult(value=default, available=False)

        entry = self.cache.get_entry(key)
        return AdapterResult(value=value, stored_at=entry.stored_at if entry else None)

    def get_cached(self, key: str) -> T | None:
        """Last known value for key, fresh or stale, without fetching."""
        entry = self.cache.get_entry(key)
        return entry.value if entry else None

    def invalidate(self, key: str) -> bool:
        return self.cache.invalidate(key)

    def clear(self) -> None:
        self.cache.reset()

    async def _settle(self) -> None:
        """Give the chain time to reflect a just-confirmed transaction."""
        if self.settle_delay > 0:
            await self.client.sleep(self.settle_delay)
