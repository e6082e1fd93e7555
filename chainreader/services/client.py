"""
ChainClient - Read-only facade over the remote JSON-RPC endpoint.

Combines:
- EndpointManager for handle ownership and health
- CallExecutor for timeout and bounded retry
- RequestDeduplicator for concurrent request optimization
- ResultCache for TTL caching with stale fallback
- BatchAggregator for multi-item reads
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Generic, TypeVar

from loguru import logger

from chainreader.chain.abi import ContractCall, decode_result, encode_call
from chainreader.chain.multicall import BatchAggregator, BatchItemResult, BatchMode
from chainreader.services.cache import CacheResult, ResultCache, make_key
from chainreader.services.deduplicator import RequestDeduplicator
from chainreader.services.endpoint import (
    EndpointKind,
    EndpointManager,
    HealthConfig,
)
from chainreader.services.errors import ErrorClass, RpcError
from chainreader.services.executor import CallExecutor, CallOptions, classify_error
from chainreader.services.transport import RpcTransport
from chainreader.settings import Settings, global_settings

T = TypeVar("T")


@dataclass
class ReadResult(Generic[T]):
    """Result from a read."""

    value: T | None
    from_cache: str | None = None  # 'memory' | 'stale' | None
    is_stale: bool = False
    available: bool = True


class ChainClient:
    """
    Cached, deduplicated, retrying read client.

    Usage:
        client = ChainClient.new()

        result = await client.call(
            "network_block_number",
            lambda transport: transport.block_number(),
            ttl=timedelta(seconds=60),
        )
        if result.value is not None:
            ...

        await client.close()

    Reads never raise for remote failures: they resolve to a fresh value,
    the last cached value, or None, together with an availability flag.
    """

    def __init__(
        self,
        endpoints: EndpointManager,
        executor: CallExecutor | None = None,
        cache: ResultCache | None = None,
        deduplicator: RequestDeduplicator | None = None,
        aggregator: BatchAggregator | None = None,
        settle_delay: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        debug: bool = False,
    ):
        self.endpoints = endpoints
        self.executor = executor or CallExecutor(endpoints, sleep=sleep, debug=debug)
        self.cache = cache or ResultCache(clock=clock, name="ChainClient", debug=debug)
        self.deduplicator = deduplicator or RequestDeduplicator(debug=debug)
        self.aggregator = aggregator or BatchAggregator(
            endpoints, self.executor, mode=BatchMode.NATIVE, debug=debug
        )
        self.settle_delay = settle_delay
        self.clock = clock
        self.sleep = sleep
        self._debug = debug

    @classmethod
    def new(
        cls,
        settings: Settings | None = None,
        *,
        transport: Any | None = None,
        streaming_transport: Any | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> "ChainClient":
        """
        Build an isolated client stack from settings.

        Args:
            settings: Configuration (defaults to global_settings)
            transport: Primary handle override (e.g. a test double)
            streaming_transport: Secondary handle override
            clock: Monotonic clock in seconds
            sleep: Async sleep used for backoff and settle delays
        """
        settings = settings or global_settings
        config = HealthConfig(
            degraded_threshold=settings.health_degraded_threshold,
            down_threshold=settings.health_down_threshold,
            rate_limit_cooldown=settings.rate_limit_cooldown,
            probe_interval=settings.health_probe_interval,
        )

        if transport is None and streaming_transport is None:
            endpoints = EndpointManager.from_urls(
                settings.rpc_url,
                streaming_url=settings.streaming_rpc_url or None,
                timeout=settings.rpc_timeout,
                config=config,
                clock=clock,
            )
        else:
            primary = transport or RpcTransport(
                settings.rpc_url, timeout=settings.rpc_timeout, name=EndpointKind.PRIMARY.value
            )
            endpoints = EndpointManager(
                primary=primary, streaming=streaming_transport, config=config, clock=clock
            )

        options = CallOptions(
            retries=settings.rpc_max_retries,
            timeout=settings.rpc_timeout,
            base_delay=settings.rpc_backoff_base,
            max_delay=settings.rpc_backoff_max,
            rate_limit_multiplier=settings.rpc_rate_limit_backoff_multiplier,
        )
        executor = CallExecutor(endpoints, options, sleep=sleep, debug=settings.debug)
        aggregator = BatchAggregator(
            endpoints,
            executor,
            mode=BatchMode(settings.batch_mode),
            multicall_address=settings.multicall_address or None,
            max_batch_size=settings.max_batch_size,
            debug=settings.debug,
        )
        cache = ResultCache(
            default_ttl=timedelta(seconds=settings.default_cache_ttl),
            clock=clock,
            name="ChainClient",
            debug=settings.debug,
        )

        return cls(
            endpoints,
            executor=executor,
            cache=cache,
            aggregator=aggregator,
            settle_delay=settings.force_refresh_settle_delay,
            clock=clock,
            sleep=sleep,
            debug=settings.debug,
        )

    @property
    def transport(self) -> Any | None:
        """Primary handle."""
        return self.endpoints.get_handle(EndpointKind.PRIMARY)

    def is_available(self) -> bool:
        return self.endpoints.is_available(EndpointKind.PRIMARY)

    async def call(
        self,
        key: str,
        fn: Callable[[Any], Awaitable[T]],
        ttl: timedelta | None = None,
        options: CallOptions | None = None,
        bypass_cache: bool = False,
    ) -> ReadResult[T]:
        """
        Read one value through cache, dedup and executor.

        Args:
            key: Stable cache key for the logical query
            fn: Coroutine function receiving the primary transport
            ttl: Cache TTL override for this key family
            options: Retry/timeout override
            bypass_cache: Skip a fresh cache hit (stale fallback still applies)

        Returns:
            ReadResult with value (or None) and availability
        """
        cached = self.cache.get(key)
        if cached and cached.is_fresh and not bypass_cache:
            return ReadResult(
                value=cached.value, from_cache="memory", available=self.is_available()
            )

        transport = self.transport
        if transport is None or not self.endpoints.can_request(EndpointKind.PRIMARY):
            self._log(f"UNAVAILABLE: serving cache for {key[:50]}")
            return self._fallback(cached)

        async def do_call() -> tuple[T | None, bool]:
            try:
                value = await self.executor.execute_or_raise(key, lambda: fn(transport), options)
            except RpcError as e:
                # Reverts and undecodable answers still mean the endpoint answered
                return None, classify_error(e) in (ErrorClass.LOGICAL, ErrorClass.DECODE)
            if value is not None:
                self.cache.set(key, value, ttl)
            return value, True

        # A bypassing read must not join a fetch that may predate the invalidation
        dedup_key = f"{key}_fresh" if bypass_cache else key
        value, answered = await self.deduplicator.dedupe(dedup_key, do_call)

        if value is None:
            if cached is not None:
                logger.warning(f"Read {key} failed, returning stale data")
            return self._fallback(cached, available=answered)

        return ReadResult(value=value)

    @staticmethod
    def _fallback(cached: CacheResult[Any] | None, available: bool = False) -> ReadResult[Any]:
        if cached is None:
            return ReadResult(value=None, available=available)
        return ReadResult(
            value=cached.value,
            from_cache="stale",
            is_stale=not cached.is_fresh,
            available=available,
        )

    # Elementary reads

    async def read_contract(
        self,
        call: ContractCall,
        key: str | None = None,
        ttl: timedelta | None = None,
        bypass_cache: bool = False,
    ) -> ReadResult[Any]:
        """Read and decode one contract function."""
        key = key or make_key("call", call.target, call.function.signature, *call.args)
        calldata = encode_call(call)

        async def do_read(transport: Any) -> Any:
            data = await transport.eth_call(call.target, calldata)
            return decode_result(call.function, data)

        return await self.call(key, do_read, ttl=ttl, bypass_cache=bypass_cache)

    async def native_balance(
        self,
        address: str,
        key: str | None = None,
        ttl: timedelta | None = None,
        bypass_cache: bool = False,
    ) -> ReadResult[int]:
        """Native balance in wei."""
        key = key or make_key("native_balance", address)
        return await self.call(
            key,
            lambda transport: transport.get_balance(address),
            ttl=ttl,
            bypass_cache=bypass_cache,
        )

    async def block_number(
        self,
        ttl: timedelta | None = None,
        bypass_cache: bool = False,
    ) -> ReadResult[int]:
        """Current block number."""
        return await self.call(
            "network_block_number",
            lambda transport: transport.block_number(),
            ttl=ttl,
            bypass_cache=bypass_cache,
        )

    async def aggregate(self, plan: list[ContractCall]) -> list[BatchItemResult]:
        """Multi-item read through the batch aggregator (not cached)."""
        return await self.aggregator.aggregate(plan)

    # Lifecycle

    def invalidate(self, key: str) -> bool:
        return self.cache.invalidate(key)

    def reset(self) -> None:
        """
        Clear caches, in-flight registry and endpoint health (user triggered retry).

        Reads already in flight are left to settle so their callers still
        get a value or a fallback; only new reads start from scratch.
        """
        self.cache.reset()
        self.deduplicator.clear()
        self.endpoints.reset()
        logger.info("ChainClient reset")

    async def close(self) -> None:
        """Close handles and cancel in-flight requests."""
        self.deduplicator.cancel_all()
        await self.endpoints.close()
        logger.debug("ChainClient closed")

    async def __aenter__(self) -> "ChainClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    # Health and status methods

    def get_health_status(self) -> dict[str, Any]:
        """Get health status of the read layer."""
        return {
            "available": self.is_available(),
            "cache": self.cache.get_stats().to_dict(),
            "deduplicator": self.deduplicator.get_stats().to_dict(),
            "endpoints": self.endpoints.get_status(),
            "aggregate_fallbacks": self.aggregator.fallback_count,
        }

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[ChainClient] {message}")


# Global client instance
_global_client: ChainClient | None = None


def get_chain_client() -> ChainClient:
    """Get the global chain client instance."""
    global _global_client
    if _global_client is None:
        _global_client = ChainClient.new()
    return _global_client


async def close_chain_client() -> None:
    """Close the global chain client."""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
