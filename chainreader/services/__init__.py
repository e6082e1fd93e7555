"""
Read layer infrastructure - resilience patterns for remote RPC reads.

Provides:
- EndpointManager: Handle ownership and per-handle health state machine
- CallExecutor: Timeout, bounded retry and failure classification
- RequestDeduplicator: Prevents duplicate concurrent requests
- ResultCache: Per-key TTL cache with stale fallback

The ChainClient facade combining them lives in chainreader.services.client.
"""

from chainreader.services.errors import (
    BatchUnsupportedError,
    DecodeError,
    EndpointUnavailableError,
    ErrorClass,
    InvalidRequestError,
    RateLimitError,
    RequestTimeoutError,
    RevertError,
    RpcError,
    RpcTransientError,
)
from chainreader.services.cache import CacheEntry, CacheResult, ResultCache, make_key
from chainreader.services.deduplicator import RequestDeduplicator
from chainreader.services.transport import RpcRequest, RpcResponse, RpcTransport
from chainreader.services.endpoint import (
    Endpoint,
    EndpointKind,
    EndpointManager,
    HealthConfig,
    HealthState,
)
from chainreader.services.executor import CallExecutor, CallOptions, classify_error

__all__ = [
    # Errors
    "RpcError",
    "RpcTransientError",
    "RequestTimeoutError",
    "RateLimitError",
    "RevertError",
    "InvalidRequestError",
    "DecodeError",
    "EndpointUnavailableError",
    "BatchUnsupportedError",
    "ErrorClass",
    # Cache
    "ResultCache",
    "CacheEntry",
    "CacheResult",
    "make_key",
    # Deduplicator
    "RequestDeduplicator",
    # Transport
    "RpcTransport",
    "RpcRequest",
    "RpcResponse",
    # Endpoint Manager
    "EndpointManager",
    "Endpoint",
    "EndpointKind",
    "HealthConfig",
    "HealthState",
    # Executor
    "CallExecutor",
    "CallOptions",
    "classify_error",
]
