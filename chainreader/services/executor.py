"""
CallExecutor - Runs one elementary remote read with timeout and bounded retry.

Every outcome is reported to the EndpointManager. Transient and rate-limited
failures are retried with exponential backoff; decode and logical failures
fail fast.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx
from loguru import logger

from chainreader.services.endpoint import EndpointKind, EndpointManager
from chainreader.services.errors import (
    BatchUnsupportedError,
    DecodeError,
    ErrorClass,
    InvalidRequestError,
    RateLimitError,
    RequestTimeoutError,
    RevertError,
    RpcError,
    RpcTransientError,
)

T = TypeVar("T")


@dataclass
class CallOptions:
    """Retry and timeout policy for one call."""

    retries: int = 3  # Retries after the first attempt
    timeout: float = 15.0  # Seconds per attempt
    base_delay: float = 0.5
    max_delay: float = 8.0
    rate_limit_multiplier: float = 4.0  # Wider backoff when throttled

    def get_delay(self, attempt: int, rate_limited: bool = False) -> float:
        """Backoff delay for a given attempt (0-indexed)."""
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        if rate_limited:
            delay *= self.rate_limit_multiplier
        return delay


def classify_error(error: BaseException) -> ErrorClass:
    """Map an exception onto the failure taxonomy."""
    if isinstance(error, RateLimitError):
        return ErrorClass.RATE_LIMITED
    if isinstance(error, (RevertError, InvalidRequestError, BatchUnsupportedError)):
        return ErrorClass.LOGICAL
    if isinstance(error, DecodeError):
        return ErrorClass.DECODE
    if isinstance(error, (RequestTimeoutError, RpcTransientError, asyncio.TimeoutError)):
        return ErrorClass.TRANSIENT

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 429:
            return ErrorClass.RATE_LIMITED
        if status >= 500:
            return ErrorClass.TRANSIENT
        return ErrorClass.LOGICAL
    if isinstance(error, httpx.TransportError):
        return ErrorClass.TRANSIENT

    message = str(error).lower()
    if "429" in message or "too many requests" in message or "rate limit" in message:
        return ErrorClass.RATE_LIMITED
    if isinstance(error, (ValueError, TypeError)):
        return ErrorClass.LOGICAL

    return ErrorClass.TRANSIENT


class CallExecutor:
    """
    Executes remote reads with a hard timeout and bounded retries.

    Usage:
        executor = CallExecutor(endpoints)

        block = await executor.execute(
            "network_block_number",
            lambda: transport.block_number(),
        )
        if block is None:
            ...  # retries exhausted or fatal failure
    """

    def __init__(
        self,
        endpoints: EndpointManager,
        options: CallOptions | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        debug: bool = False,
    ):
        self._endpoints = endpoints
        self.options = options or CallOptions()
        self._sleep = sleep
        self._debug = debug

    async def execute(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
        options: CallOptions | None = None,
        kind: EndpointKind = EndpointKind.PRIMARY,
    ) -> T | None:
        """
        Run fn with retries, resolving to None instead of raising.

        Args:
            key: Cache key, used for logging
            fn: Zero-argument coroutine factory performing one remote read
            options: Override retry/timeout policy
            kind: Endpoint the outcome is reported against

        Returns:
            The result of fn, or None on exhausted retries / fatal failure
        """
        try:
            return await self.execute_or_raise(key, fn, options, kind)
        except RpcError as e:
            self._log(f"GIVE UP: {key[:50]} ({type(e).__name__})")
            return None

    async def execute_or_raise(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
        options: CallOptions | None = None,
        kind: EndpointKind = EndpointKind.PRIMARY,
    ) -> T:
        """
        Run fn with retries, raising the final error.

        Raises:
            RpcError: Last failure, typed by class
        """
        opts = options or self.options
        attempts = opts.retries + 1
        last_error: RpcError | None = None

        for attempt in range(attempts):
            try:
                result = await asyncio.wait_for(fn(), timeout=opts.timeout)
            except asyncio.TimeoutError:
                error: BaseException = RequestTimeoutError(kind.value, opts.timeout)
            except Exception as e:
                error = e
            else:
                self._endpoints.report_outcome(kind, success=True)
                return result

            error_class = classify_error(error)
            last_error = self._as_rpc_error(error, kind)

            if not error_class.retryable:
                # The endpoint answered; only this call is bad
                self._endpoints.report_outcome(kind, success=True)
                logger.debug(f"RPC call {key} failed ({error_class.value}): {error}")
                raise last_error

            rate_limited = error_class is ErrorClass.RATE_LIMITED
            self._endpoints.report_outcome(kind, success=False, rate_limited=rate_limited)

            # Don't wait after the last attempt
            if attempt == opts.retries:
                break

            delay = opts.get_delay(attempt, rate_limited=rate_limited)
            self._log(
                f"RETRY: {key[:50]} failed (attempt {attempt + 1}/{attempts}, "
                f"{error_class.value}), retrying in {delay:.1f}s"
            )
            await self._sleep(delay)

        logger.warning(f"RPC call {key} failed after {attempts} attempts: {last_error}")
        raise last_error  # type: ignore[misc]

    @staticmethod
    def _as_rpc_error(error: BaseException, kind: EndpointKind) -> RpcError:
        """Wrap foreign exceptions so callers only handle RpcError."""
        if isinstance(error, RpcError):
            return error

        error_class = classify_error(error)
        if error_class is ErrorClass.RATE_LIMITED:
            wrapped: RpcError = RateLimitError(kind.value)
        elif error_class is ErrorClass.LOGICAL:
            wrapped = InvalidRequestError(str(error), endpoint=kind.value)
        elif error_class is ErrorClass.DECODE:
            wrapped = DecodeError(str(error), endpoint=kind.value)
        else:
            wrapped = RpcTransientError(str(error) or type(error).__name__, endpoint=kind.value)
        wrapped.__cause__ = error
        return wrapped

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[CallExecutor] {message}")
