"""
Read layer exceptions.

Every failure of a remote read is mapped onto one of four classes:
transient, rate-limited, decode and logical (revert / malformed call).
"""

from enum import Enum


class ErrorClass(str, Enum):
    """Failure taxonomy used by the call executor."""

    TRANSIENT = "transient"  # Timeout, connection reset, 5xx
    RATE_LIMITED = "rate_limited"  # Remote signals throttling
    DECODE = "decode"  # Response malformed or ABI mismatch
    LOGICAL = "logical"  # Remote call rejects (revert, invalid params)

    @property
    def retryable(self) -> bool:
        return self in (ErrorClass.TRANSIENT, ErrorClass.RATE_LIMITED)


class RpcError(Exception):
    """Base exception for read layer errors."""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        code: int | None = None,
    ):
        self.endpoint = endpoint
        self.code = code
        super().__init__(message)


class RpcTransientError(RpcError):
    """Network level failure, safe to retry."""

    pass


class RequestTimeoutError(RpcError):
    """Request timed out."""

    def __init__(self, endpoint: str | None, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to endpoint '{endpoint}' timed out after {timeout}s",
            endpoint=endpoint,
        )


class RateLimitError(RpcError):
    """Rate limit exceeded."""

    def __init__(
        self,
        endpoint: str | None,
        retry_after: float | None = None,
        code: int | None = None,
    ):
        self.retry_after = retry_after
        msg = f"Rate limit exceeded for endpoint '{endpoint}'"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(msg, endpoint=endpoint, code=code)


class RevertError(RpcError):
    """Contract call reverted."""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        code: int | None = None,
        data: str | None = None,
    ):
        self.data = data
        super().__init__(message, endpoint=endpoint, code=code)


class InvalidRequestError(RpcError):
    """Call could not be encoded or was rejected as malformed."""

    pass


class DecodeError(RpcError):
    """Response could not be decoded."""

    pass


class EndpointUnavailableError(RpcError):
    """No usable handle for the requested endpoint."""

    pass


class BatchUnsupportedError(RpcError):
    """Endpoint does not accept array-of-requests batching."""

    pass
