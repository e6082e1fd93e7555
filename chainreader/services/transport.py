"""
RpcTransport - Async JSON-RPC 2.0 handle over HTTP.

Supports single requests and array-of-requests batching. All transport
and protocol failures are raised as RpcError subclasses.
"""

import itertools
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from chainreader.services.errors import (
    BatchUnsupportedError,
    DecodeError,
    InvalidRequestError,
    RateLimitError,
    RequestTimeoutError,
    RevertError,
    RpcError,
    RpcTransientError,
)

# JSON-RPC error codes
RATE_LIMIT_CODES = {-32005, -32029}
INVALID_REQUEST_CODES = {-32600, -32601, -32602}
EXECUTION_ERROR_CODE = 3


@dataclass
class RpcRequest:
    """A single JSON-RPC call inside a batch."""

    method: str
    params: list[Any]


@dataclass
class RpcResponse:
    """Per-request outcome of a batch."""

    result: Any = None
    error: RpcError | None = None


def hex_to_bytes(value: Any) -> bytes:
    """Convert a 0x-prefixed hex string to bytes."""
    if not isinstance(value, str):
        raise DecodeError(f"Expected hex string, got {type(value).__name__}")
    raw = value[2:] if value.startswith("0x") else value
    try:
        return bytes.fromhex(raw)
    except ValueError as e:
        raise DecodeError(f"Invalid hex data: {value[:66]}") from e


def hex_to_int(value: Any) -> int:
    """Convert a 0x-prefixed hex quantity to int."""
    if not isinstance(value, str):
        raise DecodeError(f"Expected hex quantity, got {type(value).__name__}")
    try:
        return int(value, 16)
    except ValueError as e:
        raise DecodeError(f"Invalid hex quantity: {value[:66]}") from e


def error_from_payload(error: Any, endpoint: str | None = None) -> RpcError:
    """Map a JSON-RPC error object onto the exception hierarchy."""
    if not isinstance(error, dict):
        return RpcTransientError(f"RPC error: {error}", endpoint=endpoint)

    code = error.get("code")
    message = str(error.get("message", ""))
    lowered = message.lower()

    if (
        code in RATE_LIMIT_CODES
        or "rate limit" in lowered
        or "too many requests" in lowered
    ):
        return RateLimitError(endpoint, code=code)

    if code == EXECUTION_ERROR_CODE or "revert" in lowered:
        return RevertError(
            f"Execution reverted: {message}",
            endpoint=endpoint,
            code=code,
            data=error.get("data") if isinstance(error.get("data"), str) else None,
        )

    if code in INVALID_REQUEST_CODES:
        return InvalidRequestError(
            f"Invalid request ({code}): {message}", endpoint=endpoint, code=code
        )

    return RpcTransientError(f"RPC error ({code}): {message}", endpoint=endpoint, code=code)


class RpcTransport:
    """
    JSON-RPC handle for one endpoint URL.

    Usage:
        transport = RpcTransport("https://testnet.rpc.nexus.xyz")
        block = await transport.block_number()
        data = await transport.eth_call(target, calldata)
        await transport.close()
    """

    def __init__(
        self,
        url: str,
        timeout: float = 15.0,
        name: str = "primary",
        headers: dict[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.name = name
        self._timeout = timeout
        self._headers = headers or {}
        self._ids = itertools.count(1)

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = http_client

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                headers=self._headers,
            )
        return self._http_client

    def _envelope(self, method: str, params: list[Any]) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

    async def _post(self, payload: Any) -> Any:
        """Send one HTTP round trip and return the decoded JSON body."""
        client = await self._get_http_client()

        try:
            response = await client.post(self.url, json=payload)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(self.name, self._timeout) from e
        except httpx.RequestError as e:
            raise RpcTransientError(str(e), endpoint=self.name) from e

        if response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            raise RateLimitError(
                self.name,
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RpcTransientError(
                f"HTTP {e.response.status_code}: {e.response.text[:200]}",
                endpoint=self.name,
            ) from e

        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(
                f"Malformed JSON-RPC response: {response.text[:200]}",
                endpoint=self.name,
            ) from e

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        """
        Execute a single JSON-RPC request.

        Returns:
            The `result` member of the response

        Raises:
            RpcError: Typed by failure class
        """
        data = await self._post(self._envelope(method, params or []))

        if not isinstance(data, dict):
            raise DecodeError(
                f"Unexpected JSON-RPC response type: {type(data).__name__}",
                endpoint=self.name,
            )
        if "error" in data:
            raise error_from_payload(data["error"], endpoint=self.name)
        if "result" not in data:
            raise DecodeError("JSON-RPC response without result", endpoint=self.name)

        return data["result"]

    async def batch(self, requests: list[RpcRequest]) -> list[RpcResponse]:
        """
        Execute many JSON-RPC requests in one HTTP round trip.

        Responses are matched back by id, so the returned list follows
        the order of `requests` whatever order the endpoint replies in.

        A single error object in place of the array is mapped like any other
        JSON-RPC error first: throttling and server faults keep their class,
        everything else means the endpoint does not take array batches.

        Raises:
            BatchUnsupportedError: If the endpoint rejects array batching
            RateLimitError: If the whole batch was throttled
            RpcError: For transport failures of the whole round trip
        """
        if not requests:
            return []

        envelopes = [self._envelope(r.method, r.params) for r in requests]
        data = await self._post(envelopes)

        if not isinstance(data, list):
            detail = data.get("error") if isinstance(data, dict) else data
            if isinstance(detail, dict):
                error = error_from_payload(detail, endpoint=self.name)
                if isinstance(error, RateLimitError):
                    raise error
                if isinstance(error, RpcTransientError) and "batch" not in str(error).lower():
                    raise error
            raise BatchUnsupportedError(
                f"Endpoint rejected batch request: {detail}", endpoint=self.name
            )

        by_id = {item.get("id"): item for item in data if isinstance(item, dict)}
        responses = []

        for envelope in envelopes:
            item = by_id.get(envelope["id"])
            if item is None:
                responses.append(
                    RpcResponse(
                        error=RpcTransientError(
                            f"Missing response for batch item {envelope['id']}",
                            endpoint=self.name,
                        )
                    )
                )
            elif "error" in item:
                responses.append(
                    RpcResponse(error=error_from_payload(item["error"], endpoint=self.name))
                )
            else:
                responses.append(RpcResponse(result=item.get("result")))

        logger.trace(f"Batch of {len(requests)} requests sent to {self.name}")
        return responses

    # Elementary reads

    async def eth_call(self, target: str, data: bytes | str, block: str = "latest") -> bytes:
        """Execute eth_call and return raw return data."""
        calldata = data if isinstance(data, str) else "0x" + data.hex()
        result = await self.request("eth_call", [{"to": target, "data": calldata}, block])
        return hex_to_bytes(result)

    async def get_balance(self, address: str, block: str = "latest") -> int:
        """Get native balance in wei."""
        return hex_to_int(await self.request("eth_getBalance", [address, block]))

    async def block_number(self) -> int:
        """Get the current block number."""
        return hex_to_int(await self.request("eth_blockNumber", []))

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
