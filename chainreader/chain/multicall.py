"""
BatchAggregator - Packs many independent contract reads into few round trips.

Two aggregate mechanisms are supported:
- MULTICALL: one eth_call to an on-chain aggregator contract
  (aggregate((address,bytes)[]) -> (uint256, bytes[]))
- NATIVE: one JSON-RPC array-of-requests round trip

If the aggregate round trip fails outright the plan is re-issued item by
item through the CallExecutor. Results always have the plan's length and
order, and a failure of item i never affects the other items.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger

from chainreader.chain.abi import (
    ERC20_BALANCE_OF,
    ERC20_DECIMALS,
    ERC20_NAME,
    ERC20_SYMBOL,
    MULTICALL_AGGREGATE,
    PAIR_GET_RESERVES,
    ContractCall,
    decode_result,
    encode_call,
)
from chainreader.services.endpoint import EndpointKind, EndpointManager
from chainreader.services.errors import (
    DecodeError,
    EndpointUnavailableError,
    RateLimitError,
    RpcError,
)
from chainreader.services.executor import CallExecutor, CallOptions
from chainreader.services.transport import RpcRequest, hex_to_bytes


class BatchMode(str, Enum):
    """Aggregate mechanism."""

    MULTICALL = "multicall"
    NATIVE = "native"
    INDIVIDUAL = "individual"


@dataclass
class BatchItemResult:
    """Decoded value or error for one plan item."""

    value: Any = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BatchAggregator:
    """
    Converts a plan of ContractCalls into per-item results.

    Usage:
        aggregator = BatchAggregator(endpoints, executor, multicall_address=...)

        results = await aggregator.aggregate([
            ContractCall(pair, PAIR_GET_RESERVES),
            ContractCall(token, ERC20_SYMBOL),
        ])
        reserves = results[0].value if results[0].ok else None
    """

    def __init__(
        self,
        endpoints: EndpointManager,
        executor: CallExecutor,
        mode: BatchMode = BatchMode.MULTICALL,
        multicall_address: str | None = None,
        max_batch_size: int = 100,
        options: CallOptions | None = None,
        debug: bool = False,
    ):
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")

        self._endpoints = endpoints
        self._executor = executor
        self.mode = mode
        self.multicall_address = multicall_address
        self.max_batch_size = max_batch_size
        self._options = options
        self._debug = debug
        self._fallbacks = 0

    @property
    def effective_mode(self) -> BatchMode:
        """MULTICALL degrades to NATIVE when no aggregator contract is configured."""
        if self.mode is BatchMode.MULTICALL and not self.multicall_address:
            return BatchMode.NATIVE
        return self.mode

    @property
    def fallback_count(self) -> int:
        return self._fallbacks

    async def aggregate(self, plan: Sequence[ContractCall]) -> list[BatchItemResult]:
        """
        Execute a plan and return a same-length, same-order result list.

        Never raises for remote failures; errors are reported per item.
        """
        if not plan:
            return []

        results: list[BatchItemResult] = []
        for start in range(0, len(plan), self.max_batch_size):
            chunk = list(plan[start : start + self.max_batch_size])
            results.extend(await self._aggregate_chunk(chunk))

        return results

    def _unavailable(self) -> RpcError | None:
        """Error every item gets when the primary endpoint must not be called."""
        if self._endpoints.get_handle(EndpointKind.PRIMARY) is None:
            return EndpointUnavailableError(
                "Primary endpoint not configured", endpoint=EndpointKind.PRIMARY.value
            )
        if self._endpoints.in_cooldown(EndpointKind.PRIMARY):
            return RateLimitError(EndpointKind.PRIMARY.value)
        if not self._endpoints.can_request(EndpointKind.PRIMARY):
            return EndpointUnavailableError(
                "Primary endpoint unavailable", endpoint=EndpointKind.PRIMARY.value
            )
        return None

    async def _aggregate_chunk(self, chunk: list[ContractCall]) -> list[BatchItemResult]:
        error = self._unavailable()
        if error is not None:
            return [BatchItemResult(error=error) for _ in chunk]

        transport = self._endpoints.get_handle(EndpointKind.PRIMARY)
        mode = self.effective_mode
        if len(chunk) == 1:
            mode = BatchMode.INDIVIDUAL

        try:
            if mode is BatchMode.MULTICALL:
                return await self._via_multicall(transport, chunk)
            if mode is BatchMode.NATIVE:
                return await self._via_native_batch(transport, chunk)
        except RpcError as e:
            # Re-issuing item by item would only multiply throttled requests
            error = self._unavailable()
            if error is not None:
                logger.warning(
                    f"Aggregate {mode.value} call for {len(chunk)} items failed "
                    f"and the endpoint is unavailable: {e}"
                )
                return [BatchItemResult(error=error) for _ in chunk]

            self._fallbacks += 1
            logger.warning(
                f"Aggregate {mode.value} call for {len(chunk)} items failed, "
                f"falling back to individual calls: {e}"
            )

        return await self._individually(transport, chunk)

    async def _via_multicall(self, transport: Any, chunk: list[ContractCall]) -> list[BatchItemResult]:
        """One eth_call to the aggregator contract."""
        calls = [(call.target.lower(), encode_call(call)) for call in chunk]
        aggregate_call = ContractCall(self.multicall_address, MULTICALL_AGGREGATE, (calls,))
        calldata = encode_call(aggregate_call)

        async def do_aggregate() -> Any:
            data = await transport.eth_call(aggregate_call.target, calldata)
            return decode_result(MULTICALL_AGGREGATE, data)

        _block_number, return_data = await self._executor.execute_or_raise(
            f"multicall_aggregate_{len(chunk)}", do_aggregate, self._options
        )

        if len(return_data) != len(chunk):
            raise DecodeError(
                f"Aggregator returned {len(return_data)} results for {len(chunk)} calls"
            )

        self._log(f"MULTICALL: {len(chunk)} calls in one round trip")
        return [self._decode_item(call, data) for call, data in zip(chunk, return_data)]

    async def _via_native_batch(self, transport: Any, chunk: list[ContractCall]) -> list[BatchItemResult]:
        """One JSON-RPC array-of-requests round trip."""
        requests = [
            RpcRequest(
                "eth_call",
                [{"to": call.target, "data": "0x" + encode_call(call).hex()}, "latest"],
            )
            for call in chunk
        ]

        responses = await self._executor.execute_or_raise(
            f"native_batch_{len(chunk)}", lambda: transport.batch(requests), self._options
        )

        if len(responses) != len(chunk):
            raise DecodeError(
                f"Batch returned {len(responses)} responses for {len(chunk)} calls"
            )

        self._log(f"NATIVE BATCH: {len(chunk)} calls in one round trip")
        results = []
        for call, response in zip(chunk, responses):
            if response.error is not None:
                results.append(BatchItemResult(error=response.error))
            else:
                results.append(self._decode_item(call, response.result))
        return results

    async def _individually(self, transport: Any, chunk: list[ContractCall]) -> list[BatchItemResult]:
        """Issue each item through the executor, concurrently."""

        async def read_one(call: ContractCall) -> BatchItemResult:
            async def do_call() -> Any:
                data = await transport.eth_call(call.target, encode_call(call))
                return decode_result(call.function, data)

            try:
                value = await self._executor.execute_or_raise(
                    call.describe(), do_call, self._options
                )
            except RpcError as e:
                return BatchItemResult(error=e)
            return BatchItemResult(value=value)

        return list(await asyncio.gather(*(read_one(call) for call in chunk)))

    @staticmethod
    def _decode_item(call: ContractCall, data: Any) -> BatchItemResult:
        try:
            raw = data if isinstance(data, (bytes, bytearray)) else hex_to_bytes(data)
            return BatchItemResult(value=decode_result(call.function, bytes(raw)))
        except DecodeError as e:
            return BatchItemResult(error=e)

    # Domain helpers

    async def get_balances(self, tokens: Sequence[str], owner: str) -> dict[str, int]:
        """ERC-20 balances of owner; zero for items that fail."""
        results = await self.aggregate(
            [ContractCall(token, ERC20_BALANCE_OF, (owner,)) for token in tokens]
        )
        return {
            token.lower(): result.value if result.ok else 0
            for token, result in zip(tokens, results)
        }

    async def get_reserves(self, pairs: Sequence[str]) -> dict[str, tuple[int, int]]:
        """Pair reserves; zero reserves for items that fail."""
        results = await self.aggregate([ContractCall(pair, PAIR_GET_RESERVES) for pair in pairs])
        reserves = {}
        for pair, result in zip(pairs, results):
            if result.ok:
                reserve0, reserve1, _timestamp = result.value
                reserves[pair.lower()] = (reserve0, reserve1)
            else:
                reserves[pair.lower()] = (0, 0)
        return reserves

    async def get_token_info(self, tokens: Sequence[str]) -> dict[str, dict[str, Any]]:
        """symbol/name/decimals per token, with defaults for failed reads."""
        plan = []
        for token in tokens:
            plan.append(ContractCall(token, ERC20_SYMBOL))
            plan.append(ContractCall(token, ERC20_NAME))
            plan.append(ContractCall(token, ERC20_DECIMALS))

        results = await self.aggregate(plan)
        info = {}
        for index, token in enumerate(tokens):
            symbol, name, decimals = results[index * 3 : index * 3 + 3]
            info[token.lower()] = {
                "symbol": symbol.value if symbol.ok else "UNKNOWN",
                "name": name.value if name.ok else "Unknown Token",
                "decimals": int(decimals.value) if decimals.ok else 18,
            }
        return info

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[BatchAggregator] {message}")
