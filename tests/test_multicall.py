"""
Tests for BatchAggregator.

Verifies that:
- Results keep plan length and order in every mode
- A decode failure of item i only affects position i
- A failed aggregate round trip falls back to individual calls
- Plans are chunked by max_batch_size
- Domain helpers apply their per-item defaults
"""

import asyncio
import json

import httpx

from chainreader.chain.abi import (
    ERC20_BALANCE_OF,
    ERC20_DECIMALS,
    ERC20_NAME,
    ERC20_SYMBOL,
    PAIR_GET_RESERVES,
    ContractCall,
)
from chainreader.chain.multicall import BatchAggregator, BatchMode
from chainreader.services.endpoint import EndpointKind, EndpointManager, HealthConfig, HealthState
from chainreader.services.errors import (
    DecodeError,
    EndpointUnavailableError,
    RateLimitError,
    RevertError,
)
from chainreader.services.executor import CallExecutor, CallOptions
from chainreader.services.transport import RpcTransport
from fakes import MULTICALL, WALLET, FakeClock, FakeTransport, RecordingSleep

TOKENS = [f"0x{i:040x}" for i in range(1, 6)]


def make_aggregator(transport, mode=BatchMode.MULTICALL, max_batch_size=100, multicall=MULTICALL):
    endpoints = EndpointManager(primary=transport, config=HealthConfig(), clock=FakeClock())
    executor = CallExecutor(endpoints, CallOptions(retries=1), sleep=RecordingSleep())
    return BatchAggregator(
        endpoints,
        executor,
        mode=mode,
        multicall_address=multicall,
        max_batch_size=max_batch_size,
    )


def balance_plan(transport, bad_index=None, bad_answer=b"\x01"):
    plan = []
    for i, token in enumerate(TOKENS):
        call = ContractCall(token, ERC20_BALANCE_OF, (WALLET,))
        transport.on_call(call, bad_answer if i == bad_index else (i + 1) * 10**18)
        plan.append(call)
    return plan


def assert_item_two_failed(results, error_type):
    assert len(results) == 5
    assert [r.ok for r in results] == [True, True, False, True, True]
    assert [results[i].value for i in (0, 1, 3, 4)] == [10**18, 2 * 10**18, 4 * 10**18, 5 * 10**18]
    assert isinstance(results[2].error, error_type)


# ---------------------------------------------------------------------------
# Ordering and per-item isolation
# ---------------------------------------------------------------------------

def test_multicall_decode_failure_is_isolated():
    transport = FakeTransport()
    aggregator = make_aggregator(transport)
    plan = balance_plan(transport, bad_index=2)

    results = asyncio.run(aggregator.aggregate(plan))

    assert_item_two_failed(results, DecodeError)
    assert transport.calls["aggregate"] == 1
    assert transport.calls["eth_call"] == 1
    assert aggregator.fallback_count == 0


def test_native_batch_decode_failure_is_isolated():
    transport = FakeTransport()
    aggregator = make_aggregator(transport, mode=BatchMode.NATIVE)
    plan = balance_plan(transport, bad_index=2)

    results = asyncio.run(aggregator.aggregate(plan))

    assert_item_two_failed(results, DecodeError)
    assert transport.calls["batch"] == 1
    assert transport.calls["eth_call"] == 0


def test_native_batch_revert_is_isolated():
    transport = FakeTransport()
    aggregator = make_aggregator(transport, mode=BatchMode.NATIVE)
    plan = balance_plan(transport, bad_index=2, bad_answer=RevertError("reverted"))

    results = asyncio.run(aggregator.aggregate(plan))

    assert_item_two_failed(results, RevertError)
    assert aggregator.fallback_count == 0


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------

def test_reverting_aggregate_falls_back_to_individual_calls():
    transport = FakeTransport()
    aggregator = make_aggregator(transport)
    plan = balance_plan(transport, bad_index=2, bad_answer=RevertError("reverted"))

    results = asyncio.run(aggregator.aggregate(plan))

    assert_item_two_failed(results, RevertError)
    assert aggregator.fallback_count == 1
    # One aggregate attempt plus five individual calls
    assert transport.calls["eth_call"] == 6


def test_unsupported_native_batch_falls_back():
    transport = FakeTransport()
    transport.supports_batch = False
    aggregator = make_aggregator(transport, mode=BatchMode.NATIVE)
    plan = balance_plan(transport)

    results = asyncio.run(aggregator.aggregate(plan))

    assert [r.value for r in results] == [(i + 1) * 10**18 for i in range(5)]
    assert transport.calls["batch"] == 1
    assert transport.calls["eth_call"] == 5


def test_missing_multicall_address_uses_native_batch():
    transport = FakeTransport()
    aggregator = make_aggregator(transport, multicall=None)
    plan = balance_plan(transport)

    assert aggregator.effective_mode is BatchMode.NATIVE
    results = asyncio.run(aggregator.aggregate(plan))

    assert all(r.ok for r in results)
    assert transport.calls["batch"] == 1


def test_individual_mode():
    transport = FakeTransport()
    aggregator = make_aggregator(transport, mode=BatchMode.INDIVIDUAL)
    plan = balance_plan(transport, bad_index=2)

    results = asyncio.run(aggregator.aggregate(plan))

    assert_item_two_failed(results, DecodeError)
    assert transport.calls["eth_call"] == 5


# ---------------------------------------------------------------------------
# Chunking and availability
# ---------------------------------------------------------------------------

def test_plan_is_chunked():
    transport = FakeTransport()
    aggregator = make_aggregator(transport, max_batch_size=2)
    plan = balance_plan(transport)

    results = asyncio.run(aggregator.aggregate(plan))

    assert [r.value for r in results] == [(i + 1) * 10**18 for i in range(5)]
    # Chunks of 2, 2 and 1; a single item chunk is a plain call
    assert transport.calls["aggregate"] == 2
    assert transport.calls["eth_call"] == 3


def test_empty_plan():
    transport = FakeTransport()
    assert asyncio.run(make_aggregator(transport).aggregate([])) == []
    assert transport.network_calls == 0


def test_unavailable_endpoint_fails_every_item_without_calls():
    transport = FakeTransport()
    aggregator = make_aggregator(transport)
    for _ in range(6):
        aggregator._endpoints.report_outcome(EndpointKind.PRIMARY, success=False)
    plan = balance_plan(transport)

    results = asyncio.run(aggregator.aggregate(plan))

    assert len(results) == 5
    assert all(isinstance(r.error, EndpointUnavailableError) for r in results)
    assert transport.network_calls == 0


def test_throttled_batch_is_not_fanned_out():
    posts = []

    def handler(request: httpx.Request) -> httpx.Response:
        posts.append(json.loads(request.content))
        error = {"code": -32005, "message": "request rate exceeded"}
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": None, "error": error})

    rpc = RpcTransport(
        "http://rpc.test", http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )
    endpoints = EndpointManager(primary=rpc, config=HealthConfig(), clock=FakeClock())
    sleep = RecordingSleep()
    executor = CallExecutor(endpoints, CallOptions(retries=1), sleep=sleep)
    aggregator = BatchAggregator(endpoints, executor, mode=BatchMode.NATIVE)
    plan = [ContractCall(token, ERC20_BALANCE_OF, (WALLET,)) for token in TOKENS]

    async def run():
        try:
            return await aggregator.aggregate(plan)
        finally:
            await rpc.close()

    results = asyncio.run(run())

    # The batch is retried with the wider backoff, then every item fails
    assert len(posts) == 2
    assert all(isinstance(post, list) for post in posts)
    assert sleep.delays == [2.0]
    assert len(results) == 5
    assert all(isinstance(r.error, RateLimitError) for r in results)
    assert aggregator.fallback_count == 0
    assert endpoints.get_state() == HealthState.DEGRADED
    assert endpoints.in_cooldown() is True


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def test_get_balances_defaults_to_zero():
    transport = FakeTransport()
    aggregator = make_aggregator(transport, mode=BatchMode.NATIVE)
    balance_plan(transport, bad_index=2, bad_answer=RevertError("reverted"))

    balances = asyncio.run(aggregator.get_balances(TOKENS, WALLET))

    assert balances[TOKENS[0]] == 10**18
    assert balances[TOKENS[2]] == 0


def test_get_reserves():
    transport = FakeTransport()
    aggregator = make_aggregator(transport, mode=BatchMode.NATIVE)
    transport.on_call(ContractCall(TOKENS[0], PAIR_GET_RESERVES), (5, 7, 1700000000))

    reserves = asyncio.run(aggregator.get_reserves(TOKENS[:2]))

    assert reserves == {TOKENS[0]: (5, 7), TOKENS[1]: (0, 0)}


def test_get_token_info_defaults():
    transport = FakeTransport()
    aggregator = make_aggregator(transport, mode=BatchMode.NATIVE)
    token = TOKENS[0]
    transport.on_call(ContractCall(token, ERC20_SYMBOL), "WNEX")
    transport.on_call(ContractCall(token, ERC20_NAME), "Wrapped NEX")
    transport.on_call(ContractCall(token, ERC20_DECIMALS), 18)

    info = asyncio.run(aggregator.get_token_info([token, TOKENS[1]]))

    assert info[token] == {"symbol": "WNEX", "name": "Wrapped NEX", "decimals": 18}
    assert info[TOKENS[1]] == {"symbol": "UNKNOWN", "name": "Unknown Token", "decimals": 18}
