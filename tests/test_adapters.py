"""
Tests for the consumer cache adapters.

Verifies that:
- Adapter keys and TTLs follow the domain scheme (bal_<wallet>_<token|native>)
- Fresh adapter hits never reach the network
- force_refresh bypasses a fresh entry, waits the settle delay and restamps stored_at
- Reads never raise; they serve the last value or a default with available=False
- Pool, analytics and network adapters derive their values from chain state
"""

import asyncio
from datetime import timedelta

import pytest

from chainreader.chain.abi import (
    ERC20_BALANCE_OF,
    ERC20_SYMBOL,
    FACTORY_ALL_PAIRS,
    FACTORY_ALL_PAIRS_LENGTH,
    FARMING_OWNER,
    FARMING_PAUSED,
    FARMING_PENDING_REWARD,
    FARMING_POOL_INFO,
    FARMING_POOL_LENGTH,
    FARMING_REWARD_PER_BLOCK,
    FARMING_REWARD_TOKEN,
    FARMING_TOTAL_ALLOC_POINT,
    FARMING_USER_INFO,
    PAIR_BALANCE_OF,
    PAIR_GET_RESERVES,
    PAIR_TOKEN0,
    PAIR_TOKEN1,
    PAIR_TOTAL_SUPPLY,
    ContractCall,
)
from chainreader.chain.contracts import CONTRACTS, TOKEN_LIST, TOKENS
from chainreader.datasource import (
    AnalyticsAdapter,
    BalanceAdapter,
    FarmingAdapter,
    NetworkStatusAdapter,
    PoolListAdapter,
)
from chainreader.datasource.analytics import FALLBACK_STATS
from chainreader.services.errors import RpcTransientError
from fakes import WALLET, FakeClock, FakeTransport, RecordingSleep, make_client

NATIVE = TOKEN_LIST[0]
WNEX = TOKEN_LIST[1]
FACTORY = CONTRACTS["FACTORY"]
PAIR_A = "0x" + "a1" * 20
PAIR_B = "0x" + "b2" * 20
UNLISTED = "0x" + "c3" * 20
FARMING = CONTRACTS["FARMING"]
STAKE_TOKEN = "0x" + "d4" * 20
ZERO = "0x" + "00" * 20


@pytest.fixture
def setup():
    clock = FakeClock()
    transport = FakeTransport()
    client = make_client(transport, clock, RecordingSleep(clock))
    return client, transport, clock


def register_pools(transport: FakeTransport) -> None:
    """PAIR_A is complete (WNEX/MON), PAIR_B is missing token0."""
    transport.on_call(ContractCall(FACTORY, FACTORY_ALL_PAIRS_LENGTH), 2)
    transport.on_call(ContractCall(FACTORY, FACTORY_ALL_PAIRS, (0,)), PAIR_A)
    transport.on_call(ContractCall(FACTORY, FACTORY_ALL_PAIRS, (1,)), PAIR_B)

    transport.on_call(ContractCall(PAIR_A, PAIR_TOKEN0), TOKENS["WNEX"])
    transport.on_call(ContractCall(PAIR_A, PAIR_TOKEN1), TOKENS["MON"])
    transport.on_call(ContractCall(PAIR_A, PAIR_GET_RESERVES), (10 * 10**18, 20 * 10**18, 1))
    transport.on_call(ContractCall(PAIR_A, PAIR_TOTAL_SUPPLY), 14 * 10**18)

    transport.on_call(ContractCall(PAIR_B, PAIR_TOKEN1), UNLISTED)
    transport.on_call(ContractCall(PAIR_B, PAIR_GET_RESERVES), (1, 1, 1))
    transport.on_call(ContractCall(PAIR_B, PAIR_TOTAL_SUPPLY), 1)


# ---------------------------------------------------------------------------
# Balances
# ---------------------------------------------------------------------------

def test_balance_key_scheme(setup):
    client, _, _ = setup
    adapter = BalanceAdapter(client)

    assert adapter.balance_key("0xABC", NATIVE) == "bal_0xabc_native"
    assert adapter.balance_key("0xabc", WNEX) == f"bal_0xabc_{TOKENS['WNEX'].lower()}"
    assert adapter.ttl == timedelta(seconds=30)


def test_balance_scenario(setup):
    """t=0 fetch "10.5"; t=10 served from cache; t=31 exactly one network call."""
    client, transport, clock = setup
    adapter = BalanceAdapter(client)
    transport.set_balance("0xabc", 10_500_000_000_000_000_000)

    result = asyncio.run(adapter.get_balance("0xabc", NATIVE))
    assert result.value.balance == "10.5"
    assert transport.network_calls == 1

    clock.advance(10)
    result = asyncio.run(adapter.get_balance("0xabc", NATIVE))
    assert result.value.balance == "10.5"
    assert transport.network_calls == 1

    transport.set_balance("0xabc", 12 * 10**18)
    clock.advance(21)
    result = asyncio.run(adapter.get_balance("0xabc", NATIVE))
    assert transport.network_calls == 2
    assert result.value.balance == "12.0"
    assert result.available


def test_concurrent_balance_reads_share_one_call(setup):
    client, transport, _ = setup
    adapter = BalanceAdapter(client)

    async def run():
        return await asyncio.gather(*(adapter.get_balance(WALLET, NATIVE) for _ in range(5)))

    asyncio.run(run())
    assert transport.calls["eth_getBalance"] == 1


def test_erc20_balance(setup):
    client, transport, _ = setup
    adapter = BalanceAdapter(client)
    transport.on_call(ContractCall(WNEX.address, ERC20_BALANCE_OF, (WALLET,)), 3 * 10**18)

    result = asyncio.run(adapter.get_balance(WALLET, WNEX))

    assert result.value.balance == "3.0"
    assert result.value.balance_raw == 3 * 10**18


def test_get_balances_uses_one_aggregate_and_one_native_read(setup):
    client, transport, _ = setup
    adapter = BalanceAdapter(client)
    transport.set_balance(WALLET, 10**18)
    for i, token in enumerate(TOKEN_LIST[1:], start=1):
        transport.on_call(ContractCall(token.address, ERC20_BALANCE_OF, (WALLET,)), i * 10**18)

    result = asyncio.run(adapter.get_balances(WALLET))

    assert result.available
    assert len(result.value) == len(TOKEN_LIST)
    assert result.value[TOKENS["MON"].lower()].balance == "3.0"
    assert transport.calls["aggregate"] == 1
    assert transport.network_calls == 2

    # All entries fresh: no network at all
    asyncio.run(adapter.get_balances(WALLET))
    assert transport.network_calls == 2
    assert adapter.get_balance_sync(WALLET, WNEX) == "1.0"


def test_get_balances_partial_failure_keeps_other_tokens(setup):
    client, transport, _ = setup
    adapter = BalanceAdapter(client)
    transport.set_balance(WALLET, 10**18)
    transport.on_call(ContractCall(WNEX.address, ERC20_BALANCE_OF, (WALLET,)), 2 * 10**18)

    result = asyncio.run(adapter.get_balances(WALLET, [NATIVE, WNEX, TOKEN_LIST[3]]))

    assert not result.available
    assert result.value[NATIVE.address].balance == "1.0"
    assert result.value[WNEX.address.lower()].balance == "2.0"
    assert result.value[TOKENS["MON"].lower()].balance == "0"


def test_force_refresh_bypasses_fresh_entry(setup):
    client, transport, clock = setup
    adapter = BalanceAdapter(client)
    transport.set_balance(WALLET, 10**18)
    asyncio.run(adapter.get_balance(WALLET, NATIVE))
    key = adapter.balance_key(WALLET, NATIVE)
    first_stored_at = adapter.cache.get_entry(key).stored_at

    transport.set_balance(WALLET, 5 * 10**18)
    clock.advance(5)
    result = asyncio.run(adapter.force_refresh(WALLET, [NATIVE]))

    assert result.value[NATIVE.address].balance == "5.0"
    assert client.sleep.delays == [2.0]
    entry = adapter.cache.get_entry(key)
    assert entry.stored_at == first_stored_at + 5 + 2
    assert entry.value.balance == "5.0"
    assert transport.calls["eth_getBalance"] == 2


def test_balance_read_never_raises(setup):
    client, transport, clock = setup
    adapter = BalanceAdapter(client)
    transport.set_balance(WALLET, 10**18)
    asyncio.run(adapter.get_balance(WALLET, NATIVE))

    transport.fail = RpcTransientError("connection reset")
    clock.advance(60)
    result = asyncio.run(adapter.get_balance(WALLET, NATIVE))

    assert result.value.balance == "1.0"
    assert result.available is False
    assert result.is_stale is True


def test_balance_without_cache_defaults_to_zero(setup):
    client, transport, _ = setup
    adapter = BalanceAdapter(client)
    transport.fail = RpcTransientError("connection reset")

    result = asyncio.run(adapter.get_balance(WALLET, WNEX))

    assert result.value.balance == "0"
    assert result.available is False
    assert adapter.get_balance_sync(WALLET, WNEX) == "0"


def test_unexpected_errors_are_contained(setup, monkeypatch):
    client, _, _ = setup
    adapter = BalanceAdapter(client)

    async def broken(*args, **kwargs):
        raise KeyError("unexpected")

    monkeypatch.setattr(client, "native_balance", broken)

    result = asyncio.run(adapter.get_balance(WALLET, NATIVE))
    assert result.available is False
    assert result.value.balance_raw == 0


# ---------------------------------------------------------------------------
# Pools
# ---------------------------------------------------------------------------

def test_pool_list(setup):
    client, transport, _ = setup
    register_pools(transport)
    adapter = PoolListAdapter(client)

    result = asyncio.run(adapter.get_pools())

    assert result.available
    assert result.value.total_pairs == 2
    assert len(result.value.pools) == 1

    pool = result.value.pools[0]
    assert pool.pair_address.lower() == PAIR_A
    assert (pool.token0.symbol, pool.token1.symbol) == ("WNEX", "MON")
    assert pool.reserve0 == "10.0000"
    assert pool.tvl == pytest.approx(30.0)
    assert pool.volume_24h == pytest.approx(1.5)
    assert pool.price_token0 == pytest.approx(2.0)
    assert pool.price_token1 == pytest.approx(0.5)
    assert pool.apr == pytest.approx(5.475)
    assert adapter.get_pool(PAIR_A) == pool


def test_pool_list_caps_at_max_pools(setup):
    client, transport, _ = setup
    register_pools(transport)
    adapter = PoolListAdapter(client, max_pools=1)

    result = asyncio.run(adapter.get_pools())

    assert result.value.total_pairs == 2
    assert [p.pair_address.lower() for p in result.value.pools] == [PAIR_A]


def test_unknown_tokens_are_labelled(setup):
    client, transport, _ = setup
    register_pools(transport)
    transport.on_call(ContractCall(PAIR_B, PAIR_TOKEN0), TOKENS["FRDX"])
    adapter = PoolListAdapter(client)

    pools = asyncio.run(adapter.get_pools()).value.pools

    assert pools[1].token1.symbol == "UNKNOWN"
    assert pools[1].token1.name == "Unknown Token"


def test_pool_list_unavailable(setup):
    client, transport, _ = setup
    transport.fail = RpcTransientError("connection reset")

    result = asyncio.run(PoolListAdapter(client).get_pools())

    assert result.available is False
    assert result.value.pools == []


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

def test_pool_stats(setup):
    client, transport, _ = setup
    register_pools(transport)
    adapter = AnalyticsAdapter(client)

    stats = asyncio.run(adapter.get_pool_stats()).value

    assert stats.total_pools == 2
    assert stats.total_tvl == pytest.approx(30.0)
    assert stats.volume_24h == pytest.approx(4.5)
    assert stats.total_fees == pytest.approx(0.0135)


def test_pool_stats_fallback(setup):
    client, transport, _ = setup
    transport.fail = RpcTransientError("connection reset")

    result = asyncio.run(AnalyticsAdapter(client).get_pool_stats())

    assert result.available is False
    assert result.value == FALLBACK_STATS
    assert result.value.total_tvl == 452000
    assert result.value.volume_24h == pytest.approx(67800)


def test_portfolio(setup):
    client, transport, _ = setup
    register_pools(transport)
    transport.set_balance(WALLET, 10 * 10**18)
    transport.on_call(ContractCall(WNEX.address, ERC20_BALANCE_OF, (WALLET,)), 5 * 10**18)
    transport.on_call(ContractCall(PAIR_A, PAIR_BALANCE_OF, (WALLET,)), 7 * 10**18)
    adapter = AnalyticsAdapter(client)

    result = asyncio.run(adapter.get_portfolio(WALLET))
    summary = result.value

    assert [a.name for a in summary.assets] == ["NEX", "WNEX", "LP Positions"]
    assert summary.total_value == pytest.approx(30.0)
    assert summary.assets[2].percentage == pytest.approx(50.0)

    position = summary.lp_positions[0]
    assert position.name == "WNEX/MON"
    assert position.share == pytest.approx(50.0)
    assert position.value == pytest.approx(15.0)

    entry = adapter.cache.get_entry(f"lp_{PAIR_A}_{WALLET}")
    assert entry is not None
    assert entry.ttl == timedelta(seconds=120)
    assert adapter.cache.get_entry(adapter.portfolio_key(WALLET)).ttl == timedelta(seconds=120)


def test_analytics_force_refresh(setup):
    client, transport, clock = setup
    register_pools(transport)
    adapter = AnalyticsAdapter(client)
    asyncio.run(adapter.get_pool_stats())
    calls = transport.network_calls

    asyncio.run(adapter.force_refresh())

    assert transport.network_calls > calls
    assert client.sleep.delays == [2.0]
    assert adapter.cache.get_entry(adapter.stats_key).stored_at == clock()


# ---------------------------------------------------------------------------
# Network status
# ---------------------------------------------------------------------------

def test_network_status(setup):
    client, transport, _ = setup
    adapter = NetworkStatusAdapter(client)

    result = asyncio.run(adapter.get_status())

    assert result.available
    assert result.value.block_number == 100
    assert result.value.latency_ms == 0.0
    assert result.value.endpoints["primary"]["state"] == "healthy"
    assert adapter.key == "network_block_number"

    asyncio.run(adapter.get_status())
    assert transport.calls["eth_blockNumber"] == 1


def test_network_status_unavailable():
    clock = FakeClock()
    transport = FakeTransport()
    transport.fail = RpcTransientError("connection reset")
    client = make_client(transport, clock, RecordingSleep())

    result = asyncio.run(NetworkStatusAdapter(client).get_status())

    assert result.available is False
    assert result.value.available is False
    assert result.value.block_number is None


def test_reset_during_pending_read_still_serves_value():
    clock = FakeClock()
    transport = FakeTransport()
    transport.latency = 0.05
    transport.set_balance(WALLET, 10**18)
    client = make_client(transport, clock, RecordingSleep())
    adapter = BalanceAdapter(client)

    async def run():
        read = asyncio.create_task(adapter.get_balance(WALLET, NATIVE))
        await asyncio.sleep(0.01)
        client.reset()
        return await read

    result = asyncio.run(run())

    assert result.available
    assert result.value.balance == "1.0"


def test_bypassing_read_does_not_join_ordinary_fetch(setup):
    client, transport, _ = setup
    transport.latency = 0.05
    adapter = BalanceAdapter(client)

    async def run():
        ordinary = asyncio.create_task(adapter.get_balance(WALLET, NATIVE))
        await asyncio.sleep(0.001)
        fresh = await adapter.get_balance(WALLET, NATIVE, bypass_cache=True)
        await ordinary
        return fresh

    asyncio.run(run())

    assert transport.calls["eth_getBalance"] == 2


# ---------------------------------------------------------------------------
# Farming
# ---------------------------------------------------------------------------

def register_farming(transport: FakeTransport) -> None:
    """
    Pool 0: WNEX/MON pair, alloc 100. Pool 1: single token, alloc 200,
    nothing staked. Pool 2: no LP token.
    """
    transport.on_call(ContractCall(FARMING, FARMING_REWARD_TOKEN), TOKENS["FRDX"])
    transport.on_call(ContractCall(FARMING, FARMING_REWARD_PER_BLOCK), 10**18)
    transport.on_call(ContractCall(FARMING, FARMING_TOTAL_ALLOC_POINT), 300)
    transport.on_call(ContractCall(FARMING, FARMING_PAUSED), False)
    transport.on_call(ContractCall(FARMING, FARMING_POOL_LENGTH), 3)
    transport.on_call(ContractCall(FARMING, FARMING_OWNER), WALLET)
    transport.on_call(ContractCall(TOKENS["FRDX"], ERC20_SYMBOL), "FRDX")

    transport.on_call(ContractCall(FARMING, FARMING_POOL_INFO, (0,)), (PAIR_A, 100, 0, 0))
    transport.on_call(ContractCall(FARMING, FARMING_POOL_INFO, (1,)), (STAKE_TOKEN, 200, 0, 0))
    transport.on_call(ContractCall(FARMING, FARMING_POOL_INFO, (2,)), (ZERO, 0, 0, 0))

    transport.on_call(ContractCall(PAIR_A, PAIR_TOKEN0), TOKENS["WNEX"])
    transport.on_call(ContractCall(PAIR_A, PAIR_TOKEN1), TOKENS["MON"])
    transport.on_call(ContractCall(PAIR_A, ERC20_BALANCE_OF, (FARMING,)), 5_256_000 * 10**18)

    transport.on_call(ContractCall(STAKE_TOKEN, ERC20_SYMBOL), "sFRDX")
    transport.on_call(ContractCall(STAKE_TOKEN, ERC20_BALANCE_OF, (FARMING,)), 0)


def test_farming_stats_and_pools(setup):
    client, transport, _ = setup
    register_farming(transport)
    adapter = FarmingAdapter(client)

    result = asyncio.run(adapter.get_farms())
    data = result.value

    assert result.available
    assert data.stats.reward_token_symbol == "FRDX"
    assert data.stats.reward_per_block == "1.0"
    assert data.stats.total_alloc_point == 300
    assert data.stats.is_paused is False
    assert data.is_owner is False

    # Sorted by allocation, pool 2 skipped
    assert [pool.pid for pool in data.pools] == [1, 0]
    single, pair = data.pools
    assert (single.token0_symbol, single.token1_symbol) == ("sFRDX", "")
    assert single.apr == pytest.approx(9999.0)
    assert (pair.token0_symbol, pair.token1_symbol) == ("WNEX", "MON")
    assert pair.total_staked == "5256000.0"
    assert pair.apr == pytest.approx(100.0)
    assert pair.user_staked == "0.0"


def test_farming_wallet_positions(setup):
    client, transport, _ = setup
    register_farming(transport)
    transport.on_call(ContractCall(FARMING, FARMING_USER_INFO, (0, WALLET)), (2 * 10**18, 0))
    transport.on_call(ContractCall(FARMING, FARMING_PENDING_REWARD, (0, WALLET)), 5 * 10**17)
    transport.on_call(ContractCall(PAIR_A, ERC20_BALANCE_OF, (WALLET,)), 3 * 10**18)
    adapter = FarmingAdapter(client)

    data = asyncio.run(adapter.get_farms(WALLET)).value

    assert adapter.farming_key(WALLET) == f"farming_{FARMING.lower()}_{WALLET}"
    assert data.is_owner is True
    pair = next(pool for pool in data.pools if pool.pid == 0)
    assert (pair.user_staked, pair.pending_reward, pair.lp_balance) == ("2.0", "0.5", "3.0")
    single = next(pool for pool in data.pools if pool.pid == 1)
    assert single.user_staked == "0.0"


def test_farming_force_refresh_after_deposit(setup):
    client, transport, clock = setup
    register_farming(transport)
    adapter = FarmingAdapter(client)
    asyncio.run(adapter.get_farms(WALLET))

    transport.on_call(ContractCall(FARMING, FARMING_USER_INFO, (0, WALLET)), (7 * 10**18, 0))
    clock.advance(5)
    cached = asyncio.run(adapter.get_farms(WALLET)).value
    assert next(p for p in cached.pools if p.pid == 0).user_staked == "0.0"

    result = asyncio.run(adapter.force_refresh(WALLET))

    assert client.sleep.delays == [2.0]
    assert next(p for p in result.value.pools if p.pid == 0).user_staked == "7.0"
    assert adapter.cache.get_entry(adapter.farming_key(WALLET)).stored_at == clock()


def test_farming_unavailable(setup):
    client, transport, _ = setup
    transport.fail = RpcTransientError("connection reset")

    result = asyncio.run(FarmingAdapter(client).get_farms())

    assert result.available is False
    assert result.value.stats is None
    assert result.value.pools == []
