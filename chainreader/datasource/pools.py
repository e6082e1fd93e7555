"""
Pool list adapter.

Reads the factory pair list and per-pair state in aggregate round trips.
Cache key: pools_<factory>, TTL 45 seconds.
"""

from datetime import timedelta

from loguru import logger

from chainreader.chain.abi import (
    FACTORY_ALL_PAIRS,
    FACTORY_ALL_PAIRS_LENGTH,
    PAIR_GET_RESERVES,
    PAIR_TOKEN0,
    PAIR_TOKEN1,
    PAIR_TOTAL_SUPPLY,
    ContractCall,
)
from chainreader.chain.contracts import CONTRACTS, TOKEN_LIST, find_token
from chainreader.datasource.base import AdapterResult, BaseCacheAdapter
from chainreader.models import PoolData, PoolList, PoolToken, TokenInfo
from chainreader.services.client import ChainClient
from chainreader.utils import format_ether, units_to_float

# Estimates used while no indexer is available
VOLUME_SHARE_OF_TVL = 0.05
SWAP_FEE = 0.003


def pool_token(address: str, tokens: list[TokenInfo]) -> PoolToken:
    known = find_token(address, tokens)
    if known is None:
        return PoolToken(address=address)
    return PoolToken(
        address=address,
        symbol=known.symbol,
        name=known.name,
        logo_uri=known.logo_uri,
    )


def build_pool(
    pair_address: str,
    token0: str,
    token1: str,
    reserves: tuple[int, int, int],
    total_supply: int,
    tokens: list[TokenInfo],
) -> PoolData:
    """Derive TVL, prices, volume and APR estimates from raw pair state."""
    reserve0 = units_to_float(reserves[0])
    reserve1 = units_to_float(reserves[1])
    tvl = reserve0 + reserve1
    volume_24h = tvl * VOLUME_SHARE_OF_TVL

    return PoolData(
        pair_address=pair_address,
        token0=pool_token(token0, tokens),
        token1=pool_token(token1, tokens),
        reserve0=f"{reserve0:.4f}",
        reserve1=f"{reserve1:.4f}",
        total_supply=format_ether(total_supply),
        tvl=tvl,
        volume_24h=volume_24h,
        price_token0=reserve1 / reserve0 if reserve0 > 0 else 0.0,
        price_token1=reserve0 / reserve1 if reserve1 > 0 else 0.0,
        apr=(volume_24h * 365 * SWAP_FEE / tvl) * 100 if tvl > 0 else 0.0,
    )


class PoolListAdapter(BaseCacheAdapter[PoolList]):
    """Pools created by the factory, capped at max_pools."""

    ttl = timedelta(seconds=45)
    key_prefix = "pools"

    def __init__(
        self,
        client: ChainClient,
        factory: str = CONTRACTS["FACTORY"],
        max_pools: int = 50,
        tokens: list[TokenInfo] | None = None,
        ttl: timedelta | None = None,
        settle_delay: float | None = None,
    ):
        super().__init__(client, ttl=ttl, settle_delay=settle_delay)
        self.factory = factory
        self.max_pools = max_pools
        self.tokens = tokens or TOKEN_LIST

    @property
    def name(self) -> str:
        return "pools"

    @property
    def key(self) -> str:
        return self.make_key(self.factory)

    async def get_pools(self, bypass_cache: bool = False) -> AdapterResult[PoolList]:
        return await self._read(
            self.key,
            self._fetch,
            PoolList(total_pairs=0),
            bypass_cache=bypass_cache,
        )

    async def _fetch(self, fresh: bool) -> PoolList | None:
        length = await self.client.read_contract(
            ContractCall(self.factory, FACTORY_ALL_PAIRS_LENGTH),
            key=self.make_key(self.factory, "length"),
            ttl=self.ttl,
            bypass_cache=fresh,
        )
        if length.value is None or length.from_cache == "stale":
            return None

        total_pairs = int(length.value)
        count = min(total_pairs, self.max_pools)
        if count == 0:
            return PoolList(total_pairs=total_pairs)

        pair_results = await self.client.aggregate(
            [ContractCall(self.factory, FACTORY_ALL_PAIRS, (i,)) for i in range(count)]
        )
        pairs = [result.value for result in pair_results if result.ok]
        if not pairs:
            return None

        plan = []
        for pair in pairs:
            plan.extend(
                [
                    ContractCall(pair, PAIR_TOKEN0),
                    ContractCall(pair, PAIR_TOKEN1),
                    ContractCall(pair, PAIR_GET_RESERVES),
                    ContractCall(pair, PAIR_TOTAL_SUPPLY),
                ]
            )
        results = await self.client.aggregate(plan)

        pools = []
        for index, pair in enumerate(pairs):
            token0, token1, reserves, supply = results[index * 4 : index * 4 + 4]
            if not (token0.ok and token1.ok and reserves.ok and supply.ok):
                logger.debug(f"[{self.name}] Skipping pair {pair}: incomplete state")
                continue
            pools.append(
                build_pool(pair, token0.value, token1.value, reserves.value, supply.value, self.tokens)
            )

        return PoolList(total_pairs=total_pairs, pools=pools)

    def get_pool(self, pair_address: str) -> PoolData | None:
        """Cached pool by pair address, without fetching."""
        cached = self.get_cached(self.key)
        if cached is None:
            return None
        pair_address = pair_address.lower()
        return next((p for p in cached.pools if p.pair_address.lower() == pair_address), None)

    async def force_refresh(self) -> AdapterResult[PoolList]:
        """Drop the pool list, wait for the chain to settle, re-read bypassing cache."""
        self.invalidate(self.key)
        self.client.invalidate(self.make_key(self.factory, "length"))
        await self._settle()
        return await self.get_pools(bypass_cache=True)
