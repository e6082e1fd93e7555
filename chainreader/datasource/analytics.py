"""
Analytics adapter: pool statistics and wallet portfolio.

Keys:
- analytics_pool_stats (TTL 45 seconds)
- portfolio_<wallet> (TTL 120 seconds)
- lp_<pair>_<wallet> per LP position (TTL 120 seconds)
"""

from datetime import timedelta

from chainreader.chain.abi import PAIR_BALANCE_OF, ContractCall
from chainreader.datasource.balances import BalanceAdapter
from chainreader.datasource.base import AdapterResult, BaseCacheAdapter
from chainreader.datasource.pools import SWAP_FEE, PoolListAdapter
from chainreader.models import (
    LpPosition,
    PoolData,
    PoolStats,
    PortfolioAsset,
    PortfolioSummary,
)
from chainreader.services.cache import make_key
from chainreader.services.client import ChainClient
from chainreader.utils import format_ether, units_to_float

VOLUME_SHARE_OF_TVL = 0.15

# Representative testnet pools shown while nothing could be read
FALLBACK_POOL_TVLS = [150000, 95000, 72000, 58000, 45000, 32000]
_FALLBACK_TVL = float(sum(FALLBACK_POOL_TVLS))
FALLBACK_STATS = PoolStats(
    total_pools=len(FALLBACK_POOL_TVLS),
    total_tvl=_FALLBACK_TVL,
    volume_24h=_FALLBACK_TVL * VOLUME_SHARE_OF_TVL,
    total_fees=_FALLBACK_TVL * VOLUME_SHARE_OF_TVL * SWAP_FEE,
)

PORTFOLIO_TTL = timedelta(seconds=120)


def lp_key(pair_address: str, wallet: str) -> str:
    return make_key("lp", pair_address, wallet)


class AnalyticsAdapter(BaseCacheAdapter):
    """
    Aggregated analytics built on the pool list and balance adapters.

    Pool stats fall back to FALLBACK_STATS when nothing was ever read.
    """

    ttl = timedelta(seconds=45)
    key_prefix = "analytics"

    def __init__(
        self,
        client: ChainClient,
        pools: PoolListAdapter | None = None,
        balances: BalanceAdapter | None = None,
        ttl: timedelta | None = None,
        settle_delay: float | None = None,
    ):
        super().__init__(client, ttl=ttl, settle_delay=settle_delay)
        self.pools = pools or PoolListAdapter(client, settle_delay=self.settle_delay)
        self.balances = balances or BalanceAdapter(client, settle_delay=self.settle_delay)

    @property
    def name(self) -> str:
        return "analytics"

    @property
    def stats_key(self) -> str:
        return self.make_key("pool_stats")

    @staticmethod
    def portfolio_key(wallet: str) -> str:
        return make_key("portfolio", wallet)

    # Pool statistics

    async def get_pool_stats(self, bypass_cache: bool = False) -> AdapterResult[PoolStats]:
        async def fetch(fresh: bool) -> PoolStats | None:
            result = await self.pools.get_pools(bypass_cache=fresh)
            if not result.available or not result.value.pools:
                return None

            total_tvl = sum(pool.tvl for pool in result.value.pools)
            volume_24h = total_tvl * VOLUME_SHARE_OF_TVL
            return PoolStats(
                total_pools=result.value.total_pairs,
                total_tvl=total_tvl,
                volume_24h=volume_24h,
                total_fees=volume_24h * SWAP_FEE,
            )

        return await self._read(self.stats_key, fetch, FALLBACK_STATS, bypass_cache=bypass_cache)

    # Portfolio

    async def get_portfolio(
        self,
        wallet: str,
        bypass_cache: bool = False,
    ) -> AdapterResult[PortfolioSummary]:
        """Wallet token balances plus LP positions, valued in token units."""

        async def fetch(fresh: bool) -> PortfolioSummary | None:
            balances = await self.balances.get_balances(wallet, bypass_cache=fresh)
            pools = await self.pools.get_pools(bypass_cache=fresh)
            if not balances.available and not pools.available:
                return None

            positions = await self._lp_positions(wallet, pools.value.pools)
            return self._summarize(wallet, balances.value.values(), positions)

        return await self._read(
            self.portfolio_key(wallet),
            fetch,
            PortfolioSummary(wallet=wallet),
            ttl=PORTFOLIO_TTL,
            bypass_cache=bypass_cache,
        )

    async def _lp_positions(self, wallet: str, pools: list[PoolData]) -> list[LpPosition]:
        if not pools:
            return []

        results = await self.client.aggregate(
            [ContractCall(pool.pair_address, PAIR_BALANCE_OF, (wallet,)) for pool in pools]
        )

        positions = []
        for pool, result in zip(pools, results):
            key = lp_key(pool.pair_address, wallet)
            if not result.ok:
                cached = self.get_cached(key)
                if cached is not None:
                    positions.append(cached)
                continue
            if result.value <= 0:
                continue

            total_supply = float(pool.total_supply)
            share = units_to_float(result.value) / total_supply if total_supply > 0 else 0.0
            position = LpPosition(
                pair_address=pool.pair_address,
                name=f"{pool.token0.symbol}/{pool.token1.symbol}",
                lp_balance=format_ether(result.value),
                share=share * 100,
                value=share * pool.tvl,
            )
            self.cache.set(key, position, PORTFOLIO_TTL)
            positions.append(position)

        return positions

    @staticmethod
    def _summarize(wallet, balances, positions: list[LpPosition]) -> PortfolioSummary:
        assets = [
            PortfolioAsset(name=b.token.symbol, value=float(b.balance))
            for b in balances
            if b.balance_raw > 0
        ]
        lp_value = sum(p.value for p in positions)
        if lp_value > 0:
            assets.append(PortfolioAsset(name="LP Positions", value=lp_value))

        total = sum(asset.value for asset in assets)
        for asset in assets:
            asset.percentage = asset.value / total * 100 if total > 0 else 0.0

        return PortfolioSummary(
            wallet=wallet,
            assets=assets,
            lp_positions=positions,
            total_value=total,
        )

    async def force_refresh(self, wallet: str | None = None) -> AdapterResult[PoolStats]:
        """
        Drop analytics (and the given wallet's portfolio), wait for the chain
        to settle, and re-read pool stats bypassing cache.
        """
        self.invalidate(self.stats_key)
        if wallet:
            self.invalidate(self.portfolio_key(wallet))
        await self._settle()
        return await self.get_pool_stats(bypass_cache=True)
