"""
Farming adapter: reward stats, staking pools and the wallet's positions.

Cache key: farming_<contract>[_<wallet>], TTL 45 seconds. Deposits,
withdrawals and harvests change every figure, so callers force_refresh()
once such a transaction is confirmed.
"""

from datetime import timedelta

from loguru import logger

from chainreader.chain.abi import (
    ERC20_BALANCE_OF,
    ERC20_SYMBOL,
    FARMING_OWNER,
    FARMING_PAUSED,
    FARMING_PENDING_REWARD,
    FARMING_POOL_INFO,
    FARMING_POOL_LENGTH,
    FARMING_REWARD_PER_BLOCK,
    FARMING_REWARD_TOKEN,
    FARMING_TOTAL_ALLOC_POINT,
    FARMING_USER_INFO,
    PAIR_TOKEN0,
    PAIR_TOKEN1,
    ContractCall,
)
from chainreader.chain.contracts import CONTRACTS, TOKEN_LIST, find_token
from chainreader.chain.multicall import BatchItemResult
from chainreader.datasource.base import AdapterResult, BaseCacheAdapter
from chainreader.models import FarmingData, FarmingStats, FarmPool, TokenInfo
from chainreader.services.client import ChainClient
from chainreader.utils import format_ether, units_to_float

BLOCKS_PER_YEAR = 15_768_000  # ~2 second blocks
MAX_APR = 99999.0
EMPTY_POOL_APR = 9999.0  # Rewards flowing into a pool nobody staked in yet
MIN_STAKED = 0.001


def token_symbol(address: str, tokens: list[TokenInfo]) -> str:
    known = find_token(address, tokens)
    return known.symbol if known else address[:6] + "..."


def farm_apr(reward_per_block: float, alloc_point: int, total_alloc_point: int, total_staked: float) -> float:
    """Yearly rewards of the pool over its staked amount, in percent."""
    share = alloc_point / total_alloc_point if total_alloc_point > 0 else 0.0
    reward_per_year = reward_per_block * BLOCKS_PER_YEAR * share

    if total_staked > MIN_STAKED:
        apr = reward_per_year / total_staked * 100
    else:
        apr = EMPTY_POOL_APR if reward_per_year > 0 else 0.0
    return min(apr, MAX_APR)


def _value(result: BatchItemResult, default):
    return result.value if result.ok else default


class FarmingAdapter(BaseCacheAdapter[FarmingData]):
    """
    Farming contract state.

    One aggregate reads the contract globals, one reads poolInfo for every
    pool and the reward token symbol, and one reads per-pool LP and user
    state. Pools whose LP token is unset or whose staked total cannot be
    read are skipped.
    """

    ttl = timedelta(seconds=45)
    key_prefix = "farming"

    def __init__(
        self,
        client: ChainClient,
        contract: str = CONTRACTS["FARMING"],
        tokens: list[TokenInfo] | None = None,
        ttl: timedelta | None = None,
        settle_delay: float | None = None,
    ):
        super().__init__(client, ttl=ttl, settle_delay=settle_delay)
        self.contract = contract
        self.tokens = tokens or TOKEN_LIST

    @property
    def name(self) -> str:
        return "farming"

    def farming_key(self, wallet: str | None = None) -> str:
        if wallet:
            return self.make_key(self.contract, wallet)
        return self.make_key(self.contract)

    async def get_farms(
        self,
        wallet: str | None = None,
        bypass_cache: bool = False,
    ) -> AdapterResult[FarmingData]:
        """Stats and pools, sorted by allocation points (highest first)."""
        return await self._read(
            self.farming_key(wallet),
            lambda fresh: self._fetch(wallet),
            FarmingData(),
            bypass_cache=bypass_cache,
        )

    async def _fetch(self, wallet: str | None) -> FarmingData | None:
        globals_ = await self.client.aggregate(
            [
                ContractCall(self.contract, FARMING_REWARD_TOKEN),
                ContractCall(self.contract, FARMING_REWARD_PER_BLOCK),
                ContractCall(self.contract, FARMING_TOTAL_ALLOC_POINT),
                ContractCall(self.contract, FARMING_PAUSED),
                ContractCall(self.contract, FARMING_POOL_LENGTH),
                ContractCall(self.contract, FARMING_OWNER),
            ]
        )
        reward_token, reward_per_block, total_alloc, paused, pool_length, owner = globals_
        if not (reward_per_block.ok and total_alloc.ok and pool_length.ok):
            return None

        pool_count = int(pool_length.value)
        plan = [ContractCall(self.contract, FARMING_POOL_INFO, (pid,)) for pid in range(pool_count)]
        if reward_token.ok:
            plan.append(ContractCall(reward_token.value, ERC20_SYMBOL))
        results = await self.client.aggregate(plan)

        symbol = results[pool_count] if reward_token.ok else BatchItemResult()
        stats = FarmingStats(
            reward_token_symbol=_value(symbol, None) or "FRDX",
            reward_per_block=format_ether(reward_per_block.value),
            total_alloc_point=int(total_alloc.value),
            is_paused=bool(_value(paused, False)),
        )

        pool_infos = []
        for pid, info in enumerate(results[:pool_count]):
            if not info.ok:
                logger.debug(f"[{self.name}] Skipping pool {pid}: poolInfo unreadable")
                continue
            lp_token, alloc_point = info.value[0], info.value[1]
            if int(lp_token, 16) == 0:
                logger.debug(f"[{self.name}] Skipping pool {pid}: no LP token")
                continue
            pool_infos.append((pid, lp_token, int(alloc_point)))

        pools = await self._read_pools(pool_infos, stats, wallet)
        pools.sort(key=lambda pool: pool.alloc_point, reverse=True)

        is_owner = bool(wallet and owner.ok and owner.value.lower() == wallet.lower())
        return FarmingData(stats=stats, pools=pools, is_owner=is_owner)

    async def _read_pools(
        self,
        pool_infos: list[tuple[int, str, int]],
        stats: FarmingStats,
        wallet: str | None,
    ) -> list[FarmPool]:
        per_pool = 7 if wallet else 4
        plan = []
        for pid, lp_token, _alloc in pool_infos:
            plan.extend(
                [
                    ContractCall(lp_token, PAIR_TOKEN0),
                    ContractCall(lp_token, PAIR_TOKEN1),
                    ContractCall(lp_token, ERC20_SYMBOL),
                    ContractCall(lp_token, ERC20_BALANCE_OF, (self.contract,)),
                ]
            )
            if wallet:
                plan.extend(
                    [
                        ContractCall(self.contract, FARMING_USER_INFO, (pid, wallet)),
                        ContractCall(self.contract, FARMING_PENDING_REWARD, (pid, wallet)),
                        ContractCall(lp_token, ERC20_BALANCE_OF, (wallet,)),
                    ]
                )
        results = await self.client.aggregate(plan)

        reward_per_block = float(stats.reward_per_block)
        pools = []
        for index, (pid, lp_token, alloc_point) in enumerate(pool_infos):
            row = results[index * per_pool : (index + 1) * per_pool]
            token0, token1, lp_symbol, staked = row[:4]

            if not staked.ok:
                logger.debug(f"[{self.name}] Skipping pool {pid}: staked total unreadable")
                continue

            # Single token staking has no pair sides
            if token0.ok and token1.ok:
                symbols = (token_symbol(token0.value, self.tokens), token_symbol(token1.value, self.tokens))
            else:
                symbols = (_value(lp_symbol, "LP"), "")

            pool = FarmPool(
                pid=pid,
                lp_token=lp_token,
                alloc_point=alloc_point,
                token0_symbol=symbols[0],
                token1_symbol=symbols[1],
                total_staked=format_ether(staked.value),
                apr=farm_apr(
                    reward_per_block,
                    alloc_point,
                    stats.total_alloc_point,
                    units_to_float(staked.value),
                ),
            )
            if wallet:
                user_info, pending, lp_balance = row[4:]
                pool.user_staked = format_ether(user_info.value[0] if user_info.ok else 0)
                pool.pending_reward = format_ether(_value(pending, 0))
                pool.lp_balance = format_ether(_value(lp_balance, 0))
            pools.append(pool)

        return pools

    async def force_refresh(self, wallet: str | None = None) -> AdapterResult[FarmingData]:
        """Drop farming entries, wait for the chain to settle, re-read bypassing cache."""
        self.invalidate(self.farming_key())
        if wallet:
            self.invalidate(self.farming_key(wallet))
        await self._settle()
        return await self.get_farms(wallet, bypass_cache=True)
