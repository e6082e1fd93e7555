"""
Pydantic models returned by the consumer cache adapters.
"""

from pydantic import BaseModel, Field


class TokenInfo(BaseModel):
    """Token metadata."""

    address: str
    symbol: str
    name: str
    decimals: int = 18
    logo_uri: str | None = None


class TokenBalance(BaseModel):
    """Balance of one token for one wallet."""

    token: TokenInfo
    balance: str  # Formatted in token units, e.g. "10.5"
    balance_raw: int


class PoolToken(BaseModel):
    """Token side of a pool."""

    address: str
    symbol: str = "UNKNOWN"
    name: str = "Unknown Token"
    logo_uri: str | None = None


class PoolData(BaseModel):
    """On-chain state of one liquidity pool."""

    pair_address: str
    token0: PoolToken
    token1: PoolToken
    reserve0: str
    reserve1: str
    total_supply: str
    tvl: float
    volume_24h: float
    price_token0: float
    price_token1: float
    apr: float


class PoolList(BaseModel):
    """Pools read from the factory."""

    total_pairs: int
    pools: list[PoolData] = Field(default_factory=list)


class PoolStats(BaseModel):
    """Aggregated pool analytics."""

    total_pools: int
    total_tvl: float
    volume_24h: float
    total_fees: float


class PortfolioAsset(BaseModel):
    """One asset line of a wallet portfolio."""

    name: str
    value: float
    percentage: float = 0.0


class LpPosition(BaseModel):
    """Liquidity provider position in one pool."""

    pair_address: str
    name: str
    lp_balance: str
    share: float
    value: float


class PortfolioSummary(BaseModel):
    """Wallet portfolio aggregated from balances and LP positions."""

    wallet: str
    assets: list[PortfolioAsset] = Field(default_factory=list)
    lp_positions: list[LpPosition] = Field(default_factory=list)
    total_value: float = 0.0


class NetworkStatus(BaseModel):
    """Liveness of the RPC endpoint."""

    block_number: int | None = None
    latency_ms: float | None = None
    available: bool = False
    endpoints: dict[str, dict] = Field(default_factory=dict)


class FarmingStats(BaseModel):
    """Global state of the farming contract."""

    reward_token_symbol: str = "FRDX"
    reward_per_block: str = "0.0"
    total_alloc_point: int = 0
    is_paused: bool = False


class FarmPool(BaseModel):
    """One staking pool of the farming contract."""

    pid: int
    lp_token: str
    alloc_point: int
    token0_symbol: str = "LP"
    token1_symbol: str = ""
    total_staked: str = "0.0"
    user_staked: str = "0.0"
    pending_reward: str = "0.0"
    lp_balance: str = "0.0"
    apr: float = 0.0


class FarmingData(BaseModel):
    """Farming stats and pools, with the wallet's positions when one is given."""

    stats: FarmingStats | None = None
    pools: list[FarmPool] = Field(default_factory=list)
    is_owner: bool = False
