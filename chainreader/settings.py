import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from chainreader.chain.contracts import CONTRACTS, NEXUS_TESTNET

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # RPC Endpoints
    rpc_url: str = Field(default=NEXUS_TESTNET["rpc_url"], alias="RPC_URL")
    streaming_rpc_url: str = Field(default="", alias="STREAMING_RPC_URL")
    chain_id: int = Field(default=NEXUS_TESTNET["chain_id"], alias="CHAIN_ID")

    # Batching
    multicall_address: str = Field(default=CONTRACTS["MULTICALL"], alias="MULTICALL_ADDRESS")
    batch_mode: str = Field(default="multicall", alias="BATCH_MODE")
    max_batch_size: int = Field(default=100, ge=1, alias="MAX_BATCH_SIZE")

    # Call Executor
    rpc_timeout: float = Field(default=15.0, gt=0, alias="RPC_TIMEOUT")
    rpc_max_retries: int = Field(default=3, ge=0, alias="RPC_MAX_RETRIES")
    rpc_backoff_base: float = Field(default=0.5, ge=0, alias="RPC_BACKOFF_BASE")
    rpc_backoff_max: float = Field(default=8.0, ge=0, alias="RPC_BACKOFF_MAX")
    rpc_rate_limit_backoff_multiplier: float = Field(
        default=4.0, ge=1, alias="RPC_RATE_LIMIT_BACKOFF_MULTIPLIER"
    )

    # Endpoint health
    health_degraded_threshold: int = Field(default=3, ge=1, alias="HEALTH_DEGRADED_THRESHOLD")
    health_down_threshold: int = Field(default=6, ge=1, alias="HEALTH_DOWN_THRESHOLD")
    rate_limit_cooldown: float = Field(default=60.0, ge=0, alias="RATE_LIMIT_COOLDOWN")
    health_probe_interval: float = Field(default=30.0, ge=0, alias="HEALTH_PROBE_INTERVAL")

    # Caching
    default_cache_ttl: float = Field(default=15.0, ge=0, alias="DEFAULT_CACHE_TTL")
    force_refresh_settle_delay: float = Field(
        default=2.0, ge=0, alias="FORCE_REFRESH_SETTLE_DELAY"
    )

    # Session
    wallet_address: str = Field(default="", alias="WALLET_ADDRESS")

    debug: bool = Field(default=False, alias="DEBUG")


global_settings = Settings.model_validate(dict(os.environ))
