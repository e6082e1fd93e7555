"""
Consumer cache adapters: domain TTLs and keys on top of ChainClient.
"""

from chainreader.datasource.analytics import AnalyticsAdapter
from chainreader.datasource.balances import BalanceAdapter
from chainreader.datasource.base import AdapterResult, BaseCacheAdapter
from chainreader.datasource.farming import FarmingAdapter
from chainreader.datasource.network import NetworkStatusAdapter
from chainreader.datasource.pools import PoolListAdapter

__all__ = [
    "AdapterResult",
    "AnalyticsAdapter",
    "BalanceAdapter",
    "BaseCacheAdapter",
    "FarmingAdapter",
    "NetworkStatusAdapter",
    "PoolListAdapter",
]
