"""
chainreader entry point.

Reads network status, pool statistics and (when WALLET_ADDRESS is set)
wallet balances once, logs them and exits.
"""

import asyncio

from loguru import logger

from chainreader.datasource import (
    AnalyticsAdapter,
    BalanceAdapter,
    NetworkStatusAdapter,
    PoolListAdapter,
)
from chainreader.services.client import close_chain_client, get_chain_client
from chainreader.settings import global_settings


async def main() -> None:
    """Main function"""
    logger.info(f"Starting chainreader against {global_settings.rpc_url}...")

    client = get_chain_client()
    try:
        network = NetworkStatusAdapter(client)
        status = await network.get_status()
        if status.available:
            logger.info(
                f"Block {status.value.block_number} "
                f"(latency {status.value.latency_ms} ms)"
            )
        else:
            logger.warning("RPC endpoint unavailable")

        pools = PoolListAdapter(client)
        balances = BalanceAdapter(client)
        analytics = AnalyticsAdapter(client, pools=pools, balances=balances)

        stats = await analytics.get_pool_stats()
        logger.info(
            f"Pools: {stats.value.total_pools}, TVL: {stats.value.total_tvl:.2f}, "
            f"24h volume: {stats.value.volume_24h:.2f}"
            + ("" if stats.available else " (fallback)")
        )

        wallet = global_settings.wallet_address
        if wallet:
            result = await balances.get_balances(wallet)
            for balance in result.value.values():
                logger.info(f"{balance.token.symbol}: {balance.balance}")
            if not result.available:
                logger.warning("Some balances could not be read, showing last known values")

        logger.debug(f"Health: {client.get_health_status()}")

    except Exception as e:
        logger.error(f"Error in main: {e}")
    finally:
        await close_chain_client()
        logger.info("chainreader stopped")


if __name__ == "__main__":
    asyncio.run(main())
