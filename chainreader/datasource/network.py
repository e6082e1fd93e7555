"""
Network status adapter (block number, latency, endpoint health).
"""

from datetime import timedelta

from chainreader.datasource.base import AdapterResult, BaseCacheAdapter
from chainreader.models import NetworkStatus
from chainreader.services.endpoint import EndpointKind


class NetworkStatusAdapter(BaseCacheAdapter[NetworkStatus]):
    """Liveness of the RPC endpoint for status indicators."""

    ttl = timedelta(seconds=60)
    key_prefix = "network"

    @property
    def name(self) -> str:
        return "network"

    @property
    def key(self) -> str:
        return self.make_key("block_number")

    async def get_status(self, bypass_cache: bool = False) -> AdapterResult[NetworkStatus]:
        async def fetch(fresh: bool) -> NetworkStatus | None:
            started = self.client.clock()
            # Always go to the endpoint so the latency is a real round trip
            result = await self.client.block_number(ttl=self.ttl, bypass_cache=True)
            if result.value is None or result.from_cache == "stale":
                return None

            return NetworkStatus(
                block_number=result.value,
                latency_ms=round((self.client.clock() - started) * 1000, 1),
                available=True,
                endpoints=self.client.endpoints.get_status(),
            )

        result = await self._read(
            self.key,
            fetch,
            NetworkStatus(),
            bypass_cache=bypass_cache,
        )
        if not result.available:
            result.value = result.value.model_copy(
                update={"available": False, "endpoints": self.client.endpoints.get_status()}
            )
        return result

    async def probe_streaming(self) -> bool:
        """Liveness check of the secondary handle, if one is configured."""
        return await self.client.endpoints.probe(EndpointKind.STREAMING)

    async def force_refresh(self) -> AdapterResult[NetworkStatus]:
        self.invalidate(self.key)
        await self._settle()
        return await self.get_status(bypass_cache=True)
