"""
Wallet balance adapter (native + ERC-20).

Cache keys: bal_<wallet>_<token-address|native>, TTL 30 seconds.
"""

from datetime import timedelta

from loguru import logger

from chainreader.chain.abi import ERC20_BALANCE_OF, ContractCall
from chainreader.chain.contracts import TOKEN_LIST, is_native
from chainreader.datasource.base import AdapterResult, BaseCacheAdapter
from chainreader.models import TokenBalance, TokenInfo
from chainreader.services.client import ChainClient
from chainreader.utils import format_units


def _empty_balance(token: TokenInfo) -> TokenBalance:
    return TokenBalance(token=token, balance="0", balance_raw=0)


class BalanceAdapter(BaseCacheAdapter[TokenBalance]):
    """
    Balances of the active wallet.

    Single balances go through ChainClient elementary reads; multi-token
    reads use one aggregate call for all ERC-20 tokens plus one native
    balance read.
    """

    ttl = timedelta(seconds=30)
    key_prefix = "bal"

    def __init__(
        self,
        client: ChainClient,
        tokens: list[TokenInfo] | None = None,
        ttl: timedelta | None = None,
        settle_delay: float | None = None,
    ):
        super().__init__(client, ttl=ttl, settle_delay=settle_delay)
        self.tokens = tokens or TOKEN_LIST

    @property
    def name(self) -> str:
        return "balances"

    def balance_key(self, wallet: str, token: TokenInfo) -> str:
        return self.make_key(wallet, "native" if is_native(token) else token.address)

    async def get_balance(
        self,
        wallet: str,
        token: TokenInfo,
        bypass_cache: bool = False,
    ) -> AdapterResult[TokenBalance]:
        """Balance of one token."""
        key = self.balance_key(wallet, token)

        async def fetch(fresh: bool) -> TokenBalance | None:
            if is_native(token):
                result = await self.client.native_balance(
                    wallet, key=key, ttl=self.ttl, bypass_cache=fresh
                )
            else:
                result = await self.client.read_contract(
                    ContractCall(token.address, ERC20_BALANCE_OF, (wallet,)),
                    key=key,
                    ttl=self.ttl,
                    bypass_cache=fresh,
                )

            # A stale generic value must not refresh our stored_at
            if result.value is None or result.from_cache == "stale":
                return None
            return TokenBalance(
                token=token,
                balance=format_units(result.value, token.decimals),
                balance_raw=result.value,
            )

        return await self._read(key, fetch, _empty_balance(token), bypass_cache=bypass_cache)

    async def get_balances(
        self,
        wallet: str,
        tokens: list[TokenInfo] | None = None,
        bypass_cache: bool = False,
    ) -> AdapterResult[dict[str, TokenBalance]]:
        """
        Balances of many tokens, keyed by lower-cased token address.

        Fresh per-token entries are served from cache; the rest are read in
        one aggregate round trip. Tokens that cannot be read keep their last
        known balance (or zero) and mark the result unavailable.
        """
        tokens = tokens or self.tokens
        balances: dict[str, TokenBalance] = {}
        pending: list[TokenInfo] = []

        for token in tokens:
            cached = self.cache.get(self.balance_key(wallet, token))
            if cached and cached.is_fresh and not bypass_cache:
                balances[token.address.lower()] = cached.value
            else:
                pending.append(token)

        if not pending:
            return AdapterResult(value=balances)

        batch_key = self.make_key(wallet, "batch", *(t.address for t in pending))
        if bypass_cache:
            batch_key += "_fresh"
        try:
            raw = await self.deduplicator.dedupe(
                batch_key, lambda: self._fetch_raw(wallet, pending, bypass_cache)
            )
        except Exception as e:
            logger.warning(f"[{self.name}] Batch balance read for {wallet} failed: {e}")
            raw = {}

        available = True
        for token in pending:
            address = token.address.lower()
            key = self.balance_key(wallet, token)
            value = raw.get(address)

            if value is not None:
                balance = TokenBalance(
                    token=token,
                    balance=format_units(value, token.decimals),
                    balance_raw=value,
                )
                self.cache.set(key, balance)
                balances[address] = balance
            else:
                available = False
                balances[address] = self.get_cached(key) or _empty_balance(token)

        return AdapterResult(value=balances, available=available, is_stale=not available)

    async def _fetch_raw(
        self,
        wallet: str,
        tokens: list[TokenInfo],
        fresh: bool,
    ) -> dict[str, int | None]:
        raw: dict[str, int | None] = {}

        erc20 = [t for t in tokens if not is_native(t)]
        if erc20:
            results = await self.client.aggregate(
                [ContractCall(t.address, ERC20_BALANCE_OF, (wallet,)) for t in erc20]
            )
            for token, result in zip(erc20, results):
                raw[token.address.lower()] = result.value if result.ok else None

        native = next((t for t in tokens if is_native(t)), None)
        if native is not None:
            result = await self.client.native_balance(
                wallet,
                key=self.balance_key(wallet, native),
                ttl=self.ttl,
                bypass_cache=fresh,
            )
            raw[native.address.lower()] = (
                result.value if result.from_cache != "stale" else None
            )

        return raw

    def get_balance_sync(self, wallet: str, token: TokenInfo) -> str:
        """Last known formatted balance, without any network activity."""
        cached = self.get_cached(self.balance_key(wallet, token))
        return cached.balance if cached else "0"

    async def force_refresh(
        self,
        wallet: str,
        tokens: list[TokenInfo] | None = None,
    ) -> AdapterResult[dict[str, TokenBalance]]:
        """Drop cached balances, wait for the chain to settle, re-read bypassing cache."""
        tokens = tokens or self.tokens
        for token in tokens:
            self.invalidate(self.balance_key(wallet, token))
            self.client.invalidate(self.balance_key(wallet, token))

        await self._settle()
        return await self.get_balances(wallet, tokens, bypass_cache=True)
