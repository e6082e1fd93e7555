"""
Deployed contracts and token list for the FOREDEX deployment on Nexus Testnet.
"""

from chainreader.models import TokenInfo

NATIVE_TOKEN_ADDRESS = "0x0000000000000000000000000000000000000000"

CONTRACTS = {
    "FACTORY": "0x4CBe36D90F2Fb8a3167D7D9db8fF0a9C22095BD0",
    "ROUTER": "0x5FD5d62a7737397F1b3a20577386db08246ada9b",
    "WETH": "0xfC5b9b777C4Ac4EfbF5003D10919cC323e5d92ee",
    "MULTICALL": "0xC1185D97cAf50ef37a53bc876960d1B8A6458e9A",
    "LIBRARY": "0x538516DBb89235Ed124B1C0f2B2973FfEFea7d81",
    "FARMING": "0xB99Ac2B5A9b7808387d85617844DD6Db2eCe7C1A",
}

TOKENS = {
    "WNEX": "0x34088CafC2810e1507477c14C215a44b732f5283",
    "MON": "0xfaccE5b48B0d9c2D215CDb8F918c0412Fa160768",
    "FRDX": "0xE81670F867d27ED423d6D5Eb6908435dbA62F6DF",
    "WETH": "0xfC5b9b777C4Ac4EfbF5003D10919cC323e5d92ee",
}

NEXUS_TESTNET = {
    "chain_id": 3945,
    "name": "Nexus Testnet",
    "rpc_url": "https://testnet.rpc.nexus.xyz",
    "block_explorer": "https://nexus.testnet.blockscout.com",
    "native_currency": {"name": "NEX", "symbol": "NEX", "decimals": 18},
}

TOKEN_LIST: list[TokenInfo] = [
    TokenInfo(
        address=NATIVE_TOKEN_ADDRESS,
        symbol="NEX",
        name="Nexus",
        logo_uri="/tokens/nex.jpg",
    ),
    TokenInfo(
        address=TOKENS["WNEX"],
        symbol="WNEX",
        name="Wrapped NEX",
        logo_uri="/tokens/nex.jpg",
    ),
    TokenInfo(
        address=TOKENS["WETH"],
        symbol="WETH",
        name="Wrapped ETH",
        logo_uri="/tokens/weth.png",
    ),
    TokenInfo(
        address=TOKENS["MON"],
        symbol="MON",
        name="MON Token",
        logo_uri="/tokens/mon.png",
    ),
    TokenInfo(
        address=TOKENS["FRDX"],
        symbol="FRDX",
        name="FOREDEX Token",
        logo_uri="/tokens/frdx.png",
    ),
]


def is_native(token: TokenInfo | str) -> bool:
    address = token if isinstance(token, str) else token.address
    return address.lower() == NATIVE_TOKEN_ADDRESS


def find_token(address: str, tokens: list[TokenInfo] | None = None) -> TokenInfo | None:
    """Look up a token by address (case-insensitive)."""
    address = address.lower()
    for token in tokens or TOKEN_LIST:
        if token.address.lower() == address:
            return token
    return None
