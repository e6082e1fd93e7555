"""
Contract call codec, batch aggregation and deployment constants.
"""

from chainreader.chain.abi import ContractCall, FunctionSpec, decode_result, encode_call
from chainreader.chain.contracts import (
    CONTRACTS,
    NATIVE_TOKEN_ADDRESS,
    TOKEN_LIST,
    TOKENS,
    find_token,
    is_native,
)
from chainreader.chain.multicall import BatchAggregator, BatchItemResult, BatchMode

__all__ = [
    "BatchAggregator",
    "BatchItemResult",
    "BatchMode",
    "CONTRACTS",
    "ContractCall",
    "FunctionSpec",
    "NATIVE_TOKEN_ADDRESS",
    "TOKENS",
    "TOKEN_LIST",
    "decode_result",
    "encode_call",
    "find_token",
    "is_native",
]
