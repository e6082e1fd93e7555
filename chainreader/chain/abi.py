"""
Typed call codec.

Contract reads are described as ContractCall values (target, function,
args) rather than opaque closures. FunctionSpec is parsed from a compact
signature such as "getReserves()(uint112,uint112,uint32)" and encodes /
decodes through eth-abi. Selectors use Keccak-256 from eth-hash.
"""

from dataclasses import dataclass, field
from typing import Any

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_hash.auto import keccak

from chainreader.services.errors import DecodeError, InvalidRequestError


def _split_types(body: str) -> tuple[str, ...]:
    """Split a comma separated type list, respecting nested tuples."""
    types: list[str] = []
    depth = 0
    current = ""

    for char in body:
        if char == "," and depth == 0:
            types.append(current.strip())
            current = ""
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        current += char

    if current.strip():
        types.append(current.strip())
    return tuple(types)


def _matching_paren(text: str, start: int) -> int:
    depth = 0
    for index in range(start, len(text)):
        if text[index] == "(":
            depth += 1
        elif text[index] == ")":
            depth -= 1
            if depth == 0:
                return index
    raise ValueError(f"Unbalanced parentheses in signature: {text}")


@dataclass(frozen=True)
class FunctionSpec:
    """A contract function: name, input types and output types."""

    name: str
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()

    @classmethod
    def parse(cls, signature: str) -> "FunctionSpec":
        """
        Parse "name(inputs)(outputs)".

        Examples:
            >>> FunctionSpec.parse("balanceOf(address)(uint256)").inputs
            ('address',)
        """
        signature = signature.replace(" ", "")
        open_index = signature.find("(")
        if open_index <= 0:
            raise ValueError(f"Invalid function signature: {signature}")

        close_index = _matching_paren(signature, open_index)
        name = signature[:open_index]
        inputs = _split_types(signature[open_index + 1 : close_index])

        rest = signature[close_index + 1 :]
        outputs: tuple[str, ...] = ()
        if rest:
            if not rest.startswith("(") or _matching_paren(rest, 0) != len(rest) - 1:
                raise ValueError(f"Invalid output list in signature: {signature}")
            outputs = _split_types(rest[1:-1])

        return cls(name=name, inputs=inputs, outputs=outputs)

    @property
    def signature(self) -> str:
        """Canonical signature used for the selector."""
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        """First 4 bytes of keccak256(signature)."""
        return keccak(self.signature.encode("utf-8"))[:4]


@dataclass(frozen=True)
class ContractCall:
    """One elementary read: target contract, function and arguments."""

    target: str
    function: FunctionSpec
    args: tuple[Any, ...] = field(default_factory=tuple)

    @property
    def calldata(self) -> bytes:
        return encode_call(self)

    def describe(self) -> str:
        return f"{self.function.name}@{self.target.lower()}"


def _normalize_arg(abi_type: str, value: Any) -> Any:
    """Lower-case hex addresses so mixed-case input never fails checksum validation."""
    if abi_type == "address" and isinstance(value, str):
        return value.lower()
    return value


def encode_call(call: ContractCall) -> bytes:
    """
    ABI-encode a call (selector + arguments).

    Raises:
        InvalidRequestError: If the arguments do not match the input types
    """
    function = call.function
    if len(call.args) != len(function.inputs):
        raise InvalidRequestError(
            f"{function.signature} expects {len(function.inputs)} arguments, "
            f"got {len(call.args)}"
        )

    if not function.inputs:
        return function.selector

    args = [_normalize_arg(t, v) for t, v in zip(function.inputs, call.args)]
    try:
        return function.selector + abi_encode(list(function.inputs), args)
    except Exception as e:
        raise InvalidRequestError(f"Cannot encode {function.signature}: {e}") from e


def decode_result(function: FunctionSpec, data: bytes) -> Any:
    """
    ABI-decode return data.

    Returns:
        A scalar for single-output functions, a tuple otherwise

    Raises:
        DecodeError: On empty or malformed data
    """
    if not function.outputs:
        return None
    if not data:
        raise DecodeError(f"Empty return data for {function.name}")

    try:
        decoded = abi_decode(list(function.outputs), data)
    except Exception as e:
        raise DecodeError(f"Cannot decode {function.name} result: {e}") from e

    if len(decoded) == 1:
        return decoded[0]
    return tuple(decoded)


# ERC-20
ERC20_BALANCE_OF = FunctionSpec.parse("balanceOf(address)(uint256)")
ERC20_SYMBOL = FunctionSpec.parse("symbol()(string)")
ERC20_NAME = FunctionSpec.parse("name()(string)")
ERC20_DECIMALS = FunctionSpec.parse("decimals()(uint8)")
ERC20_TOTAL_SUPPLY = FunctionSpec.parse("totalSupply()(uint256)")

# Uniswap V2 style pair
PAIR_TOKEN0 = FunctionSpec.parse("token0()(address)")
PAIR_TOKEN1 = FunctionSpec.parse("token1()(address)")
PAIR_GET_RESERVES = FunctionSpec.parse("getReserves()(uint112,uint112,uint32)")
PAIR_TOTAL_SUPPLY = ERC20_TOTAL_SUPPLY
PAIR_BALANCE_OF = ERC20_BALANCE_OF

# Factory
FACTORY_ALL_PAIRS_LENGTH = FunctionSpec.parse("allPairsLength()(uint256)")
FACTORY_ALL_PAIRS = FunctionSpec.parse("allPairs(uint256)(address)")

# Multicall aggregator
MULTICALL_AGGREGATE = FunctionSpec.parse("aggregate((address,bytes)[])(uint256,bytes[])")

# Farming (MasterChef style)
FARMING_REWARD_TOKEN = FunctionSpec.parse("rewardToken()(address)")
FARMING_REWARD_PER_BLOCK = FunctionSpec.parse("rewardPerBlock()(uint256)")
FARMING_TOTAL_ALLOC_POINT = FunctionSpec.parse("totalAllocPoint()(uint256)")
FARMING_PAUSED = FunctionSpec.parse("paused()(bool)")
FARMING_POOL_LENGTH = FunctionSpec.parse("poolLength()(uint256)")
FARMING_OWNER = FunctionSpec.parse("owner()(address)")
FARMING_POOL_INFO = FunctionSpec.parse("poolInfo(uint256)(address,uint256,uint256,uint256)")
FARMING_USER_INFO = FunctionSpec.parse("userInfo(uint256,address)(uint256,uint256)")
FARMING_PENDING_REWARD = FunctionSpec.parse("pendingReward(uint256,address)(uint256)")
