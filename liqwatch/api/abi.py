"""
Pool ABI
========

Encoding and decoding for the few pool interactions the watcher needs:

- getUserAccountData(address) contract ABI for web3
- activity / LiquidationCall event logs
- liquidationCall(...) input of a pending transaction

Every decode failure is raised as DecodeError.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import decode_hex, encode_hex, function_signature_to_4byte_selector, keccak

from ..errors import DecodeError


@dataclass(frozen=True)
class EventInput:
    name: str
    type: str
    indexed: bool = False


@dataclass(frozen=True)
class EventSpec:
    """One pool event: its canonical signature and argument layout."""
    name: str
    inputs: Tuple[EventInput, ...]
    user_field: str = "user"

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(i.type for i in self.inputs)})"

    @property
    def topic(self) -> str:
        return encode_hex(keccak(text=self.signature))


ACTIVITY_EVENTS: Tuple[EventSpec, ...] = (
    EventSpec("Borrow", (
        EventInput("user", "address", True),
        EventInput("reserve", "address", True),
        EventInput("amount", "uint256"),
        EventInput("borrowRateMode", "uint256"),
        EventInput("borrowRate", "uint256"),
        EventInput("referral", "uint16", True),
    )),
    EventSpec("Repay", (
        EventInput("user", "address", True),
        EventInput("reserve", "address", True),
        EventInput("amount", "uint256"),
    )),
    EventSpec("Deposit", (
        EventInput("user", "address", True),
        EventInput("reserve", "address", True),
        EventInput("amount", "uint256"),
        EventInput("referral", "uint16", True),
    )),
    EventSpec("Withdraw", (
        EventInput("user", "address", True),
        EventInput("reserve", "address", True),
        EventInput("amount", "uint256"),
    )),
)

LIQUIDATION_EVENT = EventSpec("LiquidationCall", (
    EventInput("collateralAsset", "address", True),
    EventInput("debtAsset", "address", True),
    EventInput("user", "address", True),
    EventInput("debtToCover", "uint256"),
    EventInput("liquidatedCollateralAmount", "uint256"),
    EventInput("liquidator", "address"),
    EventInput("receiveAToken", "bool"),
))

EVENTS_BY_TOPIC: Dict[str, EventSpec] = {
    spec.topic: spec for spec in ACTIVITY_EVENTS + (LIQUIDATION_EVENT,)
}

LIQUIDATION_CALL_SIGNATURE = "liquidationCall(address,address,address,uint256,bool)"
LIQUIDATION_CALL_TYPES = ["address", "address", "address", "uint256", "bool"]
LIQUIDATION_CALL_USER_INDEX = 2
LIQUIDATION_CALL_SELECTOR = function_signature_to_4byte_selector(LIQUIDATION_CALL_SIGNATURE)

USER_ACCOUNT_DATA_OUTPUTS = (
    "totalCollateralBase",
    "totalDebtBase",
    "availableBorrowsBase",
    "currentLiquidationThreshold",
    "ltv",
    "healthFactor",
)
HEALTH_FACTOR_INDEX = USER_ACCOUNT_DATA_OUTPUTS.index("healthFactor")

# Contract ABI for the web3 view calls
POOL_ABI: List[Dict[str, Any]] = [
    {
        "name": "getUserAccountData",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [{"name": name, "type": "uint256"} for name in USER_ACCOUNT_DATA_OUTPUTS],
    },
]


def _to_bytes(value: Any, what: str) -> bytes:
    if not isinstance(value, str):
        raise DecodeError(f"{what} is not a hex string: {type(value).__name__}")
    try:
        return decode_hex(value)
    except (ValueError, TypeError) as e:
        raise DecodeError(f"{what} is not valid hex", original_error=e)


def _decode(types: Sequence[str], data: bytes, what: str) -> Tuple[Any, ...]:
    try:
        return decode(list(types), data)
    except (DecodingError, ValueError, TypeError, OverflowError) as e:
        raise DecodeError(f"could not decode {what}", original_error=e)


def log_topics() -> List[str]:
    """All topic0 values the ingestion subscription filters on."""
    return list(EVENTS_BY_TOPIC)


def decode_log(log: Dict[str, Any]) -> Tuple[EventSpec, Dict[str, Any]]:
    """
    Decode a pool event log.

    Args:
        log: JSON-RPC log object (topics, data, transactionHash, ...)

    Returns:
        (event spec, argument dict keyed by input name)

    Raises:
        DecodeError: Unknown topic, wrong topic count, or malformed data
    """
    if not isinstance(log, dict):
        raise DecodeError(f"log is not an object: {type(log).__name__}")

    topics = log.get("topics")
    if not isinstance(topics, list) or not topics:
        raise DecodeError("log has no topics")

    topic0 = topics[0].lower() if isinstance(topics[0], str) else topics[0]
    spec = EVENTS_BY_TOPIC.get(topic0)
    if spec is None:
        raise DecodeError(f"unknown event topic {topics[0]!r}")

    indexed = [i for i in spec.inputs if i.indexed]
    if len(topics) != len(indexed) + 1:
        raise DecodeError(
            f"{spec.name}: expected {len(indexed) + 1} topics, got {len(topics)}"
        )

    args: Dict[str, Any] = {}
    for inp, topic in zip(indexed, topics[1:]):
        (args[inp.name],) = _decode([inp.type], _to_bytes(topic, "topic"), f"{spec.name}.{inp.name}")

    plain = [i for i in spec.inputs if not i.indexed]
    values = _decode([i.type for i in plain], _to_bytes(log.get("data", "0x"), "data"), spec.name)
    for inp, value in zip(plain, values):
        args[inp.name] = value

    return spec, args


def decode_liquidation_call(tx_input: Any) -> Optional[str]:
    """
    Extract the liquidated account from a pending transaction's input.

    Args:
        tx_input: 0x-prefixed calldata

    Returns:
        Account address, or None if the call is not liquidationCall

    Raises:
        DecodeError: Selector matched but the arguments are malformed
    """
    data = _to_bytes(tx_input, "input")
    if data[:4] != LIQUIDATION_CALL_SELECTOR:
        return None
    args = _decode(LIQUIDATION_CALL_TYPES, data[4:], "liquidationCall input")
    return args[LIQUIDATION_CALL_USER_INDEX]

