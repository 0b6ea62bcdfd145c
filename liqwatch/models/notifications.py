"""
Ingestion Notifications
=======================

Tagged variants produced by event ingestion. Each kind has a fixed schema
that is validated when the variant is built, so nothing downstream has to
re-check payload shape.

- RoutineActivity: Borrow/Repay/Deposit/Withdraw touched an account
- PendingLiquidationAttempt: a liquidationCall is sitting in the mempool
- ConfirmedLiquidation: a LiquidationCall event was mined
"""

import html
import re
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from ..errors import DecodeError
from .account import canonical_address

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")
_TX_HASH_RE = re.compile(r"^0x[0-9a-f]{64}$")


class NotificationKind(Enum):
    ROUTINE_ACTIVITY = "routine_activity"
    CONFIRMED_LIQUIDATION = "confirmed_liquidation"
    PENDING_LIQUIDATION_ATTEMPT = "pending_liquidation_attempt"


def _checked_address(value, field_name: str) -> str:
    if not isinstance(value, str):
        raise DecodeError(f"{field_name} is not an address: {value!r}")
    address = canonical_address(value)
    if not _ADDRESS_RE.match(address):
        raise DecodeError(f"{field_name} is not an address: {value!r}")
    return address


def _checked_tx_hash(value) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str) or not _TX_HASH_RE.match(value.lower()):
        raise DecodeError(f"tx_hash is not a transaction hash: {value!r}")
    return value.lower()


def format_units(value: int, decimals: int = 18) -> str:
    """Render a fixed-point integer amount as a plain decimal string."""
    amount = Decimal(value).scaleb(-decimals).normalize()
    return f"{amount:f}"


@dataclass(frozen=True)
class RoutineActivity:
    address: str
    event_name: str = ""

    kind = NotificationKind.ROUTINE_ACTIVITY

    def __post_init__(self):
        object.__setattr__(self, "address", _checked_address(self.address, "address"))


@dataclass(frozen=True)
class PendingLiquidationAttempt:
    address: str
    tx_hash: Optional[str] = None

    kind = NotificationKind.PENDING_LIQUIDATION_ATTEMPT

    def __post_init__(self):
        object.__setattr__(self, "address", _checked_address(self.address, "address"))
        object.__setattr__(self, "tx_hash", _checked_tx_hash(self.tx_hash))


@dataclass(frozen=True)
class ConfirmedLiquidation:
    """A mined liquidation, carrying enough detail to alert without a query."""
    user: str
    liquidator: str
    collateral_asset: str
    debt_asset: str
    debt_to_cover: int
    liquidated_collateral_amount: int
    receive_a_token: bool = False
    tx_hash: Optional[str] = None

    kind = NotificationKind.CONFIRMED_LIQUIDATION

    def __post_init__(self):
        for name in ("user", "liquidator", "collateral_asset", "debt_asset"):
            object.__setattr__(self, name, _checked_address(getattr(self, name), name))
        for name in ("debt_to_cover", "liquidated_collateral_amount"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise DecodeError(f"{name} is not a uint256: {value!r}")
        object.__setattr__(self, "tx_hash", _checked_tx_hash(self.tx_hash))

    @property
    def address(self) -> str:
        """The liquidated account."""
        return self.user

    def render(self, explorer_tx_url: str = "https://etherscan.io/tx/") -> str:
        """
        Format the liquidation as an alert message.

        Args:
            explorer_tx_url: Prefix for the transaction link

        Returns:
            HTML-formatted message text
        """
        tx_line = html.escape(f"{explorer_tx_url}{self.tx_hash}") if self.tx_hash else "unknown"
        lines = [
            "<b>💥 Liquidation Executed (on-chain)</b>",
            f"user: <code>{self.user}</code>",
            f"liquidator: <code>{self.liquidator}</code>",
            f"collateral: <code>{self.collateral_asset}</code>",
            f"debtAsset: <code>{self.debt_asset}</code>",
            f"debtToCover: {format_units(self.debt_to_cover)}",
            f"collateralAmount: {format_units(self.liquidated_collateral_amount)}",
            f"tx: {tx_line}",
        ]
        return "\n".join(lines)


Notification = Union[RoutineActivity, PendingLiquidationAttempt, ConfirmedLiquidation]
