"""Account and alert records."""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional
import time

# "unknown / healthy" until the first successful query
UNKNOWN_HEALTH = Decimal("Infinity")


def canonical_address(address: str) -> str:
    """Case-fold an account address so every source maps to one record."""
    return address.strip().lower()


@dataclass
class AccountRecord:
    """
    Per-account scheduling state.

    in_flight is True for exactly the duration of one health query.
    """
    address: str
    last_checked_at: Optional[float] = None  # epoch seconds
    last_health_metric: Decimal = UNKNOWN_HEALTH
    in_flight: bool = False


@dataclass
class PendingAlert:
    """An outbound message waiting in the dispatcher queue."""
    message: str
    enqueued_at: float = field(default_factory=time.time)
