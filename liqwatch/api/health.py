"""
Health Metric Source

Single responsibility: ask the pool contract for one account's health factor,
routed through whichever connection is currently active.

The call itself is an AsyncWeb3 contract call. Its provider forwards every
request to the pool's active connection.
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any

from web3 import AsyncWeb3
from web3.contract import AsyncContract
from web3.exceptions import BadFunctionCallOutput, Web3Exception

from ..config import HEALTH_FACTOR_DECIMALS
from ..errors import ConfigError, QueryError, RpcError, TransportError
from ..models import UNKNOWN_HEALTH
from .abi import HEALTH_FACTOR_INDEX, POOL_ABI
from .pool import ConnectionPool
from .provider import ActiveConnectionProvider

logger = logging.getLogger(__name__)


def parse_health_metric(raw: Any, decimals: int = HEALTH_FACTOR_DECIMALS) -> Decimal:
    """
    Convert a raw fixed-point health factor into a Decimal.

    Accepts ints, decimal strings and 0x-hex strings. Anything malformed is
    treated as "unknown" and returned as +Infinity rather than raising.

    Args:
        raw: Raw on-chain value
        decimals: Fixed-point scale

    Returns:
        Health factor as Decimal
    """
    try:
        if isinstance(raw, bool):
            raise TypeError("bool is not a health factor")
        if isinstance(raw, str):
            text = raw.strip()
            value = int(text, 16) if text.lower().startswith("0x") else int(text)
        else:
            value = int(raw)
        if value < 0:
            raise ValueError("negative health factor")
        return Decimal(value).scaleb(-decimals)
    except (TypeError, ValueError, InvalidOperation, OverflowError):
        logger.debug(f"Unparseable health factor {raw!r}, treating as unknown")
        return UNKNOWN_HEALTH


class HealthMetricSource:
    """
    getUserAccountData(address) as a web3 contract call over the pool's
    active connection.

    With no active connection the query fails fast with QueryError.
    """

    def __init__(self, pool: ConnectionPool, pool_address: str, timeout: float = 10.0):
        """
        Args:
            pool: Connection pool supplying the active connection
            pool_address: Lending pool contract
            timeout: Seconds before a query is abandoned

        Raises:
            ConfigError: pool_address is not an address
        """
        self.pool = pool
        self.pool_address = pool_address
        self.timeout = timeout

        try:
            checksum_pool = AsyncWeb3.to_checksum_address(pool_address)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid pool address {pool_address!r}", original_error=e)

        self.web3 = AsyncWeb3(ActiveConnectionProvider(pool), middleware=[])
        self.contract: AsyncContract = self.web3.eth.contract(address=checksum_pool, abi=POOL_ABI)

    async def query(self, address: str) -> Decimal:
        """
        Fetch the current health factor for an account.

        Args:
            address: Account address (lowercase)

        Returns:
            Health factor as Decimal (+Infinity if the node's answer is unparseable)

        Raises:
            QueryError: No active connection, transport failure, RPC error, or timeout
        """
        connection = self.pool.get_active()
        if connection is None:
            raise QueryError("no active connection", context={"address": address})

        try:
            call = self.contract.functions.getUserAccountData(AsyncWeb3.to_checksum_address(address))
            account_data = await asyncio.wait_for(call.call(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise QueryError(
                f"health query timed out after {self.timeout}s",
                endpoint=connection.label,
                original_error=e,
                context={"address": address},
            )
        except BadFunctionCallOutput as e:
            logger.warning(f"Malformed getUserAccountData result for {address}: {e}")
            return UNKNOWN_HEALTH
        except (TransportError, RpcError, Web3Exception, ValueError) as e:
            raise QueryError(
                "health query failed",
                endpoint=connection.label,
                original_error=e,
                context={"address": address},
            )

        return parse_health_metric(account_data[HEALTH_FACTOR_INDEX])
