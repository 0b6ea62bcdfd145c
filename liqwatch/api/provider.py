"""
Active Connection Provider

web3 provider that sends each request over whichever connection the pool
currently has active. It holds no socket of its own, so the pool remains
the single owner of routing and a failover takes effect on the next call.
"""

import itertools
import logging
from typing import Any

from web3.providers import AsyncBaseProvider
from web3.types import RPCEndpoint, RPCResponse

from ..errors import RpcError, TransportError
from .pool import ConnectionPool

logger = logging.getLogger(__name__)


class ActiveConnectionProvider(AsyncBaseProvider):
    """
    AsyncWeb3 provider backed by ConnectionPool.get_active().

    Transport and node errors surface as TransportError / RpcError, unwrapped,
    so callers handle them the same way as any other upstream failure.
    """

    def __init__(self, pool: ConnectionPool):
        super().__init__()
        self.pool = pool
        self._request_ids = itertools.count(1)

    def __str__(self) -> str:
        active = self.pool.get_active()
        return f"ActiveConnectionProvider({active.label if active else 'no active connection'})"

    async def make_request(self, method: RPCEndpoint, params: Any) -> RPCResponse:
        connection = self.pool.get_active()
        if connection is None:
            raise TransportError(f"{method}: no active connection")

        result = await connection.request(method, list(params))
        if result is None:
            raise RpcError(f"{method} returned no result", endpoint=connection.label)
        return {"jsonrpc": "2.0", "id": next(self._request_ids), "result": result}

    async def is_connected(self, show_traceback: bool = False) -> bool:
        connection = self.pool.get_active()
        return connection is not None and connection.is_open
