"""
Upstream Connection

Single responsibility: one JSON-RPC 2.0 WebSocket session to one endpoint.

The connection never decides its own lifecycle state. It reports transport
signals (connecting / opened / closed / errored) to a listener, and the
ConnectionPool applies them to `state` and `role`.
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit

import aiohttp

from ..errors import RpcError, TransportError

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"


class ConnectionRole(Enum):
    ACTIVE = "active"
    STANDBY = "standby"


class TransportEvent(Enum):
    CONNECTING = "connecting"
    OPENED = "opened"
    CLOSED = "closed"
    ERRORED = "errored"


TransportListener = Callable[["Connection", TransportEvent], None]
SubscriptionHandler = Callable[[Any], None]


def endpoint_label(endpoint: str) -> str:
    """scheme://host for logging (endpoint paths usually carry an API key)."""
    parts = urlsplit(endpoint)
    if parts.scheme and parts.hostname:
        return f"{parts.scheme}://{parts.hostname}"
    return endpoint[:24]


class Connection:
    """
    JSON-RPC client over an aiohttp WebSocket.

    Handles:
    - Request/response correlation by id
    - eth_subscribe notifications routed to per-subscription handlers
    - Reconnecting with exponential backoff after the socket drops

    Subscriptions and in-flight requests are scoped to one socket: when it
    drops, pending requests fail with TransportError and handlers are
    discarded.
    """

    def __init__(
        self,
        endpoint: str,
        reconnect_delay: float = 2.0,
        max_reconnect_delay: float = 60.0,
        heartbeat: float = 20.0,
    ):
        self.endpoint = endpoint
        self.label = endpoint_label(endpoint)
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.heartbeat = heartbeat

        # Owned by ConnectionPool
        self.state = ConnectionState.CONNECTING
        self.role = ConnectionRole.STANDBY

        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._next_id = 0
        self._pending: Dict[int, asyncio.Future] = {}
        self._subscriptions: Dict[str, SubscriptionHandler] = {}
        self._running = False
        self._stopping: Optional[asyncio.Event] = None

    def __repr__(self) -> str:
        return f"Connection({self.label}, {self.state.value}, {self.role.value})"

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def _ensure_session(self):
        if self._session is None:
            self._session = aiohttp.ClientSession()

    async def run(self, listener: TransportListener):
        """
        Connect, read until the socket drops, back off, repeat.

        Runs until close() is called or the task is cancelled.

        Args:
            listener: Receives every transport signal for this connection
        """
        self._running = True
        self._stopping = asyncio.Event()
        delay = self.reconnect_delay
        await self._ensure_session()

        try:
            while self._running:
                listener(self, TransportEvent.CONNECTING)
                try:
                    async with self._session.ws_connect(self.endpoint, heartbeat=self.heartbeat) as ws:
                        self._ws = ws
                        delay = self.reconnect_delay
                        listener(self, TransportEvent.OPENED)
                        await self._read_loop(ws)
                    event = TransportEvent.CLOSED
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError, TransportError) as e:
                    logger.error(f"WebSocket error ({self.label}): {e}")
                    event = TransportEvent.ERRORED
                finally:
                    self._drop_socket()

                if not self._running:
                    break
                listener(self, event)

                logger.info(f"Reconnecting to {self.label} in {delay:.0f}s")
                await self._backoff(delay)
                delay = min(delay * 2, self.max_reconnect_delay)
        finally:
            if self._session:
                await self._session.close()
                self._session = None

    async def close(self):
        """Stop reconnecting and close the socket."""
        self._running = False
        if self._stopping is not None:
            self._stopping.set()
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()

    async def _backoff(self, delay: float):
        """Sleep before reconnecting; close() cuts the wait short."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return

    def _drop_socket(self):
        self._ws = None
        error = TransportError("connection closed", endpoint=self.label)
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
        if self._subscriptions:
            logger.debug(f"Discarding {len(self._subscriptions)} subscriptions on {self.label}")
        self._subscriptions.clear()

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse):
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self._dispatch(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise TransportError(
                    "websocket error frame",
                    endpoint=self.label,
                    original_error=ws.exception(),
                )

    def _dispatch(self, raw: str):
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning(f"Non-JSON frame from {self.label} dropped")
            return
        if not isinstance(message, dict):
            return

        if message.get("method") == "eth_subscription":
            params = message.get("params") or {}
            handler = self._subscriptions.get(params.get("subscription"))
            if handler is None:
                return
            try:
                handler(params.get("result"))
            except Exception:
                logger.exception(f"Subscription handler failed on {self.label}")
            return

        future = self._pending.get(message.get("id"))
        if future is None or future.done():
            return
        error = message.get("error")
        if error:
            if isinstance(error, dict):
                future.set_exception(RpcError(
                    str(error.get("message", "rpc error")),
                    code=error.get("code"),
                    endpoint=self.label,
                ))
            else:
                future.set_exception(RpcError(str(error), endpoint=self.label))
        else:
            future.set_result(message.get("result"))

    # -------------------------------------------------------------------------
    # Public Methods
    # -------------------------------------------------------------------------

    async def request(self, method: str, params: List[Any]) -> Any:
        """
        Send one JSON-RPC request and wait for its response.

        Callers wrap this in their own timeout.

        Raises:
            TransportError: Socket not open, or dropped before the response
            RpcError: Node returned an error object
        """
        ws = self._ws
        if ws is None or ws.closed:
            raise TransportError("connection not open", endpoint=self.label)

        self._next_id += 1
        request_id = self._next_id
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
        try:
            await ws.send_str(json.dumps(payload))
            return await future
        except (aiohttp.ClientError, ConnectionResetError) as e:
            raise TransportError(f"{method} send failed", endpoint=self.label, original_error=e)
        finally:
            self._pending.pop(request_id, None)

    async def subscribe(self, params: List[Any], handler: SubscriptionHandler) -> str:
        """
        eth_subscribe on this socket.

        Args:
            params: eth_subscribe params, e.g. ["logs", {...}]
            handler: Called with each notification's `result`

        Returns:
            Subscription id
        """
        subscription_id = await self.request("eth_subscribe", params)
        self._subscriptions[subscription_id] = handler
        return subscription_id

    async def unsubscribe(self, subscription_id: str):
        self._subscriptions.pop(subscription_id, None)
        if self._ws is not None and not self._ws.closed:
            await self.request("eth_unsubscribe", [subscription_id])
