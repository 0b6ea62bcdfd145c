"""
Event Ingestion
===============

Turns the two upstream feeds into normalized notifications:

- Confirmed pool logs (eth_subscribe "logs")
  - Borrow / Repay / Deposit / Withdraw -> RoutineActivity -> scheduler
  - LiquidationCall -> ConfirmedLiquidation -> alert dispatcher (no query)
- Pending transactions to the pool (eth_subscribe "alchemy_pendingTransactions")
  - liquidationCall(...) calldata -> PendingLiquidationAttempt -> scheduler

Subscriptions are connection-scoped, so they are re-established every time
the pool promotes a new active connection. A stream that fails to
subscribe is retried with backoff for as long as its connection stays
active. Malformed payloads are logged and dropped.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

from ..api.abi import LIQUIDATION_EVENT, decode_liquidation_call, decode_log, log_topics
from ..api.connection import Connection
from ..api.pool import ConnectionPool
from ..errors import DecodeError, RpcError, TransportError
from ..models import (
    ConfirmedLiquidation,
    Notification,
    NotificationKind,
    PendingLiquidationAttempt,
    RoutineActivity,
)

if TYPE_CHECKING:
    from ..alerts.dispatcher import AlertDispatcher
    from .scheduler import AccountHealthScheduler

logger = logging.getLogger(__name__)

SUBSCRIBE_TIMEOUT_SEC = 10.0


class EventIngestion:
    """Feeds -> notifications -> scheduler / dispatcher."""

    def __init__(
        self,
        pool: ConnectionPool,
        scheduler: "AccountHealthScheduler",
        dispatcher: "AlertDispatcher",
        pool_address: str,
        pending_tx_stream: bool = True,
        explorer_tx_url: str = "https://etherscan.io/tx/",
        subscribe_retry_delay: float = 1.0,
        max_subscribe_retry_delay: float = 30.0,
    ):
        """
        Args:
            pool: Connection pool whose active connection carries the subscriptions
            scheduler: Receives account addresses to recheck
            dispatcher: Receives confirmed liquidation alerts
            pool_address: Lending pool contract to filter on
            pending_tx_stream: Whether to subscribe to the pending-tx firehose
            explorer_tx_url: Link prefix for transaction hashes in alerts
            subscribe_retry_delay: First wait before retrying a failed subscription
            max_subscribe_retry_delay: Backoff ceiling for subscription retries
        """
        self.pool = pool
        self.scheduler = scheduler
        self.dispatcher = dispatcher
        self.pool_address = pool_address.lower()
        self.pending_tx_stream = pending_tx_stream
        self.explorer_tx_url = explorer_tx_url
        self.subscribe_retry_delay = subscribe_retry_delay
        self.max_subscribe_retry_delay = max_subscribe_retry_delay

        self._subscribe_task: Optional[asyncio.Task] = None
        self.subscribed_to: Optional[Connection] = None
        # stream name -> subscription id on the active connection
        self.streams: Dict[str, str] = {}

        self.stats: Dict[str, int] = {
            "logs": 0,
            "pending_txs": 0,
            "routine": 0,
            "pending_liquidations": 0,
            "confirmed_liquidations": 0,
            "decode_errors": 0,
        }

    def attach(self):
        """Follow the pool's active connection from now on."""
        self.pool.add_listener(self._on_active_changed)
        active = self.pool.get_active()
        if active is not None:
            self._on_active_changed(active)

    async def stop(self):
        if self._subscribe_task is not None:
            self._subscribe_task.cancel()
            await asyncio.gather(self._subscribe_task, return_exceptions=True)
            self._subscribe_task = None

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def _on_active_changed(self, connection: Optional[Connection]):
        if self._subscribe_task is not None and not self._subscribe_task.done():
            self._subscribe_task.cancel()
        self.subscribed_to = None
        self.streams = {}

        if connection is None:
            logger.warning("No active connection, event ingestion paused")
            return
        self._subscribe_task = asyncio.create_task(self._maintain(connection))

    def _wanted_streams(self) -> List[Tuple[str, list, Callable[[Any], Any], str]]:
        streams = [(
            "logs",
            ["logs", {"address": self.pool_address, "topics": [log_topics()]}],
            self.handle_log,
            "pool events",
        )]
        if self.pending_tx_stream:
            streams.append((
                "pending_txs",
                ["alchemy_pendingTransactions", {"toAddress": [self.pool_address], "hashesOnly": False}],
                self.handle_pending_transaction,
                "pending transactions",
            ))
        return streams

    async def subscribe(self, connection: Connection) -> int:
        """
        Establish whichever log and pending-tx subscriptions are still missing.

        One pass, no retries. `subscribed_to` is set once every wanted
        stream is live on the connection.

        Returns:
            Number of streams live on the connection afterwards
        """
        wanted = self._wanted_streams()
        for name, params, handler, what in wanted:
            if name in self.streams:
                continue
            sub_id = await self._try_subscribe(connection, params, handler, what)
            if sub_id is not None:
                self.streams[name] = sub_id

        if all(name in self.streams for name, *_ in wanted):
            self.subscribed_to = connection
        return len(self.streams)

    async def _maintain(self, connection: Connection):
        """Subscribe on a freshly promoted connection, retrying failed streams with backoff."""
        delay = self.subscribe_retry_delay
        while True:
            await self.subscribe(connection)
            if self.subscribed_to is connection:
                return
            if connection is not self.pool.get_active():
                return

            missing = [what for name, _, _, what in self._wanted_streams() if name not in self.streams]
            logger.warning(f"Retrying {', '.join(missing)} subscription on {connection.label} in {delay:.1f}s")
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_subscribe_retry_delay)

            if connection is not self.pool.get_active():
                return

    async def _try_subscribe(self, connection: Connection, params, handler, what: str) -> Optional[str]:
        try:
            sub_id = await asyncio.wait_for(
                connection.subscribe(params, handler), timeout=SUBSCRIBE_TIMEOUT_SEC
            )
        except asyncio.TimeoutError:
            logger.error(f"Subscribing to {what} on {connection.label} timed out")
            return None
        except (TransportError, RpcError) as e:
            logger.error(f"Failed to subscribe to {what} on {connection.label}: {e}")
            return None
        logger.info(f"Subscribed to {what} on {connection.label}")
        return sub_id

    # -------------------------------------------------------------------------
    # Normalization
    # -------------------------------------------------------------------------

    def normalize_log(self, log: Dict[str, Any]) -> Optional[Notification]:
        """
        Build a notification from a pool event log.

        Returns:
            Notification, or None for a log removed by a reorg

        Raises:
            DecodeError: Payload does not match any known event
        """
        if isinstance(log, dict) and log.get("removed"):
            return None

        spec, args = decode_log(log)
        if spec is LIQUIDATION_EVENT:
            return ConfirmedLiquidation(
                user=args["user"],
                liquidator=args["liquidator"],
                collateral_asset=args["collateralAsset"],
                debt_asset=args["debtAsset"],
                debt_to_cover=args["debtToCover"],
                liquidated_collateral_amount=args["liquidatedCollateralAmount"],
                receive_a_token=bool(args["receiveAToken"]),
                tx_hash=log.get("transactionHash"),
            )
        return RoutineActivity(address=args[spec.user_field], event_name=spec.name)

    def normalize_pending_transaction(self, tx: Dict[str, Any]) -> Optional[PendingLiquidationAttempt]:
        """
        Build a notification from a pending transaction.

        Returns:
            PendingLiquidationAttempt, or None if the tx is not a liquidationCall

        Raises:
            DecodeError: Malformed transaction or liquidationCall arguments
        """
        if not isinstance(tx, dict):
            raise DecodeError(f"pending tx is not an object: {type(tx).__name__}")
        user = decode_liquidation_call(tx.get("input", tx.get("data")))
        if user is None:
            return None
        return PendingLiquidationAttempt(address=user, tx_hash=tx.get("hash"))

    def handle_log(self, log: Dict[str, Any]) -> Optional[Notification]:
        """Subscription handler for pool logs."""
        self.stats["logs"] += 1
        try:
            notification = self.normalize_log(log)
        except DecodeError as e:
            self.stats["decode_errors"] += 1
            logger.warning(f"Event decode failed, dropped: {e}")
            return None
        if notification is not None:
            self.route(notification)
        return notification

    def handle_pending_transaction(self, tx: Dict[str, Any]) -> Optional[Notification]:
        """Subscription handler for the pending-transaction firehose."""
        self.stats["pending_txs"] += 1
        try:
            notification = self.normalize_pending_transaction(tx)
        except DecodeError as e:
            self.stats["decode_errors"] += 1
            logger.warning(f"Pending tx decode failed, dropped: {e}")
            return None
        if notification is not None:
            logger.info(f"Pending liquidation attempt detected for {notification.address}")
            self.route(notification)
        return notification

    def route(self, notification: Notification):
        """Forward a notification to the scheduler or straight to alerts."""
        if notification.kind == NotificationKind.CONFIRMED_LIQUIDATION:
            self.stats["confirmed_liquidations"] += 1
            logger.info(f"Confirmed liquidation of {notification.user} (tx {notification.tx_hash})")
            self.dispatcher.enqueue(notification.render(self.explorer_tx_url))
            return

        if notification.kind == NotificationKind.PENDING_LIQUIDATION_ATTEMPT:
            self.stats["pending_liquidations"] += 1
        else:
            self.stats["routine"] += 1
        self.scheduler.submit(notification.address)
