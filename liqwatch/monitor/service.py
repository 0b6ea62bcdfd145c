"""
Watcher Service
===============

Wires the components together and owns the process lifecycle.

    Connection pool ──> Event ingestion ──┐
                                          ├──> Health scheduler ──> Health source
    Full sweep (timer) ───────────────────┘            │
                                                       v
                                              Alert dispatcher ──> Telegram

Nothing in here (or below) is allowed to stop the process except a shutdown
signal.
"""

import asyncio
import logging
import signal
from datetime import datetime, timezone
from typing import List, Optional

from ..alerts.dispatcher import AlertDispatcher, NotificationChannel
from ..alerts.telegram import TelegramChannel
from ..api.connection import Connection
from ..api.health import HealthMetricSource
from ..api.pool import ConnectionFactory, ConnectionPool
from ..config import Config
from ..core.ingestion import EventIngestion
from ..core.scheduler import (
    AccountHealthScheduler,
    AccountRegistry,
    LiquidationExecutor,
    LiquidationHandler,
)
from ..core.sweep import FullSweepScheduler
from ..utils.accounts import load_known_accounts

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SEC = 10.0


class WatcherService:
    """
    Liquidation watcher: failover feeds, gated health checks, rate-limited alerts.
    """

    def __init__(
        self,
        config: Config,
        channel: Optional[NotificationChannel] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        executor: Optional[LiquidationExecutor] = None,
    ):
        """
        Initialize the service.

        Args:
            config: Watcher settings
            channel: Notification channel (default: Telegram from config, if configured)
            connection_factory: Builds upstream connections (default: WebSocket JSON-RPC)
            executor: Optional liquidation executor, unused in test mode
        """
        self.config = config

        self.pool = ConnectionPool(connection_factory or self._make_connection)
        self.pool.initialize(config.endpoints)

        if channel is None:
            channel = TelegramChannel.from_config(config)
        self.dispatcher = AlertDispatcher(
            channel,
            min_interval=config.min_alert_interval_sec,
            delivery_timeout=config.delivery_timeout_sec,
        )

        self.source = HealthMetricSource(
            self.pool,
            config.pool_address,
            timeout=config.query_timeout_sec,
        )
        self.handler = LiquidationHandler(
            self.dispatcher,
            threshold=config.health_threshold,
            test_mode=config.test_mode,
            executor=executor,
        )
        self.scheduler = AccountHealthScheduler(
            self.source,
            self.handler,
            threshold=config.health_threshold,
            debounce_window=config.debounce_window_sec,
            concurrency_cap=config.concurrency_cap,
            overflow_policy=config.overflow_policy,
            overflow_queue_size=config.overflow_queue_size,
            registry=AccountRegistry(max_records=config.max_tracked_accounts),
        )
        self.ingestion = EventIngestion(
            self.pool,
            self.scheduler,
            self.dispatcher,
            pool_address=config.pool_address,
            pending_tx_stream=config.pending_tx_stream,
            explorer_tx_url=config.explorer_tx_url,
            subscribe_retry_delay=config.reconnect_delay_sec,
            max_subscribe_retry_delay=config.max_reconnect_delay_sec,
        )

        self.known_accounts: List[str] = load_known_accounts(config.known_accounts_file)
        self.sweep = FullSweepScheduler(
            self.scheduler,
            self.sweep_accounts,
            interval=config.full_sweep_interval_sec,
        )

        self._stop_event: Optional[asyncio.Event] = None

    def _make_connection(self, endpoint: str) -> Connection:
        return Connection(
            endpoint,
            reconnect_delay=self.config.reconnect_delay_sec,
            max_reconnect_delay=self.config.max_reconnect_delay_sec,
        )

    def sweep_accounts(self) -> List[str]:
        """Externally supplied accounts plus every account seen on the feeds."""
        return self.known_accounts + self.scheduler.registry.addresses()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self):
        """Connect, subscribe, and start the sweep timer."""
        mode = "TEST MODE (alert only)" if self.config.test_mode else "LIVE"
        logger.info(
            f"Starting liquidation watcher [{mode}] pool={self.config.pool_address} "
            f"threshold={self.config.health_threshold} endpoints={len(self.pool.connections)}"
        )
        self.ingestion.attach()
        await self.pool.start()
        self.sweep.start()
        self.send_service_status("started", f"Mode: {mode}")

    async def shutdown(self):
        """Stop timers and feeds, let in-flight work and queued alerts finish."""
        logger.info("Stopping liquidation watcher...")
        self.send_service_status("stopped")

        await self.sweep.stop()
        await self.ingestion.stop()
        await self.pool.close()

        try:
            await asyncio.wait_for(self.scheduler.wait_idle(), timeout=SHUTDOWN_GRACE_SEC)
            await asyncio.wait_for(self.dispatcher.flush(), timeout=SHUTDOWN_GRACE_SEC)
        except asyncio.TimeoutError:
            logger.warning(
                f"Shutdown grace period elapsed with {self.dispatcher.pending} alerts unsent"
            )
        logger.info(
            f"Watcher stopped. scheduler={self.scheduler.stats} ingestion={self.ingestion.stats} "
            f"alerts delivered={self.dispatcher.delivered} failed={self.dispatcher.failed}"
        )

    def stop(self):
        """Request shutdown (signal-safe)."""
        logger.info("Shutdown signal received, stopping watcher...")
        if self._stop_event is not None:
            self._stop_event.set()

    async def run(self):
        """Run until SIGINT/SIGTERM."""
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no signal handlers
                pass

        await self.start()
        try:
            await self._stop_event.wait()
        finally:
            await self.shutdown()

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def send_service_status(self, status: str, details: str = ""):
        """
        Queue a service status notification.

        Args:
            status: "started" or "stopped"
            details: Additional details
        """
        status_text = {
            "started": "Liquidation watcher started",
            "stopped": "Liquidation watcher stopped",
        }.get(status, f"Status: {status}")

        time_str = datetime.now(timezone.utc).strftime("%H:%M:%S %Z")
        lines = [f"<b>{status_text} at {time_str}</b>"]
        if details:
            lines.append("")
            lines.append(details)
        self.dispatcher.enqueue("\n".join(lines))
