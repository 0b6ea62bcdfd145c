"""
Account Health Scheduler
========================

Admission gate between "recheck this account" notifications and the health
metric source, plus the alert decision on each result.

Admission (all O(1), evaluated synchronously):
1. canonicalize the address
2. reject if a query for it is already in flight
3. reject if it was checked less than `debounce_window` seconds ago
4. reject if `concurrency_cap` queries are already in flight
   (dropped, or parked in a bounded backlog with overflow_policy="queue")

Decision on a successful result:
- unchanged metric: nothing to do (already seen, already alerted)
- changed metric: record it, and alert if it is at or below the threshold
"""

import asyncio
import logging
import time
from collections import OrderedDict
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Set

from ..errors import QueryError
from ..models import AccountRecord, canonical_address

logger = logging.getLogger(__name__)


class HealthSource(Protocol):
    async def query(self, address: str) -> Decimal:
        ...


class AlertSink(Protocol):
    def enqueue(self, message: str):
        ...


LiquidationExecutor = Callable[[str, Decimal], Awaitable[None]]


class AccountRegistry:
    """
    address -> AccountRecord, owned by one scheduler.

    Grows with every address observed. With max_records > 0 the least
    recently checked idle record is evicted to make room.
    """

    def __init__(self, max_records: int = 0):
        self.max_records = max_records
        self._records: Dict[str, AccountRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, address: str) -> bool:
        return canonical_address(address) in self._records

    def get(self, address: str) -> Optional[AccountRecord]:
        return self._records.get(canonical_address(address))

    def get_or_create(self, address: str) -> AccountRecord:
        address = canonical_address(address)
        record = self._records.get(address)
        if record is None:
            if self.max_records and len(self._records) >= self.max_records:
                self._evict()
            record = AccountRecord(address=address)
            self._records[address] = record
        return record

    def addresses(self) -> List[str]:
        return list(self._records)

    def _evict(self):
        idle = [r for r in self._records.values() if not r.in_flight]
        if not idle:
            return
        victim = min(idle, key=lambda r: r.last_checked_at or 0.0)
        del self._records[victim.address]
        logger.debug(f"Evicted account record {victim.address}")


class LiquidationHandler:
    """
    What to do once an account is at or below the threshold.

    Always alerts. Outside test mode, also hands the account to an executor
    when one is configured.
    """

    def __init__(
        self,
        alerts: AlertSink,
        threshold: Decimal,
        test_mode: bool = False,
        executor: Optional[LiquidationExecutor] = None,
    ):
        self.alerts = alerts
        self.threshold = threshold
        self.test_mode = test_mode
        self.executor = executor

    def format_alert(self, address: str, metric: Decimal) -> str:
        title = "💥 LIQUIDATION ALERT (TEST MODE)" if self.test_mode else "💥 LIQUIDATION ALERT"
        lines = [
            f"<b>{title}</b>",
            f"User: <code>{address}</code>",
            f"HealthFactor: {metric:.6f}",
            f"Threshold: {self.threshold}",
        ]
        return "\n".join(lines)

    async def handle(self, address: str, metric: Decimal):
        self.alerts.enqueue(self.format_alert(address, metric))

        if self.test_mode:
            return
        if self.executor is None:
            logger.info(f"No liquidation executor configured for {address} (hf={metric}), alert only")
            return
        try:
            await self.executor(address, metric)
        except Exception as e:
            logger.error(f"Liquidation executor failed for {address}: {e}")


class AccountHealthScheduler:
    """
    Deduplicating, debounced, concurrency-capped health checks.

    The per-account in_flight flag and the global in-flight counter are the
    only shared mutable state. Both are set before the query is awaited and
    cleared after it, so no locks are needed on a single event loop.
    """

    def __init__(
        self,
        source: HealthSource,
        handler: LiquidationHandler,
        threshold: Decimal,
        debounce_window: float = 30.0,
        concurrency_cap: int = 4,
        overflow_policy: str = "drop",
        overflow_queue_size: int = 256,
        registry: Optional[AccountRegistry] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the scheduler.

        Args:
            source: Health metric source
            handler: Invoked when an account's new metric is at/below threshold
            threshold: Alert threshold
            debounce_window: Minimum seconds between two checks of one account
            concurrency_cap: Maximum simultaneous queries
            overflow_policy: "drop" or "queue" for cap-rejected notifications
            overflow_queue_size: Backlog size when overflow_policy="queue"
            registry: Account registry (default: a fresh unbounded one)
            clock: Epoch-seconds time source
        """
        self.source = source
        self.handler = handler
        self.threshold = threshold
        self.debounce_window = debounce_window
        self.concurrency_cap = concurrency_cap
        self.overflow_policy = overflow_policy
        self.overflow_queue_size = overflow_queue_size
        self.registry = registry if registry is not None else AccountRegistry()
        self._clock = clock

        self.in_flight = 0
        # Insertion-ordered set of cap-rejected addresses
        self._backlog: "OrderedDict[str, None]" = OrderedDict()
        self._tasks: Set[asyncio.Task] = set()

        self.stats: Dict[str, int] = {
            "admitted": 0,
            "rejected_in_flight": 0,
            "rejected_debounce": 0,
            "rejected_cap": 0,
            "query_errors": 0,
            "alerts": 0,
        }

    @property
    def backlog(self) -> int:
        return len(self._backlog)

    # -------------------------------------------------------------------------
    # Public Methods
    # -------------------------------------------------------------------------

    async def notify(self, address: str) -> bool:
        """
        Admit and, if admitted, evaluate an account to completion.

        Returns:
            True if a query ran
        """
        record = self._admit(address)
        if record is None:
            return False
        await self._evaluate(record)
        return True

    def submit(self, address: str) -> bool:
        """
        Admit synchronously and evaluate in the background.

        Used by event ingestion so one slow query never holds up the feed.

        Returns:
            True if a query was started
        """
        record = self._admit(address)
        if record is None:
            return False
        self._spawn(record)
        return True

    async def wait_idle(self):
        """Wait for every background evaluation (including backlog drains)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Private Helpers
    # -------------------------------------------------------------------------

    def _admit(self, address: str) -> Optional[AccountRecord]:
        record = self.registry.get_or_create(address)
        now = self._clock()

        if record.in_flight:
            self.stats["rejected_in_flight"] += 1
            return None

        if record.last_checked_at is not None and now - record.last_checked_at < self.debounce_window:
            self.stats["rejected_debounce"] += 1
            return None

        if self.in_flight >= self.concurrency_cap:
            self.stats["rejected_cap"] += 1
            self._overflow(record.address)
            return None

        record.in_flight = True
        record.last_checked_at = now
        self.in_flight += 1
        self.stats["admitted"] += 1
        return record

    def _overflow(self, address: str):
        if self.overflow_policy != "queue":
            logger.debug(f"Concurrency cap reached, dropping {address}")
            return
        if address in self._backlog:
            return
        if len(self._backlog) >= self.overflow_queue_size:
            logger.debug(f"Overflow backlog full, dropping {address}")
            return
        self._backlog[address] = None

    def _spawn(self, record: AccountRecord):
        task = asyncio.create_task(self._evaluate(record))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _evaluate(self, record: AccountRecord):
        try:
            metric = await self.source.query(record.address)
        except QueryError as e:
            self.stats["query_errors"] += 1
            logger.error(f"Error checking health of {record.address}: {e}")
        except Exception as e:
            self.stats["query_errors"] += 1
            logger.exception(f"Unexpected error checking health of {record.address}: {e}")
        else:
            await self._decide(record, metric)
        finally:
            record.in_flight = False
            self.in_flight -= 1
            self._drain_backlog()

    async def _decide(self, record: AccountRecord, metric: Decimal):
        if metric == record.last_health_metric:
            return

        record.last_health_metric = metric
        if metric <= self.threshold:
            self.stats["alerts"] += 1
            logger.warning(f"{record.address} health factor {metric} <= {self.threshold}")
            await self.handler.handle(record.address, metric)

    def _drain_backlog(self):
        while self._backlog and self.in_flight < self.concurrency_cap:
            address, _ = self._backlog.popitem(last=False)
            record = self._admit(address)
            if record is not None:
                self._spawn(record)
