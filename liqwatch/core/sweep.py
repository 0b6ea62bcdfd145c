"""
Full-Sweep Scheduler

Fixed-interval fallback that pushes every known account through the same
admission gate as event-driven notifications, catching anything the feeds
missed (dropped notifications, failover gaps).

A tick that comes due while the previous one is still running is skipped.
"""

import asyncio
import logging
import time
from typing import Callable, Iterable, List, Optional

from ..models import canonical_address
from .scheduler import AccountHealthScheduler

logger = logging.getLogger(__name__)

AccountsProvider = Callable[[], Iterable[str]]


class FullSweepScheduler:
    """Periodic pass over all known accounts."""

    def __init__(
        self,
        scheduler: AccountHealthScheduler,
        accounts: AccountsProvider,
        interval: float = 900.0,
    ):
        """
        Args:
            scheduler: Gate every address is notified through
            accounts: Returns the current known-accounts list
            interval: Seconds between tick starts
        """
        self.scheduler = scheduler
        self.accounts = accounts
        self.interval = interval

        self._loop_task: Optional[asyncio.Task] = None
        self._tick_task: Optional[asyncio.Task] = None
        self.ticks_run = 0
        self.ticks_skipped = 0

    @property
    def tick_running(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    def start(self):
        if self._loop_task is None:
            self._loop_task = asyncio.create_task(self._run())

    async def stop(self):
        tasks = [t for t in (self._loop_task, self._tick_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        self._tick_task = None

    async def tick(self) -> int:
        """
        Notify every known account once, sequentially.

        Returns:
            Number of notify calls made
        """
        try:
            addresses = self._unique(self.accounts())
        except Exception as e:
            logger.error(f"Could not load known accounts for sweep: {e}")
            return 0

        logger.info(f"Running full sweep over {len(addresses)} accounts")
        started = time.monotonic()
        checked = 0
        for address in addresses:
            if await self.scheduler.notify(address):
                checked += 1

        self.ticks_run += 1
        logger.info(
            f"Full sweep done: {checked}/{len(addresses)} queried "
            f"in {time.monotonic() - started:.1f}s"
        )
        return len(addresses)

    def _unique(self, addresses: Iterable[str]) -> List[str]:
        seen = {}
        for address in addresses:
            seen.setdefault(canonical_address(address), None)
        return list(seen)

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            if self.tick_running:
                self.ticks_skipped += 1
                logger.warning("Previous full sweep still running, skipping this tick")
                continue
            self._tick_task = asyncio.create_task(self._guarded_tick())

    async def _guarded_tick(self):
        try:
            await self.tick()
        except Exception:
            logger.exception("Full sweep error")
