"""
Alert Dispatcher
================

The only writer to the notification channel.

- FIFO queue of PendingAlert, one delivery in flight at a time
- At least `min_interval` seconds between consecutive delivery attempts,
  successful or not, including across an empty queue
- Failed deliveries are logged and dropped, never retried
- With no channel configured every message is logged locally instead
"""

import asyncio
import logging
import time
from collections import deque
from datetime import datetime, timezone
from typing import Awaitable, Callable, Deque, Optional, Protocol

from ..errors import DeliveryError
from ..models import PendingAlert

logger = logging.getLogger(__name__)


class NotificationChannel(Protocol):
    async def send(self, text: str) -> Optional[int]:
        ...


class AlertDispatcher:
    """Rate-limited single-sender queue in front of a NotificationChannel."""

    def __init__(
        self,
        channel: Optional[NotificationChannel],
        min_interval: float = 1.0,
        delivery_timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            channel: Delivery target, or None to log messages locally
            min_interval: Minimum seconds between delivery attempts
            delivery_timeout: Seconds before a delivery attempt is abandoned
            clock: Monotonic time source
            sleep: Awaitable sleep (injectable for tests)
        """
        self.channel = channel
        self.min_interval = min_interval
        self.delivery_timeout = delivery_timeout
        self._clock = clock
        self._sleep = sleep

        self._queue: Deque[PendingAlert] = deque()
        self._drain_task: Optional[asyncio.Task] = None
        self._last_attempt: Optional[float] = None

        self.delivered = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        """Messages waiting (not counting one being sent)."""
        return len(self._queue)

    @property
    def sending(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def enqueue(self, message: str) -> Optional[PendingAlert]:
        """
        Queue a message for delivery.

        Args:
            message: Alert text

        Returns:
            The queued PendingAlert, or None when logged locally
        """
        now = time.time()
        stamp = datetime.fromtimestamp(now, tz=timezone.utc).isoformat(timespec="seconds")
        payload = f"[{stamp}] {message}"

        if self.channel is None:
            logger.warning(f"ALERT: {payload}")
            return None

        alert = PendingAlert(message=payload, enqueued_at=now)
        self._queue.append(alert)

        if not self.sending:
            self._drain_task = asyncio.create_task(self._drain())
        return alert

    async def flush(self):
        """Wait until everything queued so far has been attempted."""
        while self.sending:
            await asyncio.shield(self._drain_task)

    async def _drain(self):
        while self._queue:
            await self._wait_for_slot()
            alert = self._queue.popleft()
            try:
                await asyncio.wait_for(self.channel.send(alert.message), timeout=self.delivery_timeout)
                self.delivered += 1
            except asyncio.TimeoutError:
                self.failed += 1
                logger.error(f"Alert delivery timed out after {self.delivery_timeout}s, dropped")
            except DeliveryError as e:
                self.failed += 1
                logger.error(f"Alert delivery failed, dropped: {e}")
            except Exception as e:
                self.failed += 1
                logger.error(f"Unexpected error delivering alert, dropped: {e}")
            finally:
                self._last_attempt = self._clock()

    async def _wait_for_slot(self):
        if self._last_attempt is None:
            return
        remaining = self.min_interval - (self._clock() - self._last_attempt)
        if remaining > 0:
            await self._sleep(remaining)
