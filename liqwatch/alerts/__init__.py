"""
Alerts Package
==============

- dispatcher.py: AlertDispatcher (FIFO, spacing, local-log fallback)
- telegram.py: TelegramChannel, send_test_alert
"""

from .dispatcher import AlertDispatcher, NotificationChannel
from .telegram import ChannelConfig, TelegramChannel, send_test_alert

__all__ = [
    "AlertDispatcher",
    "NotificationChannel",
    "ChannelConfig",
    "TelegramChannel",
    "send_test_alert",
]
