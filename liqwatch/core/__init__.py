"""
Core Package
============

Notification handling between the feeds and the alert queue.

Components:
- scheduler.py: AccountHealthScheduler, AccountRegistry, LiquidationHandler
- sweep.py: FullSweepScheduler
- ingestion.py: EventIngestion
"""

from .scheduler import AccountHealthScheduler, AccountRegistry, LiquidationHandler
from .sweep import FullSweepScheduler
from .ingestion import EventIngestion

__all__ = [
    "AccountHealthScheduler",
    "AccountRegistry",
    "LiquidationHandler",
    "FullSweepScheduler",
    "EventIngestion",
]
