"""
Monitor Package
===============

Long-running watcher service.
"""

from .service import WatcherService

__all__ = ["WatcherService"]
