"""
Watcher Exceptions
==================

Error taxonomy for the liquidation watcher.

Only ConfigError is fatal (raised at startup). Everything else is caught and
logged at the call site that talks to the outside world:

- TransportError: connection closed/errored, handled by failover
- RpcError: the node rejected a request, handled like TransportError
- DecodeError: malformed event or transaction payload, notification dropped
- QueryError: health metric fetch failed, account slot released, no alert
- DeliveryError: notification send failed, message dropped, queue continues
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class WatcherError(Exception):
    """Base exception for all watcher errors."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.endpoint = endpoint
        self.original_error = original_error
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "endpoint": self.endpoint,
            "original_error": str(self.original_error) if self.original_error else None,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        parts = [self.message]
        if self.endpoint:
            parts.append(f"[endpoint={self.endpoint}]")
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


class ConfigError(WatcherError):
    """Invalid or missing configuration at startup."""


class TransportError(WatcherError):
    """Upstream connection is closed, errored, or unavailable."""


class DecodeError(WatcherError):
    """Event log or pending transaction payload could not be decoded."""


class QueryError(WatcherError):
    """Health metric query failed or timed out."""


class DeliveryError(WatcherError):
    """Alert could not be delivered to the notification channel."""


class RpcError(WatcherError):
    """The node answered a JSON-RPC request with an error object."""

    def __init__(self, message: str, code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.code = code
