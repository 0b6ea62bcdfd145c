"""
API Package
===========

Upstream access to the chain.

Components:
- connection.py: Connection (JSON-RPC over WebSocket), lifecycle enums
- pool.py: ConnectionPool failover manager
- abi.py: Pool event/calldata codec, getUserAccountData ABI
- provider.py: web3 provider bound to the active connection
- health.py: HealthMetricSource, parse_health_metric
"""

from .connection import (
    Connection,
    ConnectionRole,
    ConnectionState,
    TransportEvent,
    endpoint_label,
)
from .pool import ConnectionPool, TRANSITIONS
from .abi import (
    ACTIVITY_EVENTS,
    LIQUIDATION_EVENT,
    EventSpec,
    POOL_ABI,
    decode_liquidation_call,
    decode_log,
    log_topics,
)
from .provider import ActiveConnectionProvider
from .health import HealthMetricSource, parse_health_metric

__all__ = [
    # Connections
    "Connection",
    "ConnectionRole",
    "ConnectionState",
    "TransportEvent",
    "endpoint_label",
    "ConnectionPool",
    "TRANSITIONS",
    # Codec
    "ACTIVITY_EVENTS",
    "LIQUIDATION_EVENT",
    "EventSpec",
    "POOL_ABI",
    "decode_liquidation_call",
    "decode_log",
    "log_topics",
    # Health
    "ActiveConnectionProvider",
    "HealthMetricSource",
    "parse_health_metric",
]
