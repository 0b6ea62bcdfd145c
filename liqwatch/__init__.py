"""
Aave Liquidation Watcher
========================

Watches a lending pool for accounts drifting toward liquidation and alerts
on them.

Packages:
- api: upstream connections, failover pool, ABI codec, health metric source
- core: event ingestion, account health scheduler, full sweep
- alerts: alert dispatcher and Telegram channel
- monitor: service wiring and lifecycle
"""

__version__ = "0.1.0"
