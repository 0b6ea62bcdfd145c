"""
Shared Data Models
==================

This package contains dataclasses used across the project.
"""

from .account import AccountRecord, PendingAlert, UNKNOWN_HEALTH, canonical_address
from .notifications import (
    NotificationKind,
    Notification,
    RoutineActivity,
    PendingLiquidationAttempt,
    ConfirmedLiquidation,
    format_units,
)

__all__ = [
    "AccountRecord",
    "PendingAlert",
    "UNKNOWN_HEALTH",
    "canonical_address",
    "NotificationKind",
    "Notification",
    "RoutineActivity",
    "PendingLiquidationAttempt",
    "ConfirmedLiquidation",
    "format_units",
]
