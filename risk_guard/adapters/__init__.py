"""
Risk Guard - Broker Adapters.

Account snapshot sources: the Dhan REST adapter and an
in-memory mock for testing.
"""

from .base import (
    OrderSide,
    ClosePositionOrder,
    AccountSnapshotSource,
    SnapshotSourceFactory,
)
from .errors import (
    ErrorCategory,
    RetryEligibility,
    BrokerErrorInfo,
    map_dhan_error,
)
from .dhan import DhanSnapshotSource, DhanSourceFactory
from .mock import MockSnapshotSource, MockSourceFactory


__all__ = [
    "OrderSide",
    "ClosePositionOrder",
    "AccountSnapshotSource",
    "SnapshotSourceFactory",
    "ErrorCategory",
    "RetryEligibility",
    "BrokerErrorInfo",
    "map_dhan_error",
    "DhanSnapshotSource",
    "DhanSourceFactory",
    "MockSnapshotSource",
    "MockSourceFactory",
]
