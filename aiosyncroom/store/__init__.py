"""Shared state stores used to exchange room state between clients."""

from .base import (
    SharedStore,
    Snapshot,
    SnapshotCallback,
    StoreError,
    SubscriptionPump,
    Unsubscribe,
)
from .log import WriteKind, WriteLog, WriteRecord, reduce_value
from .memory import MemoryStore

__all__ = [
    "MemoryStore",
    "SharedStore",
    "Snapshot",
    "SnapshotCallback",
    "StoreError",
    "SubscriptionPump",
    "Unsubscribe",
    "WriteKind",
    "WriteLog",
    "WriteRecord",
    "reduce_value",
]
