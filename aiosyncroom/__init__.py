"""aiosyncroom: shared watch-together playback over an eventually consistent store."""

from __future__ import annotations

# Re-export client library for easy import
from aiosyncroom.client import (
    PlayerAdapter,
    PlayerNotReadyError,
    RemoteStore,
    SimulatedPlayer,
    SyncRoomClient,
    SyncTimings,
)
from aiosyncroom.models import PlayerStatus, QueueEntry, RoomState
from aiosyncroom.store import MemoryStore, SharedStore, StoreError

__all__ = [
    "MemoryStore",
    "PlayerAdapter",
    "PlayerNotReadyError",
    "PlayerStatus",
    "QueueEntry",
    "RemoteStore",
    "RoomState",
    "SharedStore",
    "SimulatedPlayer",
    "StoreError",
    "SyncRoomClient",
    "SyncTimings",
]
