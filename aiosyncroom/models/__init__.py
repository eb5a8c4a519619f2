"""Models for the aiosyncroom room records and relay protocol."""

from __future__ import annotations

__all__ = [
    "ClientMessage",
    "PlayerStatus",
    "QueueEntry",
    "QueueState",
    "RoomState",
    "RoomStatePatch",
    "ServerMessage",
    "queue_entry_key",
    "queue_key",
    "relay",
    "room",
    "room_key",
    "types",
]

from . import relay, room, types
from .room import QueueEntry, RoomState, RoomStatePatch, queue_entry_key, queue_key, room_key
from .types import ClientMessage, PlayerStatus, QueueState, ServerMessage
