"""
Room records shared through the store.

A room is one RoomState record describing what everybody should be watching,
plus an insertion-ordered collection of QueueEntry records. Field names on the
wire are camelCase and normative, the Python attributes are snake_case.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from mashumaro import field_options
from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

ROOMS_PREFIX = "rooms"


def room_key(room_id: str) -> str:
    """Return the store key holding the RoomState record of a room."""
    if not room_id or "/" in room_id:
        raise ValueError(f"Invalid room id: {room_id!r}")
    return f"{ROOMS_PREFIX}/{room_id}"


def queue_key(room_id: str) -> str:
    """Return the store collection holding the queue of a room."""
    return f"{room_key(room_id)}/queue"


def queue_entry_key(room_id: str, entry_id: str) -> str:
    """Return the store key of a single queue entry."""
    return f"{queue_key(room_id)}/{entry_id}"


@dataclass
class RoomState(DataClassORJSONMixin):
    """The shared "now playing" record of a room."""

    item_id: str = field(metadata=field_options(alias="itemId"))
    """Identifier of the selected media item, opaque to the protocol."""
    position: float
    """Playhead offset in seconds, valid as of updated_at."""
    is_playing: bool = field(metadata=field_options(alias="isPlaying"))
    updated_at: int = field(metadata=field_options(alias="updatedAt"))
    """Publisher wall clock in epoch milliseconds when this record was written."""
    updated_by: str = field(default="", metadata=field_options(alias="updatedBy"))
    """Client that wrote the record. Used for echo detection, not access control."""
    host_id: str = field(default="", metadata=field_options(alias="hostId"))
    created_at: int = field(default=0, metadata=field_options(alias="createdAt"))
    update_seq: int = field(default=0, metadata=field_options(alias="updateSeq"))
    """Local sequence number of the writer; with updated_by forms the causal tag."""

    class Config(BaseConfig):
        """Config for the wire representation."""

        serialize_by_alias = True

    @property
    def tag(self) -> tuple[str, int]:
        """Causal tag of the write that produced this record."""
        return (self.updated_by, self.update_seq)


@dataclass
class RoomStatePatch(DataClassORJSONMixin):
    """Fields a client may change when publishing intent."""

    item_id: str | None = field(default=None, metadata=field_options(alias="itemId"))
    position: float | None = None
    is_playing: bool | None = field(default=None, metadata=field_options(alias="isPlaying"))

    class Config(BaseConfig):
        """Config for the wire representation."""

        serialize_by_alias = True
        omit_none = True

    def __post_init__(self) -> None:
        """Validate field values."""
        if self.position is not None and self.position < 0:
            raise ValueError(f"Position must not be negative, got {self.position}")

    @property
    def empty(self) -> bool:
        """Return True if the patch changes nothing."""
        return self.item_id is None and self.position is None and self.is_playing is None


@dataclass
class QueueEntry:
    """An item waiting in the room queue."""

    id: str
    """Store-generated key, the unit of removal."""
    item_id: str
    added_at: int
    added_by: str

    @classmethod
    def from_child(cls, entry_id: str, value: dict[str, Any]) -> QueueEntry:
        """Build an entry from a store child record."""
        return cls(
            id=entry_id,
            item_id=str(value["itemId"]),
            added_at=int(value.get("addedAt", 0)),
            added_by=str(value.get("addedBy", "")),
        )

    def to_wire(self) -> dict[str, Any]:
        """Return the record layout stored under the entry id."""
        return {"itemId": self.item_id, "addedAt": self.added_at, "addedBy": self.added_by}
