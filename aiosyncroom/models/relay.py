"""
Relay messages for the aiosyncroom store protocol.

This module contains the messages exchanged between a RemoteStore and the
RelayServer. Every client request carries a request_id that the server echoes
in exactly one store/result message. Subscriptions are identified by a
client-chosen subscription_id and receive store/snapshot messages for every
commit touching the subscribed key or collection.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from .types import ClientMessage, ServerMessage


# Client -> Server: store/get
@dataclass
class StoreGetMessage(ClientMessage):
    """Read the current value of a key."""

    request_id: int
    key: str
    type: Literal["store/get"] = "store/get"


# Client -> Server: store/write
@dataclass
class StoreWriteMessage(ClientMessage):
    """Replace the value of a key."""

    request_id: int
    key: str
    value: dict[str, Any]
    type: Literal["store/write"] = "store/write"


# Client -> Server: store/update
@dataclass
class StoreUpdateMessage(ClientMessage):
    """Merge fields into the value of a key."""

    request_id: int
    key: str
    fields: dict[str, Any]
    type: Literal["store/update"] = "store/update"


# Client -> Server: store/remove
@dataclass
class StoreRemoveMessage(ClientMessage):
    """Remove a key. The result value is True only if this request removed it."""

    request_id: int
    key: str
    type: Literal["store/remove"] = "store/remove"


# Client -> Server: store/push
@dataclass
class StorePushMessage(ClientMessage):
    """Append a value to a collection. The result value is the generated id."""

    request_id: int
    collection: str
    value: dict[str, Any]
    type: Literal["store/push"] = "store/push"


# Client -> Server: store/children
@dataclass
class StoreChildrenMessage(ClientMessage):
    """List the children of a collection in insertion order."""

    request_id: int
    collection: str
    type: Literal["store/children"] = "store/children"


# Client -> Server: store/clear
@dataclass
class StoreClearMessage(ClientMessage):
    """Remove every child of a collection."""

    request_id: int
    collection: str
    type: Literal["store/clear"] = "store/clear"


# Client -> Server: store/subscribe
@dataclass
class StoreSubscribeMessage(ClientMessage):
    """Subscribe to a key, or to the children of a collection."""

    request_id: int
    subscription_id: int
    key: str
    children: bool = False
    """True to watch the children of ``key`` instead of its own value."""
    type: Literal["store/subscribe"] = "store/subscribe"


# Client -> Server: store/unsubscribe
@dataclass
class StoreUnsubscribeMessage(ClientMessage):
    """Close a subscription."""

    request_id: int
    subscription_id: int
    type: Literal["store/unsubscribe"] = "store/unsubscribe"


# Server -> Client: store/result
@dataclass
class StoreResultMessage(ServerMessage):
    """Outcome of exactly one client request."""

    request_id: int
    ok: bool
    value: Any = None
    error: str | None = None
    type: Literal["store/result"] = "store/result"


# Server -> Client: store/snapshot
@dataclass
class StoreSnapshotMessage(ServerMessage):
    """Value of a subscribed key, or list of [id, value] children pairs."""

    subscription_id: int
    key: str
    revision: int
    value: Any = None
    type: Literal["store/snapshot"] = "store/snapshot"
