"""Contract shared by every store implementation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A store operation failed or could not be delivered."""


@dataclass(slots=True)
class Snapshot:
    """Value of a key (or children of a collection) as of one commit."""

    key: str
    revision: int
    """Store-wide commit number, 0 when the key was never written."""
    value: Any
    """Record dict (None when absent) or list of (child id, record) pairs."""


SnapshotCallback = Callable[[Snapshot], Awaitable[None] | None]
Unsubscribe = Callable[[], None]


def parent_of(key: str) -> str:
    """Return the collection a key belongs to."""
    return key.rpartition("/")[0]


class SharedStore(Protocol):
    """Eventually consistent, push-notifying key-value store."""

    async def get(self, key: str) -> dict[str, Any] | None:
        """Return the current value of ``key``."""

    async def write(self, key: str, value: dict[str, Any]) -> int:
        """Replace the value of ``key`` and return the commit revision."""

    async def update(self, key: str, fields: dict[str, Any]) -> int:
        """Merge ``fields`` into the value of ``key`` and return the commit revision."""

    async def remove(self, key: str) -> bool:
        """Remove ``key``; return True only if this call removed it."""

    async def push(self, collection: str, value: dict[str, Any]) -> str:
        """Append ``value`` to ``collection`` and return its generated id."""

    async def children(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        """Return the children of ``collection`` in insertion order."""

    async def clear(self, collection: str) -> int:
        """Remove every child of ``collection`` and return how many were removed."""

    def subscribe(self, key: str, callback: SnapshotCallback) -> Unsubscribe:
        """Deliver the value of ``key`` now and after every commit touching it."""

    def subscribe_children(self, collection: str, callback: SnapshotCallback) -> Unsubscribe:
        """Deliver the children of ``collection`` now and after every commit touching them."""


class SubscriptionPump:
    """Delivers snapshots to one callback, in commit order."""

    def __init__(
        self,
        key: str,
        callback: SnapshotCallback,
        *,
        children: bool,
        latency: float = 0.0,
    ) -> None:
        self.key = key
        self.children = children
        self._callback = callback
        self._latency = latency
        self._queue: asyncio.Queue[Snapshot] = asyncio.Queue()
        self._task = asyncio.get_running_loop().create_task(self._pump())

    def matches(self, key: str) -> bool:
        if self.children:
            return parent_of(key) == self.key
        return key == self.key

    def deliver(self, snapshot: Snapshot) -> None:
        self._queue.put_nowait(snapshot)

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()

    async def wait_closed(self) -> None:
        with suppress(asyncio.CancelledError):
            await self._task

    async def _pump(self) -> None:
        while True:
            snapshot = await self._queue.get()
            if self._latency > 0:
                await asyncio.sleep(self._latency)
            try:
                result = self._callback(snapshot)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Error in store subscriber for %s", self.key)
