"""In-process SharedStore backed by an append-only write log."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

from .base import (
    Snapshot,
    SnapshotCallback,
    StoreError,
    SubscriptionPump,
    Unsubscribe,
    parent_of,
)
from .log import WriteKind, WriteLog, WriteRecord, apply_record

logger = logging.getLogger(__name__)


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class MemoryStore:
    """
    Reference SharedStore living in one process.

    Every mutation is committed to a WriteLog and the cached value of the key is
    recomputed from that record. Operations never await between reading and
    committing, so each one is atomic with respect to other coroutines, which
    is what makes ``remove`` usable as a claim.
    """

    def __init__(
        self,
        *,
        latency: float = 0.0,
        now_ms: Callable[[], int] | None = None,
    ) -> None:
        """
        Create an empty store.

        Args:
            latency: Seconds every subscription delivery is delayed by.
            now_ms: Wall clock used to stamp commits, defaults to time.time().
        """
        if latency < 0:
            raise ValueError("latency must not be negative")
        self._latency = latency
        self._now_ms = now_ms or _wall_clock_ms
        self._log = WriteLog()
        self._values: dict[str, dict[str, Any]] = {}
        self._subscriptions: list[SubscriptionPump] = []

    @property
    def revision(self) -> int:
        """Revision of the last commit."""
        return self._log.revision

    def history(self, key: str) -> list[WriteRecord]:
        """Return the audit trail of ``key`` in commit order."""
        return self._log.records_for(key)

    async def get(self, key: str) -> dict[str, Any] | None:
        """Return the current value of ``key``."""
        value = self._values.get(key)
        return dict(value) if value is not None else None

    async def write(self, key: str, value: dict[str, Any]) -> int:
        """Replace the value of ``key``."""
        _check_value(value)
        return self._commit(WriteKind.WRITE, key, value).revision

    async def update(self, key: str, fields: dict[str, Any]) -> int:
        """Merge ``fields`` into ``key``, creating it when absent."""
        _check_value(fields)
        return self._commit(WriteKind.UPDATE, key, fields).revision

    async def remove(self, key: str) -> bool:
        """Remove ``key``; only the first caller gets True."""
        if key not in self._values:
            return False
        self._commit(WriteKind.REMOVE, key, None)
        return True

    async def push(self, collection: str, value: dict[str, Any]) -> str:
        """Append ``value`` to ``collection``."""
        _check_value(value)
        child_id = f"{self._log.revision + 1:08d}-{uuid.uuid4().hex[:8]}"
        self._commit(WriteKind.WRITE, f"{collection}/{child_id}", value)
        return child_id

    async def children(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        """Return the children of ``collection`` in insertion order."""
        return self._children(collection)

    async def clear(self, collection: str) -> int:
        """Remove every child of ``collection``."""
        keys = [key for key in self._values if parent_of(key) == collection]
        for key in keys:
            self._commit(WriteKind.REMOVE, key, None)
        return len(keys)

    def subscribe(self, key: str, callback: SnapshotCallback) -> Unsubscribe:
        """Watch the value of ``key``."""
        subscription = SubscriptionPump(key, callback, children=False, latency=self._latency)
        subscription.deliver(self._value_snapshot(key))
        return self._register(subscription)

    def subscribe_children(self, collection: str, callback: SnapshotCallback) -> Unsubscribe:
        """Watch the children of ``collection``."""
        subscription = SubscriptionPump(collection, callback, children=True, latency=self._latency)
        subscription.deliver(self._children_snapshot(collection))
        return self._register(subscription)

    async def close(self) -> None:
        """Cancel every subscription."""
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.cancel()
        for subscription in subscriptions:
            await subscription.wait_closed()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _register(self, subscription: SubscriptionPump) -> Unsubscribe:
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            subscription.cancel()
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    def _commit(self, kind: WriteKind, key: str, value: dict[str, Any] | None) -> WriteRecord:
        if not key or key.endswith("/"):
            raise StoreError(f"Invalid key: {key!r}")
        record = self._log.append(kind, key, value, self._now_ms())
        new_value = apply_record(self._values.get(key), record)
        if new_value is None:
            self._values.pop(key, None)
        else:
            self._values[key] = new_value
        logger.debug("Committed %s %s at revision %d", kind.value, key, record.revision)
        self._notify(key)
        return record

    def _notify(self, key: str) -> None:
        for subscription in self._subscriptions:
            if not subscription.matches(key):
                continue
            if subscription.children:
                subscription.deliver(self._children_snapshot(subscription.key))
            else:
                subscription.deliver(self._value_snapshot(key))

    def _children(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        return [
            (key.rpartition("/")[2], dict(value))
            for key, value in self._values.items()
            if parent_of(key) == collection
        ]

    def _value_snapshot(self, key: str) -> Snapshot:
        value = self._values.get(key)
        return Snapshot(
            key=key,
            revision=self._log.last_revision_for(key),
            value=dict(value) if value is not None else None,
        )

    def _children_snapshot(self, collection: str) -> Snapshot:
        return Snapshot(key=collection, revision=self._log.revision, value=self._children(collection))


def _check_value(value: dict[str, Any]) -> None:
    if not isinstance(value, dict):
        raise StoreError(f"Values must be dicts, got {type(value).__name__}")
