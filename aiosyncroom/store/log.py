"""
Append-only write log and the reducers that turn it into values.

The store never mutates a value in place. Every committed operation is
recorded as a WriteRecord, and the value of a key is whatever the reducer
produces when folding that key's records in commit order. Last-write-wins
therefore falls out of the fold, and the full history stays auditable.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any


class WriteKind(Enum):
    """Kinds of committed operations."""

    WRITE = "write"
    """Replace the whole value."""
    UPDATE = "update"
    """Merge fields into the current value."""
    REMOVE = "remove"
    """Delete the value."""


@dataclass(frozen=True, slots=True)
class WriteRecord:
    """One committed operation."""

    revision: int
    kind: WriteKind
    key: str
    value: dict[str, Any] | None
    committed_at: int
    """Store wall clock in epoch milliseconds."""


def apply_record(current: dict[str, Any] | None, record: WriteRecord) -> dict[str, Any] | None:
    """Return the value of a key after ``record`` is applied to ``current``."""
    if record.kind is WriteKind.REMOVE:
        return None
    assert record.value is not None
    if record.kind is WriteKind.WRITE or current is None:
        return dict(record.value)
    merged = dict(current)
    merged.update(record.value)
    return merged


def reduce_value(records: Iterable[WriteRecord]) -> dict[str, Any] | None:
    """Fold the records of one key, in commit order, into its value."""
    value: dict[str, Any] | None = None
    for record in records:
        value = apply_record(value, record)
    return value


class WriteLog:
    """
    Ordered, append-only sequence of WriteRecords.

    Records are also indexed by key, so reading the history or the last
    revision of one key does not scan the whole log.
    """

    def __init__(self) -> None:
        """Create an empty log."""
        self._records: list[WriteRecord] = []
        self._by_key: dict[str, list[WriteRecord]] = {}

    def __len__(self) -> int:
        """Return the number of committed records."""
        return len(self._records)

    @property
    def revision(self) -> int:
        """Revision of the last commit, 0 for an empty log."""
        return self._records[-1].revision if self._records else 0

    def append(
        self, kind: WriteKind, key: str, value: dict[str, Any] | None, committed_at: int
    ) -> WriteRecord:
        """Commit a new record and return it."""
        record = WriteRecord(
            revision=self.revision + 1,
            kind=kind,
            key=key,
            value=dict(value) if value is not None else None,
            committed_at=committed_at,
        )
        self._records.append(record)
        self._by_key.setdefault(key, []).append(record)
        return record

    def records_for(self, key: str) -> list[WriteRecord]:
        """Return every record of ``key`` in commit order."""
        return list(self._by_key.get(key, ()))

    def last_revision_for(self, key: str) -> int:
        """Return the revision of the last commit touching ``key``."""
        records = self._by_key.get(key)
        return records[-1].revision if records else 0
