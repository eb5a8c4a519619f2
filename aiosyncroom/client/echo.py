"""
Echo suppression for published room state.

Every write a client publishes is tagged with (client id, local sequence
number). The guard uses that tag to recognise the push notification of the
client's own write, however late it arrives, and drops every snapshot that
reaches the client while one of its writes is still in flight: such a snapshot
is either older than the write or committed before it, so the write
supersedes it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from aiosyncroom.models.room import RoomState

from .timing import ECHO_RELEASE_DELAY, Clock

logger = logging.getLogger(__name__)


class EchoGuard:
    """Drop-the-update gate between a client's publisher and its reconciler."""

    def __init__(self, client_id: str, clock: Clock, release_delay: float = ECHO_RELEASE_DELAY) -> None:
        """
        Create a guard for ``client_id``.

        Args:
            client_id: Identifier written as updatedBy by this client.
            clock: Monotonic time source.
            release_delay: Seconds to keep waiting for the echo after a write
                completed; bounds the wait when the store coalesces deliveries.
        """
        self._client_id = client_id
        self._clock = clock
        self._release_delay = release_delay
        self._last_seq = 0
        self._in_flight: set[int] = set()
        self._awaiting_seq: int | None = None
        self._release_at = 0.0
        self._applying = 0

    @property
    def last_seq(self) -> int:
        """Sequence number of the most recent publish."""
        return self._last_seq

    @property
    def suppressing(self) -> bool:
        """True while remote snapshots must not be applied."""
        if self._in_flight:
            return True
        if self._awaiting_seq is None:
            return False
        if self._clock.monotonic() >= self._release_at:
            logger.debug("Echo of seq %d not seen, releasing", self._awaiting_seq)
            self._awaiting_seq = None
            return False
        return True

    @property
    def applying(self) -> bool:
        """True while the client itself is driving the player."""
        return self._applying > 0

    def begin(self) -> int:
        """Allocate the tag of a new write and mark it in flight."""
        self._last_seq += 1
        self._in_flight.add(self._last_seq)
        return self._last_seq

    def complete(self, seq: int, ok: bool) -> None:
        """Mark the write ``seq`` as finished."""
        self._in_flight.discard(seq)
        if not ok:
            if self._awaiting_seq == seq:
                self._awaiting_seq = None
            return
        if seq == self._last_seq:
            self._awaiting_seq = seq
            self._release_at = self._clock.monotonic() + self._release_delay

    def is_own_echo(self, state: RoomState) -> bool:
        """Return True if ``state`` was produced by one of this client's writes."""
        return state.updated_by == self._client_id and 0 < state.update_seq <= self._last_seq

    def observe(self, state: RoomState) -> None:
        """Record a received snapshot; the echo of the latest write ends the wait."""
        if self.is_own_echo(state) and self._awaiting_seq is not None:
            if state.update_seq >= self._awaiting_seq:
                self._awaiting_seq = None

    def should_skip(self, state: RoomState) -> bool:
        """Return True if ``state`` must not be applied to the player."""
        self.observe(state)
        return self.is_own_echo(state) or self.suppressing

    @contextmanager
    def local_apply(self) -> Iterator[None]:
        """Mark player calls made by the client itself."""
        self._applying += 1
        try:
            yield
        finally:
            self._applying -= 1
