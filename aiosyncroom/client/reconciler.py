"""Applies the shared room state to the local player."""

from __future__ import annotations

import logging

from aiosyncroom.models.room import RoomState
from aiosyncroom.models.types import PlayerStatus

from .echo import EchoGuard
from .player import PlayerAdapter, PlayerNotReadyError
from .timing import Clock, SyncTimings, expected_position, measure_drift, needs_correction

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """
    Converges the local player onto the last room snapshot.

    Applying a snapshot is idempotent: once the player matches it, applying
    it again makes no player calls. Player failures never leave this class.
    """

    def __init__(
        self,
        player: PlayerAdapter,
        guard: EchoGuard,
        clock: Clock,
        timings: SyncTimings | None = None,
    ) -> None:
        """Create an engine driving ``player``."""
        self._player = player
        self._guard = guard
        self._clock = clock
        self._timings = timings or SyncTimings()
        self._room_state: RoomState | None = None
        self._last_correction: float | None = None

    @property
    def room_state(self) -> RoomState | None:
        """Last known room snapshot."""
        return self._room_state

    @property
    def last_correction(self) -> float | None:
        """Monotonic time of the last corrective seek."""
        return self._last_correction

    def apply(self, state: RoomState) -> bool:
        """
        Reconcile the player with a received snapshot.

        Returns True if the snapshot was applied, False if it was skipped.
        """
        if self._guard.is_own_echo(state):
            self._guard.observe(state)
            self._room_state = state
            # The merged record may carry fields another client wrote just
            # before this write, so the echo of the latest write is applied
            # too. Player calls are no-ops for the fields written here.
            if state.update_seq < self._guard.last_seq or self._guard.suppressing:
                return False
        else:
            if self._guard.should_skip(state):
                logger.debug("Write in flight, dropping snapshot by %s", state.updated_by or "?")
                return False
            self._room_state = state
        if self._in_quiescence():
            logger.debug("Within quiescence window, skipping snapshot")
            return False
        self._reconcile(state, transport=True)
        return True

    def check_drift(self) -> bool:
        """
        Correct drift against the last known snapshot; return True if a seek was made.

        A player left on another item, for instance because the snapshot that
        changed it arrived during the quiescence window, is switched first.
        """
        state = self._room_state
        if state is None or self._guard.suppressing:
            return False
        return self._reconcile(state, transport=False)

    def _in_quiescence(self) -> bool:
        if self._last_correction is None:
            return False
        return self._clock.monotonic() - self._last_correction < self._timings.quiescence

    def _reconcile(self, state: RoomState, *, transport: bool) -> bool:
        if not state.item_id:
            return False
        try:
            with self._guard.local_apply():
                if transport or self._player.current_item() != state.item_id:
                    self._apply_transport(state)
                return self._correct_drift(state)
        except PlayerNotReadyError:
            logger.debug("Player not ready, deferring reconciliation")
        except Exception:
            logger.exception("Error applying room state to the player")
        return False

    def _apply_transport(self, state: RoomState) -> None:
        if self._player.current_item() != state.item_id:
            logger.info("Loading item %s", state.item_id)
            self._player.load_item(state.item_id)
        status = self._player.status()
        if state.is_playing and status is not PlayerStatus.PLAYING:
            self._player.play()
        elif not state.is_playing and status is PlayerStatus.PLAYING:
            self._player.pause()

    def _correct_drift(self, state: RoomState) -> bool:
        if self._player.current_item() != state.item_id:
            return False
        expected = expected_position(
            state.position, state.is_playing, state.updated_at, self._clock.now_ms()
        )
        drift = measure_drift(self._player.current_time(), expected)
        if not needs_correction(drift, self._timings.drift_threshold):
            return False
        logger.info("Drift %.3fs, seeking to %.3f", drift, expected)
        self._player.seek(expected)
        self._last_correction = self._clock.monotonic()
        return True
