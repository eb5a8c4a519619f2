"""Turns local intent into writes of the shared room state."""

from __future__ import annotations

import logging

from aiosyncroom.models.room import RoomState, RoomStatePatch, room_key
from aiosyncroom.models.types import PlayerStatus
from aiosyncroom.store.base import SharedStore

from .echo import EchoGuard
from .player import PlayerAdapter, PlayerNotReadyError
from .timing import Clock, expected_position, measure_drift, needs_correction

logger = logging.getLogger(__name__)


class IntentPublisher:
    """
    Publishes what the local user or player did to the room record.

    Writes are field merges: a publish only carries the fields it means to
    change plus the updatedAt/updatedBy/updateSeq stamp, so concurrent writers
    only overwrite each other's fields when they name the same ones. The order
    between writers is whatever order the store commits them in.
    """

    def __init__(
        self,
        store: SharedStore,
        room_id: str,
        client_id: str,
        player: PlayerAdapter,
        guard: EchoGuard,
        clock: Clock,
    ) -> None:
        """Create a publisher for one room."""
        self._store = store
        self._key = room_key(room_id)
        self._client_id = client_id
        self._player = player
        self._guard = guard
        self._clock = clock

    async def publish(self, patch: RoomStatePatch) -> bool:
        """
        Merge ``patch`` into the room record.

        Returns False if the store rejected or failed the write; the failure is
        logged and not retried.
        """
        if patch.empty:
            return True
        seq = self._guard.begin()
        fields = patch.to_dict()
        fields["updatedAt"] = self._clock.now_ms()
        fields["updatedBy"] = self._client_id
        fields["updateSeq"] = seq
        ok = False
        try:
            await self._store.update(self._key, fields)
            ok = True
        except Exception:
            logger.exception("Failed to publish %s", fields)
        finally:
            self._guard.complete(seq, ok)
        logger.debug("Published seq %d: %s", seq, fields)
        return ok

    async def handle_player_status(self, status: PlayerStatus, room_state: RoomState | None) -> bool:
        """
        Publish a play/pause transition reported by the local player.

        Transitions caused by the client itself, or that only mirror the room
        state, are not published. A transition to the transport the room
        already has is published when the player is away from the room
        position, as when the user replays an item that had ended.
        """
        if self._guard.applying:
            return False
        if status is PlayerStatus.PLAYING:
            is_playing = True
        elif status is PlayerStatus.PAUSED:
            is_playing = False
        else:
            return False
        try:
            position = self._player.current_time()
        except PlayerNotReadyError:
            logger.debug("Player not ready, dropping %s transition", status.value)
            return False
        if room_state is not None and room_state.is_playing == is_playing:
            expected = expected_position(
                room_state.position,
                room_state.is_playing,
                room_state.updated_at,
                self._clock.now_ms(),
            )
            drift = measure_drift(position, expected)
            if not needs_correction(drift):
                return False
            logger.debug("Player is %.2fs away from the room, publishing %s", drift, status.value)
        return await self.publish(RoomStatePatch(position=position, is_playing=is_playing))

    async def seek(self, target: float, room_state: RoomState | None) -> bool:
        """Seek the local player right away, then publish the new position."""
        if target < 0:
            raise ValueError(f"Cannot seek to negative position {target}")
        try:
            with self._guard.local_apply():
                self._player.seek(target)
        except PlayerNotReadyError:
            logger.debug("Player not ready for local seek to %.2f", target)
        is_playing = room_state.is_playing if room_state is not None else None
        return await self.publish(RoomStatePatch(position=target, is_playing=is_playing))

    async def change_item(self, item_id: str, *, autoplay: bool = False) -> bool:
        """Switch the room to ``item_id`` from the start."""
        if not item_id:
            raise ValueError("item_id must not be empty")
        try:
            with self._guard.local_apply():
                self._player.load_item(item_id)
                if autoplay:
                    self._player.play()
        except PlayerNotReadyError:
            logger.debug("Player not ready to load %s locally", item_id)
        return await self.publish(RoomStatePatch(item_id=item_id, position=0.0, is_playing=autoplay))
