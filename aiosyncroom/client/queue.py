"""Advances the room to the next queued item when playback ends."""

from __future__ import annotations

import logging

from aiosyncroom.models.room import QueueEntry, queue_entry_key, queue_key, room_key
from aiosyncroom.models.types import PlayerStatus, QueueState
from aiosyncroom.store.base import SharedStore, StoreError

from .player import PlayerAdapter
from .publisher import IntentPublisher

logger = logging.getLogger(__name__)


class QueueController:
    """
    Watches the local player for the end of an item and promotes the queue head.

    Every client of a room runs one of these, so several clients usually see
    the same ended item. A client only promotes while the stored room record
    still names the item its player ended on, so a client that has not yet
    received another client's promotion leaves the next entry alone. The head
    is then claimed by removing it from the store; only the client whose
    removal succeeded publishes the change.
    """

    def __init__(
        self,
        store: SharedStore,
        room_id: str,
        player: PlayerAdapter,
        publisher: IntentPublisher,
    ) -> None:
        """Create a controller for one room."""
        self._store = store
        self._room_id = room_id
        self._queue_key = queue_key(room_id)
        self._player = player
        self._publisher = publisher
        self._state = QueueState.WATCHING
        self._armed = False

    @property
    def state(self) -> QueueState:
        """Current controller state."""
        return self._state

    @property
    def armed(self) -> bool:
        """True while the current ended episode may still promote."""
        return self._armed

    async def entries(self) -> list[QueueEntry]:
        """Return the queue in playback order."""
        children = await self._store.children(self._queue_key)
        return [QueueEntry.from_child(entry_id, value) for entry_id, value in children]

    async def tick(self) -> None:
        """Poll the player status once."""
        if self._state is QueueState.PROMOTING:
            return
        if self._player.status() is not PlayerStatus.ENDED:
            if self._armed:
                logger.debug("Player left the ended state, disarming")
            self._armed = False
            return
        if not self._armed:
            logger.debug("Item ended, arming promotion")
            self._armed = True
        await self.promote()

    async def play_next(self) -> QueueEntry | None:
        """Promote the queue head now, whatever the player status."""
        if self._state is QueueState.PROMOTING:
            return None
        return await self.promote(manual=True)

    async def promote(self, *, manual: bool = False) -> QueueEntry | None:
        """
        Claim the queue head and make it the room item.

        Returns the promoted entry, or None if the queue was empty or another
        client claimed the head first.
        """
        if self._state is QueueState.PROMOTING:
            return None
        self._state = QueueState.PROMOTING
        try:
            return await self._promote(manual)
        except StoreError:
            logger.warning("Queue promotion failed, will retry on the next tick", exc_info=True)
            return None
        finally:
            self._state = QueueState.WATCHING

    async def _promote(self, manual: bool) -> QueueEntry | None:
        ended_item = None if manual else self._player.current_item()
        entries = await self.entries()
        if not entries:
            logger.debug("Queue is empty")
            return None
        head = entries[0]
        if not manual and not await self._room_still_on(ended_item):
            logger.debug("Room already moved on from %s, not promoting", ended_item)
            self._armed = False
            return None
        claimed = await self._store.remove(queue_entry_key(self._room_id, head.id))
        if not claimed:
            logger.debug("Entry %s was claimed by another client", head.id)
            if not manual:
                self._armed = False
            return None
        logger.info("Promoting queued item %s (entry %s)", head.item_id, head.id)
        if not manual:
            self._armed = False
        await self._publisher.change_item(head.item_id, autoplay=True)
        return head

    async def _room_still_on(self, item_id: str | None) -> bool:
        """Return True if the stored room record still names ``item_id``."""
        record = await self._store.get(room_key(self._room_id))
        return record is not None and record.get("itemId") == item_id
