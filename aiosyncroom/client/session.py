"""Watch-together client joining one room of a shared store."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any, Self

from aiosyncroom.models.room import (
    QueueEntry,
    RoomState,
    RoomStatePatch,
    queue_entry_key,
    queue_key,
    room_key,
)
from aiosyncroom.models.types import PlayerStatus
from aiosyncroom.store.base import SharedStore, Snapshot, Unsubscribe

from .echo import EchoGuard
from .player import PlayerAdapter, PlayerNotReadyError
from .publisher import IntentPublisher
from .queue import QueueController
from .reconciler import ReconciliationEngine
from .scheduler import Scheduler, SleepFunc
from .timing import Clock, SyncTimings, SystemClock

logger = logging.getLogger(__name__)

RoomCallback = Callable[[RoomState], Awaitable[None] | None]
QueueCallback = Callable[[list[QueueEntry]], Awaitable[None] | None]
PositionCallback = Callable[[float], Awaitable[None] | None]


class SyncRoomClient:
    """
    Keeps a local player in step with a shared room.

    The client subscribes to the room record and its queue, reconciles every
    received snapshot onto the player, publishes what the local user does and
    advances the queue when the current item ends.
    """

    def __init__(
        self,
        store: SharedStore,
        player: PlayerAdapter,
        room_id: str,
        client_id: str | None = None,
        *,
        timings: SyncTimings | None = None,
        clock: Clock | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """
        Create a client for ``room_id``.

        Args:
            store: Shared store holding the rooms.
            player: Local media engine to drive.
            room_id: Room to join.
            client_id: Identifier written as updatedBy, random when omitted.
            timings: Protocol intervals and thresholds.
            clock: Time source, the host clocks by default.
            sleep: Sleep used by the periodic tasks.
        """
        self._store = store
        self._player = player
        self._room_id = room_id
        self._room_key = room_key(room_id)
        self._queue_key = queue_key(room_id)
        self._client_id = client_id or uuid.uuid4().hex
        self._timings = timings or SyncTimings()
        self._clock = clock or SystemClock()
        self._guard = EchoGuard(self._client_id, self._clock, self._timings.echo_release_delay)
        self._publisher = IntentPublisher(
            store, room_id, self._client_id, player, self._guard, self._clock
        )
        self._reconciler = ReconciliationEngine(player, self._guard, self._clock, self._timings)
        self._queue_controller = QueueController(store, room_id, player, self._publisher)
        self._scheduler = Scheduler(sleep)
        self._queue: list[QueueEntry] = []
        self._unsubscribes: list[Unsubscribe] = []
        self._remove_status_listener: Callable[[], None] | None = None
        self._pending: set[asyncio.Task[Any]] = set()
        self._room_callbacks: list[RoomCallback] = []
        self._queue_callbacks: list[QueueCallback] = []
        self._position_callbacks: list[PositionCallback] = []
        self._started = False

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------
    @property
    def client_id(self) -> str:
        """Identifier this client writes as updatedBy."""
        return self._client_id

    @property
    def room_id(self) -> str:
        """Room this client is joined to."""
        return self._room_id

    @property
    def started(self) -> bool:
        """Return True between start() and stop()."""
        return self._started

    @property
    def room_state(self) -> RoomState | None:
        """Last known room snapshot."""
        return self._reconciler.room_state

    @property
    def queue(self) -> list[QueueEntry]:
        """Last known queue, head first."""
        return list(self._queue)

    @property
    def current_time(self) -> float:
        """Local playhead in seconds, 0 while the player is not ready."""
        try:
            return self._player.current_time()
        except PlayerNotReadyError:
            return 0.0

    @property
    def reconciler(self) -> ReconciliationEngine:
        """Engine applying remote state to the player."""
        return self._reconciler

    @property
    def queue_controller(self) -> QueueController:
        """Controller advancing the queue."""
        return self._queue_controller

    async def create_room(self, item_id: str = "") -> RoomState:
        """Write a fresh room record owned by this client."""
        now = self._clock.now_ms()
        state = RoomState(
            item_id=item_id,
            position=0.0,
            is_playing=False,
            updated_at=now,
            updated_by=self._client_id,
            host_id=self._client_id,
            created_at=now,
        )
        await self._store.write(self._room_key, state.to_dict())
        logger.info("Created room %s", self._room_id)
        return state

    async def start(self) -> None:
        """Subscribe to the room and start the periodic tasks."""
        if self._started:
            return
        self._started = True
        self._unsubscribes.append(self._store.subscribe(self._room_key, self._on_room_snapshot))
        self._unsubscribes.append(
            self._store.subscribe_children(self._queue_key, self._on_queue_snapshot)
        )
        self._remove_status_listener = self._player.add_status_listener(self._on_player_status)
        self._scheduler.every(
            "position", self._timings.position_sample_interval, self._sample_position
        )
        self._scheduler.every(
            "drift", self._timings.drift_check_interval, self._reconciler.check_drift
        )
        self._scheduler.every(
            "terminal", self._timings.terminal_poll_interval, self._queue_controller.tick
        )
        logger.info("Client %s joined room %s", self._client_id, self._room_id)

    async def stop(self) -> None:
        """Stop the periodic tasks and close the subscriptions."""
        if not self._started:
            return
        self._started = False
        await self._scheduler.cancel_all()
        unsubscribes, self._unsubscribes = self._unsubscribes, []
        for unsubscribe in unsubscribes:
            unsubscribe()
        if self._remove_status_listener is not None:
            self._remove_status_listener()
            self._remove_status_listener = None
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        logger.info("Client %s left room %s", self._client_id, self._room_id)

    async def __aenter__(self) -> Self:
        """Start the client."""
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Stop the client."""
        await self.stop()

    async def play(self) -> bool:
        """Start playback locally and for the room."""
        return await self._publish_transport(is_playing=True)

    async def pause(self) -> bool:
        """Pause playback locally and for the room."""
        return await self._publish_transport(is_playing=False)

    async def seek(self, position: float) -> bool:
        """Move the playhead locally and for the room."""
        return await self._publisher.seek(position, self.room_state)

    async def load_item(self, item_id: str, *, autoplay: bool = False) -> bool:
        """Switch the room to ``item_id``."""
        return await self._publisher.change_item(item_id, autoplay=autoplay)

    async def add_to_queue(self, item_id: str) -> str:
        """Append ``item_id`` to the room queue and return the entry id."""
        if not item_id:
            raise ValueError("item_id must not be empty")
        value = {"itemId": item_id, "addedAt": self._clock.now_ms(), "addedBy": self._client_id}
        entry_id = await self._store.push(self._queue_key, value)
        logger.debug("Queued %s as %s", item_id, entry_id)
        return entry_id

    async def remove_from_queue(self, entry_id: str) -> bool:
        """Remove one entry; return False if it was already gone."""
        return await self._store.remove(queue_entry_key(self._room_id, entry_id))

    async def clear_queue(self) -> int:
        """Remove every queued entry."""
        return await self._store.clear(self._queue_key)

    async def play_entry(self, entry: QueueEntry) -> bool:
        """Play a queued entry right away and drop it from the queue."""
        ok = await self._publisher.change_item(entry.item_id, autoplay=True)
        await self.remove_from_queue(entry.id)
        return ok

    async def play_next(self) -> QueueEntry | None:
        """Skip to the head of the queue."""
        return await self._queue_controller.play_next()

    def add_room_listener(self, callback: RoomCallback) -> Callable[[], None]:
        """Register a callback invoked with every received room snapshot."""
        self._room_callbacks.append(callback)
        return lambda: self._room_callbacks.remove(callback)

    def add_queue_listener(self, callback: QueueCallback) -> Callable[[], None]:
        """Register a callback invoked with every received queue."""
        self._queue_callbacks.append(callback)
        return lambda: self._queue_callbacks.remove(callback)

    def add_position_listener(self, callback: PositionCallback) -> Callable[[], None]:
        """Register a callback invoked with the sampled local playhead."""
        self._position_callbacks.append(callback)
        return lambda: self._position_callbacks.remove(callback)

    # ---------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------
    async def _on_room_snapshot(self, snapshot: Snapshot) -> None:
        if snapshot.value is None:
            logger.warning("Room %s does not exist", self._room_id)
            return
        try:
            state = RoomState.from_dict(snapshot.value)
        except Exception:
            logger.exception("Ignoring malformed room record %s", snapshot.value)
            return
        self._reconciler.apply(state)
        await self._notify_callbacks(self._room_callbacks, state)

    async def _on_queue_snapshot(self, snapshot: Snapshot) -> None:
        entries: list[QueueEntry] = []
        for entry_id, value in snapshot.value or []:
            try:
                entries.append(QueueEntry.from_child(entry_id, value))
            except (KeyError, TypeError, ValueError):
                logger.warning("Ignoring malformed queue entry %s", entry_id)
        self._queue = entries
        await self._notify_callbacks(self._queue_callbacks, list(entries))

    async def _publish_transport(self, *, is_playing: bool) -> bool:
        position: float | None = None
        try:
            with self._guard.local_apply():
                if is_playing:
                    self._player.play()
                else:
                    self._player.pause()
                position = self._player.current_time()
        except PlayerNotReadyError:
            # The room still gets the intent; the stored position is kept.
            logger.debug("Player not ready, publishing transport without a position")
        return await self._publisher.publish(
            RoomStatePatch(position=position, is_playing=is_playing)
        )

    def _on_player_status(self, status: PlayerStatus) -> None:
        # Events raised by our own player calls arrive synchronously, so the
        # flag has to be read here rather than in the task.
        if self._guard.applying or not self._started:
            return
        task = asyncio.get_running_loop().create_task(
            self._publisher.handle_player_status(status, self.room_state)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _sample_position(self) -> None:
        try:
            position = self._player.current_time()
        except PlayerNotReadyError:
            return
        await self._notify_callbacks(self._position_callbacks, position)

    async def _notify_callbacks(
        self,
        callbacks: list[Callable[[Any], Awaitable[None] | None]],
        payload: Any,
    ) -> None:
        for callback in list(callbacks):
            try:
                result = callback(payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Error in client callback %s", callback)
