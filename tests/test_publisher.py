from typing import Any

import pytest
from conftest import ManualClock, RecordingPlayer

from aiosyncroom.client.echo import EchoGuard
from aiosyncroom.client.publisher import IntentPublisher
from aiosyncroom.models.room import RoomState, RoomStatePatch
from aiosyncroom.models.types import PlayerStatus
from aiosyncroom.store import MemoryStore, StoreError

ROOM = "rooms/r1"


class FailingStore(MemoryStore):
    async def update(self, key: str, fields: dict[str, Any]) -> int:
        raise StoreError("network down")


async def _create_room(store: MemoryStore, clock: ManualClock) -> RoomState:
    state = RoomState(
        item_id="x",
        position=0.0,
        is_playing=False,
        updated_at=clock.now_ms(),
        updated_by="host",
        host_id="host",
        created_at=clock.now_ms(),
    )
    await store.write(ROOM, state.to_dict())
    return state


def _publisher(
    store: MemoryStore, player: RecordingPlayer, clock: ManualClock
) -> tuple[IntentPublisher, EchoGuard]:
    guard = EchoGuard("me", clock)
    return IntentPublisher(store, "r1", "me", player, guard, clock), guard


@pytest.mark.asyncio
async def test_publish_merges_patch_and_stamps_the_writer(
    store: MemoryStore, player: RecordingPlayer, clock: ManualClock
) -> None:
    await _create_room(store, clock)
    publisher, guard = _publisher(store, player, clock)
    clock.advance(5)

    assert await publisher.publish(RoomStatePatch(position=5.0, is_playing=True))

    record = await store.get(ROOM)
    assert record is not None
    assert record["position"] == 5.0
    assert record["isPlaying"] is True
    assert record["itemId"] == "x"
    assert record["hostId"] == "host"
    assert record["updatedBy"] == "me"
    assert record["updateSeq"] == 1
    assert record["updatedAt"] == clock.now_ms()
    assert guard.last_seq == 1


@pytest.mark.asyncio
async def test_publish_failure_is_reported_not_raised(
    player: RecordingPlayer, clock: ManualClock
) -> None:
    store = FailingStore()
    publisher, guard = _publisher(store, player, clock)

    assert not await publisher.publish(RoomStatePatch(position=1.0))

    assert not guard.suppressing


@pytest.mark.asyncio
async def test_player_transitions_are_published(
    store: MemoryStore, player: RecordingPlayer, clock: ManualClock
) -> None:
    room = await _create_room(store, clock)
    publisher, _guard = _publisher(store, player, clock)
    player.load_item("x")
    player.seek(7.0)

    assert await publisher.handle_player_status(PlayerStatus.PLAYING, room)

    record = await store.get(ROOM)
    assert record is not None
    assert record["isPlaying"] is True
    assert record["position"] == 7.0


@pytest.mark.asyncio
async def test_mirrored_or_self_caused_transitions_are_not_published(
    store: MemoryStore, player: RecordingPlayer, clock: ManualClock
) -> None:
    room = await _create_room(store, clock)
    publisher, guard = _publisher(store, player, clock)
    player.load_item("x")

    assert not await publisher.handle_player_status(PlayerStatus.PAUSED, room)
    assert not await publisher.handle_player_status(PlayerStatus.BUFFERING, room)
    assert not await publisher.handle_player_status(PlayerStatus.ENDED, room)
    with guard.local_apply():
        assert not await publisher.handle_player_status(PlayerStatus.PLAYING, room)

    assert store.history(ROOM)[-1].revision == 1


@pytest.mark.asyncio
async def test_seek_moves_the_local_player_before_publishing(
    store: MemoryStore, player: RecordingPlayer, clock: ManualClock
) -> None:
    room = await _create_room(store, clock)
    publisher, _guard = _publisher(store, player, clock)
    player.load_item("x")

    assert await publisher.seek(42.0, room)

    assert player.current_time() == pytest.approx(42.0)
    record = await store.get(ROOM)
    assert record is not None
    assert record["position"] == 42.0
    assert record["isPlaying"] is False
    with pytest.raises(ValueError):
        await publisher.seek(-1.0, room)


@pytest.mark.asyncio
async def test_change_item_loads_locally_and_restarts_the_room(
    store: MemoryStore, player: RecordingPlayer, clock: ManualClock
) -> None:
    await _create_room(store, clock)
    await store.update(ROOM, {"position": 99.0, "isPlaying": True})
    publisher, _guard = _publisher(store, player, clock)

    assert await publisher.change_item("y", autoplay=True)

    assert player.current_item() == "y"
    assert player.status() is PlayerStatus.PLAYING
    record = await store.get(ROOM)
    assert record is not None
    assert (record["itemId"], record["position"], record["isPlaying"]) == ("y", 0.0, True)
    with pytest.raises(ValueError):
        await publisher.change_item("")


@pytest.mark.asyncio
async def test_replaying_an_ended_item_is_published(
    store: MemoryStore, clock: ManualClock
) -> None:
    await _create_room(store, clock)
    await store.update(ROOM, {"isPlaying": True, "updatedAt": clock.now_ms()})
    player = RecordingPlayer(clock, default_duration=10.0)
    publisher, _guard = _publisher(store, player, clock)
    player.load_item("x")
    player.play()
    clock.advance(11.0)
    assert player.status() is PlayerStatus.ENDED
    record = await store.get(ROOM)
    assert record is not None
    room = RoomState.from_dict(record)

    # The user restarts the item while the room still says playing
    player.play()

    assert await publisher.handle_player_status(PlayerStatus.PLAYING, room)
    record = await store.get(ROOM)
    assert record is not None
    assert record["position"] == 0.0
    assert record["isPlaying"] is True
    assert record["updatedAt"] == clock.now_ms()
