import asyncio
from collections.abc import AsyncIterator, Callable

import pytest
import pytest_asyncio
from conftest import ManualClock, RecordingPlayer, park, settle

from aiosyncroom.client.remote import RemoteStore
from aiosyncroom.client.session import SyncRoomClient
from aiosyncroom.models.types import PlayerStatus
from aiosyncroom.server import STORE_PATH, RelayServer
from aiosyncroom.store import Snapshot, StoreError


@pytest_asyncio.fixture
async def relay() -> AsyncIterator[RelayServer]:
    server = RelayServer()
    await server.start("127.0.0.1", 0)
    yield server
    await server.stop()


def _url(server: RelayServer) -> str:
    return f"ws://127.0.0.1:{server.port}{STORE_PATH}"


@pytest_asyncio.fixture
async def remote(relay: RelayServer) -> AsyncIterator[RemoteStore]:
    store = RemoteStore(request_timeout=2.0)
    await store.connect(_url(relay))
    yield store
    await store.disconnect()


async def _wait_for(condition: Callable[[], bool], timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not condition():  # noqa: ASYNC110
            await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_requests_round_trip(remote: RemoteStore, relay: RelayServer) -> None:
    assert await remote.get("rooms/r") is None

    await remote.write("rooms/r", {"itemId": "x", "position": 0.0, "hostId": "h"})
    revision = await remote.update("rooms/r", {"position": 5.0})

    assert revision == relay.store.revision
    assert await remote.get("rooms/r") == {"itemId": "x", "position": 5.0, "hostId": "h"}
    assert await remote.remove("rooms/r")
    assert not await remote.remove("rooms/r")


@pytest.mark.asyncio
async def test_collections_round_trip(remote: RemoteStore) -> None:
    first = await remote.push("rooms/r/queue", {"itemId": "a"})
    second = await remote.push("rooms/r/queue", {"itemId": "b"})

    children = await remote.children("rooms/r/queue")

    assert children == [(first, {"itemId": "a"}), (second, {"itemId": "b"})]
    assert await remote.clear("rooms/r/queue") == 2
    assert await remote.children("rooms/r/queue") == []


@pytest.mark.asyncio
async def test_store_errors_are_returned_to_the_caller(remote: RemoteStore) -> None:
    with pytest.raises(StoreError):
        await remote.update("", {"a": 1})

    # The connection survives a failed request
    assert await remote.get("missing") is None


@pytest.mark.asyncio
async def test_calls_while_disconnected_raise() -> None:
    store = RemoteStore()

    with pytest.raises(StoreError):
        await store.get("k")
    with pytest.raises(StoreError):
        store.subscribe("k", lambda _snapshot: None)


@pytest.mark.asyncio
async def test_connect_to_missing_relay_raises() -> None:
    store = RemoteStore()

    with pytest.raises(StoreError):
        await store.connect("ws://127.0.0.1:1/store")
    await store.disconnect()


@pytest.mark.asyncio
async def test_subscriptions_deliver_snapshots(remote: RemoteStore, relay: RelayServer) -> None:
    values: list[Snapshot] = []
    children: list[Snapshot] = []
    remote.subscribe("rooms/r", values.append)
    unsubscribe = remote.subscribe_children("rooms/r/queue", children.append)
    await _wait_for(lambda: len(values) == 1 and len(children) == 1)

    await relay.store.write("rooms/r", {"itemId": "x"})
    entry_id = await relay.store.push("rooms/r/queue", {"itemId": "a"})
    await _wait_for(lambda: len(values) == 2 and len(children) == 2)

    assert values[0].value is None
    assert values[1].value == {"itemId": "x"}
    assert children[0].value == []
    assert children[1].value == [(entry_id, {"itemId": "a"})]

    unsubscribe()
    await _wait_for(lambda: sum(peer.subscription_count for peer in relay.peers) == 1)


@pytest.mark.asyncio
async def test_disconnect_closes_server_side_subscriptions(relay: RelayServer) -> None:
    store = RemoteStore()
    await store.connect(_url(relay))
    store.subscribe("rooms/r", lambda _snapshot: None)
    await _wait_for(lambda: sum(peer.subscription_count for peer in relay.peers) == 1)

    await store.disconnect()

    await _wait_for(lambda: not relay.peers)
    assert not store.connected


@pytest.mark.asyncio
async def test_clients_in_different_processes_stay_in_step(relay: RelayServer) -> None:
    clock = ManualClock()
    stores = [RemoteStore(), RemoteStore()]
    for store in stores:
        await store.connect(_url(relay))
    host = SyncRoomClient(stores[0], RecordingPlayer(clock), "r1", "host", clock=clock, sleep=park)
    guest_player = RecordingPlayer(clock)
    guest = SyncRoomClient(stores[1], guest_player, "r1", "guest", clock=clock, sleep=park)
    try:
        await host.create_room("intro")
        await host.start()
        await guest.start()
        await _wait_for(lambda: guest_player.current_item() == "intro")

        await host.play()
        clock.advance(2.0)
        await host.seek(2.0)
        await _wait_for(lambda: guest_player.status() is PlayerStatus.PLAYING)
        await _wait_for(lambda: abs(guest_player.current_time() - 2.0) <= 0.5)
    finally:
        await guest.stop()
        await host.stop()
        for store in stores:
            await store.disconnect()
        await settle()
