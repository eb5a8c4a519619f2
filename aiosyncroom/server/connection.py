"""Represents a single relay peer connected to the server."""

import asyncio
import logging
from contextlib import suppress
from typing import TYPE_CHECKING, Any, cast

from aiohttp import WSMessage, WSMsgType, web

from aiosyncroom.models.relay import (
    StoreChildrenMessage,
    StoreClearMessage,
    StoreGetMessage,
    StorePushMessage,
    StoreRemoveMessage,
    StoreResultMessage,
    StoreSnapshotMessage,
    StoreSubscribeMessage,
    StoreUnsubscribeMessage,
    StoreUpdateMessage,
    StoreWriteMessage,
)
from aiosyncroom.models.types import ClientMessage, ServerMessage
from aiosyncroom.store.base import Snapshot, StoreError, Unsubscribe

MAX_PENDING_MSG = 512

logger = logging.getLogger(__name__)

# The cyclic import is not an issue during runtime, so hide it
# pyright: reportImportCycles=none
if TYPE_CHECKING:
    from .relay import RelayServer


class RelayConnection:
    """
    A peer that is connected to a RelayServer.

    Requests are executed against the server's store in the order they are
    received, every request gets exactly one store/result. Snapshots of the
    peer's subscriptions are queued on the same writer as the results.
    """

    _server: "RelayServer"
    _request: web.Request
    _wsock: web.WebSocketResponse
    _writer_task: asyncio.Task[None] | None = None
    """Task responsible for sending queued messages."""
    _to_write: asyncio.Queue[ServerMessage]
    _subscriptions: dict[int, Unsubscribe]
    _closing: bool = False
    _logger: logging.Logger

    def __init__(self, server: "RelayServer", request: web.Request) -> None:
        """
        DO NOT CALL THIS CONSTRUCTOR. INTERNAL USE ONLY.

        Use RelayServer.on_peer_connect instead.
        """
        self._server = server
        self._request = request
        self._wsock = web.WebSocketResponse(heartbeat=55)
        self._logger = logger.getChild(f"peer-{request.remote}")
        self._to_write = asyncio.Queue(maxsize=MAX_PENDING_MSG)
        self._subscriptions = {}
        self._closing = False

    @property
    def subscription_count(self) -> int:
        """Number of open subscriptions of this peer."""
        return len(self._subscriptions)

    @property
    def closing(self) -> bool:
        """Whether this peer is in the process of disconnecting."""
        return self._closing

    async def handle(self) -> web.WebSocketResponse:
        """Handle the complete websocket connection lifecycle."""
        try:
            await self._setup_connection()
            await self._run_message_loop()
        finally:
            await self.disconnect()
        return self._wsock

    async def disconnect(self) -> None:
        """Close every subscription and the websocket."""
        if self._closing and self._wsock.closed:
            return
        self._closing = True
        subscriptions, self._subscriptions = self._subscriptions, {}
        for unsubscribe in subscriptions.values():
            unsubscribe()
        if subscriptions:
            self._logger.debug("Closed %d subscriptions", len(subscriptions))

        if self._writer_task and not self._writer_task.done():
            _ = self._writer_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._writer_task

        if not self._wsock.closed:
            try:
                _ = await self._wsock.close()
            except Exception:
                self._logger.exception("Failed to close websocket")
        self._logger.info("Peer disconnected")

    def send_message(self, message: ServerMessage) -> None:
        """Enqueue a message for this peer; a peer that stopped reading is dropped."""
        if self._closing:
            return
        try:
            self._to_write.put_nowait(message)
        except asyncio.QueueFull:
            self._logger.warning("Peer is not reading, %d messages pending", MAX_PENDING_MSG)
            self._closing = True
            if self._writer_task is not None:
                _ = self._writer_task.cancel()

    async def _setup_connection(self) -> None:
        try:
            async with asyncio.timeout(10):
                _ = await self._wsock.prepare(self._request)
        except TimeoutError:
            self._logger.warning("Timeout preparing request")
            raise
        self._logger.info("Connection established")
        self._writer_task = asyncio.get_running_loop().create_task(self._writer())

    async def _run_message_loop(self) -> None:
        loop = asyncio.get_running_loop()
        receive_task: asyncio.Task[WSMessage] | None = None
        try:
            while not self._wsock.closed:
                receive_task = loop.create_task(self._wsock.receive())
                assert self._writer_task is not None  # for type checking
                done, pending = await asyncio.wait(
                    [receive_task, self._writer_task],
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if self._writer_task in done:
                    self._logger.debug("Writer task ended, closing connection")
                    if receive_task in pending:
                        _ = receive_task.cancel()
                    break

                try:
                    msg = await receive_task
                except (ConnectionError, asyncio.CancelledError, TimeoutError) as e:
                    self._logger.error("Error receiving message: %s", e)
                    break

                if msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                    break

                if msg.type != WSMsgType.TEXT:
                    continue

                try:
                    message = ClientMessage.from_json(cast("str", msg.data))
                except Exception:
                    self._logger.exception("error parsing message")
                    continue
                await self._handle_message(message)
            self._logger.debug("wsock was closed")

        except asyncio.CancelledError:
            self._logger.debug("Connection closed by peer")
        except Exception:
            self._logger.exception("Unexpected error inside websocket API")
        finally:
            if receive_task and not receive_task.done():
                _ = receive_task.cancel()

    async def _handle_message(self, message: ClientMessage) -> None:
        request_id = cast("int", getattr(message, "request_id", 0))
        try:
            value = await self._execute(message)
        except (StoreError, ValueError) as err:
            self._logger.debug("Request %d failed: %s", request_id, err)
            self.send_message(StoreResultMessage(request_id=request_id, ok=False, error=str(err)))
            return
        except Exception as err:
            self._logger.exception("Unexpected error handling request %d", request_id)
            self.send_message(StoreResultMessage(request_id=request_id, ok=False, error=repr(err)))
            return
        self.send_message(StoreResultMessage(request_id=request_id, ok=True, value=value))

    async def _execute(self, message: ClientMessage) -> Any:
        store = self._server.store
        match message:
            case StoreGetMessage(key=key):
                return await store.get(key)
            case StoreWriteMessage(key=key, value=value):
                return await store.write(key, value)
            case StoreUpdateMessage(key=key, fields=fields):
                return await store.update(key, fields)
            case StoreRemoveMessage(key=key):
                return await store.remove(key)
            case StorePushMessage(collection=collection, value=value):
                return await store.push(collection, value)
            case StoreChildrenMessage(collection=collection):
                return [[child_id, value] for child_id, value in await store.children(collection)]
            case StoreClearMessage(collection=collection):
                return await store.clear(collection)
            case StoreSubscribeMessage(subscription_id=subscription_id, key=key, children=children):
                self._subscribe(subscription_id, key, children=children)
                return None
            case StoreUnsubscribeMessage(subscription_id=subscription_id):
                unsubscribe = self._subscriptions.pop(subscription_id, None)
                if unsubscribe is not None:
                    unsubscribe()
                return unsubscribe is not None
            case _:
                raise ValueError(f"Unsupported message type {type(message).__name__}")

    def _subscribe(self, subscription_id: int, key: str, *, children: bool) -> None:
        if subscription_id in self._subscriptions:
            raise ValueError(f"Subscription {subscription_id} already exists")

        def forward(snapshot: Snapshot) -> None:
            value = snapshot.value
            if children and value is not None:
                value = [[child_id, child] for child_id, child in value]
            self.send_message(
                StoreSnapshotMessage(
                    subscription_id=subscription_id,
                    key=snapshot.key,
                    revision=snapshot.revision,
                    value=value,
                )
            )

        store = self._server.store
        if children:
            self._subscriptions[subscription_id] = store.subscribe_children(key, forward)
        else:
            self._subscriptions[subscription_id] = store.subscribe(key, forward)
        self._logger.debug("Subscription %d on %s (children=%s)", subscription_id, key, children)

    async def _writer(self) -> None:
        """Write outgoing messages from the queue."""
        try:
            while not self._wsock.closed and not self._closing:
                item = await self._to_write.get()
                try:
                    await self._wsock.send_str(item.to_json())
                except ConnectionError:
                    self._logger.warning("Connection error sending JSON data, ending writer task")
                    break
            self._logger.debug("WebSocket Connection was closed for the peer, ending writer task")
        except Exception:
            self._logger.exception("Error in writer task for peer")
