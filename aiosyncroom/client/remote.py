"""SharedStore talking to a RelayServer over a WebSocket."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from contextlib import suppress
from types import TracebackType
from typing import Any, Self

from aiohttp import ClientError, ClientSession, ClientWebSocketResponse, WSMessage, WSMsgType

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
from aiosyncroom.store.base import (
    Snapshot,
    SnapshotCallback,
    StoreError,
    SubscriptionPump,
    Unsubscribe,
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10.0


class RemoteStore:
    """Client side of the relay protocol, usable wherever a SharedStore is expected."""

    def __init__(
        self,
        session: ClientSession | None = None,
        *,
        request_timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        """Create a disconnected store; pass ``session`` to share an aiohttp session."""
        self._session = session
        self._owns_session = session is None
        self._request_timeout = request_timeout
        self._ws: ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()
        self._request_ids = itertools.count(1)
        self._subscription_ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._subscriptions: dict[int, SubscriptionPump] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._connected = False

    # ---------------------------------------------------------------------
    # Connection
    # ---------------------------------------------------------------------
    @property
    def connected(self) -> bool:
        """Return True if the store currently has an active connection."""
        return self._connected and self._ws is not None and not self._ws.closed

    async def connect(self, url: str) -> None:
        """Connect to a relay, e.g. ``ws://host:8937/store``."""
        if self.connected:
            logger.debug("Already connected")
            return
        if self._session is None:
            self._session = ClientSession()
        logger.info("Connecting to relay at %s", url)
        try:
            self._ws = await self._session.ws_connect(url, heartbeat=30)
        except (ClientError, OSError) as err:
            raise StoreError(f"Cannot connect to relay at {url}: {err}") from err
        self._connected = True
        self._reader_task = asyncio.get_running_loop().create_task(self._reader_loop())

    async def disconnect(self) -> None:
        """Disconnect from the relay and release resources."""
        self._connected = False
        current_task = asyncio.current_task()
        if self._reader_task is not None:
            if self._reader_task is not current_task:
                self._reader_task.cancel()
                with suppress(asyncio.CancelledError):
                    await self._reader_task
            self._reader_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        for future in self._pending.values():
            if not future.done():
                future.set_exception(StoreError("Disconnected from relay"))
        self._pending.clear()
        subscriptions, self._subscriptions = self._subscriptions, {}
        for subscription in subscriptions.values():
            subscription.cancel()
        for task in list(self._background):
            task.cancel()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> Self:
        """Enter the async context."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Disconnect on exit."""
        await self.disconnect()

    # ---------------------------------------------------------------------
    # SharedStore
    # ---------------------------------------------------------------------
    async def get(self, key: str) -> dict[str, Any] | None:
        """Return the current value of ``key``."""
        return await self._request(lambda rid: StoreGetMessage(request_id=rid, key=key))

    async def write(self, key: str, value: dict[str, Any]) -> int:
        """Replace the value of ``key``."""
        return int(
            await self._request(lambda rid: StoreWriteMessage(request_id=rid, key=key, value=value))
        )

    async def update(self, key: str, fields: dict[str, Any]) -> int:
        """Merge ``fields`` into the value of ``key``."""
        return int(
            await self._request(
                lambda rid: StoreUpdateMessage(request_id=rid, key=key, fields=fields)
            )
        )

    async def remove(self, key: str) -> bool:
        """Remove ``key``; True only if this request removed it."""
        return bool(await self._request(lambda rid: StoreRemoveMessage(request_id=rid, key=key)))

    async def push(self, collection: str, value: dict[str, Any]) -> str:
        """Append ``value`` to ``collection``."""
        return str(
            await self._request(
                lambda rid: StorePushMessage(request_id=rid, collection=collection, value=value)
            )
        )

    async def children(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        """Return the children of ``collection`` in insertion order."""
        value = await self._request(
            lambda rid: StoreChildrenMessage(request_id=rid, collection=collection)
        )
        return _child_pairs(value)

    async def clear(self, collection: str) -> int:
        """Remove every child of ``collection``."""
        return int(
            await self._request(lambda rid: StoreClearMessage(request_id=rid, collection=collection))
        )

    def subscribe(self, key: str, callback: SnapshotCallback) -> Unsubscribe:
        """Watch the value of ``key``."""
        return self._subscribe(key, callback, children=False)

    def subscribe_children(self, collection: str, callback: SnapshotCallback) -> Unsubscribe:
        """Watch the children of ``collection``."""
        return self._subscribe(collection, callback, children=True)

    # ---------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------
    def _subscribe(self, key: str, callback: SnapshotCallback, *, children: bool) -> Unsubscribe:
        if not self.connected:
            raise StoreError("Not connected to a relay")
        subscription_id = next(self._subscription_ids)
        self._subscriptions[subscription_id] = SubscriptionPump(key, callback, children=children)
        self._spawn(
            self._request(
                lambda rid: StoreSubscribeMessage(
                    request_id=rid, subscription_id=subscription_id, key=key, children=children
                )
            ),
            f"subscribe {key}",
        )

        def unsubscribe() -> None:
            subscription = self._subscriptions.pop(subscription_id, None)
            if subscription is None:
                return
            subscription.cancel()
            if self.connected:
                self._spawn(
                    self._request(
                        lambda rid: StoreUnsubscribeMessage(
                            request_id=rid, subscription_id=subscription_id
                        )
                    ),
                    f"unsubscribe {key}",
                )

        return unsubscribe

    def _spawn(self, coro: Any, description: str) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)

        def done(finished: asyncio.Task[Any]) -> None:
            self._background.discard(finished)
            if finished.cancelled():
                return
            if (err := finished.exception()) is not None:
                logger.warning("Relay request '%s' failed: %s", description, err)

        task.add_done_callback(done)

    async def _request(self, build: Callable[[int], ClientMessage]) -> Any:
        if not self.connected:
            raise StoreError("Not connected to a relay")
        request_id = next(self._request_ids)
        message = build(request_id)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send_json(message)
            async with asyncio.timeout(self._request_timeout):
                return await future
        except TimeoutError as err:
            raise StoreError(f"Relay did not answer {message.type} in time") from err
        except (ClientError, ConnectionError) as err:
            raise StoreError(f"Failed to send {message.type}: {err}") from err
        finally:
            self._pending.pop(request_id, None)

    async def _send_json(self, message: ClientMessage) -> None:
        if not self._ws:
            raise StoreError("WebSocket is not connected")
        async with self._send_lock:
            await self._ws.send_str(message.to_json())

    async def _reader_loop(self) -> None:
        assert self._ws is not None
        try:
            async for msg in self._ws:
                self._handle_ws_message(msg)
        except asyncio.CancelledError:  # pragma: no cover - cancellation path
            pass
        except Exception:
            logger.exception("WebSocket reader encountered an error")
        finally:
            if self._connected:
                logger.info("Connection to relay lost")
                await self.disconnect()

    def _handle_ws_message(self, msg: WSMessage) -> None:
        if msg.type is not WSMsgType.TEXT:
            logger.debug("Ignoring websocket message of type %s", msg.type)
            return
        try:
            message = ServerMessage.from_json(msg.data)
        except Exception:
            logger.exception("Failed to parse relay message: %s", msg.data)
            return
        match message:
            case StoreResultMessage():
                self._handle_result(message)
            case StoreSnapshotMessage():
                self._handle_snapshot(message)
            case _:
                logger.debug("Ignoring unsupported relay message %s", type(message).__name__)

    def _handle_result(self, message: StoreResultMessage) -> None:
        future = self._pending.get(message.request_id)
        if future is None or future.done():
            logger.debug("Result for unknown request %d", message.request_id)
            return
        if message.ok:
            future.set_result(message.value)
        else:
            future.set_exception(StoreError(message.error or "Relay request failed"))

    def _handle_snapshot(self, message: StoreSnapshotMessage) -> None:
        subscription = self._subscriptions.get(message.subscription_id)
        if subscription is None:
            return
        value = message.value
        if subscription.children:
            value = _child_pairs(value)
        subscription.deliver(Snapshot(key=message.key, revision=message.revision, value=value))


def _child_pairs(value: Any) -> list[tuple[str, dict[str, Any]]]:
    """Convert the ``[[id, value], ...]`` wire layout to tuples."""
    return [(str(child_id), child) for child_id, child in value or []]
