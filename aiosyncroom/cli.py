"""Command-line interface for running a relay or joining a room."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import uuid
from collections.abc import Sequence
from typing import Self

import aioconsole
from zeroconf import ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from aiosyncroom.client import PlayerNotReadyError, RemoteStore, SimulatedPlayer, SyncRoomClient
from aiosyncroom.client.timing import SystemClock
from aiosyncroom.models import QueueEntry, RoomState
from aiosyncroom.server import DEFAULT_PORT, SERVICE_TYPE, STORE_PATH, RelayServer
from aiosyncroom.store import StoreError

logger = logging.getLogger(__name__)

RESOLVE_TIMEOUT_MS = 1500

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level",
        default="INFO",
        choices=LOG_LEVELS,
        help="Logging level to use",
    )
    parser = argparse.ArgumentParser(description="Watch together over a shared store")
    subparsers = parser.add_subparsers(dest="command", required=True)

    relay = subparsers.add_parser(
        "relay", parents=[common], help="Run a relay sharing one store"
    )
    relay.add_argument("--host", default="0.0.0.0", help="Address to listen on")
    relay.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to listen on")
    relay.add_argument(
        "--advertise",
        action="store_true",
        help="Announce the relay via mDNS so clients can find it",
    )

    join = subparsers.add_parser(
        "join", parents=[common], help="Join a room with a simulated player"
    )
    join.add_argument("--room", required=True, help="Identifier of the room")
    join.add_argument(
        "--url",
        default=None,
        help="WebSocket URL of the relay. If omitted, discover via mDNS.",
    )
    join.add_argument("--id", default=None, help="Client identifier, random by default")
    join.add_argument("--create", action="store_true", help="Create the room before joining")
    join.add_argument("--item", default="", help="Initial item when creating the room")
    join.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Duration in seconds of every simulated item (unbounded by default)",
    )
    return parser.parse_args(argv)


def _relay_url(host: str, port: int, properties: dict[bytes, bytes | None]) -> str:
    """Return the store endpoint of a relay advertised at ``host``:``port``."""
    raw = properties.get(b"path")
    path = raw.decode("utf-8", "ignore").strip() if isinstance(raw, bytes) else ""
    path = "/" + path.lstrip("/") if path else STORE_PATH
    if ":" in host:
        host = f"[{host}]"
    return f"ws://{host}:{port}{path}"


class RelayBrowser:
    """
    Browses the local network for advertised relays.

    Use as an async context manager. Every advertisement is resolved in its
    own task; ``first()`` returns the store URL of whichever relay resolves
    first.
    """

    def __init__(self) -> None:
        """Create a browser; nothing is sent before entering the context."""
        self._zeroconf: AsyncZeroconf | None = None
        self._browser: AsyncServiceBrowser | None = None
        self._found: asyncio.Future[str] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    async def __aenter__(self) -> Self:
        """Start browsing."""
        self._loop = asyncio.get_running_loop()
        self._found = self._loop.create_future()
        self._zeroconf = AsyncZeroconf()
        try:
            self._browser = AsyncServiceBrowser(
                self._zeroconf.zeroconf, SERVICE_TYPE, handlers=[self._on_state_change]
            )
        except Exception:
            await self.close()
            raise
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        """Stop browsing."""
        await self.close()

    async def first(self) -> str:
        """Wait for the first relay to resolve and return its store URL."""
        if self._found is None:
            raise RuntimeError("RelayBrowser is not running")
        return await self._found

    async def close(self) -> None:
        """Cancel pending lookups and release the mDNS sockets."""
        for task in self._tasks:
            _ = task.cancel()
        if self._browser is not None:
            await self._browser.async_cancel()
            self._browser = None
        if self._zeroconf is not None:
            await self._zeroconf.async_close()
            self._zeroconf = None

    def _on_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        if state_change is ServiceStateChange.Removed or self._loop is None:
            return
        task = self._loop.create_task(self._resolve(zeroconf, service_type, name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _resolve(self, zeroconf: Zeroconf, service_type: str, name: str) -> None:
        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(zeroconf, RESOLVE_TIMEOUT_MS):
            logger.debug("Relay %s did not answer", name)
            return
        addresses = info.parsed_addresses()
        if not addresses or info.port is None:
            return
        url = _relay_url(addresses[0], info.port, info.properties)
        logger.debug("Relay %s resolved to %s", name, url)
        if self._found is not None and not self._found.done():
            self._found.set_result(url)


async def _discover_relay() -> str:
    async with RelayBrowser() as browser:
        logger.info("Waiting for mDNS discovery of a relay...")
        _print_event("Searching for relay...")
        return await browser.first()


async def run_relay(args: argparse.Namespace) -> int:
    """Run a relay until interrupted."""
    server = RelayServer()
    await server.start(args.host, args.port, advertise=args.advertise)
    _print_event(f"Relay listening on ws://{args.host}:{server.port}{STORE_PATH}")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, stop_event.set)
    loop.add_signal_handler(signal.SIGTERM, stop_event.set)
    try:
        await stop_event.wait()
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        loop.remove_signal_handler(signal.SIGTERM)
        await server.stop()
    return 0


async def run_join(args: argparse.Namespace) -> int:
    """Join a room and drive a simulated player from the keyboard."""
    url = args.url
    if url is None:
        try:
            url = await _discover_relay()
        except Exception:
            logger.exception("Failed to discover relay")
            return 1
        _print_event(f"Found relay at {url}")

    clock = SystemClock()
    player = SimulatedPlayer(clock, default_duration=args.duration)
    store = RemoteStore()
    try:
        await store.connect(url)
    except StoreError as err:
        _print_event(str(err))
        return 1

    client = SyncRoomClient(store, player, args.room, args.id or f"cli-{uuid.uuid4().hex[:8]}")
    try:
        if args.create:
            await client.create_room(args.item)
        client.add_room_listener(_print_room_state)
        client.add_queue_listener(_print_queue)
        async with client:
            _print_instructions()
            keyboard_task = asyncio.create_task(_keyboard_loop(client))
            loop = asyncio.get_running_loop()

            def signal_handler() -> None:
                logger.debug("Received interrupt signal, shutting down...")
                keyboard_task.cancel()

            loop.add_signal_handler(signal.SIGINT, signal_handler)
            try:
                done, _ = await asyncio.wait(
                    [keyboard_task, asyncio.create_task(_wait_disconnected(store))],
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if keyboard_task not in done:
                    _print_event("Connection to relay lost")
                    keyboard_task.cancel()
            except asyncio.CancelledError:  # pragma: no cover - cancellation path
                logger.debug("Keyboard loop cancelled")
            finally:
                loop.remove_signal_handler(signal.SIGINT)
    finally:
        await store.disconnect()
    return 0


async def _wait_disconnected(store: RemoteStore) -> None:
    while store.connected:  # noqa: ASYNC110
        await asyncio.sleep(0.5)


async def _keyboard_loop(client: SyncRoomClient) -> None:
    try:
        while True:
            try:
                line = await aioconsole.ainput()
            except EOFError:
                break
            parts = line.strip().split()
            if not parts:
                continue
            keyword = parts[0].lower()
            if keyword in {"quit", "exit", "q"}:
                break
            try:
                await _run_command(client, keyword, parts[1:])
            except (PlayerNotReadyError, StoreError, ValueError) as err:
                _print_event(f"Error: {err}")
    except asyncio.CancelledError:
        logger.debug("Keyboard loop cancelled, exiting gracefully")
        raise


async def _run_command(client: SyncRoomClient, keyword: str, args: list[str]) -> None:
    if keyword in {"play", "p"}:
        await client.play()
    elif keyword == "pause":
        await client.pause()
    elif keyword == "seek" and len(args) == 1:
        await client.seek(float(args[0]))
    elif keyword == "load" and len(args) == 1:
        await client.load_item(args[0], autoplay=True)
    elif keyword == "queue" and len(args) == 1:
        entry_id = await client.add_to_queue(args[0])
        _print_event(f"Queued {args[0]} as {entry_id}")
    elif keyword == "rm" and len(args) == 1:
        if not await client.remove_from_queue(args[0]):
            _print_event(f"No queue entry {args[0]}")
    elif keyword == "clear":
        _print_event(f"Removed {await client.clear_queue()} entries")
    elif keyword in {"next", "n"}:
        if await client.play_next() is None:
            _print_event("Queue is empty")
    elif keyword == "status":
        _print_status(client)
    else:
        _print_event("Unknown command")


def _print_room_state(state: RoomState) -> None:
    transport = "playing" if state.is_playing else "paused"
    item = state.item_id or "<nothing>"
    _print_event(f"Room: {item} {transport} at {state.position:.1f}s (by {state.updated_by})")


def _print_queue(entries: list[QueueEntry]) -> None:
    if not entries:
        _print_event("Queue: empty")
        return
    _print_event("Queue: " + ", ".join(f"{entry.item_id} [{entry.id}]" for entry in entries))


def _print_status(client: SyncRoomClient) -> None:
    state = client.room_state
    if state is None:
        _print_event("Room state not received yet")
    else:
        _print_room_state(state)
    _print_event(f"Local playhead: {client.current_time:.1f}s")
    _print_queue(client.queue)


def _print_event(message: str) -> None:
    print(message, flush=True)  # noqa: T201


def _print_instructions() -> None:
    print(  # noqa: T201
        (
            "Commands: play(p), pause, seek <s>, load <id>, queue <id>, rm <entry>, clear, "
            "next(n), status, quit(q)"
        ),
        flush=True,
    )


async def main_async(argv: Sequence[str] | None = None) -> int:
    """Entry point executing the asynchronous CLI workflow."""
    args = parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(level=getattr(logging, args.log_level))
    if args.command == "relay":
        return await run_relay(args)
    return await run_join(args)


def main() -> int:
    """Run the CLI."""
    return asyncio.run(main_async(sys.argv[1:]))


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
