"""Relay server exposing one shared store to many processes over WebSockets."""

import logging
import socket
from contextlib import suppress

from aiohttp import web
from zeroconf.asyncio import AsyncServiceInfo, AsyncZeroconf

from aiosyncroom.store.memory import MemoryStore

from .connection import RelayConnection

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_syncroom._tcp.local."
DEFAULT_PORT = 8937
STORE_PATH = "/store"


def _local_ip() -> str:
    """Return the address of the interface used for outgoing traffic."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            # UDP connect does not send anything
            sock.connect(("10.255.255.255", 1))
            return str(sock.getsockname()[0])
        except OSError:
            return "127.0.0.1"


class RelayServer:
    """Serves a MemoryStore on ``GET /store`` to RemoteStore clients."""

    _store: MemoryStore
    _peers: set[RelayConnection]
    _runner: web.AppRunner | None
    _zeroconf: AsyncZeroconf | None
    _service_info: AsyncServiceInfo | None

    def __init__(self, store: MemoryStore | None = None, *, name: str | None = None) -> None:
        """
        Initialize a relay.

        Args:
            store: Store to expose, a new empty MemoryStore when omitted.
            name: Instance name advertised over mDNS, the host name by default.
        """
        self._store = store if store is not None else MemoryStore()
        self._name = name or socket.gethostname()
        self._peers = set()
        self._runner = None
        self._zeroconf = None
        self._service_info = None
        self._port: int | None = None
        logger.debug("RelayServer initialized: name=%s", self._name)

    @property
    def store(self) -> MemoryStore:
        """The store shared by every peer."""
        return self._store

    @property
    def peers(self) -> set[RelayConnection]:
        """Currently connected peers."""
        return self._peers

    @property
    def port(self) -> int | None:
        """Port the relay listens on once started."""
        return self._port

    def create_app(self) -> web.Application:
        """Return an aiohttp application serving the relay endpoint."""
        app = web.Application()
        app.router.add_get(STORE_PATH, self.on_peer_connect)
        return app

    async def on_peer_connect(self, request: web.Request) -> web.WebSocketResponse:
        """Handle an incoming WebSocket connection from a RemoteStore."""
        logger.debug("Incoming peer connection from %s", request.remote)
        peer = RelayConnection(self, request)
        self._peers.add(peer)
        try:
            return await peer.handle()
        finally:
            self._peers.discard(peer)

    async def start(
        self, host: str = "0.0.0.0", port: int = DEFAULT_PORT, *, advertise: bool = False
    ) -> None:
        """Start listening, optionally announcing the relay over mDNS."""
        if self._runner is not None:
            raise RuntimeError("Relay is already running")
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        self._port = port
        if port == 0 and self._runner.addresses:
            # Ephemeral port picked by the OS
            self._port = int(self._runner.addresses[0][1])
        logger.info("Relay listening on %s:%s%s", host, self._port, STORE_PATH)
        if advertise:
            await self._advertise(host)

    async def stop(self) -> None:
        """Stop advertising, disconnect every peer and close the store."""
        if self._zeroconf is not None:
            if self._service_info is not None:
                with suppress(Exception):
                    await self._zeroconf.async_unregister_service(self._service_info)
            await self._zeroconf.async_close()
            self._zeroconf = None
            self._service_info = None
        for peer in list(self._peers):
            await peer.disconnect()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        await self._store.close()
        logger.info("Relay stopped")

    async def _advertise(self, host: str) -> None:
        address = _local_ip() if host in ("0.0.0.0", "") else host
        assert self._port is not None
        self._service_info = AsyncServiceInfo(
            SERVICE_TYPE,
            f"{self._name}.{SERVICE_TYPE}",
            parsed_addresses=[address],
            port=self._port,
            properties={"path": STORE_PATH},
        )
        self._zeroconf = AsyncZeroconf()
        await self._zeroconf.async_register_service(self._service_info)
        logger.info("Advertising relay as %s on %s", self._name, address)
