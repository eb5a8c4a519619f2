"""
Relay server sharing one store between many aiosyncroom clients.

RelayServer is responsible for:
- Accepting RemoteStore connections on a WebSocket endpoint
- Executing store requests and forwarding subscription snapshots
- Optionally announcing itself over mDNS
"""

__all__ = [
    "DEFAULT_PORT",
    "MAX_PENDING_MSG",
    "SERVICE_TYPE",
    "STORE_PATH",
    "RelayConnection",
    "RelayServer",
]

from .connection import MAX_PENDING_MSG, RelayConnection
from .relay import DEFAULT_PORT, SERVICE_TYPE, STORE_PATH, RelayServer
