"""Public interface for the aiosyncroom client package."""

from .echo import EchoGuard
from .player import PlayerAdapter, PlayerNotReadyError, SimulatedPlayer, StatusListener
from .publisher import IntentPublisher
from .queue import QueueController
from .reconciler import ReconciliationEngine
from .remote import REQUEST_TIMEOUT, RemoteStore
from .scheduler import Scheduler
from .session import PositionCallback, QueueCallback, RoomCallback, SyncRoomClient
from .timing import (
    Clock,
    SyncTimings,
    SystemClock,
    expected_position,
    measure_drift,
    needs_correction,
)

__all__ = [
    "REQUEST_TIMEOUT",
    "Clock",
    "EchoGuard",
    "IntentPublisher",
    "PlayerAdapter",
    "PlayerNotReadyError",
    "PositionCallback",
    "QueueCallback",
    "QueueController",
    "ReconciliationEngine",
    "RemoteStore",
    "RoomCallback",
    "Scheduler",
    "SimulatedPlayer",
    "StatusListener",
    "SyncRoomClient",
    "SyncTimings",
    "SystemClock",
    "expected_position",
    "measure_drift",
    "needs_correction",
]
