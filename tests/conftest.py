"""Shared fakes for the aiosyncroom tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import pytest
import pytest_asyncio

from aiosyncroom.client.player import SimulatedPlayer
from aiosyncroom.store.memory import MemoryStore

START_MS = 1_700_000_000_000


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start_ms: int = START_MS, monotonic: float = 1_000.0) -> None:
        self._wall_ms = float(start_ms)
        self._monotonic = monotonic

    def now_ms(self) -> int:
        return round(self._wall_ms)

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        self._wall_ms += seconds * 1000
        self._monotonic += seconds


class RecordingPlayer(SimulatedPlayer):
    """SimulatedPlayer remembering every transport call."""

    def __init__(self, clock: ManualClock, **kwargs: Any) -> None:
        super().__init__(clock, **kwargs)
        self.calls: list[tuple[str, Any]] = []

    def load_item(self, item_id: str) -> None:
        self.calls.append(("load_item", item_id))
        super().load_item(item_id)

    def play(self) -> None:
        self.calls.append(("play", None))
        super().play()

    def pause(self) -> None:
        self.calls.append(("pause", None))
        super().pause()

    def seek(self, seconds: float) -> None:
        self.calls.append(("seek", seconds))
        super().seek(seconds)


class YieldingStore(MemoryStore):
    """MemoryStore whose reads return after a round trip through the event loop."""

    async def children(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        result = await super().children(collection)
        await asyncio.sleep(0)
        return result


async def settle(rounds: int = 20) -> None:
    """Let pending subscription deliveries and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def park(_seconds: float) -> None:
    """Sleep that never returns, so periodic tasks run exactly once."""
    await asyncio.Event().wait()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def player(clock: ManualClock) -> RecordingPlayer:
    return RecordingPlayer(clock)


@pytest_asyncio.fixture
async def store(clock: ManualClock) -> AsyncIterator[MemoryStore]:
    memory = MemoryStore(now_ms=clock.now_ms)
    yield memory
    await memory.close()
