"""Clock and drift helpers shared by the client components."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol

DRIFT_THRESHOLD = 0.5
"""Seconds of disagreement tolerated before the playhead is corrected."""
DRIFT_CHECK_INTERVAL = 2.0
QUIESCENCE_WINDOW = 0.5
"""Seconds after a correction during which new snapshots are not applied."""
ECHO_RELEASE_DELAY = 0.1
TERMINAL_POLL_INTERVAL = 1.0
POSITION_SAMPLE_INTERVAL = 0.5


class Clock(Protocol):
    """Source of wall clock and monotonic time."""

    def now_ms(self) -> int:
        """Return wall clock time in epoch milliseconds."""

    def monotonic(self) -> float:
        """Return monotonic time in seconds."""


class SystemClock:
    """Clock reading the host clocks."""

    def now_ms(self) -> int:
        """Return wall clock time in epoch milliseconds."""
        return int(time.time() * 1000)

    def monotonic(self) -> float:
        """Return monotonic time in seconds."""
        return time.monotonic()


@dataclass(frozen=True, slots=True)
class SyncTimings:
    """Intervals and thresholds of the synchronisation protocol, in seconds."""

    drift_threshold: float = DRIFT_THRESHOLD
    drift_check_interval: float = DRIFT_CHECK_INTERVAL
    quiescence: float = QUIESCENCE_WINDOW
    echo_release_delay: float = ECHO_RELEASE_DELAY
    terminal_poll_interval: float = TERMINAL_POLL_INTERVAL
    position_sample_interval: float = POSITION_SAMPLE_INTERVAL

    def __post_init__(self) -> None:
        """Validate the configured values."""
        for name in ("drift_check_interval", "terminal_poll_interval", "position_sample_interval"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        for name in ("drift_threshold", "quiescence", "echo_release_delay"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")


def expected_position(position: float, is_playing: bool, updated_at_ms: int, now_ms: int) -> float:
    """
    Return where the playhead should be at ``now_ms``.

    The published position is only valid as of ``updated_at_ms`` on the
    publisher's clock; while playing it advances with elapsed time. Clock skew
    between publisher and reader shows up here as a constant offset.
    """
    if not is_playing:
        return position
    return max(0.0, position + (now_ms - updated_at_ms) / 1000)


def measure_drift(actual: float, expected: float) -> float:
    """Return how far the local playhead is ahead (positive) of the expected one."""
    return actual - expected


def needs_correction(drift: float, threshold: float = DRIFT_THRESHOLD) -> bool:
    """Return True if ``drift`` is large enough to seek."""
    return abs(drift) > threshold
