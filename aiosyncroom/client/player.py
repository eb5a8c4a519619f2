"""Local player adapter contract and a simulated implementation."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from aiosyncroom.models.types import PlayerStatus

from .timing import Clock

logger = logging.getLogger(__name__)

StatusListener = Callable[[PlayerStatus], None]


class PlayerNotReadyError(Exception):
    """The player cannot execute the call yet, e.g. while an item is loading."""


class PlayerAdapter(Protocol):
    """The media engine a client drives."""

    def current_item(self) -> str | None:
        """Return the id of the loaded item, or None."""

    def load_item(self, item_id: str) -> None:
        """Load ``item_id``, resetting the playhead to 0."""

    def play(self) -> None:
        """Start or resume playback."""

    def pause(self) -> None:
        """Pause playback."""

    def seek(self, seconds: float) -> None:
        """Move the playhead to ``seconds``."""

    def current_time(self) -> float:
        """Return the playhead position in seconds."""

    def status(self) -> PlayerStatus:
        """Return the transport status."""

    def add_status_listener(self, callback: StatusListener) -> Callable[[], None]:
        """Register a callback for status transitions; return a remover."""


class SimulatedPlayer:
    """
    Player without media: the playhead is derived from a clock.

    Items have a duration (per item, or a default); a playing item reaches
    PlayerStatus.ENDED once its playhead passes the duration. Status listeners
    are invoked synchronously from the call that caused the transition.
    """

    def __init__(
        self,
        clock: Clock,
        *,
        durations: dict[str, float] | None = None,
        default_duration: float | None = None,
    ) -> None:
        """Create an empty player."""
        self._clock = clock
        self._durations = dict(durations or {})
        self._default_duration = default_duration
        self._item: str | None = None
        self._status = PlayerStatus.UNSTARTED
        self._anchor_position = 0.0
        self._anchor_time = clock.monotonic()
        self._listeners: list[StatusListener] = []

    def current_item(self) -> str | None:
        """Return the id of the loaded item, or None."""
        return self._item

    @property
    def duration(self) -> float | None:
        """Duration of the loaded item, None when unbounded."""
        if self._item is None:
            return None
        return self._durations.get(self._item, self._default_duration)

    def load_item(self, item_id: str) -> None:
        """Load ``item_id`` and cue it at 0."""
        if not item_id:
            raise ValueError("item_id must not be empty")
        logger.debug("Loading item %s", item_id)
        self._item = item_id
        self._anchor(0.0)
        self._set_status(PlayerStatus.UNSTARTED)

    def play(self) -> None:
        """Start or resume playback; an ended item restarts from 0."""
        self._ensure_loaded()
        if self.status() is PlayerStatus.PLAYING:
            return
        start = 0.0 if self._status is PlayerStatus.ENDED else self._anchor_position
        self._anchor(start)
        self._set_status(PlayerStatus.PLAYING)

    def pause(self) -> None:
        """Freeze the playhead."""
        self._ensure_loaded()
        if self.status() is PlayerStatus.ENDED:
            return
        self._anchor(self.current_time())
        self._set_status(PlayerStatus.PAUSED)

    def seek(self, seconds: float) -> None:
        """Move the playhead, keeping the transport status."""
        self._ensure_loaded()
        if seconds < 0:
            raise ValueError(f"Cannot seek to negative position {seconds}")
        duration = self.duration
        if duration is not None:
            seconds = min(seconds, duration)
        self._anchor(seconds)
        if self._status is PlayerStatus.ENDED and (duration is None or seconds < duration):
            self._set_status(PlayerStatus.PAUSED)

    def current_time(self) -> float:
        """Return the playhead position in seconds."""
        if self._status is not PlayerStatus.PLAYING:
            return self._anchor_position
        position = self._anchor_position + (self._clock.monotonic() - self._anchor_time)
        duration = self.duration
        if duration is not None:
            position = min(position, duration)
        return position

    def status(self) -> PlayerStatus:
        """Return the transport status, noticing the end of the item."""
        if self._status is PlayerStatus.PLAYING:
            duration = self.duration
            if duration is not None and self.current_time() >= duration:
                self._anchor(duration)
                self._set_status(PlayerStatus.ENDED)
        return self._status

    def add_status_listener(self, callback: StatusListener) -> Callable[[], None]:
        """Register a callback for status transitions."""
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback)

    def _ensure_loaded(self) -> None:
        if self._item is None:
            raise PlayerNotReadyError("No item loaded")

    def _anchor(self, position: float) -> None:
        self._anchor_position = position
        self._anchor_time = self._clock.monotonic()

    def _set_status(self, status: PlayerStatus) -> None:
        if status is self._status:
            return
        self._status = status
        for callback in list(self._listeners):
            try:
                callback(status)
            except Exception:
                logger.exception("Error in player status listener %s", callback)
