"""Models for enum types used by aiosyncroom."""

from dataclasses import dataclass
from enum import Enum

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Discriminator


# Base message classes
@dataclass
class ClientMessage(DataClassORJSONMixin):
    """Base class for messages sent by a relay client."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)


@dataclass
class ServerMessage(DataClassORJSONMixin):
    """Base class for messages sent by the relay server."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)


# Enums


class PlayerStatus(Enum):
    """Status reported by a local player adapter."""

    UNSTARTED = "unstarted"
    """Nothing has been played since the item was loaded."""
    PLAYING = "playing"
    PAUSED = "paused"
    BUFFERING = "buffering"
    """Transport wants to play but media is not available yet."""
    ENDED = "ended"
    """Terminal status, the playhead reached the end of the item."""


class QueueState(Enum):
    """States of the queue consumption controller."""

    WATCHING = "watching"
    PROMOTING = "promoting"
