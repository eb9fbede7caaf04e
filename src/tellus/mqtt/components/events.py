"""
Events consumed by the session state machine.

Three families share one queue: domain events produced by the payload
decoders, transport events translated from MQTT client callbacks, and command
events issued by the presentation layer. Transport events carry the id of the
transport session that produced them so events from a replaced session can
be dropped.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .models import ConnectionConfig, TopicSet


# Domain events

@dataclass(frozen=True)
class DeviceOnlineEvent:
    online: bool


@dataclass(frozen=True)
class SpectrumEvent:
    values: Tuple[float, ...]


@dataclass(frozen=True)
class CarbonEvent:
    value: float


@dataclass(frozen=True)
class LogEvent:
    message: str


# Transport events

@dataclass(frozen=True)
class TransportConnected:
    session_id: int


@dataclass(frozen=True)
class TransportMessage:
    session_id: int
    topic: str
    payload: bytes


@dataclass(frozen=True)
class TransportError:
    session_id: int
    message: str


@dataclass(frozen=True)
class TransportClosed:
    session_id: int
    reason: str = ""


@dataclass(frozen=True)
class SubscriptionFailed:
    session_id: int
    topic: str
    reason: str = ""


# Internal events

@dataclass(frozen=True)
class ReconnectAttempt:
    """Posted by the retry timer when the reconnect delay has elapsed."""
    attempt: int


@dataclass(frozen=True)
class TimerFired:
    """A scheduled callback that must run on the event consumer."""
    callback: Callable[[], None]


# Command events

@dataclass(frozen=True)
class ConnectRequested:
    config: ConnectionConfig
    topics: TopicSet


@dataclass(frozen=True)
class DisconnectRequested:
    pass


@dataclass(frozen=True)
class ReconnectRequested:
    pass


@dataclass(frozen=True)
class ClearErrorRequested:
    pass


@dataclass(frozen=True)
class ConfigUpdated:
    config: ConnectionConfig
    topics: Optional[TopicSet] = None
