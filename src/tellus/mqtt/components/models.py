"""
Data model for the Tellus monitor session.

Everything handed to consumers is frozen; sequences are stored as tuples so a
snapshot stays read-only all the way down.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .exceptions import ConfigurationError


SPECTRUM_LENGTH = 288
DEFAULT_LOG_CAPACITY = 200


class ConnectionState(Enum):
    """Lifecycle state of the broker session."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


class ErrorCategory(Enum):
    """Closed set of connection failure classes."""
    AUTH = "auth"
    HOST_UNRESOLVED = "host_unresolved"
    TIMEOUT = "timeout"
    TLS_FAILURE = "tls_failure"
    GENERIC = "generic"


class TopicRole(Enum):
    """The four topic roles, in routing priority order."""
    ONLINE = "online"
    SPECTRUM = "spectrum"
    LOG = "log"
    CARBON = "carbon"


@dataclass(frozen=True)
class ConnectionConfig:
    """Broker credentials for a single connection attempt."""

    broker_host: str
    broker_port: int
    username: str = ""
    password: str = field(default="", repr=False)

    def __post_init__(self):
        if not isinstance(self.broker_host, str) or not self.broker_host.strip():
            raise ConfigurationError("broker_host must be a non-empty string")
        if isinstance(self.broker_port, bool) or not isinstance(self.broker_port, int) or self.broker_port <= 0:
            raise ConfigurationError(f"broker_port must be a positive integer, got {self.broker_port!r}")

    @property
    def has_authentication(self) -> bool:
        return bool(self.username and self.password)


@dataclass(frozen=True)
class TopicSet:
    """Topic names for the four roles the device publishes on."""

    online: str
    spectrum: str
    log: str
    carbon: str

    def __post_init__(self):
        for role in TopicRole:
            name = getattr(self, role.value)
            if not isinstance(name, str) or not name:
                raise ConfigurationError(f"Topic for role '{role.value}' must be a non-empty string")

    def as_list(self) -> List[str]:
        """Topic names in routing order: online, spectrum, log, carbon."""
        return [self.online, self.spectrum, self.log, self.carbon]

    def role_for(self, topic: str) -> Optional[TopicRole]:
        """Return the first role whose topic equals ``topic`` exactly."""
        for role in TopicRole:
            if getattr(self, role.value) == topic:
                return role
        return None


@dataclass(frozen=True)
class SpectrumReading:
    """A validated spectrum with the carbon estimate current at arrival."""
    timestamp: str
    values: Tuple[float, ...]
    carbon: Optional[float] = None


@dataclass(frozen=True)
class LogEntry:
    timestamp: str
    message: str


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable point-in-time view of the session, handed to consumers."""

    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    is_online: bool = False
    current_spectrum: Optional[SpectrumReading] = None
    current_carbon: Optional[float] = None
    logs: Tuple[LogEntry, ...] = ()
    last_error: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    last_connected_at: Optional[str] = None
    auto_reconnect: bool = True

    @property
    def is_connected(self) -> bool:
        return self.connection_state is ConnectionState.CONNECTED
