"""
MQTT Components Module

Connection and stream-state manager for the Tellus spectroscopy monitor:
payload decoding, liveness tracking, error classification, the session
state machine and the snapshot publisher.
"""

from .models import (
    ConnectionConfig,
    ConnectionState,
    ErrorCategory,
    LogEntry,
    SessionSnapshot,
    SpectrumReading,
    TopicRole,
    TopicSet,
)
from .decoders import decode
from .error_classifier import classify, describe
from .liveness import LivenessTracker
from .reconnect_policy import ReconnectPolicy
from .transport import PahoTransport, PahoTransportFactory, TransportOptions
from .session_machine import SessionStateMachine
from .snapshot_publisher import SnapshotPublisher
from .config_manager import ConfigurationManager

from .exceptions import (
    TellusError,
    TellusCommunicationError,
    TellusProcessingError,
    PayloadDecodeError,
    InvalidSpectrumError,
    InvalidCarbonError,
    ConfigurationError,
    wrap_exception
)

__all__ = [
    'ConnectionConfig',
    'ConnectionState',
    'ErrorCategory',
    'LogEntry',
    'SessionSnapshot',
    'SpectrumReading',
    'TopicRole',
    'TopicSet',
    'decode',
    'classify',
    'describe',
    'LivenessTracker',
    'ReconnectPolicy',
    'PahoTransport',
    'PahoTransportFactory',
    'TransportOptions',
    'SessionStateMachine',
    'SnapshotPublisher',
    'ConfigurationManager',

    'TellusError',
    'TellusCommunicationError',
    'TellusProcessingError',
    'PayloadDecodeError',
    'InvalidSpectrumError',
    'InvalidCarbonError',
    'ConfigurationError',
    'wrap_exception'
]
