"""
Session State Machine Module

Owns the broker session lifecycle and all derived state. Every input, whether
a transport callback, a timer or a user command, arrives as an event through
``handle``; each event is processed to completion before the next one, and a
new snapshot is published whenever something changed.

States: DISCONNECTED -> CONNECTING -> CONNECTED <-> RECONNECTING, with ERROR
reachable whenever the transport reports a failure.
"""

import itertools
import logging
import time
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Optional

from .decoders import decode
from .error_classifier import classify, describe, is_terminal
from .events import (
    CarbonEvent,
    ClearErrorRequested,
    ConfigUpdated,
    ConnectRequested,
    DeviceOnlineEvent,
    DisconnectRequested,
    LogEvent,
    ReconnectAttempt,
    ReconnectRequested,
    SpectrumEvent,
    SubscriptionFailed,
    TimerFired,
    TransportClosed,
    TransportConnected,
    TransportError,
    TransportMessage,
)
from .exceptions import PayloadDecodeError
from .liveness import DEFAULT_INACTIVITY_TIMEOUT, LivenessTracker, Scheduler, TimerHandle
from .models import (
    DEFAULT_LOG_CAPACITY,
    ConnectionConfig,
    ConnectionState,
    ErrorCategory,
    LogEntry,
    SessionSnapshot,
    SpectrumReading,
    TopicSet,
)
from .reconnect_policy import ReconnectPolicy
from .transport import Transport, TransportFactory


TRANSPORT_EVENTS = (TransportConnected, TransportMessage, TransportError, TransportClosed, SubscriptionFailed)

CONNECTABLE_STATES = (ConnectionState.DISCONNECTED, ConnectionState.ERROR)


class SessionStateMachine:
    """
    Connection and stream-state manager for a single broker session.

    Responsibilities:
    - Open, subscribe and tear down the transport session
    - Route incoming messages to the payload decoders
    - Maintain current spectrum, carbon estimate, device log and liveness
    - Classify transport failures and schedule automatic reconnection
    - Publish an immutable snapshot after every change
    """

    def __init__(self, transport_factory: TransportFactory, scheduler: Scheduler, *,
                 inactivity_timeout: float = DEFAULT_INACTIVITY_TIMEOUT,
                 log_capacity: int = DEFAULT_LOG_CAPACITY,
                 reconnect_policy: Optional[ReconnectPolicy] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 on_change: Optional[Callable[[SessionSnapshot], None]] = None):
        """
        Initialize SessionStateMachine.

        Args:
            transport_factory: Callable building a transport for (config, session_id)
            scheduler: Source of cancellable timers (liveness and retries)
            inactivity_timeout: Seconds without telemetry before the device is offline
            log_capacity: Maximum number of device log entries kept
            reconnect_policy: Retry schedule (fixed 2 s interval by default)
            clock: Wall clock used for timestamps (UTC now by default)
            on_change: Callback receiving every new snapshot
        """
        if log_capacity <= 0:
            raise ValueError(f"log_capacity must be positive, got {log_capacity}")

        self.transport_factory = transport_factory
        self.scheduler = scheduler
        self.reconnect_policy = reconnect_policy or ReconnectPolicy()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.on_change = on_change

        self.liveness = LivenessTracker(scheduler, inactivity_timeout, on_change=self._on_liveness_change)

        self._state = ConnectionState.DISCONNECTED
        self._spectrum: Optional[SpectrumReading] = None
        self._carbon: Optional[float] = None
        self._logs: Deque[LogEntry] = deque(maxlen=log_capacity)
        self._last_error: Optional[str] = None
        self._error_category: Optional[ErrorCategory] = None
        self._last_connected_at: Optional[str] = None
        self._auto_reconnect = True

        self._config: Optional[ConnectionConfig] = None
        self._topics: Optional[TopicSet] = None
        self._transport: Optional[Transport] = None
        self._session_id: Optional[int] = None
        self._session_ids = itertools.count(1)

        self._retry_timer: Optional[TimerHandle] = None
        self._retry_attempt = 0

        # Decode error tracking for warnings
        self._decode_errors: Dict[str, int] = defaultdict(int)
        self._last_decode_error: Optional[PayloadDecodeError] = None
        self._last_warning_time: Dict[str, float] = {}

        self._dispatch_depth = 0
        self._dirty = False
        self._snapshot = SessionSnapshot()

        self._handlers: Dict[type, Callable[[Any], Any]] = {
            TransportConnected: self._on_transport_connected,
            TransportMessage: self._on_transport_message,
            TransportError: self._on_transport_error,
            TransportClosed: self._on_transport_closed,
            SubscriptionFailed: self._on_subscription_failed,
            ReconnectAttempt: self._on_reconnect_attempt,
            TimerFired: lambda event: event.callback(),
            ConnectRequested: lambda event: self._connect(event.config, event.topics),
            DisconnectRequested: lambda event: self._disconnect(),
            ReconnectRequested: lambda event: self._reconnect(),
            ClearErrorRequested: lambda event: self._clear_error(),
            ConfigUpdated: lambda event: self._update_config(event.config, event.topics),
        }

    # Public interface

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def config(self) -> Optional[ConnectionConfig]:
        return self._config

    @property
    def topics(self) -> Optional[TopicSet]:
        return self._topics

    @property
    def session_id(self) -> Optional[int]:
        return self._session_id

    @property
    def retry_pending(self) -> bool:
        return self._retry_timer is not None

    @property
    def decode_error_counts(self) -> Dict[str, int]:
        return dict(self._decode_errors)

    @property
    def last_decode_error(self) -> Optional[PayloadDecodeError]:
        return self._last_decode_error

    def handle(self, event) -> Any:
        """
        Process one event to completion.

        Transport events from a session other than the current one, or
        arriving while no session is open, are dropped.
        """
        handler = self._handlers.get(type(event))
        if handler is None:
            logging.warning("Ignoring unknown event", extra={'event_type': type(event).__name__})
            return None

        if isinstance(event, TRANSPORT_EVENTS) and (self._session_id is None or event.session_id != self._session_id):
            logging.debug("Dropping event from stale session", extra={
                'event_type': type(event).__name__,
                'event_session_id': event.session_id,
                'current_session_id': self._session_id
            })
            return None

        return self._dispatch(handler, event)

    def connect(self, config: ConnectionConfig, topics: TopicSet) -> bool:
        """Open a new session. Only valid from DISCONNECTED or ERROR."""
        return self.handle(ConnectRequested(config, topics))

    def disconnect(self):
        """Tear the session down and clear all derived state."""
        self.handle(DisconnectRequested())

    def reconnect(self) -> bool:
        """Disconnect, then connect again with the most recent configuration."""
        return self.handle(ReconnectRequested())

    def clear_error(self):
        self.handle(ClearErrorRequested())

    def update_config(self, config: ConnectionConfig, topics: Optional[TopicSet] = None):
        """Store new credentials for the next connect and lift any auth suppression."""
        self.handle(ConfigUpdated(config, topics))

    # Dispatch and publication

    def _dispatch(self, handler, event):
        self._dispatch_depth += 1
        try:
            return handler(event)
        finally:
            self._dispatch_depth -= 1
            if self._dispatch_depth == 0:
                self._flush()

    def _mark_changed(self):
        self._dirty = True

    def _flush(self):
        if not self._dirty:
            return
        self._dirty = False
        self._snapshot = SessionSnapshot(
            connection_state=self._state,
            is_online=self.liveness.is_online,
            current_spectrum=self._spectrum,
            current_carbon=self._carbon,
            logs=tuple(self._logs),
            last_error=self._last_error,
            error_category=self._error_category,
            last_connected_at=self._last_connected_at,
            auto_reconnect=self._auto_reconnect,
        )
        if self.on_change:
            self.on_change(self._snapshot)

    def _on_liveness_change(self, online: bool):
        self._mark_changed()
        # Timer expiry outside of an event still has to publish
        if self._dispatch_depth == 0:
            self._flush()

    def _set_state(self, state: ConnectionState):
        if state is self._state:
            return
        logging.info("Connection state changed", extra={
            'from_state': self._state.value,
            'to_state': state.value,
            'session_id': self._session_id
        })
        self._state = state
        self._mark_changed()

    def _timestamp(self) -> str:
        return self.clock().isoformat()

    # Commands

    def _connect(self, config: ConnectionConfig, topics: TopicSet) -> bool:
        if self._state not in CONNECTABLE_STATES:
            logging.warning("Connect rejected, a session is already active", extra={
                'connection_state': self._state.value,
                'session_id': self._session_id
            })
            return False

        self._config = config
        self._topics = topics
        self._set_auto_reconnect(True)
        self._cancel_retry()
        self._retry_attempt = 0
        self._open_session(ConnectionState.CONNECTING)
        return True

    def _disconnect(self):
        self._cancel_retry()
        self._retry_attempt = 0
        self._end_session()
        self.liveness.reset()

        if self._spectrum is not None or self._carbon is not None or self._logs:
            self._spectrum = None
            self._carbon = None
            self._logs.clear()
            self._mark_changed()

        self._set_state(ConnectionState.DISCONNECTED)
        logging.info("Session disconnected")

    def _reconnect(self) -> bool:
        if self._config is None or self._topics is None:
            logging.warning("Reconnect requested before any configuration was supplied")
            return False

        self._disconnect()
        self._clear_error()
        return self._connect(self._config, self._topics)

    def _clear_error(self):
        if self._last_error is not None or self._error_category is not None:
            self._last_error = None
            self._error_category = None
            self._mark_changed()

    def _update_config(self, config: ConnectionConfig, topics: Optional[TopicSet]):
        self._config = config
        if topics is not None:
            self._topics = topics
        self._clear_error()
        self._set_auto_reconnect(True)
        logging.info("Connection configuration updated", extra={
            'broker_host': config.broker_host,
            'broker_port': config.broker_port,
            'username': config.username
        })

    # Session management

    def _open_session(self, state: ConnectionState):
        self._end_session()
        self._session_id = next(self._session_ids)
        self._set_state(state)

        try:
            self._transport = self.transport_factory(self._config, self._session_id)
            self._transport.open()
        except Exception as e:
            logging.error("Failed to create MQTT transport", extra={
                'error_type': type(e).__name__,
                'error_message': str(e),
                'session_id': self._session_id
            })
            self._transport = None
            self._apply_error(f"Failed to connect: {type(e).__name__}: {e}")

    def _end_session(self):
        transport, self._transport = self._transport, None
        self._session_id = None
        if transport is None:
            return
        try:
            transport.close(force=True)
        except Exception as e:
            logging.warning("Error closing MQTT transport", extra={
                'error_type': type(e).__name__,
                'error_message': str(e)
            })

    def _set_auto_reconnect(self, enabled: bool):
        if enabled != self._auto_reconnect:
            self._auto_reconnect = enabled
            self._mark_changed()

    def _schedule_retry(self):
        if not self._auto_reconnect or self._config is None or self._retry_timer is not None:
            return

        attempt = self._retry_attempt + 1
        if not self.reconnect_policy.allows(attempt):
            logging.warning("Automatic reconnection attempts exhausted", extra={
                'attempts': self._retry_attempt,
                'max_attempts': self.reconnect_policy.max_attempts
            })
            return

        delay = self.reconnect_policy.delay_for(attempt)
        logging.debug("Scheduling reconnection", extra={'attempt': attempt, 'delay': delay})
        self._retry_timer = self.scheduler.call_later(delay, self._fire_retry, attempt)

    def _fire_retry(self, attempt: int):
        self._retry_timer = None
        self.handle(ReconnectAttempt(attempt))

    def _cancel_retry(self):
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    # Transport events

    def _on_transport_connected(self, event: TransportConnected):
        self._cancel_retry()
        self._retry_attempt = 0
        self._clear_error()
        if self._last_connected_at is None:
            self._last_connected_at = self._timestamp()
            self._mark_changed()
        self._set_state(ConnectionState.CONNECTED)

        topics = self._topics.as_list()
        try:
            self._transport.subscribe(topics)
            logging.info("Subscribing to topics", extra={'topics': topics, 'session_id': self._session_id})
        except Exception as e:
            logging.warning("Subscription request failed", extra={
                'error_type': type(e).__name__,
                'error_message': str(e),
                'topics': topics
            })

    def _on_subscription_failed(self, event: SubscriptionFailed):
        logging.warning("Failed to subscribe to topic", extra={
            'topic': event.topic,
            'reason': event.reason,
            'session_id': event.session_id
        })

    def _on_transport_error(self, event: TransportError):
        self._apply_error(event.message)

    def _apply_error(self, raw_message: str):
        category = classify(raw_message)
        message = describe(category, raw_message)
        if message != self._last_error or category is not self._error_category:
            self._last_error = message
            self._error_category = category
            self._mark_changed()
        self._set_state(ConnectionState.ERROR)

        logging.error("MQTT connection error", extra={
            'error_category': category.value,
            'error_message': raw_message,
            'session_id': self._session_id
        })

        # The failed session is finished either way; retries open a new one
        self._end_session()

        if is_terminal(category):
            logging.error("Authentication failed, automatic reconnection disabled until credentials change")
            self._cancel_retry()
            self._set_auto_reconnect(False)
        else:
            self._schedule_retry()

    def _on_transport_closed(self, event: TransportClosed):
        logging.info("MQTT connection closed", extra={
            'reason': event.reason,
            'session_id': event.session_id
        })
        self._end_session()
        if self._state is not ConnectionState.ERROR:
            self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_retry()

    def _on_reconnect_attempt(self, event: ReconnectAttempt):
        if not self._auto_reconnect or self._config is None or self._state not in CONNECTABLE_STATES:
            return

        self._retry_attempt = event.attempt
        logging.info("Reconnecting to MQTT broker", extra={
            'attempt': event.attempt,
            'broker_host': self._config.broker_host,
            'broker_port': self._config.broker_port
        })
        self._open_session(ConnectionState.RECONNECTING)

    def _on_transport_message(self, event: TransportMessage):
        if self._state is not ConnectionState.CONNECTED:
            logging.debug("Ignoring message while not connected", extra={
                'topic': event.topic,
                'connection_state': self._state.value
            })
            return

        role = self._topics.role_for(event.topic)
        if role is None:
            logging.debug("Message on unsubscribed topic", extra={'topic': event.topic})
            return

        logging.debug("Message received", extra={
            'topic': event.topic,
            'role': role.value,
            'payload_size': len(event.payload)
        })

        try:
            domain_event = decode(role, event.payload)
        except PayloadDecodeError as e:
            self._track_decode_error(e, event.topic)
            return

        self._apply_domain_event(domain_event)

    def _apply_domain_event(self, event):
        if isinstance(event, DeviceOnlineEvent):
            if event.online:
                self.liveness.mark_active()
            else:
                self.liveness.mark_offline()
        elif isinstance(event, SpectrumEvent):
            self.liveness.mark_active()
            self._spectrum = SpectrumReading(
                timestamp=self._timestamp(),
                values=event.values,
                carbon=self._carbon
            )
            self._mark_changed()
        elif isinstance(event, LogEvent):
            self._logs.append(LogEntry(timestamp=self._timestamp(), message=event.message))
            self._mark_changed()
        elif isinstance(event, CarbonEvent):
            self.liveness.mark_active()
            self._carbon = event.value
            self._mark_changed()

    # Decode error tracking

    def _track_decode_error(self, exc: PayloadDecodeError, topic: str):
        """Count decode errors and warn, rate limited, about discarded payloads."""
        error_type = type(exc).__name__
        self._decode_errors[error_type] += 1
        self._last_decode_error = exc

        logging.debug("Discarded invalid payload", extra={
            'topic': topic,
            'error_type': error_type,
            'error_message': str(exc)
        })
        self._log_rate_limited_warning(f'decode_error_{error_type}', 60,
            "Discarding invalid payloads", {
                'topic': topic,
                'error_type': error_type,
                'error_count': self._decode_errors[error_type],
                'error_message': str(exc)
            })

    def _log_rate_limited_warning(self, warning_type: str, min_interval: int,
                                  message: str, extra: Dict[str, Any]):
        """Log warning with rate limiting to avoid spam."""
        current_time = time.monotonic()
        last_warning = self._last_warning_time.get(warning_type)

        if last_warning is None or current_time - last_warning >= min_interval:
            logging.warning(message, extra=extra)
            self._last_warning_time[warning_type] = current_time
