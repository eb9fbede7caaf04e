"""
MQTT Transport Module

Thin paho-mqtt adapter used by the session state machine. A transport is one
broker session: it opens, subscribes and closes, and reports everything that
happens as events through an ``emit`` callable. It never reconnects by itself;
retry decisions belong to the state machine.
"""

import logging
import secrets
import socket
import ssl
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion

from .events import (
    SubscriptionFailed,
    TransportClosed,
    TransportConnected,
    TransportError,
    TransportMessage,
)
from .exceptions import ConfigurationError, TellusCommunicationError, wrap_exception
from .models import ConnectionConfig


VALID_TRANSPORTS = ('tcp', 'websockets')


class Transport(Protocol):
    """A single broker session as seen by the state machine."""

    def open(self) -> None: ...

    def subscribe(self, topics: List[str]) -> None: ...

    def close(self, force: bool = True) -> None: ...


TransportFactory = Callable[[ConnectionConfig, int], Transport]


@dataclass(frozen=True)
class TransportOptions:
    """Connection settings that are not part of the user-editable credentials."""

    transport: str = 'websockets'
    tls: bool = True
    ws_path: str = '/mqtt'
    keepalive: int = 60
    connect_timeout: float = 10.0
    client_id_prefix: str = 'tellus_monitor_'

    def __post_init__(self):
        if self.transport not in VALID_TRANSPORTS:
            raise ConfigurationError(f"Invalid transport: {self.transport}. Must be one of {list(VALID_TRANSPORTS)}")
        if self.keepalive <= 0:
            raise ConfigurationError("keepalive must be positive")
        if self.connect_timeout <= 0:
            raise ConfigurationError("connect_timeout must be positive")


def format_connect_error(exc: BaseException, host: str, port: int) -> str:
    """
    Describe a connect-time exception with the wording the error classifier expects.

    Socket errors are phrased as errno-style messages (``getaddrinfo
    ENOTFOUND``, ``ETIMEDOUT``, ``ECONNREFUSED``) so a refused TCP connection
    is never confused with a broker refusing the credentials.
    """
    if isinstance(exc, socket.gaierror):
        return f"getaddrinfo ENOTFOUND {host} ({exc})"
    if isinstance(exc, ssl.SSLError):
        return f"SSL handshake with {host}:{port} failed: {exc}"
    if isinstance(exc, (TimeoutError, socket.timeout)):
        return f"connect ETIMEDOUT {host}:{port}"
    if isinstance(exc, ConnectionRefusedError):
        return f"connect ECONNREFUSED {host}:{port}"
    return f"{type(exc).__name__}: {exc}"


class PahoTransport:
    """
    One paho-mqtt client for one session.

    The blocking TCP/TLS connect runs on a worker thread so ``open`` returns
    immediately. After ``close`` no further events are emitted.
    """

    def __init__(self, config: ConnectionConfig, session_id: int, emit: Callable[[Any], None],
                 options: Optional[TransportOptions] = None):
        """
        Initialize PahoTransport.

        Args:
            config: Broker credentials for this session
            session_id: Identifier stamped on every emitted event
            emit: Thread-safe callable receiving transport events
            options: Transport settings (defaults to secure WebSockets)
        """
        self.config = config
        self.session_id = session_id
        self.emit = emit
        self.options = options or TransportOptions()
        self.client_id = f"{self.options.client_id_prefix}{secrets.token_hex(4)}"

        self._lock = threading.Lock()
        self._closed = False
        self._pending_subscriptions: Dict[int, str] = {}
        self._connect_thread: Optional[threading.Thread] = None

        try:
            self.client = self.create_mqtt_client()
        except (ValueError, OSError) as e:
            raise wrap_exception(e, TellusCommunicationError, "Failed to create MQTT client")

    @property
    def closed(self) -> bool:
        return self._closed

    def create_mqtt_client(self) -> mqtt.Client:
        """
        Create the paho client with callbacks bound to this session.

        Returns:
            Configured MQTT client (not yet connected)
        """
        client = mqtt.Client(
            callback_api_version=CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=True,
            transport=self.options.transport,
            reconnect_on_failure=False,
        )

        if self.options.transport == 'websockets':
            client.ws_set_options(path=self.options.ws_path)
        if self.options.tls:
            client.tls_set()

        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password or None)
            logging.debug("Configured MQTT client with username authentication", extra={
                'client_id': self.client_id,
                'username': self.config.username
            })

        client.connect_timeout = self.options.connect_timeout
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_subscribe = self._on_subscribe
        return client

    def open(self):
        """Start connecting in the background."""
        logging.info("Connecting to MQTT broker", extra={
            'broker_host': self.config.broker_host,
            'broker_port': self.config.broker_port,
            'transport': self.options.transport,
            'tls': self.options.tls,
            'client_id': self.client_id,
            'session_id': self.session_id
        })
        self._connect_thread = threading.Thread(
            target=self._connect_worker,
            name=f"tellus-connect-{self.session_id}",
            daemon=True,
        )
        self._connect_thread.start()

    def subscribe(self, topics: List[str]):
        """Request subscriptions; failures are reported as SubscriptionFailed events."""
        for topic in topics:
            with self._lock:
                if self._closed:
                    return
                result, mid = self.client.subscribe(topic)
                if result == mqtt.MQTT_ERR_SUCCESS:
                    self._pending_subscriptions[mid] = topic
                    continue
            self._emit(SubscriptionFailed(self.session_id, topic, mqtt.error_string(result)))

    def close(self, force: bool = True):
        """
        Close the session without waiting for a graceful shutdown.

        Marks the transport closed at once so late callbacks are dropped; the
        socket is torn down on a background thread.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        logging.debug("Closing MQTT transport", extra={
            'session_id': self.session_id,
            'client_id': self.client_id,
            'force': force
        })
        threading.Thread(
            target=self._shutdown,
            name=f"tellus-close-{self.session_id}",
            daemon=True,
        ).start()

    def _connect_worker(self):
        try:
            self.client.connect(
                self.config.broker_host,
                self.config.broker_port,
                self.options.keepalive
            )
        except Exception as e:
            message = format_connect_error(e, self.config.broker_host, self.config.broker_port)
            logging.error("Failed to connect to MQTT broker", extra={
                'error_type': type(e).__name__,
                'error_message': str(e),
                'broker_host': self.config.broker_host,
                'broker_port': self.config.broker_port,
                'session_id': self.session_id
            })
            self._emit(TransportError(self.session_id, message))
            return

        with self._lock:
            if self._closed:
                abandoned = True
            else:
                abandoned = False
                self.client.loop_start()
        if abandoned:
            self._shutdown()

    def _shutdown(self):
        try:
            self.client.disconnect()
            self.client.loop_stop()
        except Exception as e:
            logging.warning("Error disconnecting MQTT client", extra={
                'error_type': type(e).__name__,
                'error_message': str(e),
                'session_id': self.session_id
            })

    def _emit(self, event):
        if self._closed:
            return
        self.emit(event)

    def _on_connect(self, client, userdata, connect_flags, reason_code, properties):
        if reason_code.is_failure:
            logging.error("Broker refused connection", extra={
                'reason_code': str(reason_code),
                'client_id': self.client_id,
                'session_id': self.session_id
            })
            self._emit(TransportError(self.session_id, f"Connection refused: {reason_code}"))
            return

        logging.info("Connected to MQTT broker", extra={
            'reason_code': str(reason_code),
            'client_id': self.client_id,
            'session_id': self.session_id
        })
        self._emit(TransportConnected(self.session_id))

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        if self._closed:
            return
        if reason_code.is_failure:
            logging.warning("Unexpected disconnection from MQTT broker", extra={
                'reason_code': str(reason_code),
                'client_id': self.client_id,
                'session_id': self.session_id
            })
        self._emit(TransportClosed(self.session_id, str(reason_code)))

    def _on_message(self, client, userdata, msg):
        self._emit(TransportMessage(self.session_id, msg.topic, bytes(msg.payload)))

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties):
        with self._lock:
            topic = self._pending_subscriptions.pop(mid, None)
        if topic is None:
            return

        failures = [rc for rc in reason_code_list if rc.is_failure]
        if failures:
            self._emit(SubscriptionFailed(self.session_id, topic, str(failures[0])))
        else:
            logging.debug(f"Subscribed to {topic}", extra={'session_id': self.session_id})


class PahoTransportFactory:
    """Creates a PahoTransport per session, all reporting to the same ``emit``."""

    def __init__(self, emit: Callable[[Any], None], options: Optional[TransportOptions] = None):
        self.emit = emit
        self.options = options or TransportOptions()

    def __call__(self, config: ConnectionConfig, session_id: int) -> PahoTransport:
        return PahoTransport(config, session_id, self.emit, self.options)
