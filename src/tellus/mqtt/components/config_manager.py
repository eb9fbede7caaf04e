"""
Configuration Manager Module

Handles loading, validation, and access to configuration settings.
"""

import logging
import os
from typing import Any, Dict

import yaml

from .exceptions import ConfigurationError
from .liveness import DEFAULT_INACTIVITY_TIMEOUT
from .models import DEFAULT_LOG_CAPACITY, ConnectionConfig, TopicRole, TopicSet
from .reconnect_policy import ReconnectPolicy
from .transport import TransportOptions


class ConfigurationManager:
    """
    Manages configuration loading, validation, and access.

    Responsibilities:
    - Load configuration from YAML files
    - Validate configuration structure and values
    - Provide typed access to configuration values
    - Handle configuration file errors gracefully
    """

    def __init__(self, config_path: str):
        """
        Initialize ConfigurationManager.

        Args:
            config_path: Path to the configuration file

        Raises:
            ConfigurationError: If configuration cannot be loaded or is invalid
        """
        self.config_path = config_path
        self.config = None
        self._load_configuration()
        self._validate_configuration()

    def _load_configuration(self):
        """Load configuration from YAML file."""
        if not os.path.exists(self.config_path):
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r', encoding='utf-8') as file:
                self.config = yaml.safe_load(file)
        except yaml.YAMLError as e:
            logging.error("YAML parsing error", extra={
                'config_path': self.config_path,
                'error_message': str(e)
            })
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e
        except OSError as e:
            logging.error("Error loading configuration", extra={
                'config_path': self.config_path,
                'error_type': type(e).__name__,
                'error_message': str(e)
            })
            raise ConfigurationError(f"Failed to load configuration: {e}") from e

        if not isinstance(self.config, dict):
            raise ConfigurationError("Configuration file is empty or invalid")

        logging.info("Configuration loaded successfully", extra={
            'config_path': self.config_path,
            'file_size': os.path.getsize(self.config_path)
        })

    def _validate_configuration(self):
        """Validate configuration structure and required fields."""
        if 'mqtt' not in self.config:
            raise ConfigurationError("Missing required configuration sections: ['mqtt']")

        self._validate_mqtt_config()

        # Building the typed objects runs their own validation
        self.get_connection_config()
        self.get_topic_set()
        self.get_transport_options()
        self.get_reconnect_policy()
        self.get_inactivity_timeout()
        self.get_log_capacity()

        logging.info("Configuration validation completed successfully")

    def _validate_mqtt_config(self):
        """Validate MQTT-specific configuration."""
        mqtt_config = self.config.get('mqtt') or {}

        if 'broker' not in mqtt_config:
            raise ConfigurationError("Missing 'broker' section in MQTT configuration")

        for field in ('host', 'port'):
            if field not in mqtt_config['broker']:
                raise ConfigurationError(f"Missing required broker field: {field}")

        if 'topics' not in mqtt_config:
            raise ConfigurationError("Missing 'topics' section in MQTT configuration")

        for role in TopicRole:
            if role.value not in mqtt_config['topics']:
                raise ConfigurationError(f"Missing required topic: {role.value}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key_path: Dot-separated path to configuration value (e.g., 'mqtt.broker.host')
            default: Default value if key is not found

        Returns:
            Configuration value or default
        """
        value = self.config
        for key in key_path.split('.'):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def get_mqtt_broker_config(self) -> Dict[str, Any]:
        """Get MQTT broker configuration."""
        return self.get('mqtt.broker', {})

    def get_topics_config(self) -> Dict[str, Any]:
        """Get MQTT topic configuration."""
        return self.get('mqtt.topics', {})

    def get_connection_config(self) -> ConnectionConfig:
        """Build the broker credentials for a connection attempt."""
        broker = self.get_mqtt_broker_config()
        return ConnectionConfig(
            broker_host=broker.get('host'),
            broker_port=broker.get('port'),
            username=broker.get('username') or '',
            password=broker.get('password') or ''
        )

    def get_topic_set(self) -> TopicSet:
        topics = self.get_topics_config()
        return TopicSet(
            online=topics.get('online'),
            spectrum=topics.get('spectrum'),
            log=topics.get('log'),
            carbon=topics.get('carbon')
        )

    def get_transport_options(self) -> TransportOptions:
        broker = self.get_mqtt_broker_config()
        defaults = TransportOptions()
        try:
            return TransportOptions(
                transport=broker.get('transport', defaults.transport),
                tls=bool(broker.get('tls', defaults.tls)),
                ws_path=broker.get('path', defaults.ws_path),
                keepalive=int(broker.get('keepalive', defaults.keepalive)),
                connect_timeout=float(broker.get('connect_timeout', defaults.connect_timeout)),
                client_id_prefix=broker.get('client_id_prefix', defaults.client_id_prefix)
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid broker transport configuration: {e}") from e

    def get_reconnect_policy(self) -> ReconnectPolicy:
        """Build the automatic reconnection schedule."""
        reconnect = self.get('mqtt.reconnect', {}) or {}
        defaults = ReconnectPolicy()
        try:
            return ReconnectPolicy(
                interval=float(reconnect.get('interval', defaults.interval)),
                backoff=float(reconnect.get('backoff', defaults.backoff)),
                max_interval=float(reconnect.get('max_interval', defaults.max_interval)),
                max_attempts=reconnect.get('max_attempts', defaults.max_attempts)
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid reconnect configuration: {e}") from e

    def get_inactivity_timeout(self) -> float:
        """Get device inactivity timeout in seconds."""
        return self._positive_monitor_value('inactivity_timeout', float, DEFAULT_INACTIVITY_TIMEOUT)

    def get_log_capacity(self) -> int:
        """Get maximum number of device log entries kept."""
        return self._positive_monitor_value('log_capacity', int, DEFAULT_LOG_CAPACITY)

    def _positive_monitor_value(self, key: str, convert, default):
        raw = self.get(f'monitor.{key}', default)
        try:
            value = convert(raw)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid monitor.{key}: {raw!r}") from e
        if not value > 0:
            raise ConfigurationError(f"monitor.{key} must be positive, got {raw!r}")
        return value

    def has_authentication(self) -> bool:
        """Check if MQTT authentication is configured."""
        return self.get_connection_config().has_authentication

    def get_raw_config(self) -> Dict[str, Any]:
        """Get the raw configuration dictionary."""
        return self.config.copy() if self.config else {}

    def reload_configuration(self):
        """Reload configuration from file."""
        logging.info("Reloading configuration", extra={
            'config_path': self.config_path
        })
        self._load_configuration()
        self._validate_configuration()

    def get_config_summary(self) -> Dict[str, Any]:
        """
        Get configuration summary for logging and debugging.

        The password is never included.

        Returns:
            Dictionary containing configuration summary
        """
        connection = self.get_connection_config()
        options = self.get_transport_options()
        return {
            'config_file': self.config_path,
            'broker_host': connection.broker_host,
            'broker_port': connection.broker_port,
            'username': connection.username,
            'password': '****' if connection.password else None,
            'has_authentication': connection.has_authentication,
            'transport': options.transport,
            'tls': options.tls,
            'topics': self.get_topic_set().as_list(),
            'inactivity_timeout': self.get_inactivity_timeout(),
            'log_capacity': self.get_log_capacity()
        }
