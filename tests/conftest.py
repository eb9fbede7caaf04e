"""
Central pytest configuration for the Tellus test suite.

This file provides shared fixtures and configuration for all tests.
"""

import logging
import tempfile
import time
from pathlib import Path
from typing import Any, Dict

import pytest
import yaml

# Configure logging for tests
logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Suppress noisy loggers during tests
logging.getLogger('paho.mqtt').setLevel(logging.WARNING)


# Configuration Fixtures
@pytest.fixture
def sample_mqtt_config() -> Dict[str, Any]:
    """Provide a standard configuration for testing."""
    return {
        'mqtt': {
            'broker': {
                'host': 'localhost',
                'port': 1883,
                'username': 'test_user',
                'password': 'test_pass',
                'transport': 'tcp',
                'tls': False,
                'keepalive': 60,
                'connect_timeout': 5
            },
            'topics': {
                'online': 'pico/online',
                'spectrum': 'pico/c12880/exp',
                'log': 'pico/log',
                'carbon': 'pico/carbon'
            },
            'reconnect': {
                'interval': 2.0,
                'backoff': 2.0,
                'max_interval': 30.0,
                'max_attempts': 5
            }
        },
        'monitor': {
            'inactivity_timeout': 30,
            'log_capacity': 200
        }
    }


@pytest.fixture
def temp_config_file(sample_mqtt_config):
    """Create a temporary config file with test configuration."""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        yaml.dump(sample_mqtt_config, f)
        config_path = f.name

    yield config_path

    # Cleanup
    Path(config_path).unlink(missing_ok=True)


@pytest.fixture
def write_config_file(tmp_path):
    """Factory writing a config dict to a YAML file and returning its path."""
    def _write(config: Any, name: str = 'config.yaml') -> str:
        path = tmp_path / name
        path.write_text(yaml.dump(config) if not isinstance(config, str) else config)
        return str(path)

    return _write


# Component Fixtures
@pytest.fixture
def config_manager(temp_config_file):
    """Create a ConfigurationManager instance for testing."""
    from tellus.mqtt.components.config_manager import ConfigurationManager
    return ConfigurationManager(temp_config_file)


@pytest.fixture
def session_machine(manual_scheduler, transport_factory, fixed_clock):
    """A SessionStateMachine wired to the simulated scheduler and fake transports."""
    from tellus.mqtt.components.session_machine import SessionStateMachine
    from tellus.mqtt.components.reconnect_policy import ReconnectPolicy

    return SessionStateMachine(
        transport_factory,
        manual_scheduler,
        inactivity_timeout=30.0,
        log_capacity=200,
        reconnect_policy=ReconnectPolicy(interval=2.0),
        clock=fixed_clock,
    )


@pytest.fixture
def connected_machine(session_machine, connection_config, topic_set):
    """A SessionStateMachine that has completed connect and subscribe."""
    from tellus.mqtt.components.events import TransportConnected

    session_machine.connect(connection_config, topic_set)
    session_machine.handle(TransportConnected(session_machine.session_id))
    return session_machine


# Test Markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "threading: marks tests that verify thread safety"
    )


# Import fixtures from fixture modules
from .fixtures.mqtt_fixtures import *  # noqa: E402,F401,F403
from .fixtures.scheduler_fixtures import *  # noqa: E402,F401,F403


# Utility Functions
def wait_for_condition(condition_func, timeout=5.0, interval=0.01):
    """Wait for a condition to become true."""
    start_time = time.time()
    while time.time() - start_time < timeout:
        if condition_func():
            return True
        time.sleep(interval)
    return False
