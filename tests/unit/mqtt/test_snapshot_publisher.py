"""
Test suite for SnapshotPublisher.
"""

import logging

import pytest

from tellus.mqtt.components.events import (
    ClearErrorRequested,
    ConfigUpdated,
    ConnectRequested,
    DisconnectRequested,
    ReconnectRequested,
    TransportConnected,
    TransportError,
)
from tellus.mqtt.components.models import ConnectionState
from tellus.mqtt.components.snapshot_publisher import SnapshotPublisher


@pytest.fixture
def publisher(session_machine):
    return SnapshotPublisher(session_machine)


class TestSnapshotPublisher:
    """Test cases for snapshot delivery and command forwarding."""

    def test_attaches_to_machine(self, session_machine, publisher):
        assert session_machine.on_change == publisher._publish
        assert publisher.snapshot is session_machine.snapshot

    def test_delivers_every_snapshot(self, publisher, session_machine, connection_config, topic_set):
        received = []
        publisher.subscribe(received.append)

        publisher.connect(connection_config, topic_set)
        session_machine.handle(TransportConnected(session_machine.session_id))

        assert [s.connection_state for s in received] == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
        assert received[-1] is publisher.snapshot

    def test_multiple_subscribers(self, publisher, connection_config, topic_set):
        first, second = [], []
        publisher.subscribe(first.append)
        publisher.subscribe(second.append)

        publisher.connect(connection_config, topic_set)

        assert len(first) == 1
        assert first == second

    def test_replay_delivers_current_snapshot(self, publisher):
        received = []
        publisher.subscribe(received.append, replay=True)

        assert received == [publisher.snapshot]

    def test_unsubscribe(self, publisher, connection_config, topic_set):
        received = []
        unsubscribe = publisher.subscribe(received.append)

        unsubscribe()
        unsubscribe()
        publisher.connect(connection_config, topic_set)

        assert received == []

    def test_failing_subscriber_does_not_break_others(self, publisher, connection_config, topic_set, caplog):
        received = []

        def broken(snapshot):
            raise RuntimeError("render failed")

        publisher.subscribe(broken)
        publisher.subscribe(received.append)

        with caplog.at_level(logging.ERROR):
            publisher.connect(connection_config, topic_set)

        assert len(received) == 1
        assert publisher.snapshot.connection_state is ConnectionState.CONNECTING
        assert any("Snapshot subscriber failed" in r.getMessage() for r in caplog.records)

    def test_clear_error_keeps_connection_state(self, publisher, session_machine, connection_config, topic_set):
        publisher.connect(connection_config, topic_set)
        session_machine.handle(TransportError(session_machine.session_id, "Bad username or password"))
        assert publisher.snapshot.last_error is not None

        publisher.clear_error()

        assert publisher.snapshot.last_error is None
        assert publisher.snapshot.connection_state is ConnectionState.ERROR

    def test_disconnect_and_reconnect(self, publisher, session_machine, transport_factory,
                                      connection_config, topic_set):
        publisher.connect(connection_config, topic_set)
        publisher.disconnect()
        assert publisher.snapshot.connection_state is ConnectionState.DISCONNECTED

        publisher.reconnect()
        assert publisher.snapshot.connection_state is ConnectionState.CONNECTING
        assert len(transport_factory.transports) == 2

    def test_update_config(self, publisher, session_machine, anonymous_config):
        publisher.update_config(anonymous_config)

        assert session_machine.config == anonymous_config


class TestCommandDispatch:
    """Commands are handed to the dispatch callable as events."""

    def test_commands_become_events(self, session_machine, connection_config, topic_set):
        posted = []
        publisher = SnapshotPublisher(session_machine, dispatch=posted.append)

        publisher.connect(connection_config, topic_set)
        publisher.disconnect()
        publisher.reconnect()
        publisher.clear_error()
        publisher.update_config(connection_config, topic_set)

        assert posted == [
            ConnectRequested(connection_config, topic_set),
            DisconnectRequested(),
            ReconnectRequested(),
            ClearErrorRequested(),
            ConfigUpdated(connection_config, topic_set),
        ]
        # Nothing is applied until the events are handled
        assert session_machine.state is ConnectionState.DISCONNECTED
