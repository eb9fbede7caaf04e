"""
Snapshot Publisher Module

Boundary between the session core and the presentation layer. Consumers read
the current snapshot, subscribe to every new one, and issue commands; commands
are queued as events so they are serialized with transport callbacks.
"""

import logging
from typing import Any, Callable, List, Optional

from .events import (
    ClearErrorRequested,
    ConfigUpdated,
    ConnectRequested,
    DisconnectRequested,
    ReconnectRequested,
)
from .models import ConnectionConfig, SessionSnapshot, TopicSet
from .session_machine import SessionStateMachine


SnapshotCallback = Callable[[SessionSnapshot], None]


class SnapshotPublisher:
    """
    Publishes immutable session snapshots and forwards user commands.

    Responsibilities:
    - Expose the latest SessionSnapshot
    - Deliver every new snapshot to all subscribers
    - Turn connect/disconnect/reconnect/clear_error/update_config into events
    """

    def __init__(self, machine: SessionStateMachine, dispatch: Optional[Callable[[Any], Any]] = None):
        """
        Initialize SnapshotPublisher.

        Args:
            machine: The session state machine whose snapshots are published
            dispatch: Callable accepting command events, e.g. a queue's post
                method (defaults to handling them immediately)
        """
        self.machine = machine
        self._dispatch = dispatch or machine.handle
        self._subscribers: List[SnapshotCallback] = []
        machine.on_change = self._publish

    @property
    def snapshot(self) -> SessionSnapshot:
        return self.machine.snapshot

    def subscribe(self, callback: SnapshotCallback, replay: bool = False) -> Callable[[], None]:
        """
        Register a snapshot consumer.

        Args:
            callback: Called with each new snapshot
            replay: Deliver the current snapshot immediately as well

        Returns:
            Callable that removes the subscription
        """
        self._subscribers.append(callback)
        if replay:
            self._deliver(callback, self.snapshot)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def connect(self, config: ConnectionConfig, topics: TopicSet):
        self._dispatch(ConnectRequested(config, topics))

    def disconnect(self):
        self._dispatch(DisconnectRequested())

    def reconnect(self):
        self._dispatch(ReconnectRequested())

    def clear_error(self):
        """Reset last_error without touching the connection state."""
        self._dispatch(ClearErrorRequested())

    def update_config(self, config: ConnectionConfig, topics: Optional[TopicSet] = None):
        self._dispatch(ConfigUpdated(config, topics))

    def _publish(self, snapshot: SessionSnapshot):
        for callback in list(self._subscribers):
            self._deliver(callback, snapshot)

    def _deliver(self, callback: SnapshotCallback, snapshot: SessionSnapshot):
        try:
            callback(snapshot)
        except Exception as e:
            logging.error("Snapshot subscriber failed", extra={
                'subscriber': getattr(callback, '__name__', repr(callback)),
                'error_type': type(e).__name__,
                'error_message': str(e)
            }, exc_info=True)
