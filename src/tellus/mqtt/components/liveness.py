"""
Liveness Tracker Module

Infers whether the device is online from observed telemetry. The device does
not send heartbeats, so every decoded reading counts as activity and a single
inactivity timer is cancelled and re-armed on each one.
"""

import logging
from typing import Any, Callable, Optional, Protocol


DEFAULT_INACTIVITY_TIMEOUT = 30.0


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything offering ``call_later(delay, callback)``, e.g. an asyncio loop."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class LivenessTracker:
    """
    Maintains the device online flag with a sliding inactivity timeout.

    At most one timer is armed at any time. ``on_change`` is called with the
    new flag whenever it flips.
    """

    def __init__(self, scheduler: Scheduler, timeout: float = DEFAULT_INACTIVITY_TIMEOUT,
                 on_change: Optional[Callable[[bool], None]] = None):
        """
        Initialize LivenessTracker.

        Args:
            scheduler: Source of cancellable timers
            timeout: Seconds without activity before the device is marked offline
            on_change: Optional callback receiving the new online flag
        """
        if timeout <= 0:
            raise ValueError(f"Inactivity timeout must be positive, got {timeout}")

        self.scheduler = scheduler
        self.timeout = timeout
        self.on_change = on_change
        self._is_online = False
        self._timer: Optional[TimerHandle] = None

    @property
    def is_online(self) -> bool:
        return self._is_online

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def mark_active(self):
        """Record device activity: online now, and re-arm the inactivity timer."""
        self._cancel_timer()
        self._timer = self.scheduler.call_later(self.timeout, self._expire)
        self._set_online(True)

    def mark_offline(self):
        """The device reported itself offline."""
        self._cancel_timer()
        self._set_online(False)

    def reset(self):
        """Session teardown: offline, no timer."""
        self._cancel_timer()
        self._set_online(False)

    def _expire(self):
        self._timer = None
        logging.info("Device inactive, marking as offline", extra={
            'inactivity_timeout': self.timeout
        })
        self._set_online(False)

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _set_online(self, online: bool):
        if online == self._is_online:
            return
        self._is_online = online
        logging.debug("Device liveness changed", extra={'is_online': online})
        if self.on_change:
            self.on_change(online)
