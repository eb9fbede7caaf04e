"""
Session Runner

Drives the session state machine from a single asyncio task. Transport
callbacks (paho network thread), timers and user commands are all posted to
one queue and handled strictly one at a time, in arrival order.
"""

import asyncio
import functools
import logging
from typing import Any, Callable, Optional

from .components.config_manager import ConfigurationManager
from .components.events import TimerFired
from .components.liveness import DEFAULT_INACTIVITY_TIMEOUT
from .components.models import DEFAULT_LOG_CAPACITY
from .components.reconnect_policy import ReconnectPolicy
from .components.session_machine import SessionStateMachine
from .components.snapshot_publisher import SnapshotPublisher
from .components.transport import PahoTransportFactory, TransportFactory, TransportOptions


class QueuedTimer:
    """Timer whose callback runs on the event consumer, not in the loop callback."""

    def __init__(self, callback: Callable[[], None]):
        self.callback = callback
        self.cancelled = False
        self._handle: Optional[asyncio.TimerHandle] = None

    def cancel(self):
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()

    def run(self):
        # May already be queued when cancelled
        if not self.cancelled:
            self.callback()


class QueueScheduler:
    """``call_later`` that posts a TimerFired event instead of calling directly."""

    def __init__(self, loop: asyncio.AbstractEventLoop, post: Callable[[Any], None]):
        self.loop = loop
        self.post = post

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> QueuedTimer:
        timer = QueuedTimer(functools.partial(callback, *args))
        timer._handle = self.loop.call_later(delay, self.post, TimerFired(timer.run))
        return timer


class SessionRunner:
    """
    Owns the event queue, the consumer task and the session components.

    Usage:
        async with SessionRunner.from_config(config_manager) as runner:
            runner.publisher.subscribe(render)
            runner.publisher.connect(config, topics)
    """

    def __init__(self, transport_options: Optional[TransportOptions] = None, *,
                 transport_factory: Optional[TransportFactory] = None,
                 reconnect_policy: Optional[ReconnectPolicy] = None,
                 inactivity_timeout: float = DEFAULT_INACTIVITY_TIMEOUT,
                 log_capacity: int = DEFAULT_LOG_CAPACITY):
        """
        Initialize SessionRunner.

        Args:
            transport_options: Settings for the default paho transport
            transport_factory: Replaces the paho transport (used by tests)
            reconnect_policy: Automatic reconnection schedule
            inactivity_timeout: Seconds without telemetry before the device is offline
            log_capacity: Maximum number of device log entries kept
        """
        self.transport_options = transport_options or TransportOptions()
        self.transport_factory = transport_factory
        self.reconnect_policy = reconnect_policy
        self.inactivity_timeout = inactivity_timeout
        self.log_capacity = log_capacity

        self.machine: Optional[SessionStateMachine] = None
        self.publisher: Optional[SnapshotPublisher] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config_manager: ConfigurationManager, **kwargs) -> "SessionRunner":
        return cls(
            config_manager.get_transport_options(),
            reconnect_policy=config_manager.get_reconnect_policy(),
            inactivity_timeout=config_manager.get_inactivity_timeout(),
            log_capacity=config_manager.get_log_capacity(),
            **kwargs
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        """Create the queue, the state machine and the consumer task."""
        if self.running:
            return

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()

        factory = self.transport_factory or PahoTransportFactory(self.post_threadsafe, self.transport_options)
        self.machine = SessionStateMachine(
            factory,
            QueueScheduler(self._loop, self.post),
            inactivity_timeout=self.inactivity_timeout,
            log_capacity=self.log_capacity,
            reconnect_policy=self.reconnect_policy,
        )
        self.publisher = SnapshotPublisher(self.machine, dispatch=self.post_threadsafe)
        self._task = self._loop.create_task(self._consume(), name="tellus-session-consumer")
        logging.info("Session runner started")

    async def stop(self):
        """Disconnect, drain the queue and stop the consumer."""
        if not self.running:
            return

        self.publisher.disconnect()
        await self.join()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logging.info("Session runner stopped")

    async def join(self):
        """Wait until every event posted so far has been handled."""
        # Let call_soon_threadsafe posts from this thread land in the queue first
        await asyncio.sleep(0)
        await self._queue.join()

    def post(self, event):
        """Queue an event. Must be called on the loop thread."""
        self._queue.put_nowait(event)

    def post_threadsafe(self, event):
        """Queue an event from any thread."""
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, event)
        except RuntimeError:
            # The loop closed under a late paho callback
            logging.debug("Event loop closed, dropping event", extra={
                'event_type': type(event).__name__
            })

    async def _consume(self):
        while True:
            event = await self._queue.get()
            try:
                self.machine.handle(event)
            except Exception as e:
                logging.error("Unhandled error processing event", extra={
                    'event_type': type(event).__name__,
                    'error_type': type(e).__name__,
                    'error_message': str(e)
                }, exc_info=True)
            finally:
                self._queue.task_done()

    async def __aenter__(self) -> "SessionRunner":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()
