"""
Lifecycle controller: startup (connect -> subscribe) and graceful shutdown
(unsubscribe -> disconnect -> grace delay -> exit).

Broker events arrive on the broker client's network thread and are queued;
dispatch_pending() applies them one at a time on the calling thread, so the
session is only ever touched from one thread.
"""

from __future__ import annotations

import enum
import logging
import queue
import threading
import time

from webhook_bridge.config import BrokerCredentials
from webhook_bridge.events import BrokerEvent, ConnectFailedEvent, DisconnectedEvent
from webhook_bridge.session import BrokerSession

logger = logging.getLogger(__name__)

_POLL_INTERVAL_S = 0.5


class LifecycleState(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"  # connected and subscribed
    DISCONNECTING = "disconnecting"
    TERMINATED = "terminated"


class LifecycleController:
    def __init__(
        self,
        session: BrokerSession,
        credentials: BrokerCredentials,
        *,
        grace_s: float = 1.0,
    ) -> None:
        self.session = session
        self.credentials = credentials
        self.grace_s = grace_s
        self.state = LifecycleState.IDLE
        self._events: "queue.Queue[BrokerEvent]" = queue.Queue()

    def post(self, event: BrokerEvent) -> None:
        """Queue a broker event. Safe to call from any thread."""
        self._events.put(event)

    def start(self) -> None:
        if self.state is not LifecycleState.IDLE:
            logger.info("Start ignored in state %s", self.state.value)
            return
        self._set_state(LifecycleState.CONNECTING)
        if not self.session.connect(self.credentials, sink=self.post):
            self._set_state(LifecycleState.IDLE)

    def dispatch_pending(self, timeout: float = 0.0) -> int:
        """
        Apply queued events in arrival order. Waits up to `timeout` for the
        first one. Returns the number of events dispatched.
        """
        count = 0
        try:
            event = self._events.get(timeout=timeout) if timeout > 0 else self._events.get_nowait()
        except queue.Empty:
            return 0
        while True:
            self._dispatch(event)
            count += 1
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                return count

    def _dispatch(self, event: BrokerEvent) -> None:
        self.session.handle(event)

        if self.state in (LifecycleState.DISCONNECTING, LifecycleState.TERMINATED):
            return
        if isinstance(event, (ConnectFailedEvent, DisconnectedEvent)):
            if self.state is not LifecycleState.IDLE:
                logger.warning("Broker session lost; manual restart required")
            self._set_state(LifecycleState.IDLE)
        elif self.session.subscribed:
            self._set_state(LifecycleState.CONNECTED)

    def run(self, shutdown: threading.Event) -> int:
        """Start, dispatch events until `shutdown` is set, then shut down."""
        self.start()
        while not shutdown.is_set():
            self.dispatch_pending(timeout=_POLL_INTERVAL_S)
        self.shutdown()
        return 0

    def shutdown(self) -> None:
        if self.state in (LifecycleState.DISCONNECTING, LifecycleState.TERMINATED):
            return
        self._set_state(LifecycleState.DISCONNECTING)
        self.session.unsubscribe()
        self.session.disconnect()

        # let in-flight broker I/O settle; not a guaranteed drain
        deadline = time.monotonic() + self.grace_s
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            self.dispatch_pending(timeout=min(remaining, _POLL_INTERVAL_S))

        self._set_state(LifecycleState.TERMINATED)

    def _set_state(self, state: LifecycleState) -> None:
        if state is not self.state:
            logger.debug("Lifecycle %s -> %s", self.state.value, state.value)
            self.state = state
