"""
Broker session: one connection, one topic subscription.

The session is driven by BrokerEvent instances passed to handle(). Every
synchronous broker call is wrapped so that a failing client library is
logged and never propagates to the host process.
"""

from __future__ import annotations

import enum
import itertools
import logging
from typing import Callable, Optional

from webhook_bridge.broker import BrokerConnection, Connector, EventSink
from webhook_bridge.config import BrokerCredentials
from webhook_bridge.events import (
    BrokerEvent,
    ConnectedEvent,
    ConnectFailedEvent,
    DisconnectedEvent,
    InboundMessage,
    MessageEvent,
    ReplyMessage,
    SubscriptionErrorEvent,
    SubscriptionOkEvent,
)

logger = logging.getLogger(__name__)

# Broker must acknowledge subscribe/unsubscribe within this window.
SUBSCRIBE_TIMEOUT_S = 10.0


class SubscriptionOp(enum.Enum):
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"


class BrokerSession:
    """
    Owns the connection handle and subscription state for a single topic.

    Invariant: subscribed implies connection is not None.
    """

    def __init__(
        self,
        topic: str,
        connector: Connector,
        *,
        on_message: Optional[Callable[[InboundMessage], None]] = None,
    ) -> None:
        self.topic = topic
        self.on_message = on_message
        self.connection: Optional[BrokerConnection] = None
        self.subscribed = False

        self._connector = connector
        self._pending: dict[str, SubscriptionOp] = {}
        self._seq = itertools.count(1)
        logger.info("Ready to subscribe to %s", topic)

    @property
    def connected(self) -> bool:
        return self.connection is not None

    def _next_key(self, op: SubscriptionOp) -> str:
        return f"{op.value}:{self.topic}:{next(self._seq)}"

    def _pending_op(self, op: SubscriptionOp) -> bool:
        return op in self._pending.values()

    # -------------------------
    # Operations
    # -------------------------
    def connect(self, credentials: BrokerCredentials, sink: Optional[EventSink] = None) -> bool:
        """
        Request a new broker connection. Returns False when the connection
        could not be constructed or started; the failure is logged.
        """
        if self.connection is not None:
            logger.info("Already connected and ready to subscribe")
            return True

        logger.info("Broker connection details")
        logger.info("URL     : %s", credentials.url)
        logger.info("Username: %s", credentials.username)
        logger.info("VPN name: %s", credentials.vpn_name)

        try:
            self.connection = self._connector(credentials, sink or self.handle)
        except Exception as exc:
            logger.error("Failed to create broker connection: %s", exc)
            self.connection = None
            return False

        try:
            self.connection.connect()
        except Exception as exc:
            logger.error("Failed to connect to broker: %s", exc)
            self._release()
            return False
        return True

    def subscribe(self) -> None:
        if self.connection is None:
            logger.info("Cannot subscribe because not connected to broker")
            return
        if self.subscribed:
            logger.info("Already subscribed to %s and ready to receive messages", self.topic)
            return
        if self._pending_op(SubscriptionOp.SUBSCRIBE):
            logger.info("Subscription to %s already pending", self.topic)
            return

        logger.info("Subscribing to topic %s", self.topic)
        key = self._next_key(SubscriptionOp.SUBSCRIBE)
        self._pending[key] = SubscriptionOp.SUBSCRIBE
        try:
            self.connection.subscribe(
                self.topic, durable=True, correlation_key=key, timeout_s=SUBSCRIBE_TIMEOUT_S
            )
        except Exception as exc:
            self._pending.pop(key, None)
            logger.error("Subscribe to %s failed: %s", self.topic, exc)

    def unsubscribe(self) -> None:
        if self.connection is None:
            logger.info("Cannot unsubscribe because not connected to broker")
            return
        if not self.subscribed:
            logger.info("Cannot unsubscribe because not subscribed to the topic %s", self.topic)
            return
        if self._pending_op(SubscriptionOp.UNSUBSCRIBE):
            logger.info("Unsubscribe from %s already pending", self.topic)
            return

        logger.info("Unsubscribing from topic: %s", self.topic)
        key = self._next_key(SubscriptionOp.UNSUBSCRIBE)
        self._pending[key] = SubscriptionOp.UNSUBSCRIBE
        try:
            self.connection.unsubscribe(
                self.topic, durable=True, correlation_key=key, timeout_s=SUBSCRIBE_TIMEOUT_S
            )
        except Exception as exc:
            self._pending.pop(key, None)
            logger.error("Unsubscribe from %s failed: %s", self.topic, exc)

    def disconnect(self) -> None:
        logger.info("Disconnecting from broker")
        if self.connection is None:
            logger.info("Not connected to broker")
            return
        try:
            self.connection.disconnect()
        except Exception as exc:
            logger.error("Disconnect failed: %s", exc)

    def send_reply(self, reply: ReplyMessage) -> None:
        if self.connection is None:
            logger.warning("Cannot send reply because not connected to broker")
            return
        if reply.destination is None:
            logger.debug("Message has no reply-to destination; reply skipped")
            return
        try:
            self.connection.send_reply(reply)
        except Exception as exc:
            logger.error("Failed to send reply to %s: %s", reply.destination, exc)

    # -------------------------
    # Events
    # -------------------------
    def handle(self, event: BrokerEvent) -> None:
        if isinstance(event, ConnectedEvent):
            logger.info("Successfully connected to broker")
            self.subscribe()
        elif isinstance(event, ConnectFailedEvent):
            logger.error("Failed to connect to broker: %s", event.reason)
            self._release()
        elif isinstance(event, DisconnectedEvent):
            logger.info("Disconnected%s", f" ({event.reason})" if event.reason else "")
            self._release()
        elif isinstance(event, SubscriptionOkEvent):
            self._on_subscription_ok(event.correlation_key)
        elif isinstance(event, SubscriptionErrorEvent):
            op = self._pending.pop(event.correlation_key, None)
            logger.error(
                "Cannot %s topic %s: %s",
                op.value if op else "change subscription for",
                self.topic,
                event.reason or event.correlation_key,
            )
        elif isinstance(event, MessageEvent):
            self._on_message(event.message)
        else:
            logger.warning("Ignoring unknown broker event: %r", event)

    def _on_subscription_ok(self, key: str) -> None:
        op = self._pending.pop(key, None)
        if op is None:
            logger.warning("Ignoring unexpected subscription confirmation %s", key)
            return
        if self.connection is None:
            return
        if op is SubscriptionOp.SUBSCRIBE:
            self.subscribed = True
            logger.info("Successfully subscribed to topic %s", self.topic)
            logger.info("Ready to receive messages")
        else:
            self.subscribed = False
            logger.info("Successfully unsubscribed from topic %s", self.topic)

    def _on_message(self, message: InboundMessage) -> None:
        if self.on_message is None:
            logger.warning("Message received but no handler is set; dropped")
            return
        try:
            self.on_message(message)
        except Exception:
            logger.exception("Message handler failed")

    def _release(self) -> None:
        self.subscribed = False
        self._pending.clear()
        conn, self.connection = self.connection, None
        if conn is None:
            return
        try:
            conn.dispose()
        except Exception as exc:
            logger.error("Failed to dispose broker connection: %s", exc)
