"""
Broker capability contract.

A BrokerConnection is one live connection produced by a Connector. The
session owns it and is the only caller. Implementations report asynchronous
outcomes by passing BrokerEvent instances to the sink they were created
with, and raise the broker errors from webhook_bridge.errors for
synchronous failures.
"""

from __future__ import annotations

from typing import Callable, Protocol

from webhook_bridge.config import BrokerCredentials
from webhook_bridge.events import BrokerEvent, ReplyMessage

EventSink = Callable[[BrokerEvent], None]


class BrokerConnection(Protocol):
    def connect(self) -> None:
        """Start connecting; outcome arrives as ConnectedEvent / ConnectFailedEvent."""

    def subscribe(
        self, topic: str, *, durable: bool, correlation_key: str, timeout_s: float
    ) -> None: ...

    def unsubscribe(
        self, topic: str, *, durable: bool, correlation_key: str, timeout_s: float
    ) -> None: ...

    def send_reply(self, reply: ReplyMessage) -> None: ...

    def disconnect(self) -> None: ...

    def dispose(self) -> None:
        """Release client resources. Safe to call more than once."""


Connector = Callable[[BrokerCredentials, EventSink], BrokerConnection]
