"""
Broker events and message types.

The broker adapter translates its client library callbacks into the
BrokerEvent union below; the session is driven only by these events.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union


@dataclass(frozen=True, slots=True)
class InboundMessage:
    payload: bytes
    user_properties: Mapping[str, str] = field(default_factory=dict)
    reply_to: Optional[Any] = None
    application_message_id: Optional[Any] = None
    destination: Optional[str] = None

    def __post_init__(self) -> None:
        # read-only view; callers cannot mutate a received message
        object.__setattr__(
            self, "user_properties", MappingProxyType(dict(self.user_properties))
        )

    def dump(self) -> str:
        """Multi-line diagnostic description of the message."""
        lines = [
            f"Destination:            {self.destination}",
            f"ReplyTo:                {self.reply_to}",
            f"ApplicationMessageId:   {self.application_message_id}",
            f"Binary Attachment:      len={len(self.payload)}",
        ]
        if self.user_properties:
            lines.append("User Property Map:")
            for key, value in self.user_properties.items():
                lines.append(f"  {key}: {value}")
        try:
            lines.append(self.payload.decode("utf-8"))
        except UnicodeDecodeError:
            lines.append(self.payload.hex())
        return "\n".join(lines)


@dataclass(frozen=True, slots=True)
class ReplyMessage:
    correlation_id: Optional[Any]
    destination: Optional[Any]
    is_reply: bool = True


@dataclass(frozen=True, slots=True)
class ConnectedEvent:
    pass


@dataclass(frozen=True, slots=True)
class ConnectFailedEvent:
    reason: str = ""


@dataclass(frozen=True, slots=True)
class DisconnectedEvent:
    reason: str = ""


@dataclass(frozen=True, slots=True)
class SubscriptionOkEvent:
    correlation_key: str


@dataclass(frozen=True, slots=True)
class SubscriptionErrorEvent:
    correlation_key: str
    reason: str = ""


@dataclass(frozen=True, slots=True)
class MessageEvent:
    message: InboundMessage


BrokerEvent = Union[
    ConnectedEvent,
    ConnectFailedEvent,
    DisconnectedEvent,
    SubscriptionOkEvent,
    SubscriptionErrorEvent,
    MessageEvent,
]
