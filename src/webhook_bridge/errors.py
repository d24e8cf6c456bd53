"""
Error taxonomy for the bridge.

Broker errors are raised by the broker adapter and caught by the session;
transport errors are raised around the HTTP send and caught by the relay.
None of them are allowed to terminate the process.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for bridge runtime errors."""


class BrokerConnectionError(BridgeError):
    """Broker connection could not be constructed or established."""


class SubscriptionError(BridgeError):
    """Broker rejected a subscribe or unsubscribe request."""


class SendError(BridgeError):
    """Broker-side send of a reply failed."""


class TransportError(BridgeError):
    """Outbound HTTP request could not be built or sent."""
