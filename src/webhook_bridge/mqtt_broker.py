"""
MQTT 5 broker connection for the bridge.

Maps the broker capability onto paho-mqtt:
  user properties      <-> MQTT 5 user properties
  reply-to             <-> Response Topic
  application msg id   <-> Correlation Data

paho callbacks run on the client's network thread; they only translate
into BrokerEvent instances and hand them to the sink.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Optional
from urllib.parse import urlparse

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.properties import Properties

from webhook_bridge.broker import EventSink
from webhook_bridge.config import BrokerCredentials
from webhook_bridge.errors import BrokerConnectionError, SendError, SubscriptionError
from webhook_bridge.events import (
    ConnectedEvent,
    ConnectFailedEvent,
    DisconnectedEvent,
    InboundMessage,
    MessageEvent,
    ReplyMessage,
    SubscriptionErrorEvent,
    SubscriptionOkEvent,
)
from webhook_bridge.log_config import TRACE

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"mqtt": 1883, "tcp": 1883, "ws": 80}
REPLY_FLAG_PROPERTY = ("reply", "true")


def parse_broker_url(url: str) -> tuple[str, str, int]:
    """Return (transport, host, port) for a broker URL."""
    parsed = urlparse(url)
    scheme = (parsed.scheme or "").lower()
    if scheme not in _DEFAULT_PORTS:
        raise BrokerConnectionError(f"Unsupported broker URL scheme: {url!r}")
    if not parsed.hostname:
        raise BrokerConnectionError(f"Broker URL has no host: {url!r}")
    try:
        port = parsed.port or _DEFAULT_PORTS[scheme]
    except ValueError as exc:
        raise BrokerConnectionError(f"Invalid port in broker URL: {url!r}") from exc
    transport = "websockets" if scheme == "ws" else "tcp"
    return transport, parsed.hostname, port


def _decode_correlation(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw).decode("utf-8", errors="replace")
    return str(raw)


def _is_failure(reason_code: Any) -> bool:
    failure = getattr(reason_code, "is_failure", None)
    if failure is not None:
        return bool(failure)
    return int(reason_code) >= 0x80


def to_inbound_message(msg: mqtt.MQTTMessage) -> InboundMessage:
    props = getattr(msg, "properties", None)
    user_properties: dict[str, str] = {}
    reply_to = None
    correlation = None
    if props is not None:
        for key, value in getattr(props, "UserProperty", None) or []:
            user_properties[key] = value
        reply_to = getattr(props, "ResponseTopic", None)
        correlation = _decode_correlation(getattr(props, "CorrelationData", None))
    return InboundMessage(
        payload=bytes(msg.payload),
        user_properties=user_properties,
        reply_to=reply_to,
        application_message_id=correlation,
        destination=msg.topic,
    )


class MQTTBrokerConnection:
    """One paho-mqtt client implementing the broker capability."""

    def __init__(
        self,
        credentials: BrokerCredentials,
        sink: EventSink,
        *,
        keepalive: int = 60,
    ) -> None:
        self.credentials = credentials
        self.keepalive = keepalive
        self._sink = sink
        self._transport, self.host, self.port = parse_broker_url(credentials.url)
        self.client_id = f"webhook-bridge.{credentials.username}.{uuid.uuid4().hex[:8]}"

        # mid -> (correlation_key, timeout timer)
        self._acks: dict[int, tuple[str, threading.Timer]] = {}
        # mid -> reason codes for acks delivered before _track ran
        self._early_acks: dict[int, list[Any]] = {}
        self._acks_lock = threading.Lock()

        client = mqtt.Client(
            CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            protocol=mqtt.MQTTv5,
            transport=self._transport,
        )
        client.username_pw_set(credentials.username, credentials.password)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_subscribe = self._on_ack
        client.on_unsubscribe = self._on_ack
        client.on_message = self._on_message
        if logging.getLogger().isEnabledFor(TRACE):
            client.enable_logger(logging.getLogger("paho.mqtt"))
        self._client = client

    # -------------------------
    # Capability
    # -------------------------
    def connect(self) -> None:
        props = Properties(PacketTypes.CONNECT)
        if self.credentials.vpn_name:
            props.UserProperty = ("vpn-name", self.credentials.vpn_name)
        try:
            self._client.connect(
                self.host, self.port, keepalive=self.keepalive, properties=props
            )
        except (OSError, ValueError) as exc:
            raise BrokerConnectionError(
                f"Cannot connect to {self.host}:{self.port}: {exc}"
            ) from exc
        self._client.loop_start()

    def subscribe(
        self, topic: str, *, durable: bool, correlation_key: str, timeout_s: float
    ) -> None:
        rc, mid = self._client.subscribe(topic, qos=1 if durable else 0)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise SubscriptionError(f"subscribe {topic}: {mqtt.error_string(rc)}")
        self._track(mid, correlation_key, timeout_s)

    def unsubscribe(
        self, topic: str, *, durable: bool, correlation_key: str, timeout_s: float
    ) -> None:
        rc, mid = self._client.unsubscribe(topic)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise SubscriptionError(f"unsubscribe {topic}: {mqtt.error_string(rc)}")
        self._track(mid, correlation_key, timeout_s)

    def send_reply(self, reply: ReplyMessage) -> None:
        props = Properties(PacketTypes.PUBLISH)
        if reply.correlation_id is not None:
            cid = reply.correlation_id
            props.CorrelationData = cid if isinstance(cid, bytes) else str(cid).encode("utf-8")
        if reply.is_reply:
            props.UserProperty = REPLY_FLAG_PROPERTY
        info = self._client.publish(str(reply.destination), payload=b"", qos=0, properties=props)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise SendError(f"reply to {reply.destination}: {mqtt.error_string(info.rc)}")

    def disconnect(self) -> None:
        rc = self._client.disconnect()
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise BrokerConnectionError(f"disconnect: {mqtt.error_string(rc)}")

    def dispose(self) -> None:
        with self._acks_lock:
            timers = [t for _, t in self._acks.values()]
            self._acks.clear()
            self._early_acks.clear()
        for timer in timers:
            timer.cancel()
        self._client.loop_stop()

    # -------------------------
    # Acks
    # -------------------------
    def _track(self, mid: int, correlation_key: str, timeout_s: float) -> None:
        timer = threading.Timer(timeout_s, self._on_ack_timeout, args=(mid,))
        timer.daemon = True
        with self._acks_lock:
            # the network thread may have delivered the ack before subscribe() returned
            early = self._early_acks.pop(mid, None)
            if early is None:
                self._acks[mid] = (correlation_key, timer)
        if early is not None:
            self._emit_ack(correlation_key, early)
            return
        timer.start()

    def _pop_ack(self, mid: int) -> Optional[str]:
        with self._acks_lock:
            entry = self._acks.pop(mid, None)
        if entry is None:
            return None
        key, timer = entry
        timer.cancel()
        return key

    def _on_ack_timeout(self, mid: int) -> None:
        key = self._pop_ack(mid)
        if key is not None:
            self._sink(SubscriptionErrorEvent(key, reason="acknowledgement timed out"))

    def _emit_ack(self, key: str, reason_codes: list[Any]) -> None:
        failed = [rc for rc in reason_codes if _is_failure(rc)]
        if failed:
            self._sink(SubscriptionErrorEvent(key, reason=", ".join(str(rc) for rc in failed)))
        else:
            self._sink(SubscriptionOkEvent(key))

    # -------------------------
    # paho callbacks
    # -------------------------
    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if _is_failure(reason_code):
            # no automatic retry: stop the network loop after a refused connect
            client.disconnect()
            self._sink(ConnectFailedEvent(reason=str(reason_code)))
            return
        self._sink(ConnectedEvent())

    def _on_disconnect(self, client, userdata, flags, reason_code, properties) -> None:
        if _is_failure(reason_code):
            logger.warning("Unexpected disconnect: %s", reason_code)
        self._sink(DisconnectedEvent(reason=str(reason_code)))

    def _on_ack(self, client, userdata, mid, reason_codes, properties) -> None:
        with self._acks_lock:
            entry = self._acks.pop(mid, None)
            if entry is None:
                logger.debug("Ack for mid=%s arrived before it was tracked", mid)
                self._early_acks[mid] = list(reason_codes or [])
                return
        key, timer = entry
        timer.cancel()
        self._emit_ack(key, list(reason_codes or []))

    def _on_message(self, client, userdata, msg: mqtt.MQTTMessage) -> None:
        self._sink(MessageEvent(to_inbound_message(msg)))


def connect_mqtt(credentials: BrokerCredentials, sink: EventSink) -> MQTTBrokerConnection:
    """Connector for BrokerSession."""
    return MQTTBrokerConnection(credentials, sink)
