from __future__ import annotations

import pytest

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
from webhook_bridge.session import SUBSCRIBE_TIMEOUT_S, BrokerSession


@pytest.fixture
def session(broker_factory):
    return BrokerSession("orders/new", broker_factory)


def _subscribed(session, credentials, broker_factory):
    session.connect(credentials)
    broker = broker_factory.made[-1]
    session.handle(ConnectedEvent())
    session.handle(SubscriptionOkEvent(broker.last_key("subscribe")))
    assert session.subscribed is True
    return broker


def test_connect_creates_connection_and_connects(session, credentials, broker_factory):
    assert session.connect(credentials) is True

    broker = broker_factory.made[0]
    assert broker.credentials == credentials
    assert broker.names() == ["connect"]
    assert session.connection is broker
    assert session.subscribed is False


def test_connect_twice_is_noop(session, credentials, broker_factory):
    session.connect(credentials)
    assert session.connect(credentials) is True
    assert len(broker_factory.made) == 1


def test_connect_construction_error_is_logged_not_raised(credentials, caplog):
    def bad_connector(credentials, sink):
        raise RuntimeError("boom")

    s = BrokerSession("t", bad_connector)
    assert s.connect(credentials) is False
    assert s.connection is None
    assert "boom" in caplog.text


def test_connect_start_error_releases_connection(credentials, broker_factory):
    def failing_connector(credentials, sink):
        broker = broker_factory(credentials, sink)

        def explode():
            raise OSError("refused")

        broker.connect = explode
        return broker

    s = BrokerSession("t", failing_connector)
    assert s.connect(credentials) is False
    assert s.connection is None
    assert broker_factory.made[0].disposed == 1


def test_connected_event_triggers_subscribe(session, credentials, broker_factory):
    session.connect(credentials)
    session.handle(ConnectedEvent())

    broker = broker_factory.made[0]
    name, topic, durable, key, timeout_s = broker.calls[-1]
    assert name == "subscribe"
    assert topic == "orders/new"
    assert durable is True
    assert timeout_s == SUBSCRIBE_TIMEOUT_S == 10.0
    assert key


def test_events_via_default_sink(session, credentials, broker_factory):
    session.connect(credentials)
    broker = broker_factory.made[0]
    broker.sink(ConnectedEvent())
    broker.sink(SubscriptionOkEvent(broker.last_key("subscribe")))
    assert session.subscribed is True


def test_subscribe_twice_while_subscribed_issues_one_call(session, credentials, broker_factory):
    broker = _subscribed(session, credentials, broker_factory)

    session.subscribe()
    session.subscribe()

    assert broker.names().count("subscribe") == 1


def test_subscribe_while_pending_issues_one_call(session, credentials, broker_factory):
    session.connect(credentials)
    session.handle(ConnectedEvent())
    session.subscribe()

    assert broker_factory.made[0].names().count("subscribe") == 1


def test_subscribe_when_disconnected_is_noop(session):
    session.subscribe()
    session.unsubscribe()
    assert session.subscribed is False


def test_unsubscribe_confirmation_clears_subscribed(session, credentials, broker_factory):
    broker = _subscribed(session, credentials, broker_factory)

    session.unsubscribe()
    session.handle(SubscriptionOkEvent(broker.last_key("unsubscribe")))

    assert session.subscribed is False
    assert broker.names().count("unsubscribe") == 1


def test_unsubscribe_when_not_subscribed_is_noop(session, credentials, broker_factory):
    session.connect(credentials)
    session.unsubscribe()
    assert "unsubscribe" not in broker_factory.made[0].names()


def test_duplicate_subscribe_confirmation_does_not_flip(session, credentials, broker_factory):
    broker = _subscribed(session, credentials, broker_factory)

    session.handle(SubscriptionOkEvent(broker.last_key("subscribe")))
    session.handle(SubscriptionOkEvent("unknown-key"))

    assert session.subscribed is True


def test_subscription_error_leaves_unsubscribed_and_allows_retry(session, credentials, broker_factory):
    session.connect(credentials)
    session.handle(ConnectedEvent())
    broker = broker_factory.made[0]

    session.handle(SubscriptionErrorEvent(broker.last_key("subscribe"), reason="denied"))
    assert session.subscribed is False

    session.subscribe()
    assert broker.names().count("subscribe") == 2


def test_subscribe_broker_error_is_swallowed(session, credentials, broker_factory):
    session.connect(credentials)
    broker = broker_factory.made[0]

    def explode(*a, **k):
        raise RuntimeError("subscribe rejected")

    broker.subscribe = explode
    session.subscribe()
    assert session.subscribed is False


def test_connect_failed_leaves_session_clean(session, credentials, broker_factory):
    session.connect(credentials)
    broker = broker_factory.made[0]

    session.handle(ConnectFailedEvent(reason="auth"))

    assert session.subscribed is False
    assert session.connection is None
    assert broker.disposed == 1

    # a later disconnected event on the null session is a safe no-op
    session.handle(DisconnectedEvent())
    assert session.connection is None
    assert session.subscribed is False
    assert broker.disposed == 1


def test_disconnected_releases_handle(session, credentials, broker_factory):
    broker = _subscribed(session, credentials, broker_factory)

    session.handle(DisconnectedEvent(reason="network"))

    assert session.subscribed is False
    assert session.connection is None
    assert broker.disposed == 1


def test_confirmation_after_disconnect_is_ignored(session, credentials, broker_factory):
    session.connect(credentials)
    session.handle(ConnectedEvent())
    key = broker_factory.made[0].last_key("subscribe")
    session.handle(DisconnectedEvent())

    session.handle(SubscriptionOkEvent(key))

    assert session.subscribed is False


def test_disconnect_noop_when_not_connected(session):
    session.disconnect()
    assert session.connection is None


def test_disconnect_requests_broker_disconnect(session, credentials, broker_factory):
    session.connect(credentials)
    session.disconnect()
    assert broker_factory.made[0].names() == ["connect", "disconnect"]


def test_message_event_calls_handler(session, credentials, broker_factory):
    received = []
    session.on_message = received.append
    session.connect(credentials)

    msg = InboundMessage(payload=b"{}")
    session.handle(MessageEvent(msg))

    assert received == [msg]


def test_message_handler_error_is_swallowed(session, credentials, caplog):
    def bad(msg):
        raise ValueError("handler broke")

    session.on_message = bad
    session.connect(credentials)
    session.handle(MessageEvent(InboundMessage(payload=b"{}")))

    assert "Message handler failed" in caplog.text


def test_send_reply(session, credentials, broker_factory):
    session.connect(credentials)
    reply = ReplyMessage(correlation_id="app-1", destination="reply/topic")

    session.send_reply(reply)

    assert broker_factory.made[0].replies == [reply]


def test_send_reply_without_destination_is_skipped(session, credentials, broker_factory):
    session.connect(credentials)
    session.send_reply(ReplyMessage(correlation_id="app-1", destination=None))
    assert broker_factory.made[0].replies == []


def test_send_reply_error_is_swallowed(session, credentials, broker_factory, caplog):
    session.connect(credentials)

    def explode(reply):
        raise RuntimeError("send failed")

    broker_factory.made[0].send_reply = explode
    session.send_reply(ReplyMessage(correlation_id="x", destination="r"))

    assert "send failed" in caplog.text
