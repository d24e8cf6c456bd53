"""
Pytest configuration and shared fixtures
"""
import os
import sys
import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from webhook_bridge.config import BrokerCredentials, TargetEndpoint


class FakeBroker:
    """In-memory broker connection recording every call in order."""

    def __init__(self, credentials, sink):
        self.credentials = credentials
        self.sink = sink
        self.calls = []
        self.replies = []
        self.disposed = 0

    def connect(self):
        self.calls.append(("connect",))

    def subscribe(self, topic, *, durable, correlation_key, timeout_s):
        self.calls.append(("subscribe", topic, durable, correlation_key, timeout_s))

    def unsubscribe(self, topic, *, durable, correlation_key, timeout_s):
        self.calls.append(("unsubscribe", topic, durable, correlation_key, timeout_s))

    def send_reply(self, reply):
        self.calls.append(("send_reply",))
        self.replies.append(reply)

    def disconnect(self):
        self.calls.append(("disconnect",))

    def dispose(self):
        self.disposed += 1

    def names(self):
        return [c[0] for c in self.calls]

    def last_key(self, op):
        return [c for c in self.calls if c[0] == op][-1][3]


@pytest.fixture
def credentials():
    return BrokerCredentials(
        url="mqtt://broker.test:1883",
        vpn_name="default",
        username="bridge",
        password="pw",
    )


@pytest.fixture
def target():
    return TargetEndpoint(host="hooks.internal", port=8443, path="/hook", scheme="https")


@pytest.fixture
def broker_factory():
    """Connector returning FakeBroker instances; created brokers are kept in .made"""
    made = []

    def _connector(credentials, sink):
        b = FakeBroker(credentials, sink)
        made.append(b)
        return b

    _connector.made = made
    return _connector


@pytest.fixture
def mock_env(monkeypatch):
    """Set up mock environment variables"""
    env_vars = {
        'BROKER_URL': 'mqtt://broker.test:1883',
        'BROKER_USERNAME': 'bridge',
        'BROKER_PASSWORD': 'pw',
        'BROKER_TOPIC': 'orders/new',
        'WEBHOOK_HOST': 'hooks.internal',
        'WEBHOOK_PORT': '8443',
        'WEBHOOK_PATH': '/hook',
    }
    for key in ('BROKER_VPN_NAME', 'WEBHOOK_SCHEME', 'WEBHOOK_TIMEOUT', 'LOGLEVEL',
                'RELAY_MAX_WORKERS', 'SHUTDOWN_GRACE'):
        monkeypatch.delenv(key, raising=False)
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)

    return env_vars
