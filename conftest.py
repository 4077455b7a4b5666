"""
Shared test fixtures.

FakeBroker stands in for the paho transport so the ConnectionManager and
LiveBusService can be driven without a real MQTT broker.
"""

import threading
from collections import deque

import pytest

from vibus_mqtt import ConnectionManager
from vibus_mqtt.transport import TransportError


class FakeTransport:
    """In-memory Transport bound to a FakeBroker."""

    def __init__(self, broker, client_id, config, on_message, on_connection_lost):
        self.broker = broker
        self.client_id = client_id
        self.config = config
        self.on_message = on_message
        self.on_connection_lost = on_connection_lost
        self.connected = False
        self.released = False

    def connect(self, timeout):
        outcome = self.broker.next_outcome()
        if outcome is not None:
            raise outcome
        # Clean session: the broker forgets previous subscriptions
        self.broker.subscriptions.clear()
        self.connected = True

    def disconnect(self):
        self.connected = False
        self.released = True

    def subscribe(self, topic, qos, timeout):
        if topic in self.broker.rejected_topics:
            raise TransportError("Subscription rejected by broker")
        self.broker.subscriptions[topic] = qos

    def unsubscribe(self, topic, timeout):
        if self.broker.fail_unsubscribe:
            raise TransportError("Unsubscribe timeout after 1s")
        self.broker.subscriptions.pop(topic, None)

    def is_connected(self):
        return self.connected


class FakeBroker:
    """
    Scripted broker.

    ``outcomes`` holds exceptions (or None for success) consumed by
    successive connect attempts; an empty queue means success.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.outcomes = deque()
        self.attempts = 0
        self.transports = []
        self.subscriptions = {}
        self.rejected_topics = set()
        self.fail_unsubscribe = False

    def factory(self, client_id, config, on_message, on_connection_lost):
        transport = FakeTransport(self, client_id, config, on_message, on_connection_lost)
        with self._lock:
            self.transports.append(transport)
        return transport

    def next_outcome(self):
        with self._lock:
            self.attempts += 1
            return self.outcomes.popleft() if self.outcomes else None

    @property
    def current(self):
        return self.transports[-1]

    def deliver(self, topic, payload, qos=0):
        self.current.on_message(topic, payload, qos, False)

    def drop(self, reason="Connection lost (rc=Unspecified error)"):
        transport = self.current
        transport.connected = False
        transport.on_connection_lost(reason)


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def make_manager(broker):
    """Build ConnectionManagers on the fake broker; all are closed on teardown."""
    managers = []

    def factory(**kwargs):
        kwargs.setdefault("reconnect_base_delay", 0.01)
        kwargs.setdefault("reconnect_max_delay", 0.04)
        kwargs.setdefault("event_buffer_size", 100)
        manager = ConnectionManager(transport_factory=broker.factory, **kwargs)
        managers.append(manager)
        return manager

    yield factory

    for manager in managers:
        manager.close()
