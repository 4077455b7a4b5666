"""
Test Connection Manager (Without Real Broker)
=============================================

Drives the ConnectionManager against the FakeBroker transport from
conftest.py: state events, typed errors, backoff, resubscription and
ingestion counters.

Usage:
    pytest test_connection_manager.py
"""

import re
import time

import pytest

from vibus_mqtt import ConnectionManager
from vibus_mqtt.config import BrokerConfig
from vibus_mqtt.schemas import (
    AuthenticationFailed,
    BrokerUnreachable,
    ConnectionFailed,
    ConnectionState,
    SubscriptionFailed,
    UnknownError,
)
from vibus_mqtt.transport import (
    AuthenticationError,
    BrokerUnreachableError,
    TransportError,
)

CONFIG = BrokerConfig(host="localhost", port=1883)
BUS_TOPIC = "vibus/autobus/+/posizione"
LINE_TOPIC = "vibus/linea/+/statistiche"


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def collect_until(receiver, state, timeout=2.0, count=1):
    """Collect events until ``state`` has been seen ``count`` times."""
    events = []
    seen = 0
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        event = receiver.get(timeout=0.05)
        if event is None:
            continue
        events.append(event)
        if event.state is state:
            seen += 1
            if seen == count:
                return events
    raise AssertionError(f"{state} not seen {count}x in {[e.state for e in events]}")


# ===== connect =====

def test_connect_emits_connecting_then_connected(make_manager, broker):
    manager = make_manager()
    events = manager.connection_events.subscribe()

    result = manager.connect(CONFIG)

    assert result.is_success
    assert manager.is_connected()
    assert [e.state for e in events.drain()] == [
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTED,
    ]
    assert re.fullmatch(r"vibus_client_[0-9a-f]{8}", broker.current.client_id)
    assert manager.get_connection_stats().client_id == broker.current.client_id


def test_connect_when_connected_is_noop(make_manager, broker):
    manager = make_manager()
    manager.connect(CONFIG)
    events = manager.connection_events.subscribe()

    assert manager.connect(CONFIG).is_success
    assert broker.attempts == 1
    assert events.drain() == []


@pytest.mark.parametrize("exc, expected", [
    (AuthenticationError("Broker refused credentials"), AuthenticationFailed("tcp://localhost:1883")),
    (BrokerUnreachableError("Cannot reach"), BrokerUnreachable("tcp://localhost:1883")),
    (TransportError("Connection timeout after 10.0s"), ConnectionFailed("Connection timeout after 10.0s")),
    (RuntimeError(), ConnectionFailed("RuntimeError")),
])
def test_connect_failures_map_to_typed_errors(make_manager, broker, exc, expected):
    manager = make_manager(auto_reconnect=False)
    broker.outcomes.append(exc)

    result = manager.connect(CONFIG)

    assert not result.is_success
    assert result.error == expected
    assert manager.connection_state is ConnectionState.ERROR
    assert not manager.is_reconnecting
    assert manager.get_connection_stats().last_error


def test_failed_connect_releases_transport(make_manager, broker):
    manager = make_manager(auto_reconnect=False)
    broker.outcomes.extend([
        TransportError("Connection timeout after 0.1s"),
        AuthenticationError("Broker refused credentials"),
    ])

    manager.connect(CONFIG)
    manager.connect(CONFIG)

    assert len(broker.transports) == 2
    assert all(t.released for t in broker.transports)
    assert manager.get_connection_stats().client_id == "Unknown"


def test_failed_connect_enters_reconnecting_with_base_delay(make_manager, broker):
    manager = make_manager(reconnect_base_delay=0.05, reconnect_max_delay=1.0)
    events = manager.connection_events.subscribe()
    broker.outcomes.append(BrokerUnreachableError("refused"))

    assert not manager.connect(CONFIG).is_success

    collected = collect_until(events, ConnectionState.RECONNECTING)
    assert [e.state for e in collected] == [
        ConnectionState.CONNECTING,
        ConnectionState.ERROR,
        ConnectionState.RECONNECTING,
    ]
    assert collected[1].error is not None
    assert collected[2].reconnect_delay == pytest.approx(0.05)


def test_backoff_doubles_up_to_max_and_resets(make_manager, broker):
    manager = make_manager(reconnect_base_delay=0.01, reconnect_max_delay=0.04)
    events = manager.connection_events.subscribe()
    broker.outcomes.extend(BrokerUnreachableError("refused") for _ in range(5))

    manager.connect(CONFIG)
    collected = collect_until(events, ConnectionState.CONNECTED)

    delays = [e.reconnect_delay for e in collected if e.state is ConnectionState.RECONNECTING]
    assert delays == pytest.approx([0.01, 0.02, 0.04, 0.04, 0.04])
    assert broker.attempts == 6
    assert wait_for(lambda: not manager.is_reconnecting)
    assert manager.reconnect_delay == pytest.approx(0.01)
    assert manager.get_connection_stats().reconnect_count == 0


def test_disconnect_cancels_backoff_promptly(make_manager, broker):
    manager = make_manager(reconnect_base_delay=5.0, reconnect_max_delay=10.0)
    broker.outcomes.append(BrokerUnreachableError("refused"))
    manager.connect(CONFIG)
    assert wait_for(lambda: manager.connection_state is ConnectionState.RECONNECTING)

    started = time.monotonic()
    result = manager.disconnect()

    assert result.is_success
    assert time.monotonic() - started < 1.0
    assert broker.attempts == 1
    assert manager.connection_state is ConnectionState.DISCONNECTED
    assert not manager.is_reconnecting


# ===== subscriptions =====

def test_subscribe_requires_connection(make_manager):
    manager = make_manager()

    result = manager.subscribe(BUS_TOPIC, qos=1)

    assert result.error == SubscriptionFailed(BUS_TOPIC, "Client not connected")
    assert manager.active_subscriptions() == []


def test_subscribe_rejects_invalid_qos(make_manager):
    manager = make_manager()
    manager.connect(CONFIG)

    result = manager.subscribe(BUS_TOPIC, qos=3)

    assert result.error == SubscriptionFailed(BUS_TOPIC, "Invalid QoS 3")


def test_subscribe_records_and_overwrites(make_manager, broker):
    manager = make_manager()
    manager.connect(CONFIG)

    assert manager.subscribe(BUS_TOPIC, qos=1).is_success
    assert manager.subscribe(BUS_TOPIC, qos=0).is_success

    subscriptions = manager.active_subscriptions()
    assert len(subscriptions) == 1
    assert subscriptions[0].qos == 0
    assert subscriptions[0].active
    assert broker.subscriptions == {BUS_TOPIC: 0}


def test_rejected_subscription_is_not_recorded(make_manager, broker):
    manager = make_manager()
    manager.connect(CONFIG)
    broker.rejected_topics.add(BUS_TOPIC)

    result = manager.subscribe(BUS_TOPIC)

    assert isinstance(result.error, SubscriptionFailed)
    assert result.error.reason == "Subscription rejected by broker"
    assert manager.active_subscriptions() == []


def test_unsubscribe_failure_still_forgets_topic(make_manager, broker):
    manager = make_manager()
    manager.connect(CONFIG)
    manager.subscribe(BUS_TOPIC)
    broker.fail_unsubscribe = True

    result = manager.unsubscribe(BUS_TOPIC)

    assert isinstance(result.error, UnknownError)
    assert manager.active_subscriptions() == []


def test_unsubscribe_when_disconnected_succeeds(make_manager):
    manager = make_manager()

    assert manager.unsubscribe(BUS_TOPIC).is_success


def test_lost_connection_reconnects_and_resubscribes(make_manager, broker):
    manager = make_manager()
    manager.connect(CONFIG)
    manager.subscribe(BUS_TOPIC, qos=1)
    manager.subscribe(LINE_TOPIC, qos=0)
    events = manager.connection_events.subscribe()

    broker.drop()

    collected = collect_until(events, ConnectionState.CONNECTED)
    assert collected[0].state is ConnectionState.ERROR
    assert wait_for(lambda: len(manager.active_subscriptions()) == 2)
    assert len(broker.transports) == 2
    assert broker.subscriptions == {BUS_TOPIC: 1, LINE_TOPIC: 0}
    assert {s.topic: s.qos for s in manager.active_subscriptions()} == {
        BUS_TOPIC: 1,
        LINE_TOPIC: 0,
    }


def test_lost_connection_without_auto_reconnect(make_manager, broker):
    manager = make_manager(auto_reconnect=False)
    manager.connect(CONFIG)

    broker.drop("Connection lost (rc=Keep alive timeout)")

    assert manager.connection_state is ConnectionState.ERROR
    assert not manager.is_reconnecting
    assert manager.get_connection_stats().last_error == "Connection lost (rc=Keep alive timeout)"


def test_stale_transport_callbacks_are_ignored(make_manager, broker):
    manager = make_manager()
    manager.connect(CONFIG)
    old = broker.current
    manager.disconnect()
    manager.connect(CONFIG)

    old.on_connection_lost("late callback")

    assert manager.connection_state is ConnectionState.CONNECTED
    assert not manager.is_reconnecting


def test_disconnect_is_idempotent_and_clears_subscriptions(make_manager, broker):
    manager = make_manager()
    manager.connect(CONFIG)
    manager.subscribe(BUS_TOPIC)

    assert manager.disconnect().is_success
    assert manager.disconnect().is_success
    assert manager.active_subscriptions() == []
    assert manager.connection_state is ConnectionState.DISCONNECTED
    assert not broker.current.connected


# ===== ingestion and stats =====

def test_ingestion_counters(make_manager, broker):
    manager = make_manager()
    messages = manager.messages.subscribe()
    manager.connect(CONFIG)

    broker.deliver("vibus/autobus/SVT101/posizione", b'{"bus_id": "SVT101"}', qos=1)
    broker.deliver("vibus/autobus/SVT101/posizione", b"\xff\xfe")

    message = messages.get(timeout=1.0)
    assert message.topic == "vibus/autobus/SVT101/posizione"
    assert message.payload == '{"bus_id": "SVT101"}'
    assert message.qos == 1
    assert messages.get(timeout=0.05) is None

    stats = manager.get_connection_stats()
    assert stats.messages_received == 1
    assert stats.messages_lost == 1


def test_stats_before_connect(make_manager):
    stats = make_manager().get_connection_stats()

    assert not stats.is_connected
    assert stats.connection_uptime == 0
    assert stats.broker_host == "Unknown"
    assert stats.client_id == "Unknown"


def test_uptime_tracks_connected_session(make_manager):
    manager = make_manager()
    manager.connect(CONFIG)
    time.sleep(0.05)

    assert manager.get_connection_stats().connection_uptime >= 40

    manager.disconnect()
    stats = manager.get_connection_stats()
    assert stats.connection_uptime == 0
    assert stats.broker_host == "localhost"
    assert stats.client_id == "Unknown"


def test_state_listener_sees_transitions(make_manager):
    manager = make_manager()
    seen = []

    def failing_listener(state):
        raise RuntimeError("boom")

    manager.add_state_listener(failing_listener)
    manager.add_state_listener(seen.append)
    manager.connect(CONFIG)
    manager.disconnect()
    manager.remove_state_listener(seen.append)
    manager.connect(CONFIG)

    assert seen == [
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTED,
        ConnectionState.DISCONNECTED,
    ]


@pytest.mark.parametrize("base, maximum", [(0, 1.0), (-1.0, 1.0), (2.0, 1.0)])
def test_invalid_backoff_settings(broker, base, maximum):
    with pytest.raises(ValueError):
        ConnectionManager(
            transport_factory=broker.factory,
            reconnect_base_delay=base,
            reconnect_max_delay=maximum,
        )
