"""
Test Paho Transport
===================

PahoTransport against a mocked paho client: the tests play the broker by
invoking the paho callbacks directly.

Usage:
    pytest test_transport.py
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import paho.mqtt.client as mqtt
import pytest

from vibus_mqtt import create_logger
from vibus_mqtt import transport as transport_module
from vibus_mqtt.config import BrokerConfig
from vibus_mqtt.transport import (
    AuthenticationError,
    BrokerUnreachableError,
    PahoTransport,
    TransportError,
    create_paho_transport,
)

CONFIG = BrokerConfig(host="localhost", port=1883)


def reason(value):
    return SimpleNamespace(value=value, is_failure=value >= 0x80)


@pytest.fixture
def paho_client(monkeypatch):
    client = MagicMock()
    client.subscribe.return_value = (mqtt.MQTT_ERR_SUCCESS, 7)
    client.unsubscribe.return_value = (mqtt.MQTT_ERR_SUCCESS, 8)
    client.is_connected.return_value = True
    monkeypatch.setattr(transport_module.mqtt, "Client", MagicMock(return_value=client))
    return client


@pytest.fixture
def calls():
    return SimpleNamespace(messages=[], lost=[])


def make_transport(calls, config=CONFIG):
    return PahoTransport(
        client_id="vibus_client_test",
        config=config,
        on_message=lambda *args: calls.messages.append(args),
        on_connection_lost=calls.lost.append,
        logger=create_logger("test"),
    )


def connack_on_loop_start(transport, client, code):
    client.loop_start.side_effect = lambda: transport._on_connect(
        client, None, None, reason(code), None
    )


def test_connect_waits_for_connack(paho_client, calls):
    transport = make_transport(calls)
    connack_on_loop_start(transport, paho_client, 0)

    transport.connect(timeout=1.0)

    paho_client.connect.assert_called_once_with("localhost", 1883, keepalive=60)
    assert transport.is_connected()


def test_credentials_and_tls_are_applied(paho_client, calls):
    make_transport(calls, BrokerConfig(
        host="mqtt.svt.vi.it", port=8883, use_ssl=True, username="svt", password="secret"
    ))

    paho_client.username_pw_set.assert_called_once_with("svt", "secret")
    paho_client.tls_set.assert_called_once()


def test_socket_error_is_broker_unreachable(paho_client, calls):
    paho_client.connect.side_effect = ConnectionRefusedError("refused")

    with pytest.raises(BrokerUnreachableError):
        make_transport(calls).connect(timeout=1.0)


@pytest.mark.parametrize("code", [0x86, 0x87])
def test_credential_refusal_is_authentication_error(paho_client, calls, code):
    transport = make_transport(calls)
    connack_on_loop_start(transport, paho_client, code)

    with pytest.raises(AuthenticationError):
        transport.connect(timeout=1.0)
    paho_client.loop_stop.assert_called()
    assert not transport.is_connected()


def test_other_refusal_is_transport_error(paho_client, calls):
    transport = make_transport(calls)
    connack_on_loop_start(transport, paho_client, 0x88)

    with pytest.raises(TransportError) as excinfo:
        transport.connect(timeout=1.0)
    assert not isinstance(excinfo.value, AuthenticationError)


def test_missing_connack_times_out(paho_client, calls):
    with pytest.raises(TransportError, match="Connection timeout"):
        make_transport(calls).connect(timeout=0.05)
    paho_client.loop_stop.assert_called()


def assert_socket_released(client):
    client.disconnect.assert_called_once()
    client.loop_stop.assert_called()
    assert client.on_connect is None
    assert client.on_message is None


def test_missing_connack_closes_socket(paho_client, calls):
    transport = make_transport(calls)

    with pytest.raises(TransportError):
        transport.connect(timeout=0.05)

    assert_socket_released(paho_client)
    assert calls.lost == []


def test_refused_connack_closes_socket(paho_client, calls):
    transport = make_transport(calls)
    connack_on_loop_start(transport, paho_client, 0x86)

    with pytest.raises(AuthenticationError):
        transport.connect(timeout=1.0)

    assert_socket_released(paho_client)
    # Later disconnect from the manager is a no-op on the socket
    transport.disconnect()
    paho_client.disconnect.assert_called_once()


def test_unreachable_broker_has_no_socket_to_close(paho_client, calls):
    paho_client.connect.side_effect = OSError("no route to host")
    transport = make_transport(calls)

    with pytest.raises(BrokerUnreachableError):
        transport.connect(timeout=1.0)
    transport.disconnect()

    paho_client.disconnect.assert_not_called()


def test_subscribe_accepts_early_suback(paho_client, calls):
    transport = make_transport(calls)

    def subscribe(topic, qos):
        transport._on_ack(paho_client, None, 7, [reason(qos)], None)
        return (mqtt.MQTT_ERR_SUCCESS, 7)

    paho_client.subscribe.side_effect = subscribe

    transport.subscribe("vibus/autobus/+/posizione", 1, timeout=1.0)
    assert transport._pending == {}


def test_subscribe_rejected_by_broker(paho_client, calls):
    transport = make_transport(calls)
    paho_client.subscribe.side_effect = lambda topic, qos: (
        transport._on_ack(paho_client, None, 7, [reason(0x80)], None),
        (mqtt.MQTT_ERR_SUCCESS, 7),
    )[1]

    with pytest.raises(TransportError, match="rejected"):
        transport.subscribe("vibus/#", 1, timeout=1.0)


def test_subscribe_times_out_without_suback(paho_client, calls):
    with pytest.raises(TransportError, match="Subscribe timeout"):
        make_transport(calls).subscribe("vibus/autobus/+/posizione", 1, timeout=0.05)


def test_subscribe_error_code_raises(paho_client, calls):
    paho_client.subscribe.return_value = (mqtt.MQTT_ERR_NO_CONN, None)

    with pytest.raises(TransportError):
        make_transport(calls).subscribe("vibus/autobus/+/posizione", 1, timeout=1.0)


def test_messages_are_forwarded(paho_client, calls):
    transport = make_transport(calls)
    msg = SimpleNamespace(topic="vibus/autobus/SVT101/posizione", payload=b"{}", qos=1, retain=1)

    transport._on_message(paho_client, None, msg)

    assert calls.messages == [("vibus/autobus/SVT101/posizione", b"{}", 1, True)]


def test_unexpected_disconnect_reports_loss(paho_client, calls):
    transport = make_transport(calls)
    connack_on_loop_start(transport, paho_client, 0)
    transport.connect(timeout=1.0)

    transport._on_disconnect(paho_client, None, None, reason(0x8D), None)

    assert len(calls.lost) == 1
    assert not transport.is_connected()


def test_requested_disconnect_is_silent(paho_client, calls):
    transport = make_transport(calls)
    connack_on_loop_start(transport, paho_client, 0)
    transport.connect(timeout=1.0)

    transport.disconnect()
    transport._on_disconnect(paho_client, None, None, reason(0), None)

    paho_client.disconnect.assert_called_once()
    assert calls.lost == []
    # Idempotent
    transport.disconnect()
    paho_client.disconnect.assert_called_once()


def test_factory_builds_paho_transport(paho_client, calls):
    factory = create_paho_transport(create_logger("test"))

    transport = factory("vibus_client_abc", CONFIG, lambda *a: None, lambda r: None)

    assert isinstance(transport, PahoTransport)
    assert transport.client_id == "vibus_client_abc"
