"""
MQTT Transport
==============

Bounded Context: MQTT Infrastructure

Thin blocking facade over paho-mqtt used by the ConnectionManager.

Design:
- One PahoTransport per connection attempt (fresh client id each time)
- Blocking connect/subscribe/unsubscribe with timeouts, built on
  paho's network thread (loop_start) and threading.Event handshakes
- Typed exceptions (TransportError family) raised here and converted to
  result values by the manager
- Callbacks (on_message, on_connection_lost) run in paho's network thread

Architecture:
    ConnectionManager → Transport (protocol) → PahoTransport → paho Client → Broker
"""

import threading
from typing import Callable, Dict, List, Protocol

import paho.mqtt.client as mqtt

from .config import BrokerConfig, ClientSettings
from .logging import StructuredLogger, LogEvent

# CONNACK refusals that mean bad credentials (MQTT 3.1.1 codes and their
# MQTT 5 reason-code equivalents as reported by paho)
AUTH_FAILURE_CODES = {4, 5, 0x86, 0x87}

MessageCallback = Callable[[str, bytes, int, bool], None]
ConnectionLostCallback = Callable[[str], None]


class TransportError(Exception):
    """Raised when a transport operation fails or times out."""
    pass


class AuthenticationError(TransportError):
    """Raised when the broker refuses the credentials."""
    pass


class BrokerUnreachableError(TransportError):
    """Raised when the broker socket cannot be opened."""
    pass


class Transport(Protocol):
    """Operations the ConnectionManager needs from a broker session."""

    client_id: str

    def connect(self, timeout: float) -> None: ...

    def disconnect(self) -> None: ...

    def subscribe(self, topic: str, qos: int, timeout: float) -> None: ...

    def unsubscribe(self, topic: str, timeout: float) -> None: ...

    def is_connected(self) -> bool: ...


TransportFactory = Callable[
    [str, BrokerConfig, MessageCallback, ConnectionLostCallback], Transport
]


class _PendingAck:
    """Rendezvous between a blocking caller and a paho ack callback."""

    def __init__(self):
        self.event = threading.Event()
        self.reason_codes: List = []


class PahoTransport:
    """
    Blocking MQTT 3.1.1 session over paho-mqtt.

    Attributes:
        client_id: MQTT client identifier
        config: Broker parameters
        client: Underlying paho client

    Thread Safety:
        Public methods may be called from any thread except paho's network
        thread. Callbacks are invoked from the network thread.
    """

    def __init__(
        self,
        client_id: str,
        config: BrokerConfig,
        on_message: MessageCallback,
        on_connection_lost: ConnectionLostCallback,
        logger: StructuredLogger,
        keepalive: int = ClientSettings.KEEP_ALIVE_SECONDS,
        clean_session: bool = ClientSettings.CLEAN_SESSION,
    ):
        self.client_id = client_id
        self.config = config
        self.keepalive = keepalive
        self.logger = logger
        self._on_message_cb = on_message
        self._on_connection_lost_cb = on_connection_lost

        self.client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=clean_session,
            protocol=mqtt.MQTTv311,
        )
        if config.username:
            self.client.username_pw_set(config.username, config.password)
        if config.use_ssl:
            self.client.tls_set()

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message
        self.client.on_subscribe = self._on_ack
        self.client.on_unsubscribe = self._on_ack

        self._connack = threading.Event()
        self._connack_code = None
        self._connected = threading.Event()
        self._closing = False
        self._socket_open = False
        self._pending_lock = threading.Lock()
        self._pending: Dict[int, _PendingAck] = {}

    # ===== paho callbacks (network thread) =====

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        self._connack_code = reason_code
        if not reason_code.is_failure:
            self._connected.set()
        self._connack.set()

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        was_connected = self._connected.is_set()
        self._connected.clear()
        if was_connected and not self._closing:
            self._on_connection_lost_cb(f"Connection lost (rc={reason_code})")

    def _on_message(self, client, userdata, msg: mqtt.MQTTMessage):
        self._on_message_cb(msg.topic, msg.payload, msg.qos, bool(msg.retain))

    def _on_ack(self, client, userdata, mid, reason_code_list, properties):
        pending = self._pending_for(mid)
        pending.reason_codes = list(reason_code_list)
        pending.event.set()

    def _pending_for(self, mid: int) -> _PendingAck:
        # Either side may arrive first: the ack can beat the caller's wait
        with self._pending_lock:
            pending = self._pending.get(mid)
            if pending is None:
                pending = self._pending[mid] = _PendingAck()
            return pending

    def _wait_ack(self, mid: int, timeout: float, what: str) -> List:
        pending = self._pending_for(mid)
        try:
            if not pending.event.wait(timeout):
                raise TransportError(f"{what} timeout after {timeout}s")
            return pending.reason_codes
        finally:
            with self._pending_lock:
                self._pending.pop(mid, None)

    # ===== operations =====

    def connect(self, timeout: float = ClientSettings.CONNECTION_TIMEOUT_SECONDS) -> None:
        """
        Open the session and wait for CONNACK.

        Raises:
            BrokerUnreachableError: Socket could not be opened
            AuthenticationError: Broker refused the credentials
            TransportError: Any other refusal, or timeout
        """
        try:
            self.client.connect(
                self.config.host, self.config.port, keepalive=self.keepalive
            )
        except OSError as e:
            raise BrokerUnreachableError(
                f"Cannot reach {self.config.broker_url}: {e}"
            ) from e

        self._socket_open = True
        self.client.loop_start()

        if not self._connack.wait(timeout):
            self.disconnect()
            raise TransportError(f"Connection timeout after {timeout}s")

        code = self._connack_code
        if code is not None and code.is_failure:
            self.disconnect()
            if code.value in AUTH_FAILURE_CODES:
                raise AuthenticationError(f"Broker refused credentials ({code})")
            raise TransportError(f"Broker refused connection ({code})")

    def disconnect(self) -> None:
        """
        Close the session and its socket. Safe to call more than once.

        Also used when CONNACK is missing or negative: the TCP socket is
        already open then, and paho only closes it after sending DISCONNECT.
        """
        self._closing = True
        try:
            if self._socket_open:
                self._socket_open = False
                self.client.disconnect()
        finally:
            self.client.loop_stop()
            self._connected.clear()
            self._detach_callbacks()

    def _detach_callbacks(self) -> None:
        # Client <-> transport cycle: drop it so the socket pair closes now
        self.client.on_connect = None
        self.client.on_disconnect = None
        self.client.on_message = None
        self.client.on_subscribe = None
        self.client.on_unsubscribe = None

    def subscribe(
        self,
        topic: str,
        qos: int,
        timeout: float = ClientSettings.OPERATION_TIMEOUT_SECONDS
    ) -> None:
        """Subscribe and wait for SUBACK."""
        result, mid = self.client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(mqtt.error_string(result))

        codes = self._wait_ack(mid, timeout, "Subscribe")
        if any(code.is_failure for code in codes):
            raise TransportError("Subscription rejected by broker")

        self.logger.debug(
            event=LogEvent.MQTT_SUBSCRIBED,
            message="SUBACK received",
            metadata={'topic': topic, 'qos': qos, 'mid': mid}
        )

    def unsubscribe(
        self,
        topic: str,
        timeout: float = ClientSettings.OPERATION_TIMEOUT_SECONDS
    ) -> None:
        """Unsubscribe and wait for UNSUBACK."""
        result, mid = self.client.unsubscribe(topic)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(mqtt.error_string(result))
        self._wait_ack(mid, timeout, "Unsubscribe")

    def is_connected(self) -> bool:
        return self._connected.is_set() and self.client.is_connected()


def create_paho_transport(logger: StructuredLogger) -> TransportFactory:
    """Transport factory bound to a logger, for ConnectionManager."""

    def factory(
        client_id: str,
        config: BrokerConfig,
        on_message: MessageCallback,
        on_connection_lost: ConnectionLostCallback,
    ) -> PahoTransport:
        return PahoTransport(
            client_id=client_id,
            config=config,
            on_message=on_message,
            on_connection_lost=on_connection_lost,
            logger=logger,
        )

    return factory
