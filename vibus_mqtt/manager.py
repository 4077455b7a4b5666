"""
MQTT Connection Manager
=======================

Bounded Context: Broker Session Lifecycle

Owns at most one broker session and keeps it alive for its consumers.

Design:
- Results as values: every operation returns Success / Failure
- Auto-reconnect in a background thread with exponential backoff,
  cancelled through a threading.Event (wakes the backoff wait at once)
- Subscriptions are remembered and replayed after every (re)connect
- Connection events and raw messages fan out through bounded
  drop-oldest BroadcastChannels, so a slow consumer never blocks ingestion

Architecture:
    Transport (paho thread) → ConnectionManager → messages channel → consumers
                                        ↘ connection_events channel → consumers

State Machine:
    DISCONNECTED → CONNECTING → CONNECTED
                        ↘ ERROR → RECONNECTING → CONNECTING → ...
    disconnect() from any state → DISCONNECTED

Example:
    >>> manager = ConnectionManager()
    >>> result = manager.connect(BrokerConfig(host="localhost"))
    >>> if result.is_success:
    ...     manager.subscribe(Topics.BUS_POSITIONS, qos=1)
    >>> receiver = manager.messages.subscribe()
    >>> message = receiver.get(timeout=5.0)
    >>> manager.disconnect()
"""

import threading
import time
from typing import Callable, Dict, List, Optional

from .broadcast import BroadcastChannel
from .config import BrokerConfig, CacheSettings, ClientSettings
from .logging import StructuredLogger, LogEvent, create_logger
from .schemas import (
    AuthenticationFailed,
    BrokerUnreachable,
    ConnectionEvent,
    ConnectionFailed,
    ConnectionState,
    ConnectionStats,
    Failure,
    MqttResult,
    RawMessage,
    Subscription,
    SubscriptionFailed,
    Success,
    UnknownError,
)
from .transport import (
    AuthenticationError,
    BrokerUnreachableError,
    Transport,
    TransportFactory,
    create_paho_transport,
)


StateListener = Callable[[ConnectionState], None]


class ConnectionManager:
    """
    Connection, subscription and reconnection manager for one broker.

    Attributes:
        connection_events: Broadcast stream of ConnectionEvent
        messages: Broadcast stream of RawMessage
        auto_reconnect: Start the reconnect loop on failures
        logger: Structured logger instance

    Thread Safety:
        - State transitions and event emission are serialised by one lock,
          so events are delivered in transition order
        - Transport operations are serialised by a second lock and never
          run while the state lock is held
        - Ingestion runs in the transport thread and only touches the
          message channel and counters
    """

    def __init__(
        self,
        logger: Optional[StructuredLogger] = None,
        transport_factory: Optional[TransportFactory] = None,
        auto_reconnect: bool = ClientSettings.AUTO_RECONNECT,
        reconnect_base_delay: float = CacheSettings.RECONNECT_DELAY_BASE_SECONDS,
        reconnect_max_delay: float = CacheSettings.RECONNECT_MAX_DELAY_SECONDS,
        connection_timeout: float = ClientSettings.CONNECTION_TIMEOUT_SECONDS,
        operation_timeout: float = ClientSettings.OPERATION_TIMEOUT_SECONDS,
        event_buffer_size: int = CacheSettings.EVENT_BUFFER_SIZE,
        message_buffer_size: int = CacheSettings.MESSAGE_BUFFER_SIZE,
        client_id_prefix: str = ClientSettings.CLIENT_ID_PREFIX,
    ):
        """
        Initialize the manager (no I/O happens until connect()).

        Args:
            logger: Structured logger (default: component "manager")
            transport_factory: Builds one Transport per connection attempt
                (default: paho-mqtt)
            auto_reconnect: Retry failed/lost connections forever
            reconnect_base_delay: First backoff delay in seconds
            reconnect_max_delay: Backoff ceiling in seconds
            connection_timeout: CONNACK wait in seconds
            operation_timeout: SUBACK/UNSUBACK wait in seconds
            event_buffer_size: Connection-event buffer (drop-oldest)
            message_buffer_size: Message buffer (drop-oldest)
            client_id_prefix: Prefix of generated client identifiers
        """
        if reconnect_base_delay <= 0:
            raise ValueError(
                f"reconnect_base_delay must be > 0, got {reconnect_base_delay}"
            )
        if reconnect_max_delay < reconnect_base_delay:
            raise ValueError(
                "reconnect_max_delay must be >= reconnect_base_delay, "
                f"got {reconnect_max_delay} < {reconnect_base_delay}"
            )

        self.logger = logger or create_logger("manager")
        self._transport_factory = transport_factory or create_paho_transport(self.logger)
        self.auto_reconnect = auto_reconnect
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.connection_timeout = connection_timeout
        self.operation_timeout = operation_timeout
        self.client_id_prefix = client_id_prefix

        # Streams
        self.connection_events: BroadcastChannel[ConnectionEvent] = BroadcastChannel(
            event_buffer_size
        )
        self.messages: BroadcastChannel[RawMessage] = BroadcastChannel(
            message_buffer_size
        )

        # Locks
        self._state_lock = threading.RLock()
        self._op_lock = threading.RLock()
        self._stats_lock = threading.Lock()
        self._subs_lock = threading.Lock()

        # Session
        self._state = ConnectionState.DISCONNECTED
        self._transport: Optional[Transport] = None
        self._generation = 0
        self._config: Optional[BrokerConfig] = None
        self._subscriptions: Dict[str, Subscription] = {}

        # Statistics
        self._messages_received = 0
        self._messages_lost = 0
        self._connection_start_time: Optional[float] = None
        self._reconnect_count = 0
        self._last_error: Optional[str] = None

        # Auto-reconnect
        self._reconnect_thread: Optional[threading.Thread] = None
        self._reconnect_cancel = threading.Event()
        self._reconnect_delay = reconnect_base_delay
        self._reconnect_allowed = False

        self._state_listeners: List[StateListener] = []

    # ─────────────────────────────────────────────────────────────────────
    # Public operations
    # ─────────────────────────────────────────────────────────────────────

    def connect(self, config: BrokerConfig) -> MqttResult[None]:
        """
        Connect to the broker described by ``config``.

        No-op success when already connected. On failure the reconnect loop
        is started (if auto_reconnect) and the typed error is returned.

        Returns:
            Success, or Failure with ConnectionFailed / BrokerUnreachable /
            AuthenticationFailed
        """
        with self._state_lock:
            self._reconnect_allowed = True
        return self._connect(config)

    def disconnect(self) -> MqttResult[None]:
        """
        Cancel any reconnect loop, close the session and forget subscriptions.

        Idempotent: safe to call when already disconnected.
        """
        self.logger.info(
            event=LogEvent.MQTT_DISCONNECTED,
            message="Disconnecting from MQTT broker",
            metadata={'state': self._state.value}
        )

        # Cancel before touching the transport so the loop cannot reconnect
        with self._state_lock:
            self._reconnect_allowed = False
            cancel = self._reconnect_cancel
            thread = self._reconnect_thread
        cancel.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._reconnect_thread = None

        with self._op_lock:
            result: MqttResult[None] = Success()
            try:
                self._close_transport()
            except Exception as e:
                self.logger.error(
                    event=LogEvent.MQTT_CONNECTION_ERROR,
                    message="Error during disconnect",
                    exc_info=e
                )
                result = Failure(UnknownError(str(e) or "Disconnect failed"))

            with self._subs_lock:
                self._subscriptions.clear()
            with self._stats_lock:
                self._connection_start_time = None

            self._set_state(ConnectionState.DISCONNECTED, "Disconnected")
            return result

    def subscribe(self, topic: str, qos: int = 1) -> MqttResult[None]:
        """
        Subscribe to a topic filter and remember it for resubscription.

        A later call for the same filter replaces its QoS.

        Returns:
            Success, or Failure(SubscriptionFailed)
        """
        if qos not in {0, 1, 2}:
            return Failure(SubscriptionFailed(topic, f"Invalid QoS {qos}"))

        with self._op_lock:
            transport = self._transport
            if transport is None or not self.is_connected():
                return Failure(SubscriptionFailed(topic, "Client not connected"))

            try:
                transport.subscribe(topic, qos, self.operation_timeout)
            except Exception as e:
                self.logger.error(
                    event=LogEvent.MQTT_SUBSCRIPTION_ERROR,
                    message=f"Subscription failed for topic: {topic}",
                    exc_info=e,
                    metadata={'topic': topic, 'qos': qos}
                )
                return Failure(SubscriptionFailed(topic, str(e) or "Unknown error"))

            with self._subs_lock:
                self._subscriptions[topic] = Subscription(topic=topic, qos=qos, active=True)

            self.logger.info(
                event=LogEvent.MQTT_SUBSCRIBED,
                message=f"Subscribed to {topic}",
                metadata={'topic': topic, 'qos': qos}
            )
            return Success()

    def unsubscribe(self, topic: str) -> MqttResult[None]:
        """
        Unsubscribe from a topic filter (best effort).

        The filter is forgotten whatever the transport outcome; succeeds
        trivially when not connected.

        Returns:
            Success, or Failure(UnknownError) when the broker call failed
        """
        with self._op_lock:
            try:
                transport = self._transport
                if transport is not None and self.is_connected():
                    transport.unsubscribe(topic, self.operation_timeout)
                    self.logger.info(
                        event=LogEvent.MQTT_UNSUBSCRIBED,
                        message=f"Unsubscribed from {topic}",
                        metadata={'topic': topic}
                    )
                return Success()
            except Exception as e:
                self.logger.error(
                    event=LogEvent.MQTT_SUBSCRIPTION_ERROR,
                    message=f"Unsubscribe failed for topic: {topic}",
                    exc_info=e,
                    metadata={'topic': topic}
                )
                return Failure(UnknownError(str(e) or "Unsubscribe failed"))
            finally:
                with self._subs_lock:
                    self._subscriptions.pop(topic, None)

    def is_connected(self) -> bool:
        """Check if the broker session is currently up."""
        transport = self._transport
        return (
            transport is not None
            and self._state is ConnectionState.CONNECTED
            and transport.is_connected()
        )

    def get_connection_stats(self) -> ConnectionStats:
        """Snapshot of counters and session info."""
        connected = self.is_connected()
        transport = self._transport
        config = self._config

        with self._stats_lock:
            start = self._connection_start_time
            uptime = int((time.time() - start) * 1000) if connected and start else 0
            return ConnectionStats(
                is_connected=connected,
                connection_uptime=uptime,
                messages_received=self._messages_received,
                messages_lost=self._messages_lost,
                reconnect_count=self._reconnect_count,
                last_error=self._last_error,
                broker_host=config.host if config else "Unknown",
                client_id=transport.client_id if transport else "Unknown",
            )

    def active_subscriptions(self) -> List[Subscription]:
        """Snapshot of the remembered subscriptions."""
        with self._subs_lock:
            return list(self._subscriptions.values())

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    @property
    def broker_config(self) -> Optional[BrokerConfig]:
        return self._config

    @property
    def reconnect_delay(self) -> float:
        """Delay (seconds) the reconnect loop will wait before its next attempt."""
        return self._reconnect_delay

    @property
    def is_reconnecting(self) -> bool:
        thread = self._reconnect_thread
        return thread is not None and thread.is_alive()

    def add_state_listener(self, listener: StateListener) -> None:
        """
        Call ``listener(state)`` on every transition, in order.

        Runs under the state lock: keep it short and never call back into
        connect/disconnect from it.
        """
        with self._state_lock:
            self._state_listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        with self._state_lock:
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

    def close(self) -> None:
        """Release everything; the manager's owner calls this on shutdown."""
        self.disconnect()

    # ─────────────────────────────────────────────────────────────────────
    # Connection internals
    # ─────────────────────────────────────────────────────────────────────

    def _connect(
        self,
        config: BrokerConfig,
        cancel: Optional[threading.Event] = None
    ) -> MqttResult[None]:
        with self._op_lock:
            if self.is_connected():
                self.logger.debug(
                    event=LogEvent.MQTT_CONNECTED,
                    message="Already connected"
                )
                return Success()

            if cancel is not None and cancel.is_set():
                return Failure(ConnectionFailed("Reconnect cancelled"))

            self._set_state(
                ConnectionState.CONNECTING,
                f"Connecting to {config.host}:{config.port}"
            )
            self.logger.info(
                event=LogEvent.MQTT_CONNECTING,
                message="Connecting to MQTT broker",
                metadata={'broker': config.broker_url}
            )

            self._config = config
            self._close_stale_transport()

            self._generation += 1
            generation = self._generation
            client_id = ClientSettings.generate_client_id(self.client_id_prefix)

            try:
                transport = self._transport_factory(
                    client_id,
                    config,
                    self._on_transport_message,
                    lambda reason: self._handle_connection_lost(generation, reason),
                )
            except Exception as e:
                return self._connection_failed(config, e, self._connect_error(config, e))

            try:
                transport.connect(self.connection_timeout)
            except Exception as e:
                self._discard_transport(transport)
                return self._connection_failed(config, e, self._connect_error(config, e))

            self._transport = transport
            with self._stats_lock:
                self._connection_start_time = time.time()
                self._reconnect_count = 0
                self._last_error = None
            self._reset_reconnect_delay()

            self._set_state(ConnectionState.CONNECTED, f"Connected to {config.host}")
            self.logger.info(
                event=LogEvent.MQTT_CONNECTED,
                message="Connected to MQTT broker",
                metadata={'broker': config.broker_url, 'client_id': client_id}
            )

            self._resubscribe_all()
            return Success()

    @staticmethod
    def _connect_error(config: BrokerConfig, exc: Exception):
        if isinstance(exc, AuthenticationError):
            return AuthenticationFailed(config.broker_url)
        if isinstance(exc, BrokerUnreachableError):
            return BrokerUnreachable(config.broker_url)
        return ConnectionFailed(str(exc) or type(exc).__name__)

    def _discard_transport(self, transport: Transport) -> None:
        """Release a transport whose connect attempt failed."""
        try:
            transport.disconnect()
        except Exception as e:
            self.logger.warning(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message=f"Error releasing failed session: {e}"
            )

    def _connection_failed(
        self,
        config: BrokerConfig,
        exc: Exception,
        error
    ) -> MqttResult[None]:
        with self._stats_lock:
            self._last_error = str(exc) or type(exc).__name__

        self.logger.error(
            event=LogEvent.MQTT_CONNECTION_ERROR,
            message="Connection failed",
            exc_info=exc,
            metadata={'broker': config.broker_url, 'error': error.to_dict()}
        )
        self._set_state(
            ConnectionState.ERROR,
            f"Connection failed: {self._last_error}",
            error=exc
        )

        if self.auto_reconnect:
            self._start_auto_reconnect()

        return Failure(error)

    def _handle_connection_lost(self, generation: int, reason: str) -> None:
        """Transport callback (network thread): the session dropped on its own."""
        with self._state_lock:
            if generation != self._generation or self._state is not ConnectionState.CONNECTED:
                return
            with self._stats_lock:
                self._last_error = reason
                self._connection_start_time = None
            self._set_state(ConnectionState.ERROR, reason)

        self.logger.warning(
            event=LogEvent.MQTT_DISCONNECTED,
            message="Lost connection to MQTT broker",
            metadata={'reason': reason}
        )

        if self.auto_reconnect:
            self._start_auto_reconnect()

    def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        self._generation += 1
        if transport is not None:
            transport.disconnect()

    def _close_stale_transport(self) -> None:
        try:
            self._close_transport()
        except Exception as e:
            self.logger.warning(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message=f"Error closing previous session: {e}"
            )

    def _resubscribe_all(self) -> None:
        """Replay remembered subscriptions in order; failures do not stop the rest."""
        with self._subs_lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()

        for subscription in subscriptions:
            result = self.subscribe(subscription.topic, subscription.qos)
            if not result.is_success:
                self.logger.warning(
                    event=LogEvent.MQTT_SUBSCRIPTION_ERROR,
                    message=f"Resubscription failed: {result.error}",
                    metadata={'topic': subscription.topic, 'qos': subscription.qos}
                )

    # ─────────────────────────────────────────────────────────────────────
    # Auto-reconnect (reconnect thread)
    # ─────────────────────────────────────────────────────────────────────

    def _start_auto_reconnect(self) -> None:
        with self._state_lock:
            if not self._reconnect_allowed or self.is_reconnecting:
                return
            self._reconnect_cancel = threading.Event()
            self._reconnect_thread = threading.Thread(
                target=self._reconnect_loop,
                args=(self._reconnect_cancel,),
                name="vibus-mqtt-reconnect",
                daemon=True,
            )
            self._reconnect_thread.start()

    def _reconnect_loop(self, cancel: threading.Event) -> None:
        while True:
            with self._state_lock:
                # Exit decided under the state lock: a connection loss racing
                # with this exit will see no live loop and start a new one
                if cancel.is_set() or self.is_connected():
                    if self._reconnect_thread is threading.current_thread():
                        self._reconnect_thread = None
                    return
                delay = self._reconnect_delay
                self._set_state(
                    ConnectionState.RECONNECTING,
                    f"Reconnecting in {int(delay * 1000)}ms",
                    reconnect_delay=delay
                )
            self.logger.info(
                event=LogEvent.MQTT_RECONNECTING,
                message=f"Auto-reconnect attempt in {delay:.1f}s",
                metadata={'delay_s': delay, 'reconnect_count': self._reconnect_count}
            )

            if cancel.wait(delay):
                continue

            config = self._config
            if config is None:
                self.logger.error(
                    event=LogEvent.MQTT_CONNECTION_ERROR,
                    message="No broker config for auto-reconnect"
                )
                with self._state_lock:
                    if self._reconnect_thread is threading.current_thread():
                        self._reconnect_thread = None
                return

            result = self._connect(config, cancel=cancel)
            if result.is_success:
                self.logger.info(
                    event=LogEvent.MQTT_CONNECTED,
                    message="Auto-reconnect successful"
                )
                continue

            self._increase_reconnect_delay()
            with self._stats_lock:
                self._reconnect_count += 1

    def _increase_reconnect_delay(self) -> None:
        self._reconnect_delay = min(self._reconnect_delay * 2, self.reconnect_max_delay)

    def _reset_reconnect_delay(self) -> None:
        self._reconnect_delay = self.reconnect_base_delay

    # ─────────────────────────────────────────────────────────────────────
    # Events and ingestion
    # ─────────────────────────────────────────────────────────────────────

    def _set_state(
        self,
        state: ConnectionState,
        message: str,
        error: Optional[BaseException] = None,
        reconnect_delay: Optional[float] = None
    ) -> None:
        with self._state_lock:
            self._state = state
            self.connection_events.publish(
                ConnectionEvent(
                    state=state,
                    message=message,
                    error=error,
                    reconnect_delay=reconnect_delay,
                )
            )
            for listener in list(self._state_listeners):
                try:
                    listener(state)
                except Exception as e:
                    self.logger.error(
                        event=LogEvent.MQTT_CONNECTION_ERROR,
                        message="State listener failed",
                        exc_info=e
                    )

    def _on_transport_message(
        self,
        topic: str,
        payload: bytes,
        qos: int,
        retained: bool
    ) -> None:
        """Transport callback (network thread). Must never raise."""
        try:
            text = bytes(payload or b"").decode("utf-8")
            message = RawMessage(topic=topic, payload=text, qos=qos, retained=retained)
        except (UnicodeDecodeError, TypeError, ValueError) as e:
            with self._stats_lock:
                self._messages_lost += 1
            self.logger.error(
                event=LogEvent.MESSAGE_LOST,
                message="Error processing inbound frame",
                exc_info=e,
                metadata={'topic': topic}
            )
            return

        self.messages.publish(message)
        with self._stats_lock:
            self._messages_received += 1

        self.logger.debug(
            event=LogEvent.MESSAGE_RECEIVED,
            message="Received message",
            metadata={'topic': topic, 'payload_length': len(text), 'qos': qos}
        )
