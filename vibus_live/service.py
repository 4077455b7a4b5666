"""
Live Bus Service - MQTT telemetry pipeline orchestrator.

This module provides the LiveBusService class which wires the connection
manager, the message parser and the message cache into a running service,
and tracks when the MQTT feed should be considered unreliable.

Architecture:
- ConnectionManager owns the broker session and auto-reconnect
- Consumer thread: RawMessage → MessageParser → topic gate → MessageCache
- Monitor thread: connection events → failure counter / fallback flag
- Cleanup thread: periodic staleness eviction of the cache

Threading Model:
- paho-mqtt network thread (manager ingestion callbacks)
- Manager reconnect thread (only while reconnecting)
- Consumer thread (our thread)
- Monitor thread (our thread)
- Cleanup thread (our thread)
"""

import logging
import threading
from datetime import timedelta
from typing import Any, Dict, List, Optional

from vibus_mqtt import ConnectionManager, MessageCache, MessageParser, Topics
from vibus_mqtt.config import ClientSettings
from vibus_mqtt.schemas import (
    Bus,
    BusPositionUpdate,
    ConnectionEvent,
    ConnectionState,
    LineStats,
    MqttResult,
    RawMessage,
    Success,
    SystemStatus,
)
from vibus_live.config import LiveServiceConfig

logger = logging.getLogger(__name__)

# Topic filters the service keeps subscribed, with their QoS
SERVICE_SUBSCRIPTIONS = (
    (Topics.BUS_POSITIONS, ClientSettings.QOS_BUS_POSITIONS),
    (Topics.LINE_STATS, ClientSettings.QOS_STATS),
    (Topics.SYSTEM_STATUS, ClientSettings.QOS_STATUS),
)

POLL_TIMEOUT_SECONDS = 0.5


class LiveBusService:
    """
    Live telemetry service.

    Keeps the latest bus positions, line statistics and system status in a
    MessageCache fed from the ViBus MQTT topics.

    Fallback:
        Consecutive failures (unparseable messages, DISCONNECTED/ERROR
        connection events) are counted; a bus update or a CONNECTED event
        resets the counter. When the counter reaches the configured
        threshold, ``fallback_active`` turns True until the connection is
        back, so callers can switch to another data source.

    Thread Safety:
    - cache: Protected by its own lock
    - failure counter / fallback flag: Protected by _failure_lock
    - stats: Protected by _stats_lock

    Usage:
        config = LiveServiceConfig.from_yaml("config/live_service.yaml")
        service = LiveBusService(config)
        service.start()
        service.wait()  # Blocks until stopped
    """

    def __init__(
        self,
        config: LiveServiceConfig,
        manager: Optional[ConnectionManager] = None,
        parser: Optional[MessageParser] = None,
        cache: Optional[MessageCache] = None,
    ):
        """
        Initialize live bus service.

        Args:
            config: Service configuration
            manager: Connection manager (default: built from config)
            parser: Message parser (default: built from config)
            cache: Message cache (default: empty cache)
        """
        self.config = config
        self.manager = manager or ConnectionManager(
            auto_reconnect=config.reconnect.auto_reconnect,
            reconnect_base_delay=config.reconnect.base_delay,
            reconnect_max_delay=config.reconnect.max_delay,
            connection_timeout=config.reconnect.connection_timeout,
            operation_timeout=config.reconnect.operation_timeout,
            event_buffer_size=config.event_buffer_size,
            message_buffer_size=config.message_buffer_size,
        )
        self.parser = parser or MessageParser(strict=config.strict_validation)
        self.cache = cache or MessageCache()

        # Threads
        self.stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._messages = None
        self._events = None

        # Failure tracking
        self._failure_lock = threading.Lock()
        self._consecutive_failures = 0
        self._fallback = False

        # Counters
        self._stats_lock = threading.Lock()
        self._stats = {'processed': 0, 'skipped': 0, 'failed': 0, 'cleanups': 0}

        self._running = False

        logger.info(f"LiveBusService initialized for broker={config.broker.broker_url}")

    # ===== lifecycle =====

    def start(self) -> MqttResult[None]:
        """
        Connect, subscribe and start the worker threads.

        Lifecycle:
        1. Attach receivers to the manager streams
        2. Connect to the broker (failure raises the fallback flag)
        3. Subscribe bus positions, line stats and system status
        4. Start consumer, monitor and cleanup threads

        Returns:
            Result of the first connection attempt. Threads are started
            either way so the reconnect loop can bring data in later.
        """
        if self._running:
            logger.warning("Service already running")
            return Success()

        logger.info("Starting live bus service")
        self.stop_event.clear()

        # Attach before connecting so no event or message is missed
        self._messages = self.manager.messages.subscribe()
        self._events = self.manager.connection_events.subscribe()

        result = self.manager.connect(self.config.broker)
        if result.is_success:
            self._ensure_subscriptions()
        else:
            logger.error(f"Failed to connect to MQTT broker: {result.error}")
            self._enable_fallback()

        self._threads = [
            self._start_thread(self._consume_loop, "LiveConsumerThread"),
            self._start_thread(self._monitor_loop, "LiveMonitorThread"),
            self._start_thread(self._cleanup_loop, "LiveCleanupThread"),
        ]
        self._running = True

        logger.info("✅ Live bus service started")
        return result

    def _start_thread(self, target, name: str) -> threading.Thread:
        thread = threading.Thread(target=target, name=name, daemon=True)
        thread.start()
        return thread

    def wait(self):
        """
        Block until service stops.

        Returns when stop() is called; Ctrl+C stops the service.
        """
        if not self._running:
            logger.warning("Service not running")
            return

        try:
            while not self.stop_event.wait(timeout=1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Received KeyboardInterrupt, stopping...")
            self.stop()

    def stop(self):
        """
        Stop the service gracefully.

        Lifecycle:
        1. Signal and join worker threads
        2. Disconnect from the broker
        3. Detach stream receivers
        """
        if not self._running:
            logger.warning("Service not running")
            return

        logger.info("Stopping live bus service")

        self.stop_event.set()
        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join(timeout=5.0)
        self._threads = []
        logger.info("Worker threads stopped")

        result = self.manager.disconnect()
        if not result.is_success:
            logger.error(f"Error disconnecting from broker: {result.error}")

        for receiver in (self._messages, self._events):
            if receiver is not None:
                receiver.close()
        self._messages = None
        self._events = None

        self._running = False
        logger.info("✅ Live bus service stopped")

    def reconnect(self) -> MqttResult[None]:
        """Force a connection attempt and give MQTT another chance."""
        logger.info("Forcing MQTT reconnection")
        with self._failure_lock:
            self._consecutive_failures = 0
            self._fallback = False

        result = self.manager.connect(self.config.broker)
        if result.is_success:
            self._ensure_subscriptions()
        return result

    def _ensure_subscriptions(self) -> None:
        """Subscribe any service topic the manager is not subscribed to."""
        active = {s.topic for s in self.manager.active_subscriptions()}

        for topic, qos in SERVICE_SUBSCRIPTIONS:
            if topic in active:
                continue
            result = self.manager.subscribe(topic, qos)
            if result.is_success:
                logger.info(f"Subscribed to {topic} (qos={qos})")
            else:
                logger.error(f"Failed to subscribe to {topic}: {result.error}")

    # ===== worker loops =====

    def _consume_loop(self):
        """
        Message consumer loop.

        Thread: LiveConsumerThread (our thread)
        """
        logger.info("Message consumer loop started")
        receiver = self._messages

        while not self.stop_event.is_set():
            message = receiver.get(timeout=POLL_TIMEOUT_SECONDS)
            if message is None:
                continue
            self.process_message(message)

        logger.info("Message consumer loop stopped")

    def process_message(self, message: RawMessage) -> bool:
        """
        Parse one message and apply it to the cache.

        Returns:
            True if the cache was updated
        """
        try:
            result = self.parser.parse_message(message)
            if not result.is_success:
                logger.warning(f"Failed to parse message: {result.error}")
                self._count('failed')
                self._handle_failure()
                return False

            update = result.data
            if not self.cache.should_process_message(message.topic, update.timestamp):
                logger.debug(f"Skipping stale message on {message.topic}")
                self._count('skipped')
                return False

            self.cache.apply(update)
            self.cache.mark_processed(message.topic, update.timestamp)
            self._count('processed')

            if isinstance(update, BusPositionUpdate):
                with self._failure_lock:
                    self._consecutive_failures = 0
            return True

        except Exception as e:
            logger.error(f"Error processing MQTT message: {e}", exc_info=True)
            self._count('failed')
            self._handle_failure()
            return False

    def _monitor_loop(self):
        """
        Connection event monitor loop.

        Thread: LiveMonitorThread (our thread)
        """
        logger.info("Connection monitor loop started")
        receiver = self._events

        while not self.stop_event.is_set():
            event = receiver.get(timeout=POLL_TIMEOUT_SECONDS)
            if event is None:
                continue
            self.handle_connection_event(event)

        logger.info("Connection monitor loop stopped")

    def handle_connection_event(self, event: ConnectionEvent) -> None:
        logger.debug(f"MQTT connection state: {event.state.value}")

        if event.state in (ConnectionState.DISCONNECTED, ConnectionState.ERROR):
            self._handle_failure()
        elif event.state is ConnectionState.CONNECTED:
            with self._failure_lock:
                self._consecutive_failures = 0
                if self._fallback:
                    logger.info("🔄 Reconnected to MQTT, disabling fallback")
                    self._fallback = False
            if not self.stop_event.is_set():
                self._ensure_subscriptions()

    def _cleanup_loop(self):
        """
        Periodic cache cleanup loop.

        Thread: LiveCleanupThread (our thread)
        """
        interval = self.config.cleanup_interval_seconds
        max_age = timedelta(seconds=self.config.bus_ttl_seconds)

        while not self.stop_event.wait(timeout=interval):
            try:
                removed = self.cache.cleanup(max_age)
                self._count('cleanups')
                logger.debug(f"Cache cleanup completed ({removed} removed)")
            except Exception as e:
                logger.error(f"Cache cleanup failed: {e}", exc_info=True)

    # ===== failure tracking =====

    def _handle_failure(self) -> None:
        with self._failure_lock:
            self._consecutive_failures += 1
            failures = self._consecutive_failures
        logger.warning(f"Consecutive failures: {failures}")

        if failures >= self.config.fallback_threshold:
            self._enable_fallback()

    def _enable_fallback(self) -> None:
        with self._failure_lock:
            if self._fallback:
                return
            self._fallback = True
        logger.warning("⚠️ Enabling fallback due to MQTT failures")

    @property
    def fallback_active(self) -> bool:
        with self._failure_lock:
            return self._fallback

    @property
    def consecutive_failures(self) -> int:
        with self._failure_lock:
            return self._consecutive_failures

    @property
    def is_running(self) -> bool:
        return self._running

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1

    # ===== snapshots =====

    def get_buses(self) -> List[Bus]:
        return self.cache.get_bus_positions()

    def get_line_stats(self) -> List[LineStats]:
        return self.cache.get_line_statistics()

    def get_system_status(self) -> Optional[SystemStatus]:
        return self.cache.system_status

    def get_stats(self) -> Dict[str, Any]:
        """Service, connection, parser and cache counters in one dict."""
        with self._stats_lock:
            service_stats = dict(self._stats)

        return {
            'service': {
                **service_stats,
                'running': self._running,
                'fallback_active': self.fallback_active,
                'consecutive_failures': self.consecutive_failures,
            },
            'connection': self.manager.get_connection_stats().to_dict(),
            'parser': self.parser.get_stats(),
            'cache': self.cache.get_stats(),
        }
