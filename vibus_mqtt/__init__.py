"""
ViBus MQTT Telemetry Core
=========================

Bounded Context: Real-Time Bus Telemetry over MQTT

This package connects to the ViBus broker, keeps the session alive, and turns
the bus-position, line-statistics and system-status topics into typed,
deduplicated state for the live service and the CLI.

Architecture:
- config: Broker parameters, topic registry, environment presets
- transport: paho-mqtt session facade (blocking, with timeouts)
- manager: Connection lifecycle, auto-reconnect, subscription replay
- broadcast: Bounded drop-oldest fan-out channels
- parser: Topic-dispatching JSON parser
- cache: Latest-known state with timestamp deduplication
- schemas/: Immutable data structures and result types
- logging/: Structured JSON logging

Public API
----------
Connection:
    ConnectionManager, BrokerConfig, Topics, ClientSettings, CacheSettings
    Environment, get_config_for_environment

Processing:
    MessageParser, GeoBounds, VICENZA_BOUNDS, MessageCache

Streams:
    BroadcastChannel, Receiver

Logging:
    LogEvent, StructuredLogger, create_logger

Example:
    >>> from vibus_mqtt import (
    ...     ConnectionManager, MessageParser, MessageCache, BrokerConfig, Topics
    ... )
    >>> manager = ConnectionManager()
    >>> parser = MessageParser()
    >>> cache = MessageCache()
    >>> messages = manager.messages.subscribe()
    >>>
    >>> if manager.connect(BrokerConfig(host="localhost")).is_success:
    ...     manager.subscribe(Topics.BUS_POSITIONS, qos=1)
    >>>
    >>> raw = messages.get(timeout=5.0)
    >>> result = parser.parse_message(raw)
    >>> if result.is_success:
    ...     cache.apply(result.data)
"""

# Version
__version__ = "1.0.0"

# Configuration
from .config import (
    BrokerConfig,
    Topics,
    ClientSettings,
    CacheSettings,
    Environment,
    get_config_for_environment,
)

# Connection
from .manager import ConnectionManager
from .broadcast import BroadcastChannel, Receiver

# Processing
from .parser import MessageParser, GeoBounds, VICENZA_BOUNDS
from .cache import MessageCache

# Logging
from .logging import (
    LogEvent,
    StructuredLogger,
    create_logger,
)

__all__ = [
    # Version
    '__version__',
    # Configuration
    'BrokerConfig',
    'Topics',
    'ClientSettings',
    'CacheSettings',
    'Environment',
    'get_config_for_environment',
    # Connection
    'ConnectionManager',
    'BroadcastChannel',
    'Receiver',
    # Processing
    'MessageParser',
    'GeoBounds',
    'VICENZA_BOUNDS',
    'MessageCache',
    # Logging
    'LogEvent',
    'StructuredLogger',
    'create_logger',
]
