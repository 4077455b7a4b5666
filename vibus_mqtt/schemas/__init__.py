"""
ViBus MQTT Schemas
==================

Bounded Context: Data Structures

Immutable, typed data structures shared by the connection manager, the
message parser and the cache.

Design:
- Frozen dataclasses (immutability)
- Invariants validated in __post_init__
- to_dict() for JSON export
- Results as values (Success / Failure) instead of exceptions

Public API
----------
Telemetry:
    Position, Bus, BusStatus
    LineStats, SystemStatus, SystemHealth
    BusPositionUpdate, LineStatisticsUpdate, SystemStatusUpdate, ParsedUpdate

Connection:
    ConnectionState, ConnectionEvent, RawMessage, Subscription, ConnectionStats

Results:
    MqttResult, Success, Failure
    MqttError, ConnectionFailed, SubscriptionFailed, MessageParsingFailed,
    BrokerUnreachable, AuthenticationFailed, UnknownError
"""

from .bus import Position, Bus, BusStatus
from .statistics import LineStats, SystemStatus, SystemHealth
from .updates import (
    BusPositionUpdate,
    LineStatisticsUpdate,
    SystemStatusUpdate,
    ParsedUpdate,
)
from .connection import (
    ConnectionState,
    ConnectionEvent,
    RawMessage,
    Subscription,
    ConnectionStats,
)
from .results import (
    MqttResult,
    Success,
    Failure,
    MqttError,
    ConnectionFailed,
    SubscriptionFailed,
    MessageParsingFailed,
    BrokerUnreachable,
    AuthenticationFailed,
    UnknownError,
)

__all__ = [
    # Telemetry
    'Position',
    'Bus',
    'BusStatus',
    'LineStats',
    'SystemStatus',
    'SystemHealth',
    'BusPositionUpdate',
    'LineStatisticsUpdate',
    'SystemStatusUpdate',
    'ParsedUpdate',
    # Connection
    'ConnectionState',
    'ConnectionEvent',
    'RawMessage',
    'Subscription',
    'ConnectionStats',
    # Results
    'MqttResult',
    'Success',
    'Failure',
    'MqttError',
    'ConnectionFailed',
    'SubscriptionFailed',
    'MessageParsingFailed',
    'BrokerUnreachable',
    'AuthenticationFailed',
    'UnknownError',
]
