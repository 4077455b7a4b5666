"""
Connection Schemas
==================

Bounded Context: Broker Session

Types exchanged between the ConnectionManager and its consumers: the
connection state machine, state-change events, raw inbound messages,
subscription bookkeeping and observational statistics.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional


class ConnectionState(str, Enum):
    """Connection state of a ConnectionManager."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionEvent:
    """
    One state transition, as broadcast on the connection-event stream.

    Attributes:
        state: State entered
        message: Human-readable description
        error: Exception that caused an ERROR transition, if any
        reconnect_delay: Backoff delay in seconds (RECONNECTING only)
        timestamp: Time of the transition
    """
    state: ConnectionState
    message: Optional[str] = None
    error: Optional[BaseException] = None
    reconnect_delay: Optional[float] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class RawMessage:
    """
    Inbound MQTT message before parsing.

    Attributes:
        topic: Concrete topic the message was published on
        payload: UTF-8 decoded payload
        qos: Delivery QoS
        retained: Broker retain flag
        received_at: Ingestion time
    """
    topic: str
    payload: str
    qos: int = 0
    retained: bool = False
    received_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class Subscription:
    """Topic filter registered with the broker."""
    topic: str
    qos: int
    active: bool = False

    def __post_init__(self):
        """Validate invariants."""
        if self.qos not in {0, 1, 2}:
            raise ValueError(f"MQTT QoS must be 0, 1, or 2, got {self.qos}")
        if not self.topic:
            raise ValueError("Topic filter cannot be empty")


@dataclass(frozen=True)
class ConnectionStats:
    """
    Observational snapshot of a ConnectionManager.

    Attributes:
        is_connected: Transport session is up
        connection_uptime: Milliseconds since the last successful connect (0 if down)
        messages_received: Messages published on the message stream
        messages_lost: Inbound frames that could not be decoded
        reconnect_count: Failed reconnect attempts since the last success
        last_error: Reason of the last connection failure
        broker_host: Host of the stored broker config
        client_id: Identifier of the current transport client
    """
    is_connected: bool
    connection_uptime: int
    messages_received: int
    messages_lost: int
    reconnect_count: int
    last_error: Optional[str]
    broker_host: str
    client_id: str

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            'connected': self.is_connected,
            'uptime_ms': self.connection_uptime,
            'messages_received': self.messages_received,
            'messages_lost': self.messages_lost,
            'reconnect_count': self.reconnect_count,
            'last_error': self.last_error,
            'broker_host': self.broker_host,
            'client_id': self.client_id,
        }
