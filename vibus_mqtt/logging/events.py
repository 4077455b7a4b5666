"""
Structured Log Event Types
==========================

Bounded Context: Observability Event Taxonomy

This module defines typed event names for structured logging of the
ViBus telemetry pipeline.

Event Naming Convention:
    <component>.<category>.<action>

    component: mqtt, message, parse, cache, error
    category: connected, subscribed, received, cleanup
    action: success, failed

Example Log Query (Loki):
    {component="manager"} | json | event="mqtt.reconnecting"
"""

from enum import Enum


class LogEvent(str, Enum):
    """
    Typed log event names for structured logging.

    Categories:
    - mqtt.*: Broker connection and subscription lifecycle
    - message.*: Inbound telemetry flow
    - parse.*: Payload decoding
    - cache.*: Cache maintenance
    - error.*: Error conditions
    """

    # ========== MQTT Events ==========
    MQTT_CONNECTING = "mqtt.connecting"
    """Connection attempt started."""

    MQTT_CONNECTED = "mqtt.connected"
    """MQTT broker connection established."""

    MQTT_DISCONNECTED = "mqtt.disconnected"
    """MQTT broker connection closed or lost."""

    MQTT_RECONNECTING = "mqtt.reconnecting"
    """Waiting on backoff before the next reconnect attempt."""

    MQTT_SUBSCRIBED = "mqtt.subscribed"
    """Topic filter acknowledged by the broker."""

    MQTT_UNSUBSCRIBED = "mqtt.unsubscribed"
    """Topic filter removed."""

    MQTT_PUBLISH_SUCCESS = "mqtt.publish.success"
    """Message successfully published to broker."""

    # ========== Message Events ==========
    MESSAGE_RECEIVED = "message.received"
    """Raw message ingested from the transport."""

    MESSAGE_PARSED = "message.parsed"
    """Payload decoded into a domain record."""

    MESSAGE_SKIPPED = "message.skipped"
    """Message dropped by the per-topic monotonic gate."""

    # ========== Parse Events ==========
    PARSE_WARNING = "parse.warning"
    """Tolerated anomaly (unknown enum value, bad timestamp)."""

    # ========== Cache Events ==========
    CACHE_CLEANUP = "cache.cleanup"
    """Stale entries evicted from the message cache."""

    # ========== Error Events ==========
    DESERIALIZATION_ERROR = "error.deserialization"
    """Failed to decode a message payload."""

    SCHEMA_VALIDATION_ERROR = "error.schema_validation"
    """Message failed required-field validation."""

    MQTT_CONNECTION_ERROR = "error.mqtt_connection"
    """Failed to connect to MQTT broker."""

    MQTT_SUBSCRIPTION_ERROR = "error.mqtt_subscription"
    """Subscribe or unsubscribe failed."""

    MESSAGE_LOST = "error.message_lost"
    """Inbound frame could not be turned into a message."""


# Event categories for filtering
MQTT_EVENTS = {
    LogEvent.MQTT_CONNECTING,
    LogEvent.MQTT_CONNECTED,
    LogEvent.MQTT_DISCONNECTED,
    LogEvent.MQTT_RECONNECTING,
    LogEvent.MQTT_SUBSCRIBED,
    LogEvent.MQTT_UNSUBSCRIBED,
    LogEvent.MQTT_PUBLISH_SUCCESS,
}

MESSAGE_EVENTS = {
    LogEvent.MESSAGE_RECEIVED,
    LogEvent.MESSAGE_PARSED,
    LogEvent.MESSAGE_SKIPPED,
    LogEvent.PARSE_WARNING,
    LogEvent.CACHE_CLEANUP,
}

ERROR_EVENTS = {
    LogEvent.DESERIALIZATION_ERROR,
    LogEvent.SCHEMA_VALIDATION_ERROR,
    LogEvent.MQTT_CONNECTION_ERROR,
    LogEvent.MQTT_SUBSCRIPTION_ERROR,
    LogEvent.MESSAGE_LOST,
}
