"""
Message Parser
==============

Bounded Context: Message Deserialization

Turns RawMessages from the ViBus topics into typed updates:

    vibus/autobus/{busId}/posizione     → BusPositionUpdate
    vibus/linea/{lineId}/statistiche    → LineStatisticsUpdate
    vibus/sistema/{component}/stato     → SystemStatusUpdate

Design:
- Total: every input yields Success or Failure(MessageParsingFailed),
  nothing is raised to the caller
- Tolerant reader: snake_case and camelCase field aliases, nested or
  top-level coordinates, double-encoded JSON strings (Node-RED bridges)
- Unknown enum values and unreadable timestamps degrade to defaults with
  a warning instead of dropping the message
- Range checks (service area, speed, load) are advisory unless the parser
  is built with strict=True

Example:
    >>> parser = MessageParser()
    >>> result = parser.parse_message(RawMessage(
    ...     topic="vibus/autobus/SVT101/posizione",
    ...     payload='{"bus_id": "SVT101", "line": "1", ...}'
    ... ))
    >>> if result.is_success:
    ...     print(result.data.bus.display_name)
"""

import json
import re
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from .config import Topics
from .logging import StructuredLogger, LogEvent, create_logger
from .schemas import (
    Bus,
    BusPositionUpdate,
    BusStatus,
    Failure,
    LineStatisticsUpdate,
    LineStats,
    MessageParsingFailed,
    MqttResult,
    ParsedUpdate,
    Position,
    RawMessage,
    Success,
    SystemHealth,
    SystemStatus,
    SystemStatusUpdate,
)


@dataclass(frozen=True)
class GeoBounds:
    """Inclusive latitude/longitude box."""
    min_latitude: float
    max_latitude: float
    min_longitude: float
    max_longitude: float

    def contains(self, latitude: float, longitude: float) -> bool:
        return (
            self.min_latitude <= latitude <= self.max_latitude
            and self.min_longitude <= longitude <= self.max_longitude
        )


# Approximate Vicenza service area
VICENZA_BOUNDS = GeoBounds(45.0, 46.0, 11.0, 12.0)

MAX_BUS_SPEED_KMH = 100.0
MAX_BUS_PASSENGERS = 80
DEFAULT_LINE_SPEED_KMH = 25.0

BUS_STATUS_SYNONYMS = {
    "in_service": BusStatus.IN_SERVICE,
    "active": BusStatus.IN_SERVICE,
    "running": BusStatus.IN_SERVICE,
    "out_of_service": BusStatus.OUT_OF_SERVICE,
    "inactive": BusStatus.OUT_OF_SERVICE,
    "stopped": BusStatus.OUT_OF_SERVICE,
    "maintenance": BusStatus.MAINTENANCE,
    "repair": BusStatus.MAINTENANCE,
    "delayed": BusStatus.DELAYED,
    "late": BusStatus.DELAYED,
}

SYSTEM_HEALTH_SYNONYMS = {
    "excellent": SystemHealth.EXCELLENT,
    "perfect": SystemHealth.EXCELLENT,
    "good": SystemHealth.GOOD,
    "ok": SystemHealth.GOOD,
    "fair": SystemHealth.FAIR,
    "average": SystemHealth.FAIR,
    "poor": SystemHealth.POOR,
    "bad": SystemHealth.POOR,
    "critical": SystemHealth.CRITICAL,
    "emergency": SystemHealth.CRITICAL,
}

# Local date-time only: an offset or zone suffix (other than a stripped Z)
# does not match
_ISO_LOCAL_DATETIME = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2})(?::(\d{2})(?:\.(\d{1,9}))?)?$"
)
_SPACE_LOCAL_DATETIME = re.compile(r"^(\d{4})-(\d{2})-(\d{2}) (\d{2}):(\d{2}):(\d{2})$")


class MessageParser:
    """
    Topic-dispatching JSON parser for ViBus telemetry.

    Attributes:
        strict: Reject readings that fail the range checks
        bounds: Service-area box used by is_valid_position
        logger: Structured logger instance

    Thread Safety:
        parse_message may be called from several threads; only the
        counters are shared and they are lock-protected.
    """

    def __init__(
        self,
        logger: Optional[StructuredLogger] = None,
        strict: bool = False,
        bounds: GeoBounds = VICENZA_BOUNDS
    ):
        self.logger = logger or create_logger("parser")
        self.strict = strict
        self.bounds = bounds

        self._stats_lock = threading.Lock()
        self._stats = {
            'parsed': 0,
            'failed': 0,
            'warnings': 0,
            'bus_positions': 0,
            'line_stats': 0,
            'system_status': 0,
        }

    # ─────────────────────────────────────────────────────────────────────
    # Dispatch
    # ─────────────────────────────────────────────────────────────────────

    def parse_message(self, message: RawMessage) -> MqttResult[ParsedUpdate]:
        """
        Parse one RawMessage according to its topic.

        Returns:
            Success(BusPositionUpdate | LineStatisticsUpdate |
            SystemStatusUpdate) or Failure(MessageParsingFailed)
        """
        topic = message.topic

        if Topics.BUS_POSITION_PATTERN.match(topic):
            build, kind = self._build_bus_position, 'bus_positions'
        elif Topics.LINE_STATS_PATTERN.match(topic):
            build, kind = self._build_line_stats, 'line_stats'
        elif Topics.SYSTEM_STATUS_PATTERN.match(topic):
            build, kind = self._build_system_status, 'system_status'
        else:
            self.logger.warning(
                event=LogEvent.MESSAGE_SKIPPED,
                message=f"Unknown topic pattern: {topic}",
                metadata={'topic': topic}
            )
            return self._failed(message, "Unknown topic pattern")

        try:
            data = self._decode_object(message.payload)
        except (ValueError, RecursionError) as e:
            # Deeply nested arrays/objects exhaust the decoder stack
            self.logger.error(
                event=LogEvent.DESERIALIZATION_ERROR,
                message="Failed to decode JSON message",
                exc_info=e,
                metadata={'topic': topic, 'payload': message.payload[:200]}
            )
            return self._failed(message, f"Invalid JSON format: {e}")

        try:
            result = build(message, data)
        except (ValueError, TypeError) as e:
            self.logger.error(
                event=LogEvent.SCHEMA_VALIDATION_ERROR,
                message="Message failed schema validation",
                exc_info=e,
                metadata={'topic': topic}
            )
            return self._failed(message, str(e))
        except Exception as e:
            self.logger.error(
                event=LogEvent.DESERIALIZATION_ERROR,
                message="Unexpected error parsing message",
                exc_info=e,
                metadata={'topic': topic}
            )
            return self._failed(message, f"Unexpected error: {e}")

        if result.is_success:
            with self._stats_lock:
                self._stats['parsed'] += 1
                self._stats[kind] += 1
        return result

    def _failed(self, message: RawMessage, reason: str) -> Failure:
        with self._stats_lock:
            self._stats['failed'] += 1
        return Failure(MessageParsingFailed(message.topic, message.payload, reason))

    @staticmethod
    def _decode_object(payload: str) -> Dict[str, Any]:
        """JSON object, or a JSON string that itself encodes one."""
        data = json.loads(payload)
        if isinstance(data, str):
            data = json.loads(data)
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        return data

    # ─────────────────────────────────────────────────────────────────────
    # Builders
    # ─────────────────────────────────────────────────────────────────────

    def _build_bus_position(self, message: RawMessage, data: Dict[str, Any]) -> MqttResult:
        bus_id = _text(_first(data, 'bus_id', 'busId'))
        line = _text(data.get('line'))
        if not bus_id.strip() or not line.strip():
            return self._failed(message, "Missing required fields: busId or line")

        latitude, longitude = self._coordinates(data)
        speed = _number(data.get('speed'), 'speed')
        passengers = _integer(data.get('passengers'), 'passengers')

        rejection = self._check_ranges(message.topic, latitude, longitude, speed, passengers)
        if rejection:
            return self._failed(message, rejection)

        bus = Bus(
            id=bus_id,
            line=line,
            line_name=_text(_first(data, 'line_name', 'lineName')),
            position=Position(latitude=latitude, longitude=longitude),
            speed=speed,
            bearing=int(_number(data.get('bearing'), 'bearing')),
            delay=_number(data.get('delay'), 'delay'),
            passengers=passengers,
            status=self.parse_bus_status(data.get('status')),
            last_update=self.parse_timestamp(data.get('timestamp')),
        )

        self.logger.debug(
            event=LogEvent.MESSAGE_PARSED,
            message=f"Parsed bus position: {bus.id}",
            metadata={
                'bus_id': bus.id,
                'lat': bus.position.latitude,
                'lon': bus.position.longitude,
            }
        )
        return Success(BusPositionUpdate(bus))

    def _build_line_stats(self, message: RawMessage, data: Dict[str, Any]) -> MqttResult:
        line = _text(data.get('line'))
        if not line.strip():
            return self._failed(message, "Missing required field: line")

        average_speed = _first(data, 'avg_speed', 'average_speed', 'averageSpeed')

        stats = LineStats(
            line=line,
            active_buses=_integer(_first(data, 'active_buses', 'activeBuses'), 'active_buses'),
            average_speed=(
                DEFAULT_LINE_SPEED_KMH if average_speed is None
                else _number(average_speed, 'avg_speed')
            ),
            average_delay=_number(
                _first(data, 'avg_delay', 'average_delay', 'averageDelay'), 'avg_delay'
            ),
            max_delay=_number(_first(data, 'max_delay', 'maxDelay'), 'max_delay'),
            on_time_percentage=_number(
                _first(data, 'on_time_percentage', 'onTimePercentage'), 'on_time_percentage'
            ),
            total_passengers=_integer(
                _first(data, 'total_passengers', 'totalPassengers'), 'total_passengers'
            ),
            last_update=self.parse_timestamp(data.get('timestamp')),
        )

        self.logger.debug(
            event=LogEvent.MESSAGE_PARSED,
            message=f"Parsed line stats: Line {stats.line}, {stats.active_buses} buses",
            metadata={'line': stats.line}
        )
        return Success(LineStatisticsUpdate(stats))

    def _build_system_status(self, message: RawMessage, data: Dict[str, Any]) -> MqttResult:
        status = SystemStatus(
            total_buses=_integer(_first(data, 'total_buses', 'totalBuses'), 'total_buses'),
            active_buses=_integer(_first(data, 'active_buses', 'activeBuses'), 'active_buses'),
            total_passengers=_integer(
                _first(data, 'total_passengers', 'totalPassengers'), 'total_passengers'
            ),
            average_system_delay=_number(
                _first(data, 'avg_system_delay', 'average_system_delay', 'averageSystemDelay'),
                'avg_system_delay'
            ),
            system_health=self.parse_system_health(
                _first(data, 'system_health', 'systemHealth')
            ),
            last_update=self.parse_timestamp(data.get('timestamp')),
        )

        self.logger.debug(
            event=LogEvent.MESSAGE_PARSED,
            message=(
                f"Parsed system status: {status.active_buses}/{status.total_buses} "
                "buses active"
            )
        )
        return Success(SystemStatusUpdate(status))

    def _coordinates(self, data: Dict[str, Any]):
        position = data.get('position')
        source = position if isinstance(position, dict) else data

        latitude = _first(source, 'lat', 'latitude')
        longitude = _first(source, 'lon', 'longitude')
        if latitude is None or longitude is None:
            raise ValueError("Missing required field: position")

        return _number(latitude, 'latitude'), _number(longitude, 'longitude')

    def _check_ranges(
        self,
        topic: str,
        latitude: float,
        longitude: float,
        speed: float,
        passengers: int
    ) -> Optional[str]:
        """Reason to reject in strict mode; otherwise warn and return None."""
        problems = []
        if not self.is_valid_position(latitude, longitude):
            problems.append(f"Position outside service area: {latitude}, {longitude}")
        if not self.is_valid_speed(speed):
            problems.append(f"Speed out of range: {speed}")
        if not self.is_valid_passenger_count(passengers):
            problems.append(f"Passenger count out of range: {passengers}")

        if not problems:
            return None
        if self.strict:
            return "; ".join(problems)

        for problem in problems:
            self._warn(problem, {'topic': topic})
        return None

    # ─────────────────────────────────────────────────────────────────────
    # Field conversions
    # ─────────────────────────────────────────────────────────────────────

    def parse_timestamp(self, value: Any) -> datetime:
        """
        Naive local datetime from a wire timestamp.

        Accepts ``2025-01-20T15:30:45[.fff][Z]`` and ``2025-01-20 15:30:45``.
        Anything else falls back to now, with a warning.
        """
        if isinstance(value, str):
            text = value.strip()
            try:
                if 'T' in text:
                    return _parse_iso_local(text[:-1] if text.endswith('Z') else text)
                if ' ' in text:
                    return _parse_space_local(text)
            except ValueError:
                pass

        self._warn(f"Unable to parse timestamp: {value!r}, using current time")
        return datetime.now()

    def parse_bus_status(self, value: Any) -> BusStatus:
        status = BUS_STATUS_SYNONYMS.get(_text(value).strip().lower())
        if status is None:
            self._warn(f"Unknown bus status: {value!r}, defaulting to IN_SERVICE")
            return BusStatus.IN_SERVICE
        return status

    def parse_system_health(self, value: Any) -> SystemHealth:
        health = SYSTEM_HEALTH_SYNONYMS.get(_text(value).strip().lower())
        if health is None:
            self._warn(f"Unknown system health: {value!r}, defaulting to GOOD")
            return SystemHealth.GOOD
        return health

    def _warn(self, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        with self._stats_lock:
            self._stats['warnings'] += 1
        self.logger.warning(
            event=LogEvent.PARSE_WARNING,
            message=message,
            metadata=metadata
        )

    # ─────────────────────────────────────────────────────────────────────
    # Topic helpers and validators
    # ─────────────────────────────────────────────────────────────────────

    @staticmethod
    def extract_bus_id(topic: str) -> Optional[str]:
        match = Topics.BUS_POSITION_PATTERN.match(topic)
        return match.group(1) if match else None

    @staticmethod
    def extract_line_id(topic: str) -> Optional[str]:
        match = Topics.LINE_STATS_PATTERN.match(topic)
        return match.group(1) if match else None

    @staticmethod
    def extract_system_component(topic: str) -> Optional[str]:
        match = Topics.SYSTEM_STATUS_PATTERN.match(topic)
        return match.group(1) if match else None

    def is_valid_position(
        self,
        latitude: float,
        longitude: float,
        bounds: Optional[GeoBounds] = None
    ) -> bool:
        return (bounds or self.bounds).contains(latitude, longitude)

    @staticmethod
    def is_valid_speed(speed: float) -> bool:
        return 0.0 <= speed <= MAX_BUS_SPEED_KMH

    @staticmethod
    def is_valid_passenger_count(passengers: int) -> bool:
        return 0 <= passengers <= MAX_BUS_PASSENGERS

    def get_stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)


def _first(data: Dict[str, Any], *keys: str) -> Any:
    """Value of the first alias present (and not null)."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _number(value: Any, field: str, default: float = 0.0) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ValueError(f"Field '{field}' is not numeric: {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Field '{field}' is not numeric: {value!r}") from None


def _integer(value: Any, field: str, default: int = 0) -> int:
    number = _number(value, field, default)
    if not number.is_integer():
        raise ValueError(f"Field '{field}' is not an integer: {value!r}")
    return int(number)


def _parse_space_local(text: str) -> datetime:
    match = _SPACE_LOCAL_DATETIME.match(text)
    if not match:
        raise ValueError(f"Not a yyyy-MM-dd HH:mm:ss date-time: {text}")
    return datetime(*(int(part) for part in match.groups()))


def _parse_iso_local(text: str) -> datetime:
    match = _ISO_LOCAL_DATETIME.match(text)
    if not match:
        raise ValueError(f"Not an ISO local date-time: {text}")

    year, month, day, hour, minute, second, fraction = match.groups()
    return datetime(
        int(year), int(month), int(day),
        int(hour), int(minute), int(second or 0),
        int((fraction or "0").ljust(6, "0")[:6]),
    )
