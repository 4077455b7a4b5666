"""
Bus Position Schema
===================

Bounded Context: Vehicle Telemetry

Domain record for a single bus as reported on
``vibus/autobus/{busId}/posizione``.

Message Flow:
    Broker → ConnectionManager → MessageParser → Bus → MessageCache
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Any


class BusStatus(str, Enum):
    """Operational status of a bus."""
    IN_SERVICE = "in_service"
    OUT_OF_SERVICE = "out_of_service"
    MAINTENANCE = "maintenance"
    DELAYED = "delayed"


@dataclass(frozen=True)
class Position:
    """
    Immutable WGS84 coordinate.

    Invariants:
        - latitude in [-90, 90]
        - longitude in [-180, 180]
    """
    latitude: float
    longitude: float

    def __post_init__(self):
        """Validate invariants."""
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValueError(f"Latitude must be in [-90, 90], got {self.latitude}")
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValueError(
                f"Longitude must be in [-180, 180], got {self.longitude}"
            )

    def to_dict(self) -> Dict[str, float]:
        """Serialize using the wire names (lat/lon)."""
        return {'lat': self.latitude, 'lon': self.longitude}


@dataclass(frozen=True)
class Bus:
    """
    Live position and state of one bus.

    Attributes:
        id: Fleet identifier (e.g., "SVT101")
        line: Line identifier (e.g., "1")
        line_name: Human-readable line name (e.g., "Stanga-Ospedale")
        position: Current coordinate
        speed: Speed in km/h
        bearing: Heading in degrees, normalised to [0, 360)
        delay: Delay in minutes (negative = early)
        passengers: Passengers on board
        status: Operational status
        last_update: Time of the reading (naive local time)

    Invariants:
        - id and line are non-blank
        - speed >= 0
        - passengers >= 0

    Example:
        >>> bus = Bus(
        ...     id="SVT101", line="1", line_name="Stanga-Ospedale",
        ...     position=Position(45.55, 11.55), speed=30.5, bearing=90,
        ...     delay=1.5, passengers=20, status=BusStatus.IN_SERVICE,
        ...     last_update=datetime(2025, 1, 20, 15, 30, 45)
        ... )
        >>> bus.delay_text
        '+1 min'
    """
    id: str
    line: str
    line_name: str
    position: Position
    speed: float
    bearing: int
    delay: float
    passengers: int
    status: BusStatus
    last_update: datetime

    def __post_init__(self):
        """Validate invariants."""
        if not self.id or not self.id.strip():
            raise ValueError("Bus id cannot be blank")
        if not self.line or not self.line.strip():
            raise ValueError("Bus line cannot be blank")
        if self.speed < 0:
            raise ValueError(f"Speed must be >= 0, got {self.speed}")
        if self.passengers < 0:
            raise ValueError(f"Passengers must be >= 0, got {self.passengers}")
        if not (0 <= self.bearing < 360):
            # Frozen dataclass: normalise through object.__setattr__
            object.__setattr__(self, 'bearing', self.bearing % 360)

    @property
    def display_name(self) -> str:
        """Label used by list views ("SVT101 - Line 1")."""
        return f"{self.id} - Line {self.line}"

    @property
    def delay_text(self) -> str:
        """Delay rounded toward zero, as shown to riders."""
        minutes = int(self.delay)
        if self.delay > 0:
            return f"+{minutes} min"
        if self.delay < 0:
            return f"{minutes} min"
        return "On time"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the bus-position wire schema."""
        return {
            'bus_id': self.id,
            'line': self.line,
            'line_name': self.line_name,
            'position': self.position.to_dict(),
            'speed': self.speed,
            'bearing': self.bearing,
            'delay': self.delay,
            'passengers': self.passengers,
            'status': self.status.value,
            'timestamp': self.last_update.isoformat(),
        }
