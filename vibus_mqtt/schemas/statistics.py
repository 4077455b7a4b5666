"""
Line and System Statistics Schemas
==================================

Bounded Context: Network Aggregates

Aggregates published by the back office on
``vibus/linea/{lineId}/statistiche`` and ``vibus/sistema/{component}/stato``.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Any


class SystemHealth(str, Enum):
    """Overall network health grade."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    CRITICAL = "critical"


@dataclass(frozen=True)
class LineStats:
    """
    Immutable statistics snapshot for one line.

    Attributes:
        line: Line identifier
        active_buses: Buses currently in service on the line
        average_speed: Mean speed in km/h
        average_delay: Mean delay in minutes
        max_delay: Worst delay in minutes
        on_time_percentage: Share of on-time runs [0, 100]
        total_passengers: Passengers on board across the line
        last_update: Time of the snapshot
    """
    line: str
    active_buses: int
    average_speed: float
    average_delay: float
    max_delay: float
    on_time_percentage: float
    total_passengers: int
    last_update: datetime

    def __post_init__(self):
        """Validate invariants."""
        if not self.line or not self.line.strip():
            raise ValueError("Line identifier cannot be blank")
        if not (0.0 <= self.on_time_percentage <= 100.0):
            raise ValueError(
                f"on_time_percentage must be in [0, 100], got {self.on_time_percentage}"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the line-statistics wire schema."""
        return {
            'line': self.line,
            'active_buses': self.active_buses,
            'avg_speed': self.average_speed,
            'avg_delay': self.average_delay,
            'max_delay': self.max_delay,
            'on_time_percentage': self.on_time_percentage,
            'total_passengers': self.total_passengers,
            'timestamp': self.last_update.isoformat(),
        }


@dataclass(frozen=True)
class SystemStatus:
    """Immutable network-wide status snapshot."""
    total_buses: int
    active_buses: int
    total_passengers: int
    average_system_delay: float
    system_health: SystemHealth
    last_update: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the system-status wire schema."""
        return {
            'total_buses': self.total_buses,
            'active_buses': self.active_buses,
            'total_passengers': self.total_passengers,
            'avg_system_delay': self.average_system_delay,
            'system_health': self.system_health.value,
            'timestamp': self.last_update.isoformat(),
        }
