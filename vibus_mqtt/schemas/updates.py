"""
Parsed Update Variants
======================

Bounded Context: Parser Output

Tagged union produced by ``MessageParser.parse_message``:

    BusPositionUpdate | LineStatisticsUpdate | SystemStatusUpdate

Each variant exposes the entity it carries, its cache key and the
entity timestamp, so the pipeline can handle them uniformly.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Union

from .bus import Bus
from .statistics import LineStats, SystemStatus


@dataclass(frozen=True)
class BusPositionUpdate:
    bus: Bus

    @property
    def entity(self) -> Bus:
        return self.bus

    @property
    def cache_key(self) -> str:
        return f"bus_{self.bus.id}"

    @property
    def timestamp(self) -> datetime:
        return self.bus.last_update


@dataclass(frozen=True)
class LineStatisticsUpdate:
    line_stats: LineStats

    @property
    def entity(self) -> LineStats:
        return self.line_stats

    @property
    def cache_key(self) -> str:
        return f"line_{self.line_stats.line}"

    @property
    def timestamp(self) -> datetime:
        return self.line_stats.last_update


@dataclass(frozen=True)
class SystemStatusUpdate:
    system_status: SystemStatus

    @property
    def entity(self) -> SystemStatus:
        return self.system_status

    @property
    def cache_key(self) -> str:
        return "system"

    @property
    def timestamp(self) -> datetime:
        return self.system_status.last_update


ParsedUpdate = Union[BusPositionUpdate, LineStatisticsUpdate, SystemStatusUpdate]
