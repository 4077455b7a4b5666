"""
Message Cache
=============

Bounded Context: Latest-Known State

Holds the latest bus positions, line statistics and system status, plus a
per-key "last processed" timestamp used to drop stale or duplicate
messages.

Keys:
    bus_<busId>    last bus position applied
    line_<lineId>  last line statistics applied
    system         last system status applied
    <raw topic>    monotonic gate used by the ingestion pipeline

Thread Safety:
    All access goes through one lock; readers get copies.
"""

import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .logging import StructuredLogger, LogEvent, create_logger
from .schemas import (
    Bus,
    BusPositionUpdate,
    LineStatisticsUpdate,
    LineStats,
    ParsedUpdate,
    SystemStatus,
    SystemStatusUpdate,
)


class MessageCache:
    """Latest-state store with timestamp-based deduplication."""

    def __init__(self, logger: Optional[StructuredLogger] = None):
        self.logger = logger or create_logger("cache")
        self._lock = threading.RLock()
        self._bus_positions: Dict[str, Bus] = {}
        self._line_stats: Dict[str, LineStats] = {}
        self._system_status: Optional[SystemStatus] = None
        self._last_update: Dict[str, datetime] = {}

    # ===== gate =====

    def should_process_message(self, key: str, timestamp: datetime) -> bool:
        """True when nothing was processed for ``key`` yet, or ``timestamp`` is newer."""
        with self._lock:
            last = self._last_update.get(key)
            return last is None or timestamp > last

    def mark_processed(self, key: str, timestamp: datetime) -> None:
        with self._lock:
            self._last_update[key] = timestamp

    # ===== writes =====

    def update_bus_position(self, bus: Bus) -> None:
        with self._lock:
            self._bus_positions[bus.id] = bus
            self._last_update[f"bus_{bus.id}"] = bus.last_update

    def update_line_stats(self, stats: LineStats) -> None:
        with self._lock:
            self._line_stats[stats.line] = stats
            self._last_update[f"line_{stats.line}"] = stats.last_update

    def update_system_status(self, status: SystemStatus) -> None:
        with self._lock:
            self._system_status = status
            self._last_update["system"] = status.last_update

    def apply(self, update: ParsedUpdate) -> None:
        """Upsert whichever entity a parsed update carries."""
        if isinstance(update, BusPositionUpdate):
            self.update_bus_position(update.bus)
        elif isinstance(update, LineStatisticsUpdate):
            self.update_line_stats(update.line_stats)
        elif isinstance(update, SystemStatusUpdate):
            self.update_system_status(update.system_status)
        else:
            raise TypeError(f"Unsupported update type: {type(update).__name__}")

    # ===== reads =====

    def get_bus_positions(self) -> List[Bus]:
        with self._lock:
            return list(self._bus_positions.values())

    def get_line_statistics(self) -> List[LineStats]:
        with self._lock:
            return list(self._line_stats.values())

    def get_bus(self, bus_id: str) -> Optional[Bus]:
        with self._lock:
            return self._bus_positions.get(bus_id)

    @property
    def system_status(self) -> Optional[SystemStatus]:
        with self._lock:
            return self._system_status

    # ===== maintenance =====

    def cleanup(self, max_age: timedelta) -> int:
        """
        Drop everything last updated strictly before ``now - max_age``.

        Returns:
            Number of removed entities (buses, lines and the system status)
        """
        cutoff = datetime.now() - max_age

        with self._lock:
            stale_buses = [
                bus_id for bus_id, bus in self._bus_positions.items()
                if bus.last_update < cutoff
            ]
            stale_lines = [
                line for line, stats in self._line_stats.items()
                if stats.last_update < cutoff
            ]
            stale_keys = [
                key for key, ts in self._last_update.items() if ts < cutoff
            ]

            for bus_id in stale_buses:
                del self._bus_positions[bus_id]
            for line in stale_lines:
                del self._line_stats[line]
            for key in stale_keys:
                del self._last_update[key]

            removed = len(stale_buses) + len(stale_lines)
            if self._system_status is not None and self._system_status.last_update < cutoff:
                self._system_status = None
                removed += 1

        if removed or stale_keys:
            self.logger.info(
                event=LogEvent.CACHE_CLEANUP,
                message=f"Removed {removed} stale entries",
                metadata={
                    'buses': len(stale_buses),
                    'lines': len(stale_lines),
                    'timestamps': len(stale_keys),
                    'max_age_s': max_age.total_seconds(),
                }
            )
        return removed

    def clear(self) -> None:
        with self._lock:
            self._bus_positions.clear()
            self._line_stats.clear()
            self._system_status = None
            self._last_update.clear()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'buses': len(self._bus_positions),
                'lines': len(self._line_stats),
                'has_system_status': self._system_status is not None,
                'tracked_keys': len(self._last_update),
            }
