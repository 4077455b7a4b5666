"""
vibus_live - Live Bus Telemetry Service

This package runs the ViBus MQTT pipeline as a long-lived service: it keeps
the broker session up, feeds parsed telemetry into the cache, and flags when
the feed should be considered unreliable.

Architecture:
- LiveBusService: Main orchestrator (consumer, monitor, cleanup threads)
- LiveServiceConfig: Configuration management (YAML)

Threading Model:
- paho-mqtt network thread (ingestion)
- Manager reconnect thread (only while reconnecting)
- Consumer / Monitor / Cleanup threads (ours)
"""

from vibus_live.config import LiveServiceConfig, ReconnectConfig
from vibus_live.service import LiveBusService

__all__ = [
    "LiveServiceConfig",
    "ReconnectConfig",
    "LiveBusService",
]
