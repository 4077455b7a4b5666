"""
Configuration schema for the live bus service.

This module defines the configuration of LiveBusService: which broker to
use, how the connection manager reconnects and buffers, and how long cached
telemetry lives.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import yaml

from vibus_mqtt.config import (
    BrokerConfig,
    CacheSettings,
    ClientSettings,
    Environment,
    get_config_for_environment,
)


@dataclass(frozen=True)
class ReconnectConfig:
    """Connection manager tuning."""

    auto_reconnect: bool = ClientSettings.AUTO_RECONNECT
    base_delay: float = CacheSettings.RECONNECT_DELAY_BASE_SECONDS
    max_delay: float = CacheSettings.RECONNECT_MAX_DELAY_SECONDS
    connection_timeout: float = ClientSettings.CONNECTION_TIMEOUT_SECONDS
    operation_timeout: float = ClientSettings.OPERATION_TIMEOUT_SECONDS

    def __post_init__(self):
        """Validate reconnect configuration."""
        if self.base_delay <= 0:
            raise ValueError(f"base_delay must be > 0, got {self.base_delay}")

        if self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay must be >= base_delay, got {self.max_delay} < {self.base_delay}"
            )

        if self.connection_timeout <= 0 or self.operation_timeout <= 0:
            raise ValueError("timeouts must be > 0")


@dataclass(frozen=True)
class LiveServiceConfig:
    """
    Main configuration for LiveBusService.

    Loaded from YAML and validated at startup.
    Immutable after construction (frozen dataclass).
    """

    broker: BrokerConfig
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)

    # Stream buffers (drop-oldest)
    event_buffer_size: int = CacheSettings.EVENT_BUFFER_SIZE
    message_buffer_size: int = CacheSettings.MESSAGE_BUFFER_SIZE

    # Cache
    bus_ttl_seconds: float = CacheSettings.BUS_DATA_TTL_MINUTES * 60
    cleanup_interval_seconds: float = CacheSettings.CLEANUP_INTERVAL_MINUTES * 60

    # Fallback
    fallback_threshold: int = CacheSettings.FALLBACK_AFTER_FAILURES

    # Parser
    strict_validation: bool = False

    def __post_init__(self):
        """Validate service configuration."""
        if self.event_buffer_size < 1 or self.message_buffer_size < 1:
            raise ValueError("buffer sizes must be >= 1")

        if self.bus_ttl_seconds <= 0:
            raise ValueError(f"bus_ttl_seconds must be > 0, got {self.bus_ttl_seconds}")

        if self.cleanup_interval_seconds <= 0:
            raise ValueError(
                f"cleanup_interval_seconds must be > 0, got {self.cleanup_interval_seconds}"
            )

        if self.fallback_threshold < 1:
            raise ValueError(
                f"fallback_threshold must be >= 1, got {self.fallback_threshold}"
            )

    @classmethod
    def for_environment(
        cls,
        env: Union[Environment, str],
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> "LiveServiceConfig":
        """Defaults around an environment broker preset."""
        return cls(broker=get_config_for_environment(Environment(env), username, password))

    @classmethod
    def from_yaml(cls, yaml_path: Union[Path, str]) -> "LiveServiceConfig":
        """
        Load configuration from YAML file.

        Either ``environment`` (preset broker) or an explicit ``broker``
        section is required; ``broker`` wins when both are present.

        Example YAML:
            environment: "development"

            broker:
              host: "localhost"
              port: 1883
              use_ssl: false
              username: null
              password: null

            reconnect:
              auto_reconnect: true
              base_delay: 1.0
              max_delay: 30.0

            bus_ttl_seconds: 300
            cleanup_interval_seconds: 300
            fallback_threshold: 3
            strict_validation: false
        """
        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        broker_data = data.get("broker")
        if broker_data:
            broker = BrokerConfig(**broker_data)
        elif "environment" in data:
            credentials = data.get("credentials", {}) or {}
            broker = get_config_for_environment(
                Environment(data["environment"]),
                username=credentials.get("username"),
                password=credentials.get("password"),
            )
        else:
            raise ValueError(f"{yaml_path}: 'broker' or 'environment' is required")

        reconnect = ReconnectConfig(**(data.get("reconnect") or {}))

        return cls(
            broker=broker,
            reconnect=reconnect,
            event_buffer_size=data.get("event_buffer_size", CacheSettings.EVENT_BUFFER_SIZE),
            message_buffer_size=data.get(
                "message_buffer_size", CacheSettings.MESSAGE_BUFFER_SIZE
            ),
            bus_ttl_seconds=data.get(
                "bus_ttl_seconds", CacheSettings.BUS_DATA_TTL_MINUTES * 60
            ),
            cleanup_interval_seconds=data.get(
                "cleanup_interval_seconds", CacheSettings.CLEANUP_INTERVAL_MINUTES * 60
            ),
            fallback_threshold=data.get(
                "fallback_threshold", CacheSettings.FALLBACK_AFTER_FAILURES
            ),
            strict_validation=data.get("strict_validation", False),
        )
