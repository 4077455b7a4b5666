"""
Broker configuration and topic registry.

This module defines the immutable broker connection parameters, the ViBus
topic patterns and builders, client/cache constants, and the per-environment
broker presets.
"""

import re
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class BrokerConfig:
    """
    MQTT broker connection parameters.

    Immutable; one instance is stored by the ConnectionManager for the
    lifetime of a connection and reused by the reconnect loop.
    """

    host: str
    port: int = 1883
    use_ssl: bool = False
    username: Optional[str] = None
    password: Optional[str] = None

    def __post_init__(self):
        """Validate broker configuration."""
        if not self.host:
            raise ValueError("Broker host cannot be empty")

        if not 1 <= self.port <= 65535:
            raise ValueError(
                f"MQTT port must be in [1, 65535], got {self.port}"
            )

        # Blank credentials mean "no auth"
        if not self.username:
            object.__setattr__(self, "username", None)
        if not self.password:
            object.__setattr__(self, "password", None)

    @property
    def broker_url(self) -> str:
        scheme = "ssl" if self.use_ssl else "tcp"
        return f"{scheme}://{self.host}:{self.port}"


class Topics:
    """ViBus topic filters (``+`` = single-level wildcard) and builders."""

    BUS_POSITIONS = "vibus/autobus/+/posizione"
    LINE_STATS = "vibus/linea/+/statistiche"
    SYSTEM_STATUS = "vibus/sistema/+/stato"

    BUS_POSITION_PATTERN = re.compile(r"^vibus/autobus/([^/]+)/posizione$")
    LINE_STATS_PATTERN = re.compile(r"^vibus/linea/([^/]+)/statistiche$")
    SYSTEM_STATUS_PATTERN = re.compile(r"^vibus/sistema/([^/]+)/stato$")

    @staticmethod
    def bus_position_topic(bus_id: str) -> str:
        return f"vibus/autobus/{bus_id}/posizione"

    @staticmethod
    def line_stats_topic(line_id: str) -> str:
        return f"vibus/linea/{line_id}/statistiche"

    @staticmethod
    def system_status_topic(component: str) -> str:
        return f"vibus/sistema/{component}/stato"


class ClientSettings:
    """Fixed client options."""

    CLIENT_ID_PREFIX = "vibus_client"
    KEEP_ALIVE_SECONDS = 60
    CONNECTION_TIMEOUT_SECONDS = 30.0
    OPERATION_TIMEOUT_SECONDS = 10.0
    AUTO_RECONNECT = True
    CLEAN_SESSION = True

    QOS_BUS_POSITIONS = 1  # at-least-once
    QOS_STATS = 0          # at-most-once
    QOS_STATUS = 1         # at-least-once

    @classmethod
    def generate_client_id(cls, prefix: Optional[str] = None) -> str:
        """Unique client id: ``<prefix>_<8 hex chars>``."""
        return f"{prefix or cls.CLIENT_ID_PREFIX}_{uuid.uuid4().hex[:8]}"


class CacheSettings:
    """Cache, stream buffer and backoff constants."""

    BUS_DATA_TTL_MINUTES = 5
    STATS_DATA_TTL_MINUTES = 30
    CLEANUP_INTERVAL_MINUTES = 5
    EVENT_BUFFER_SIZE = 10
    MESSAGE_BUFFER_SIZE = 50
    RECONNECT_DELAY_BASE_SECONDS = 1.0
    RECONNECT_MAX_DELAY_SECONDS = 30.0
    FALLBACK_AFTER_FAILURES = 3


class Environment(str, Enum):
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


LOCAL_HOST = "localhost"
TESTING_HOST = "more-elk-slightly.ngrok-free.app"
PRODUCTION_HOST = "mqtt.svt.vi.it"


def get_config_for_environment(
    env: Environment,
    username: Optional[str] = None,
    password: Optional[str] = None,
) -> BrokerConfig:
    """
    Broker preset for an environment.

    Credentials are only applied to PRODUCTION (TLS on 8883); the other
    presets talk to unauthenticated brokers on 1883.
    """
    env = Environment(env)

    if env is Environment.DEVELOPMENT:
        return BrokerConfig(host=LOCAL_HOST, port=1883)
    if env is Environment.TESTING:
        return BrokerConfig(host=TESTING_HOST, port=1883)
    return BrokerConfig(
        host=PRODUCTION_HOST,
        port=8883,
        use_ssl=True,
        username=username,
        password=password,
    )
