"""
Test Configuration
==================

Broker parameters, topic registry, environment presets and the live
service YAML loader.

Usage:
    pytest test_config.py
"""

from pathlib import Path

import pytest

from vibus_mqtt.config import (
    BrokerConfig,
    ClientSettings,
    Environment,
    Topics,
    get_config_for_environment,
)
from vibus_live import LiveServiceConfig, ReconnectConfig

SAMPLE_CONFIG = Path(__file__).parent / "config" / "live_service.yaml"


# ===== BrokerConfig =====

def test_broker_url():
    assert BrokerConfig(host="localhost").broker_url == "tcp://localhost:1883"
    assert BrokerConfig(host="mqtt.svt.vi.it", port=8883, use_ssl=True).broker_url == (
        "ssl://mqtt.svt.vi.it:8883"
    )


@pytest.mark.parametrize("kwargs", [
    {"host": ""},
    {"host": "localhost", "port": 0},
    {"host": "localhost", "port": 65536},
])
def test_broker_config_validation(kwargs):
    with pytest.raises(ValueError):
        BrokerConfig(**kwargs)


def test_blank_credentials_mean_no_auth():
    config = BrokerConfig(host="localhost", username="", password="")

    assert config.username is None
    assert config.password is None


# ===== Topics =====

def test_topic_builders_match_patterns():
    assert Topics.BUS_POSITION_PATTERN.match(Topics.bus_position_topic("SVT101")).group(1) == "SVT101"
    assert Topics.LINE_STATS_PATTERN.match(Topics.line_stats_topic("1")).group(1) == "1"
    assert Topics.SYSTEM_STATUS_PATTERN.match(Topics.system_status_topic("core")).group(1) == "core"


def test_patterns_are_single_level():
    assert Topics.BUS_POSITION_PATTERN.match("vibus/autobus/a/b/posizione") is None
    assert Topics.LINE_STATS_PATTERN.match("vibus/linea//statistiche") is None


def test_generated_client_ids_are_unique():
    first = ClientSettings.generate_client_id()
    second = ClientSettings.generate_client_id("vibus_cli")

    assert first.startswith("vibus_client_")
    assert second.startswith("vibus_cli_")
    assert first != ClientSettings.generate_client_id()


# ===== Environment presets =====

def test_environment_presets():
    development = get_config_for_environment(Environment.DEVELOPMENT, "user", "pass")
    assert development.host == "localhost"
    assert development.port == 1883
    assert development.username is None

    testing = get_config_for_environment(Environment.TESTING)
    assert testing.port == 1883
    assert not testing.use_ssl

    production = get_config_for_environment("production", "vibus", "secret")
    assert production.port == 8883
    assert production.use_ssl
    assert production.username == "vibus"
    assert production.password == "secret"


# ===== LiveServiceConfig =====

def test_sample_config_loads():
    config = LiveServiceConfig.from_yaml(SAMPLE_CONFIG)

    assert config.broker.host == "localhost"
    assert config.reconnect.base_delay == 1.0
    assert config.reconnect.max_delay == 30.0
    assert config.fallback_threshold == 3
    assert config.strict_validation is False


def test_environment_with_credentials(tmp_path):
    path = tmp_path / "service.yaml"
    path.write_text(
        'environment: "production"\n'
        "credentials:\n"
        '  username: "vibus"\n'
        '  password: "secret"\n'
        "bus_ttl_seconds: 120\n"
    )

    config = LiveServiceConfig.from_yaml(path)

    assert config.broker.use_ssl
    assert config.broker.username == "vibus"
    assert config.bus_ttl_seconds == 120
    assert config.reconnect == ReconnectConfig()


def test_missing_broker_is_rejected(tmp_path):
    path = tmp_path / "service.yaml"
    path.write_text("fallback_threshold: 3\n")

    with pytest.raises(ValueError, match="broker"):
        LiveServiceConfig.from_yaml(path)


@pytest.mark.parametrize("kwargs", [
    {"base_delay": 0},
    {"base_delay": 5.0, "max_delay": 1.0},
    {"connection_timeout": 0},
])
def test_reconnect_config_validation(kwargs):
    with pytest.raises(ValueError):
        ReconnectConfig(**kwargs)


@pytest.mark.parametrize("kwargs", [
    {"event_buffer_size": 0},
    {"bus_ttl_seconds": 0},
    {"cleanup_interval_seconds": -1},
    {"fallback_threshold": 0},
])
def test_service_config_validation(kwargs):
    with pytest.raises(ValueError):
        LiveServiceConfig(broker=BrokerConfig(host="localhost"), **kwargs)


def test_for_environment():
    config = LiveServiceConfig.for_environment("testing")

    assert config.broker.host == get_config_for_environment(Environment.TESTING).host
