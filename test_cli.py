"""
Test ViBus CLI
==============

Usage:
    pytest test_cli.py
"""

import json
from pathlib import Path

import pytest

from vibus_cli import cli

SAMPLES = Path(__file__).parent / "config" / "samples"
BUS_PAYLOAD = json.dumps({
    "bus_id": "SVT101",
    "line": "1",
    "position": {"lat": 45.55, "lon": 11.55},
    "status": "in_service",
    "timestamp": "2025-01-20T15:30:45",
})


def run(argv):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(argv)
    return excinfo.value.code


def test_parse_prints_update(capsys):
    code = run(["parse", "vibus/autobus/SVT101/posizione", BUS_PAYLOAD])

    assert code == 0
    output = json.loads(capsys.readouterr().out)
    assert output["type"] == "BusPositionUpdate"
    assert output["cache_key"] == "bus_SVT101"
    assert output["data"]["bus_id"] == "SVT101"


def test_parse_reads_payload_file(tmp_path, capsys):
    payload = tmp_path / "line.json"
    payload.write_text(json.dumps({"line": "7", "active_buses": 2}))

    assert run(["parse", "vibus/linea/7/statistiche", f"@{payload}"]) == 0
    assert json.loads(capsys.readouterr().out)["cache_key"] == "line_7"


def test_parse_failure_exits_non_zero(capsys):
    assert run(["parse", "vibus/unknown", "{}"]) == 1
    assert "Unknown topic pattern" in capsys.readouterr().err


def test_no_command_prints_help(capsys):
    assert run([]) == 1
    assert "vibus-cli" in capsys.readouterr().out


def test_load_yaml_payload_samples():
    line = cli.load_yaml_payload(str(SAMPLES / "line_1.yaml"))
    status = cli.load_yaml_payload(str(SAMPLES / "system_status.yaml"))

    assert line["line"] == "1"
    assert status["system_health"] == "good"


def test_unquoted_yaml_timestamps_become_iso_text(tmp_path):
    payload_file = tmp_path / "bus.yaml"
    payload_file.write_text(
        "bus_id: SVT101\n"
        "line: \"1\"\n"
        "position: {lat: 45.55, lon: 11.55}\n"
        "timestamp: 2025-01-20T15:30:45\n"
        "history:\n"
        "  - 2025-01-20 15:29:45\n"
        "service_day: 2025-01-20\n"
    )

    payload = cli.load_yaml_payload(str(payload_file))

    assert payload["timestamp"] == "2025-01-20T15:30:45"
    assert payload["history"] == ["2025-01-20T15:29:45"]
    assert payload["service_day"] == "2025-01-20"
    json.dumps(payload)


def test_load_yaml_payload_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        cli.load_yaml_payload(str(tmp_path / "missing.yaml"))

    scalar = tmp_path / "scalar.yaml"
    scalar.write_text("just a string\n")
    with pytest.raises(ValueError):
        cli.load_yaml_payload(str(scalar))


def test_publish_bus_sends_bus_payload(monkeypatch):
    published = []

    class RecordingPublisher:
        def __init__(self, config):
            self.config = config

        def publish(self, topic, payload, qos=1, retain=False):
            published.append((self.config, topic, payload, qos))

    monkeypatch.setattr(cli, "TelemetryPublisher", RecordingPublisher)

    cli.main([
        "--env", "development",
        "publish-bus", "SVT101",
        "--line", "1", "--lat", "45.5477", "--lon", "11.5458", "--delay", "2.5",
    ])

    config, topic, payload, qos = published[0]
    assert config.host == "localhost"
    assert topic == "vibus/autobus/SVT101/posizione"
    assert payload["bus_id"] == "SVT101"
    assert payload["delay"] == 2.5
    assert qos == 1
