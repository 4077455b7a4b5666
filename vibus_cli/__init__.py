"""
ViBus CLI - Command-line tools for the ViBus MQTT telemetry feed.

This package provides a CLI to publish sample telemetry, parse payloads
offline, and watch the live cache without writing any code.

Usage:
    vibus-cli publish-bus SVT101 --line 1 --lat 45.5477 --lon 11.5458
    vibus-cli publish vibus/linea/1/statistiche config/samples/line_1.yaml
    vibus-cli parse vibus/autobus/SVT101/posizione '{"bus_id": "SVT101", ...}'
    vibus-cli monitor --duration 60
"""

__version__ = "1.0.0"
