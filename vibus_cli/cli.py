"""
ViBus CLI - Main entry point.

Provides a command-line interface to publish telemetry, parse payloads
offline and monitor the live cache.
"""

import argparse
import json
import sys
import time
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from vibus_mqtt import MessageParser, Topics
from vibus_mqtt.config import BrokerConfig, Environment, get_config_for_environment
from vibus_mqtt.schemas import Bus, BusStatus, Position, RawMessage
from vibus_live import LiveBusService, LiveServiceConfig

from .mqtt_client import TelemetryPublisher


def load_yaml_payload(payload_path: str) -> Dict[str, Any]:
    """
    Load a YAML (or JSON) payload file.

    Args:
        payload_path: Path to YAML file

    Returns:
        Payload dictionary

    Raises:
        FileNotFoundError: If payload file doesn't exist
        ValueError: If YAML is invalid or not a mapping
    """
    path = Path(payload_path)

    if not path.exists():
        raise FileNotFoundError(f"Payload file not found: {payload_path}")

    try:
        with open(path) as f:
            payload = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {payload_path}: {e}")

    if not isinstance(payload, dict):
        raise ValueError(f"{payload_path} must contain a mapping")
    return _stringify_dates(payload)


def _stringify_dates(value: Any) -> Any:
    # YAML turns unquoted timestamps into datetime objects; JSON needs ISO text
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _stringify_dates(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_stringify_dates(item) for item in value]
    return value


def broker_from_args(args: argparse.Namespace) -> BrokerConfig:
    """Broker preset (--env) or explicit --broker/--port options."""
    if args.env:
        return get_config_for_environment(
            Environment(args.env), username=args.username, password=args.password
        )
    return BrokerConfig(
        host=args.broker,
        port=args.port,
        use_ssl=args.ssl,
        username=args.username,
        password=args.password,
    )


def build_bus_payload(args: argparse.Namespace) -> Dict[str, Any]:
    bus = Bus(
        id=args.bus_id,
        line=args.line,
        line_name=args.line_name,
        position=Position(latitude=args.lat, longitude=args.lon),
        speed=args.speed,
        bearing=args.bearing,
        delay=args.delay,
        passengers=args.passengers,
        status=BusStatus(args.status),
        last_update=datetime.now().replace(microsecond=0),
    )
    return bus.to_dict()


def read_payload_argument(value: str) -> str:
    """Inline payload, or ``@path`` to read it from a file."""
    if value.startswith("@"):
        return Path(value[1:]).read_text(encoding="utf-8")
    return value


def parse_payload(topic: str, payload: str, strict: bool = False) -> int:
    parser = MessageParser(strict=strict)
    result = parser.parse_message(RawMessage(topic=topic, payload=payload))

    if not result.is_success:
        print(f"❌ {result.error}", file=sys.stderr)
        return 1

    update = result.data
    print(json.dumps(
        {'type': type(update).__name__, 'cache_key': update.cache_key, 'data': update.entity.to_dict()},
        indent=2
    ))
    return 0


def monitor(config: LiveServiceConfig, duration: Optional[float], interval: float) -> int:
    service = LiveBusService(config)
    result = service.start()
    if not result.is_success:
        print(f"⚠️  {result.error} (retrying in background)", file=sys.stderr)

    deadline = time.monotonic() + duration if duration else None
    try:
        while deadline is None or time.monotonic() < deadline:
            time.sleep(interval)
            print_snapshot(service)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
    return 0


def print_snapshot(service: LiveBusService) -> None:
    stats = service.get_stats()
    connection = stats['connection']
    print(
        f"--- {datetime.now():%H:%M:%S} connected={connection['connected']} "
        f"fallback={stats['service']['fallback_active']} "
        f"received={connection['messages_received']}"
    )
    for bus in sorted(service.get_buses(), key=lambda b: b.id):
        print(
            f"  🚌 {bus.display_name:<20} {bus.position.latitude:.5f},{bus.position.longitude:.5f} "
            f"{bus.speed:5.1f} km/h  {bus.delay_text:<8} {bus.passengers:>3} pax  {bus.status.value}"
        )
    for stats_line in sorted(service.get_line_stats(), key=lambda s: s.line):
        print(
            f"  📈 Line {stats_line.line}: {stats_line.active_buses} buses, "
            f"avg delay {stats_line.average_delay:.1f} min, "
            f"{stats_line.on_time_percentage:.0f}% on time"
        )
    status = service.get_system_status()
    if status:
        print(
            f"  🛰  System: {status.active_buses}/{status.total_buses} active, "
            f"health={status.system_health.value}"
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vibus-cli",
        description="ViBus CLI - Publish, parse and monitor ViBus MQTT telemetry",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Publish one bus position
  vibus-cli publish-bus SVT101 --line 1 --line-name Stanga-Ospedale --lat 45.5477 --lon 11.5458

  # Publish a payload from YAML (line statistics, system status, ...)
  vibus-cli publish vibus/linea/1/statistiche config/samples/line_1.yaml --qos 0

  # Parse a payload offline
  vibus-cli parse vibus/autobus/SVT101/posizione @payload.json

  # Watch the live cache for one minute
  vibus-cli monitor --duration 60
"""
    )

    # Global arguments
    parser.add_argument("--broker", default="localhost", help="MQTT broker host (default: localhost)")
    parser.add_argument("--port", type=int, default=1883, help="MQTT broker port (default: 1883)")
    parser.add_argument("--ssl", action="store_true", help="Use TLS")
    parser.add_argument("--username", help="MQTT username")
    parser.add_argument("--password", help="MQTT password")
    parser.add_argument(
        "--env",
        choices=[e.value for e in Environment],
        help="Use an environment broker preset instead of --broker/--port"
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # publish-bus command
    publish_bus = subparsers.add_parser('publish-bus', help='Publish one bus position')
    publish_bus.add_argument('bus_id', help='Bus identifier (e.g., SVT101)')
    publish_bus.add_argument('--line', required=True, help='Line identifier')
    publish_bus.add_argument('--line-name', default='', help='Line name')
    publish_bus.add_argument('--lat', type=float, required=True, help='Latitude')
    publish_bus.add_argument('--lon', type=float, required=True, help='Longitude')
    publish_bus.add_argument('--speed', type=float, default=0.0, help='Speed in km/h')
    publish_bus.add_argument('--bearing', type=int, default=0, help='Heading in degrees')
    publish_bus.add_argument('--delay', type=float, default=0.0, help='Delay in minutes')
    publish_bus.add_argument('--passengers', type=int, default=0, help='Passengers on board')
    publish_bus.add_argument(
        '--status',
        choices=[s.value for s in BusStatus],
        default=BusStatus.IN_SERVICE.value,
        help='Bus status'
    )

    # publish command
    publish = subparsers.add_parser('publish', help='Publish a YAML/JSON payload file to a topic')
    publish.add_argument('topic', help='MQTT topic')
    publish.add_argument('payload', help='Path to payload YAML/JSON')
    publish.add_argument('--qos', type=int, choices=[0, 1, 2], default=1, help='QoS (default: 1)')
    publish.add_argument('--retain', action='store_true', help='Retain the message')

    # parse command
    parse = subparsers.add_parser('parse', help='Parse a payload offline')
    parse.add_argument('topic', help='Topic the payload arrived on')
    parse.add_argument('payload', help='JSON payload, or @file')
    parse.add_argument('--strict', action='store_true', help='Enforce range validation')

    # monitor command
    monitor_cmd = subparsers.add_parser('monitor', help='Run the live service and print the cache')
    monitor_cmd.add_argument('--config', type=Path, help='Service configuration YAML')
    monitor_cmd.add_argument('--duration', type=float, help='Seconds to run (default: until Ctrl+C)')
    monitor_cmd.add_argument('--interval', type=float, default=5.0, help='Seconds between snapshots')

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == 'publish-bus':
            publisher = TelemetryPublisher(broker_from_args(args))
            publisher.publish(
                Topics.bus_position_topic(args.bus_id), build_bus_payload(args), qos=1
            )

        elif args.command == 'publish':
            publisher = TelemetryPublisher(broker_from_args(args))
            publisher.publish(
                args.topic, load_yaml_payload(args.payload), qos=args.qos, retain=args.retain
            )

        elif args.command == 'parse':
            sys.exit(parse_payload(args.topic, read_payload_argument(args.payload), args.strict))

        elif args.command == 'monitor':
            if args.config:
                config = LiveServiceConfig.from_yaml(args.config)
            else:
                config = LiveServiceConfig(broker=broker_from_args(args))
            sys.exit(monitor(config, args.duration, args.interval))

    except Exception as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
