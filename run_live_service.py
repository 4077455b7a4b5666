#!/usr/bin/env python3
"""
Live Bus Service - Entry Point
==============================

This script starts the ViBus LiveBusService, which:
- Connects to the ViBus MQTT broker (auto-reconnect with backoff)
- Subscribes to bus positions, line statistics and system status
- Parses telemetry into the live cache (stale entries evicted)
- Raises a fallback flag when the MQTT feed keeps failing

Usage:
    python run_live_service.py --config config/live_service.yaml

Lifecycle:
    1. Load configuration from YAML
    2. Setup logging (console + file)
    3. Create LiveBusService
    4. Start service (non-blocking)
    5. Log a status line periodically until a stop signal (Ctrl+C or SIGTERM)
    6. Graceful shutdown

Signals:
    - SIGTERM: Graceful shutdown
    - SIGINT (Ctrl+C): Graceful shutdown

Logs:
    - Console: INFO level
    - File: logs/live_service.log (INFO level)
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from vibus_live import LiveBusService, LiveServiceConfig


# ─────────────────────────────────────────────────────────────────────────────
# Logging Setup
# ─────────────────────────────────────────────────────────────────────────────

def setup_logging(log_file: Optional[Path] = None, verbose: bool = False) -> logging.Logger:
    """
    Setup logging for the live service.

    Args:
        log_file: Optional path to log file
        verbose: DEBUG level instead of INFO

    Returns:
        Logger instance for the runner
    """
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            *(
                [logging.FileHandler(log_file)]
                if log_file
                else []
            )
        ]
    )

    return logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Main Service
# ─────────────────────────────────────────────────────────────────────────────

class LiveServiceApp:
    """
    Application wrapper for LiveBusService.

    Handles:
    - Configuration loading
    - Signal handling (SIGTERM, SIGINT)
    - Periodic status reporting
    - Graceful shutdown
    """

    def __init__(
        self,
        config_path: Path,
        log_file: Optional[Path] = None,
        status_interval: float = 30.0,
        verbose: bool = False
    ):
        self.config_path = config_path
        self.status_interval = status_interval
        self.logger = setup_logging(log_file, verbose)

        self.config: Optional[LiveServiceConfig] = None
        self.service: Optional[LiveBusService] = None

        self._shutdown_requested = False
        self._stop = threading.Event()

    def setup(self):
        self.logger.info("=" * 80)
        self.logger.info("🚌 ViBus Live Service - Starting")
        self.logger.info("=" * 80)

        self.logger.info(f"📄 Loading configuration: {self.config_path}")
        self.config = LiveServiceConfig.from_yaml(self.config_path)
        self.logger.info(f"✅ Configuration loaded (broker={self.config.broker.broker_url})")

        self.service = LiveBusService(self.config)
        self.logger.info("✅ Service created")
        self.logger.info("=" * 80)

    def run(self):
        """Run until shutdown is requested (signal or exception)."""
        if not self.service:
            raise RuntimeError("Service not initialized. Call setup() first.")

        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        try:
            result = self.service.start()
            if result.is_success:
                self.logger.info("✅ Service started successfully")
            else:
                self.logger.warning(
                    f"⚠️  Broker unavailable ({result.error}), retrying in background"
                )
            self.logger.info("Press Ctrl+C to stop")
            self.logger.info("=" * 80)

            while not self._stop.wait(timeout=self.status_interval):
                self._log_status()

        except KeyboardInterrupt:
            self.logger.info("\n⚠️  KeyboardInterrupt received")
            self.shutdown()

        except Exception as e:
            self.logger.error(f"❌ Service error: {e}", exc_info=True)
            self.shutdown()
            sys.exit(1)

    def _log_status(self):
        stats = self.service.get_stats()
        connection = stats['connection']
        service = stats['service']
        self.logger.info(
            f"📊 connected={connection['connected']} "
            f"buses={stats['cache']['buses']} lines={stats['cache']['lines']} "
            f"received={connection['messages_received']} "
            f"processed={service['processed']} failed={service['failed']} "
            f"fallback={service['fallback_active']}"
        )

    def shutdown(self):
        if self._shutdown_requested:
            self.logger.warning("⚠️  Shutdown already in progress")
            return

        self._shutdown_requested = True
        self._stop.set()

        self.logger.info("=" * 80)
        self.logger.info("🛑 Shutting down live service")
        self.logger.info("=" * 80)

        if self.service:
            try:
                self.service.stop()
                self.logger.info("✅ Service stopped")
            except Exception as e:
                self.logger.error(f"❌ Error stopping service: {e}")

        self.logger.info("✅ Shutdown complete")

    def _signal_handler(self, signum, frame):
        signal_name = signal.Signals(signum).name
        self.logger.info(f"\n⚠️  Received signal {signal_name} ({signum})")
        self.shutdown()
        sys.exit(0)


# ─────────────────────────────────────────────────────────────────────────────
# CLI
# ─────────────────────────────────────────────────────────────────────────────

def parse_args():
    parser = argparse.ArgumentParser(
        description="ViBus Live - MQTT bus telemetry service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with default config
  python run_live_service.py --config config/live_service.yaml

  # Console only, status every 10s, debug logs
  python run_live_service.py --config config/live_service.yaml --no-log-file --status-interval 10 -v
        """
    )

    parser.add_argument(
        '--config',
        type=Path,
        default=Path('config/live_service.yaml'),
        help='Path to service configuration YAML file (default: config/live_service.yaml)'
    )
    parser.add_argument(
        '--log-file',
        type=Path,
        default=Path('logs/live_service.log'),
        help='Path to log file (default: logs/live_service.log)'
    )
    parser.add_argument(
        '--no-log-file',
        action='store_true',
        help='Disable file logging (console only)'
    )
    parser.add_argument(
        '--status-interval',
        type=float,
        default=30.0,
        help='Seconds between status lines (default: 30)'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Debug logging'
    )

    return parser.parse_args()


def main():
    args = parse_args()
    log_file = None if args.no_log_file else args.log_file

    if not args.config.exists():
        print(f"❌ Error: Configuration file not found: {args.config}", file=sys.stderr)
        sys.exit(1)

    app = LiveServiceApp(
        config_path=args.config,
        log_file=log_file,
        status_interval=args.status_interval,
        verbose=args.verbose
    )

    try:
        app.setup()
        app.run()
    except Exception as e:
        print(f"❌ Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
