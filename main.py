"""
Beacon RSSI scanner main program
Scans for BLE anchors in fixed windows and forwards every RSSI sample to the collector
"""

import sys
import time
import signal
import logging
import argparse
import threading
from typing import Dict, Optional

import config
from beacon_core.proto import AnchorRegistry, StatusEvent, create_anchor_registry
from beacon_core.scan import DutyCycle, RadioScanner, ScanConfig, SimulatedRadioScanner
from beacon_core.uplink import (
    BackoffPolicy,
    HttpTransport,
    InMemoryTransport,
    Transport,
    UplinkConfig,
)
from beacon_core.orchestration import Orchestrator, OrchestratorConfig

logger = logging.getLogger(__name__)


def build_scan_config(scan_cfg: Dict) -> ScanConfig:
    """Build ScanConfig from a SCAN_CONFIG style dictionary."""
    return ScanConfig(
        duty_cycle=DutyCycle(
            window_duration_s=scan_cfg["window_duration_s"],
            interval_between_windows_s=scan_cfg["interval_between_windows_s"],
        ),
        radio_retry_interval_s=scan_cfg.get("radio_retry_interval_s"),
        anchors_only=scan_cfg.get("anchors_only", False),
    )


def build_uplink_config(uplink_cfg: Dict, backoff_cfg: Dict) -> UplinkConfig:
    """Build UplinkConfig from UPLINK_CONFIG / BACKOFF_CONFIG style dictionaries."""
    return UplinkConfig(
        max_attempts=uplink_cfg["max_attempts"],
        backoff=BackoffPolicy(**backoff_cfg),
        shutdown_grace_s=uplink_cfg["shutdown_grace_s"],
        in_flight_timeout_s=uplink_cfg["timeout_s"],
        max_queue_size=uplink_cfg.get("max_queue_size"),
    )


def build_transport(uplink_cfg: Dict, offline: bool = False) -> Transport:
    """HTTP transport when a collector URL is configured, otherwise in-memory."""
    base_url = uplink_cfg.get("base_url")
    if offline or not base_url:
        logger.info("No collector configured, using in-memory transport")
        return InMemoryTransport(log_requests=True)

    logger.info(f"Collector: {base_url}/{uplink_cfg['endpoint']}")
    return HttpTransport(
        base_url,
        endpoint=uplink_cfg["endpoint"],
        timeout_s=uplink_cfg["timeout_s"],
        abandon_on_client_error=uplink_cfg["abandon_on_client_error"],
    )


def build_radio(scan_cfg: Dict, registry: AnchorRegistry, simulate: bool = False) -> RadioScanner:
    """BLE radio, or a simulated one for offline runs."""
    if simulate:
        logger.info("Using simulated radio")
        return SimulatedRadioScanner(
            registry.anchors,
            emit_interval_s=config.SIMULATION_CONFIG["emit_interval_s"],
            rssi_mean_dbm=config.SIMULATION_CONFIG["rssi_mean_dbm"],
            rssi_std_dbm=config.SIMULATION_CONFIG["rssi_std_dbm"],
        )

    # Imported here so offline runs work without a Bluetooth stack
    from beacon_core.scan.bleak_scanner import BleakRadioScanner
    return BleakRadioScanner(
        scanning_mode=scan_cfg.get("scanning_mode", "active"),
        adapter=scan_cfg.get("adapter"),
    )


class BeaconScannerApp:
    """Beacon scanner host application"""

    def __init__(self, simulate: bool = False, offline: bool = False):
        """
        Initialize the application from config

        Args:
            simulate: Use the simulated radio instead of the BLE adapter
            offline: Never contact the collector
        """
        self._stop_event = threading.Event()

        self.registry = create_anchor_registry(config.ANCHOR_CONFIG)
        logger.info(f"Anchors loaded: {', '.join(self.registry.names)}")

        self.orchestrator = Orchestrator(
            radio=build_radio(config.SCAN_CONFIG, self.registry, simulate),
            transport=build_transport(config.UPLINK_CONFIG, offline),
            config=OrchestratorConfig(
                device_id=config.DEVICE_CONFIG["device_id"],
                scan=build_scan_config(config.SCAN_CONFIG),
                uplink=build_uplink_config(config.UPLINK_CONFIG, config.BACKOFF_CONFIG),
            ),
            registry=self.registry,
        )

        if config.OUTPUT_CONFIG["print_status"]:
            self.orchestrator.subscribe_events(self._print_status)

    def _print_status(self, event: StatusEvent):
        print(event.format_line())

    def _signal_handler(self, signum, frame):
        logger.info(f"Received signal {signum}, stopping...")
        self._stop_event.set()

    def run(self, duration_s: Optional[float] = None):
        """
        Run until interrupted or until duration_s elapses

        Args:
            duration_s: Run time in seconds, None = until SIGINT/SIGTERM
        """
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGTERM, self._signal_handler)

        self.orchestrator.start()
        deadline = time.monotonic() + duration_s if duration_s is not None else None

        try:
            while not self._stop_event.is_set():
                timeout = 1.0
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    timeout = min(timeout, remaining)
                self._stop_event.wait(timeout)
        finally:
            self.stop()

    def stop(self):
        """Stop scanning and flush pending deliveries"""
        self._stop_event.set()
        report = self.orchestrator.stop()
        self.orchestrator.close()

        if not report.clean:
            logger.warning(f"{len(report.unfinished)} observations were not delivered")

        if config.OUTPUT_CONFIG["print_summary"]:
            self.orchestrator.metrics.print_summary()

        return report


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Beacon RSSI scanner')
    parser.add_argument('--device-id', type=str, default=None,
                        help='Scanning device id')
    parser.add_argument('--base-url', type=str, default=None,
                        help='Collector base URL')
    parser.add_argument('--offline', action='store_true',
                        help='Use the in-memory transport')
    parser.add_argument('--simulate', action='store_true',
                        help='Use the simulated radio')
    parser.add_argument('--window', type=float, default=None,
                        help='Scan window duration (seconds)')
    parser.add_argument('--interval', type=float, default=None,
                        help='Idle time between windows (seconds)')
    parser.add_argument('--max-attempts', type=int, default=None,
                        help='Delivery attempts per observation')
    parser.add_argument('--duration', type=float, default=None,
                        help='Run time (seconds), default until interrupted')
    parser.add_argument('--debug', '-d', action='store_true',
                        help='Enable debug logging')
    return parser.parse_args(argv)


def apply_overrides(args: argparse.Namespace):
    """Apply command-line overrides to the config module"""
    if args.device_id:
        config.DEVICE_CONFIG["device_id"] = args.device_id
    if args.base_url:
        config.UPLINK_CONFIG["base_url"] = args.base_url
    if args.window is not None:
        config.SCAN_CONFIG["window_duration_s"] = args.window
    if args.interval is not None:
        config.SCAN_CONFIG["interval_between_windows_s"] = args.interval
    if args.max_attempts is not None:
        config.UPLINK_CONFIG["max_attempts"] = args.max_attempts


def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, config.LOGGING_CONFIG["level"]),
        format=config.LOGGING_CONFIG["format"]
    )
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    apply_overrides(args)

    try:
        app = BeaconScannerApp(simulate=args.simulate, offline=args.offline)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    app.run(duration_s=args.duration)
    return 0


if __name__ == "__main__":
    sys.exit(main())
