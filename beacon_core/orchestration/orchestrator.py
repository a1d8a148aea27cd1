"""
Orchestrator.

Wires the Scan Session Controller's observations into the Telemetry Uplink
and exposes start/stop plus a status event stream to the host application.

Each Orchestrator owns its own controller, uplink, queues, threads and
metrics; instances share nothing.

Usage:
    orchestrator = Orchestrator(radio, transport, OrchestratorConfig("RC_CAR_001"))
    orchestrator.subscribe(print)
    orchestrator.start()
    ...
    report = orchestrator.stop()
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from beacon_core.proto import AnchorRegistry, DeliveryTask, StatusEvent, StatusKind
from beacon_core.metrics import MetricsCollector
from beacon_core.scan import RadioScanner, ScanConfig, ScanSessionController
from beacon_core.uplink import TaskOutcome, TelemetryUplink, Transport, UplinkConfig
from .status import StatusChannel

logger = logging.getLogger(__name__)


DEFAULT_DEVICE_ID = "RC_CAR_001"


@dataclass
class OrchestratorConfig:
    """
    Configuration for the orchestrator.

    Attributes:
        device_id: Identifier of this scanning device (static)
        scan: Scan controller configuration
        uplink: Telemetry uplink configuration
    """

    device_id: str = DEFAULT_DEVICE_ID
    scan: ScanConfig = field(default_factory=ScanConfig)
    uplink: UplinkConfig = field(default_factory=UplinkConfig)

    def __post_init__(self):
        if not self.device_id:
            raise ValueError("device_id cannot be empty")


@dataclass
class ShutdownReport:
    """Result of Orchestrator.stop()."""

    unfinished: List[DeliveryTask] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.unfinished


class Orchestrator:
    """
    Scan-to-uplink pipeline with lifecycle controls.

    Features:
    - start()/stop() idempotent and safe from any state
    - uplink started before scanning, stopped after it
    - status events from both stages on one channel
    """

    def __init__(
        self,
        radio: RadioScanner,
        transport: Transport,
        config: Optional[OrchestratorConfig] = None,
        registry: Optional[AnchorRegistry] = None,
        metrics: Optional[MetricsCollector] = None,
        on_task_finished: Optional[Callable[[TaskOutcome], None]] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            radio: Platform radio scanner
            transport: Collector transport
            config: Orchestrator configuration (uses defaults if None)
            registry: Deployment anchors
            metrics: Metrics collector (new private one if None)
            on_task_finished: Receives the outcome of every finished delivery task
        """
        self.config = config or OrchestratorConfig()
        self.metrics = metrics or MetricsCollector()
        self.registry = registry or AnchorRegistry()
        self.status = StatusChannel()

        self.uplink = TelemetryUplink(
            transport,
            config=self.config.uplink,
            metrics=self.metrics,
            on_status=self.status.emit,
            on_task_finished=on_task_finished,
        )
        self.controller = ScanSessionController(
            radio,
            sink=self.uplink.submit,
            device_id=self.config.device_id,
            registry=self.registry,
            config=self.config.scan,
            metrics=self.metrics,
            on_status=self.status.emit,
        )

        self._lock = threading.Lock()
        self._running = False

    @property
    def is_running(self) -> bool:
        """True while started and the scan controller is still scanning."""
        return self._running and self.controller.is_running

    def subscribe(self, callback: Callable[[str], None]):
        """Receive human-readable status lines."""
        self.status.subscribe(callback)

    def subscribe_events(self, callback: Callable[[StatusEvent], None]):
        """Receive structured status events."""
        self.status.subscribe_events(callback)

    def start(self) -> bool:
        """
        Start delivering and scanning. No effect if already running.

        A stage that ended on its own since the last start() (e.g. the scan
        controller after a radio failure) is started again.

        Returns:
            True if the pipeline, or a stage of it, was started by this call
        """
        with self._lock:
            if self._running and self.uplink.is_running and self.controller.is_running:
                return False

            uplink_started = self.uplink.start()
            scan_started = self.controller.start()
            self._running = True
            if not (uplink_started or scan_started):
                return False

        logger.info(f"Orchestrator started for device {self.config.device_id} "
                    f"({len(self.registry)} anchors registered)")
        self.status.emit(StatusEvent(StatusKind.SCAN_STARTED, "Scan started"))
        return True

    def stop(self, grace_s: Optional[float] = None) -> ShutdownReport:
        """
        Stop scanning, then drain the uplink within the grace period.

        Safe to call from any state.

        Args:
            grace_s: Delivery grace period (config default if None)

        Returns:
            ShutdownReport listing tasks not delivered before shutdown
        """
        with self._lock:
            if not self._running:
                return ShutdownReport()

            self.controller.stop()
            unfinished = self.uplink.stop(grace_s)
            self._running = False

        self.status.emit(StatusEvent(
            StatusKind.SCAN_STOPPED,
            f"Scan stopped ({len(unfinished)} deliveries unfinished)"
            if unfinished else "Scan stopped",
        ))
        return ShutdownReport(unfinished=unfinished)

    def close(self):
        """Stop the pipeline and release radio and transport resources."""
        self.stop()
        self.controller.radio.close()
        self.uplink.transport.close()
