"""
Scan Session state machine.

Single-threaded core of the Scan Session Controller: owns the scan window
state and turns raw detections into Observations. All times are passed in
explicitly, so the state machine can be driven deterministically.

State machine:
    IDLE --open_window()--> ACTIVE --close_window() / budget elapsed--> IDLE

Gating rule: a detection becomes an Observation only if, at processing
time, a window is ACTIVE, the detection was raised by that same window
(sequence match) and the window's budget has not elapsed.
"""

import logging
from typing import Optional

from beacon_core.proto import (
    AnchorRegistry,
    Observation,
    ScanWindow,
    WindowState,
)
from beacon_core.metrics import MetricsCollector
from .anchor_resolver import normalize_address, resolve_anchor_name
from .radio import RawDetection

logger = logging.getLogger(__name__)


class ScanSession:
    """
    Scan window state and detection gating.

    Usage:
        session = ScanSession("RC_CAR_001", registry)
        window = session.open_window(now=0.0, duration=6.0)
        obs = session.handle_detection(raw, window.sequence, now=0.1, capture_ms=...)
        session.close_window(now=6.0)
    """

    def __init__(
        self,
        device_id: str,
        registry: Optional[AnchorRegistry] = None,
        anchors_only: bool = False,
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Initialize scan session.

        Args:
            device_id: Scanning device identifier stamped on every Observation
            registry: Deployment anchors used for name resolution
            anchors_only: Discard detections of unregistered devices
            metrics: Metrics collector (new private one if None)
        """
        if not device_id:
            raise ValueError("device_id cannot be empty")

        self.device_id = device_id
        self.registry = registry or AnchorRegistry()
        self.anchors_only = anchors_only
        self.metrics = metrics or MetricsCollector()

        self._window: Optional[ScanWindow] = None
        self._next_sequence = 1
        self._last_timestamp_ms = 0

    @property
    def state(self) -> WindowState:
        if self._window is not None and self._window.is_active:
            return WindowState.ACTIVE
        return WindowState.IDLE

    @property
    def current_window(self) -> Optional[ScanWindow]:
        """Open window, or None while IDLE."""
        if self.state == WindowState.ACTIVE:
            return self._window
        return None

    def open_window(self, now: float, duration: float) -> ScanWindow:
        """
        Open the next scan window.

        Raises:
            RuntimeError: if a window is already ACTIVE
        """
        if self.state == WindowState.ACTIVE:
            raise RuntimeError(f"Scan window {self._window.sequence} is still active")

        self._window = ScanWindow(
            sequence=self._next_sequence,
            opened_at=now,
            duration_budget=duration,
        )
        self._next_sequence += 1
        self.metrics.increment('windows_opened')
        logger.debug(f"Scan window {self._window.sequence} opened ({duration:.1f}s)")
        return self._window

    def close_window(self, now: float) -> Optional[ScanWindow]:
        """
        Close the open window, if any.

        Returns:
            The closed window, or None if the session was already IDLE
        """
        window = self.current_window
        if window is None:
            return None

        window.close(now)
        self.metrics.increment('windows_closed')
        logger.debug(
            f"Scan window {window.sequence} closed after {now - window.opened_at:.2f}s"
        )
        return window

    def is_window_expired(self, now: float) -> bool:
        window = self.current_window
        return window is not None and window.is_expired(now)

    def handle_detection(
        self,
        raw: RawDetection,
        window_sequence: int,
        now: float,
        capture_ms: int,
    ) -> Optional[Observation]:
        """
        Turn a raw detection into an Observation, or discard it.

        Args:
            raw: Raw radio detection
            window_sequence: Sequence of the window whose callback raised it
            now: Processing time (controller monotonic clock)
            capture_ms: Wall-clock capture time, ms since epoch

        Returns:
            Observation, or None if the detection was discarded
        """
        self.metrics.increment('detections_in')

        window = self.current_window
        if (window is None or window.sequence != window_sequence
                or window.is_expired(now)):
            self.metrics.increment_drop('window_closed')
            logger.debug(f"Detection from window {window_sequence} arrived while closed")
            return None

        address = normalize_address(raw.address)
        if address is None or isinstance(raw.rssi, bool) or not isinstance(raw.rssi, int):
            self.metrics.increment_drop('malformed_detection')
            return None

        if self.anchors_only and not self.registry.is_anchor_address(address):
            self.metrics.increment_drop('unknown_anchor')
            return None

        # Timestamps never go backwards within a session
        timestamp_ms = max(int(capture_ms), self._last_timestamp_ms)
        self._last_timestamp_ms = timestamp_ms

        observation = Observation(
            device_id=self.device_id,
            anchor_name=resolve_anchor_name(address, raw.name, self.registry),
            rssi=raw.rssi,
            mac_address=address,
            timestamp_ms=timestamp_ms,
        )

        self.metrics.increment('observations_produced')
        self.metrics.record_histogram('rssi_dbm', float(raw.rssi))
        return observation
