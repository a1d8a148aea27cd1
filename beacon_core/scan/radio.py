"""
Radio Scanner capability.

The platform radio is an external collaborator: it opens and closes scan
windows and invokes a callback for every advertisement it hears while a
window is open. Callbacks may fire on any thread.

Implementations:
- BleakRadioScanner (bleak_scanner.py): real BLE adapter
- SimulatedRadioScanner: offline radio for demos and tests
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

import numpy as np

from beacon_core.proto import AnchorInfo

logger = logging.getLogger(__name__)


class RadioUnavailableError(RuntimeError):
    """Scan window could not be started (adapter off, missing, busy)."""


@dataclass(frozen=True)
class RawDetection:
    """
    Raw advertisement report from the radio.

    Attributes:
        address: Hardware address of the advertiser (may be missing)
        rssi: Signal strength (dBm)
        name: Advertised local name, if any
        detected_at_ms: Radio capture time (ms since epoch), if the radio
            provides one; otherwise stamped on hand-off
    """

    address: Optional[str]
    rssi: Optional[int]
    name: Optional[str] = None
    detected_at_ms: Optional[int] = None


DetectionCallback = Callable[[RawDetection], None]


class RadioScanner(ABC):
    """Platform radio scanning capability."""

    @abstractmethod
    def start_window(self, callback: DetectionCallback):
        """
        Start scanning; deliver every detection to callback until stop_window().

        Raises:
            RadioUnavailableError: if scanning cannot start
        """

    @abstractmethod
    def stop_window(self):
        """Stop scanning. Safe to call when not scanning."""

    def close(self):
        """Release radio resources."""


class SimulatedRadioScanner(RadioScanner):
    """
    Offline radio emitting detections of known anchors.

    Either plays a fixed script of detections per window or, without a
    script, emits one detection of a random anchor every emit_interval_s
    with RSSI drawn around rssi_mean_dbm.

    Usage:
        radio = SimulatedRadioScanner(registry.anchors, emit_interval_s=0.5)
        radio.start_window(callback)
        ...
        radio.stop_window()
    """

    def __init__(
        self,
        anchors: Iterable[AnchorInfo] = (),
        emit_interval_s: float = 0.5,
        rssi_mean_dbm: float = -65.0,
        rssi_std_dbm: float = 8.0,
        script: Optional[List[tuple]] = None,
        fail_starts: int = 0,
        deliver_after_stop: bool = False,
        seed: Optional[int] = None,
    ):
        """
        Initialize simulated radio.

        Args:
            anchors: Anchors to simulate
            emit_interval_s: Delay between random detections
            rssi_mean_dbm: Mean simulated RSSI
            rssi_std_dbm: RSSI standard deviation
            script: Optional list of (delay_s, RawDetection) replayed in
                every window, delays relative to window start
            fail_starts: Number of initial start_window() calls that fail
            deliver_after_stop: Keep replaying the script after stop_window(),
                like callbacks already in flight on a real radio
            seed: Random seed
        """
        self.anchors = list(anchors)
        self.emit_interval_s = emit_interval_s
        self.rssi_mean_dbm = rssi_mean_dbm
        self.rssi_std_dbm = rssi_std_dbm
        self.script = script
        self.fail_starts = fail_starts
        self.deliver_after_stop = deliver_after_stop
        self._rng = np.random.default_rng(seed)

        self._lock = threading.Lock()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self.windows_started = 0
        self.windows_stopped = 0

    @property
    def scanning(self) -> bool:
        with self._lock:
            return self._thread is not None

    def start_window(self, callback: DetectionCallback):
        with self._lock:
            if self.fail_starts > 0:
                self.fail_starts -= 1
                raise RadioUnavailableError("Simulated radio start failure")
            if self._thread is not None:
                raise RadioUnavailableError("Scan already started")

            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._emit_loop,
                args=(callback, self._stop_event),
                name="simulated-radio",
                daemon=True,
            )
            self.windows_started += 1
            self._thread.start()

    def stop_window(self):
        with self._lock:
            if self._thread is None:
                return
            self._stop_event.set()
            self._thread = None
            self.windows_stopped += 1

    def _emit_loop(self, callback: DetectionCallback, stop_event: threading.Event):
        if self.script is not None:
            started = time.monotonic()
            for delay_s, detection in self.script:
                remaining = started + delay_s - time.monotonic()
                if self.deliver_after_stop:
                    if remaining > 0:
                        time.sleep(remaining)
                elif remaining > 0 and stop_event.wait(remaining):
                    return
                callback(detection)
            return

        if not self.anchors:
            return

        while not stop_event.wait(self.emit_interval_s):
            anchor = self.anchors[int(self._rng.integers(len(self.anchors)))]
            rssi = int(round(self._rng.normal(self.rssi_mean_dbm, self.rssi_std_dbm)))
            callback(RawDetection(address=anchor.address, rssi=rssi, name=anchor.name))
