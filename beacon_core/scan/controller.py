"""
Scan Session Controller.

Runs the scan duty cycle on its own scheduler thread: opens a bounded scan
window on the radio, turns detections into Observations while the window
is open, closes it when the budget elapses, and repeats until stopped.

Radio callbacks fire on arbitrary threads. They never touch scan state:
each callback only posts a message to the controller inbox, and the
scheduler thread applies the gating rule when it processes the message.

Usage:
    controller = ScanSessionController(radio, uplink.submit, "RC_CAR_001", registry)
    controller.start(DutyCycle(window_duration_s=6.0))
    ...
    controller.stop()
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from beacon_core.proto import AnchorRegistry, Observation, StatusEvent, StatusKind
from beacon_core.metrics import MetricsCollector
from .radio import RadioScanner, RawDetection
from .session import ScanSession

logger = logging.getLogger(__name__)


# Inbox message kinds
_DETECTION = "detection"
_STOP = "stop"


@dataclass
class DutyCycle:
    """
    Scan duty cycle.

    Attributes:
        window_duration_s: Length of each scan window
        interval_between_windows_s: Idle gap after a window closes
            (0 = next window opens as soon as the previous one closes)
    """

    window_duration_s: float = 6.0
    interval_between_windows_s: float = 0.0

    def __post_init__(self):
        if self.window_duration_s <= 0:
            raise ValueError(f"Window duration must be positive: {self.window_duration_s}")
        if self.interval_between_windows_s < 0:
            raise ValueError(
                f"Interval between windows cannot be negative: {self.interval_between_windows_s}"
            )


@dataclass
class ScanConfig:
    """
    Configuration for the scan session controller.

    Attributes:
        duty_cycle: Default duty cycle used by start()
        radio_retry_interval_s: Delay before retrying a failed window start
            (None = stay idle until start() is called again)
        anchors_only: Only report detections of registered anchors
        stop_timeout_s: Bound on waiting for the scheduler thread in stop()
    """

    duty_cycle: DutyCycle = field(default_factory=DutyCycle)
    radio_retry_interval_s: Optional[float] = None
    anchors_only: bool = False
    stop_timeout_s: float = 2.0


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class ScanSessionController:
    """
    Duty-cycled scan controller.

    Threads:
    - Caller threads: start(), stop(), on_detection()
    - Scheduler thread: owns the ScanSession (window state), the radio
      window calls and the output sink calls
    """

    def __init__(
        self,
        radio: RadioScanner,
        sink: Callable[[Observation], None],
        device_id: str,
        registry: Optional[AnchorRegistry] = None,
        config: Optional[ScanConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        on_status: Optional[Callable[[StatusEvent], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock_ms: Callable[[], int] = _wall_clock_ms,
    ):
        """
        Initialize scan controller.

        Args:
            radio: Platform radio scanner
            sink: Receives every Observation produced (called on the scheduler thread)
            device_id: Scanning device identifier
            registry: Deployment anchors for name resolution
            config: Controller configuration (uses defaults if None)
            metrics: Metrics collector (new private one if None)
            on_status: Receives status events
            clock: Monotonic clock for window scheduling (seconds)
            wall_clock_ms: Wall clock for observation timestamps (ms since epoch)
        """
        self.radio = radio
        self.config = config or ScanConfig()
        self.metrics = metrics or MetricsCollector()
        self.session = ScanSession(
            device_id,
            registry=registry,
            anchors_only=self.config.anchors_only,
            metrics=self.metrics,
        )

        self._sink = sink
        self._on_status = on_status
        self._clock = clock
        self._wall_clock_ms = wall_clock_ms

        self._inbox: "queue.Queue[tuple]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lifecycle_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        """True while the scheduler thread is alive and not asked to stop."""
        thread = self._thread
        return thread is not None and thread.is_alive() and not self._stop_event.is_set()

    def start(self, duty_cycle: Optional[DutyCycle] = None) -> bool:
        """
        Begin periodic scanning. No effect if already running.

        Args:
            duty_cycle: Duty cycle for this run (config default if None)

        Returns:
            True if a new run was started
        """
        duty_cycle = duty_cycle or self.config.duty_cycle

        with self._lifecycle_lock:
            if self.is_running:
                logger.debug("Scan controller already running")
                return False

            previous = self._thread
            if previous is not None and previous.is_alive():
                # Previous run still stuck in a radio call after stop()
                previous.join(timeout=self.config.stop_timeout_s)
                if previous.is_alive():
                    logger.warning("Previous scan run has not finished stopping; not starting")
                    return False

            # Fresh inbox and stop event per run: nothing from a previous run leaks in
            self._inbox = queue.Queue()
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._inbox, self._stop_event, duty_cycle),
                name="scan-scheduler",
                daemon=True,
            )
            self._thread.start()

        logger.info(
            f"Scan controller started: window={duty_cycle.window_duration_s:.1f}s, "
            f"interval={duty_cycle.interval_between_windows_s:.1f}s"
        )
        return True

    def stop(self):
        """
        Close the current window immediately and halt scheduling.

        Safe to call from any state, including when never started.
        """
        with self._lifecycle_lock:
            thread = self._thread
            if thread is None:
                return

            self._stop_event.set()
            self._inbox.put((_STOP,))
            if thread is threading.current_thread():
                # Called from the sink; the loop exits after this message
                return

            thread.join(timeout=self.config.stop_timeout_s)
            if thread.is_alive():
                # Keep the reference: start() must not run a second scheduler
                # on the same session while this one is still unwinding
                logger.warning("Scan scheduler did not stop within %.1fs",
                               self.config.stop_timeout_s)
            else:
                self._thread = None

        logger.info("Scan controller stopped")

    def on_detection(self, raw: RawDetection, window_sequence: Optional[int] = None):
        """
        Hand a radio detection to the scheduler thread.

        Thread-safe, never blocks. The detection is gated against the window
        state when the scheduler processes it, not when it was emitted.

        Args:
            raw: Raw detection from the radio
            window_sequence: Window whose callback raised it (None = whichever
                window is open at processing time)
        """
        capture_ms = raw.detected_at_ms
        if capture_ms is None:
            capture_ms = self._wall_clock_ms()
        self._inbox.put((_DETECTION, raw, window_sequence, capture_ms))

    def _window_callback(self, sequence: int) -> Callable[[RawDetection], None]:
        """Radio callback bound to one window."""
        def callback(raw: RawDetection):
            self.on_detection(raw, window_sequence=sequence)
        return callback

    # ------------------------------------------------------------------
    # Scheduler thread
    # ------------------------------------------------------------------

    def _run(self, inbox: "queue.Queue[tuple]", stop_event: threading.Event,
             duty_cycle: DutyCycle):
        next_open_at: Optional[float] = self._clock()

        try:
            while not stop_event.is_set():
                now = self._clock()
                window = self.session.current_window

                if window is not None:
                    if window.is_expired(now):
                        self._close_window(now)
                        next_open_at = now + duty_cycle.interval_between_windows_s
                        continue
                    timeout = window.deadline - now
                elif next_open_at is not None:
                    if now >= next_open_at:
                        if self._open_window(now, duty_cycle):
                            next_open_at = None
                        elif self.config.radio_retry_interval_s is not None:
                            next_open_at = now + self.config.radio_retry_interval_s
                        else:
                            break
                        continue
                    timeout = next_open_at - now
                else:
                    timeout = None

                try:
                    message = inbox.get(timeout=timeout)
                except queue.Empty:
                    continue

                if message[0] == _STOP:
                    break
                self._process_detection(*message[1:])
        finally:
            self._close_window(self._clock())
            self._drain(inbox)

    def _open_window(self, now: float, duty_cycle: DutyCycle) -> bool:
        window = self.session.open_window(now, duty_cycle.window_duration_s)
        try:
            self.radio.start_window(self._window_callback(window.sequence))
        except Exception as e:
            # Radio never started: the window did not really open
            self.session.close_window(now)
            self.metrics.increment('radio_failures')
            logger.warning(f"Radio unavailable, scan window not started: {e}")
            self._emit(StatusKind.RADIO_UNAVAILABLE, f"Radio unavailable: {e}")
            return False
        return True

    def _close_window(self, now: float):
        if self.session.close_window(now) is None:
            return
        try:
            self.radio.stop_window()
        except Exception as e:
            logger.warning(f"Radio stop_window failed: {e}")

    def _process_detection(self, raw: RawDetection, window_sequence: Optional[int],
                           capture_ms: int):
        if window_sequence is None and self.session.current_window is not None:
            window_sequence = self.session.current_window.sequence

        observation = self.session.handle_detection(
            raw, window_sequence, now=self._clock(), capture_ms=capture_ms
        )
        if observation is None:
            return

        try:
            self._sink(observation)
        except Exception:
            self.metrics.increment('sink_errors')
            logger.exception(f"Observation sink failed for {observation.anchor_name}")

    def _drain(self, inbox: "queue.Queue[tuple]"):
        """Discard detections still queued after the run ended."""
        while True:
            try:
                message = inbox.get_nowait()
            except queue.Empty:
                return
            if message[0] == _DETECTION:
                self.metrics.increment('detections_in')
                self.metrics.increment_drop('window_closed')

    def _emit(self, kind: StatusKind, message: str):
        if self._on_status is None:
            return
        try:
            self._on_status(StatusEvent(kind=kind, message=message))
        except Exception:
            logger.exception("Status listener failed")
