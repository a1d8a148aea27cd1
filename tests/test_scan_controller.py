"""
Unit tests for the threaded scan session controller.

Tests cover:
- start/stop lifecycle and idempotence
- Back-to-back duty cycle without overlapping windows
- Late radio callbacks after a window closed
- Radio failure reporting and retry
- Sink failures not stopping the duty cycle

Threaded tests use short windows and bounded waits.
"""

import threading

import pytest

from beacon_core.metrics import MetricsCollector
from beacon_core.proto import StatusKind
from beacon_core.scan import (
    DutyCycle,
    RadioScanner,
    RadioUnavailableError,
    RawDetection,
    ScanConfig,
    ScanSessionController,
    SimulatedRadioScanner,
)
from tests.conftest import ANCHOR1_ADDRESS, ANCHOR2_ADDRESS, events_of_kind, wait_until


class ManualRadio(RadioScanner):
    """Radio whose detections are fired by the test."""

    def __init__(self, fail_starts: int = 0):
        self.fail_starts = fail_starts
        self._lock = threading.Lock()
        self.callbacks = []
        self.open = False
        self.starts = 0
        self.stops = 0
        self.overlaps = 0

    def start_window(self, callback):
        with self._lock:
            if self.fail_starts > 0:
                self.fail_starts -= 1
                raise RadioUnavailableError("adapter disabled")
            if self.open:
                self.overlaps += 1
            self.open = True
            self.starts += 1
            self.callbacks.append(callback)

    def stop_window(self):
        with self._lock:
            if self.open:
                self.stops += 1
            self.open = False

    def fire(self, raw: RawDetection, window_index: int = -1):
        with self._lock:
            callback = self.callbacks[window_index]
        callback(raw)


class HangingRadio(ManualRadio):
    """Radio whose first window start blocks until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def start_window(self, callback):
        if not self.entered.is_set():
            self.entered.set()
            self.release.wait(5.0)
        super().start_window(callback)


@pytest.fixture
def radio():
    return ManualRadio()


@pytest.fixture
def metrics():
    return MetricsCollector()


def make_controller(radio, sink, registry, metrics, status=None, **config_kwargs):
    config_kwargs.setdefault('duty_cycle', DutyCycle(window_duration_s=5.0))
    return ScanSessionController(
        radio,
        sink=sink,
        device_id="RC_CAR_001",
        registry=registry,
        config=ScanConfig(**config_kwargs),
        metrics=metrics,
        on_status=status,
    )


class TestLifecycle:
    """Tests for start/stop."""

    def test_start_opens_window_immediately(self, radio, sink, anchor_registry, metrics):
        controller = make_controller(radio, sink, anchor_registry, metrics)
        assert controller.start()
        try:
            assert wait_until(lambda: radio.starts == 1)
            assert controller.is_running
        finally:
            controller.stop()

    def test_detection_becomes_observation(self, radio, sink, anchor_registry, metrics):
        controller = make_controller(radio, sink, anchor_registry, metrics)
        controller.start()
        try:
            assert wait_until(lambda: radio.starts == 1)
            radio.fire(RawDetection(ANCHOR1_ADDRESS, -55))
            assert wait_until(lambda: len(sink) == 1)
        finally:
            controller.stop()

        observation = sink.items[0]
        assert observation.anchor_name == "Anchor1"
        assert observation.device_id == "RC_CAR_001"
        assert observation.timestamp_ms > 0

    def test_start_is_idempotent(self, radio, sink, anchor_registry, metrics):
        controller = make_controller(radio, sink, anchor_registry, metrics)
        controller.start()
        try:
            assert wait_until(lambda: radio.starts == 1)
            assert controller.start() is False
            assert radio.starts == 1
            assert radio.overlaps == 0
        finally:
            controller.stop()

    def test_stop_without_start_is_safe(self, radio, sink, anchor_registry, metrics):
        controller = make_controller(radio, sink, anchor_registry, metrics)
        controller.stop()
        controller.stop()
        assert not controller.is_running
        assert radio.starts == 0

    def test_stop_mid_window_closes_immediately(self, radio, sink, anchor_registry, metrics):
        """Test that stop() closes the open window and later callbacks are dropped."""
        controller = make_controller(radio, sink, anchor_registry, metrics)
        controller.start()
        assert wait_until(lambda: radio.starts == 1)
        radio.fire(RawDetection(ANCHOR1_ADDRESS, -55))
        assert wait_until(lambda: len(sink) == 1)

        controller.stop()

        assert not controller.is_running
        assert radio.stops == 1
        assert not radio.open

        # Late radio callback from the closed window
        radio.fire(RawDetection(ANCHOR2_ADDRESS, -70))
        assert len(sink) == 1

    def test_restart_after_stop(self, radio, sink, anchor_registry, metrics):
        controller = make_controller(radio, sink, anchor_registry, metrics)
        controller.start()
        assert wait_until(lambda: radio.starts == 1)
        controller.stop()

        assert controller.start()
        try:
            assert wait_until(lambda: radio.starts == 2)
            radio.fire(RawDetection(ANCHOR2_ADDRESS, -70))
            assert wait_until(lambda: len(sink) == 1)
        finally:
            controller.stop()

    def test_start_with_explicit_duty_cycle(self, radio, sink, anchor_registry, metrics):
        controller = make_controller(radio, sink, anchor_registry, metrics)
        controller.start(DutyCycle(window_duration_s=0.05))
        try:
            assert wait_until(lambda: radio.starts >= 3)
        finally:
            controller.stop()


class TestDutyCycle:
    """Tests for repeated windows."""

    def test_back_to_back_windows_never_overlap(self, radio, sink, anchor_registry, metrics):
        controller = make_controller(radio, sink, anchor_registry, metrics,
                                     duty_cycle=DutyCycle(window_duration_s=0.05))
        controller.start()
        try:
            assert wait_until(lambda: radio.starts >= 4)
        finally:
            controller.stop()

        assert radio.overlaps == 0
        assert radio.stops == radio.starts
        assert metrics.get_counter('windows_opened') == metrics.get_counter('windows_closed')

    def test_interval_between_windows(self, radio, sink, anchor_registry, metrics):
        """Test that an idle gap leaves the radio closed between windows."""
        controller = make_controller(
            radio, sink, anchor_registry, metrics,
            duty_cycle=DutyCycle(window_duration_s=0.05, interval_between_windows_s=0.3),
        )
        controller.start()
        try:
            assert wait_until(lambda: radio.stops == 1)
            assert not radio.open
            assert radio.starts == 1
            assert wait_until(lambda: radio.starts == 2)
        finally:
            controller.stop()

    def test_late_callback_from_previous_window_discarded(self, radio, sink, anchor_registry,
                                                          metrics):
        controller = make_controller(radio, sink, anchor_registry, metrics,
                                     duty_cycle=DutyCycle(window_duration_s=0.1))
        controller.start()
        try:
            assert wait_until(lambda: radio.starts >= 2)
            radio.fire(RawDetection(ANCHOR1_ADDRESS, -55), window_index=0)
            assert wait_until(lambda: metrics.get_drop_count('window_closed') == 1)
        finally:
            controller.stop()

        assert len(sink) == 0

    def test_invalid_duty_cycle_rejected(self):
        with pytest.raises(ValueError):
            DutyCycle(window_duration_s=0.0)
        with pytest.raises(ValueError):
            DutyCycle(window_duration_s=6.0, interval_between_windows_s=-1.0)


class TestFailures:
    """Tests for radio and sink failures."""

    def test_radio_unavailable_reported_and_idle(self, sink, anchor_registry, metrics,
                                                 status_events):
        radio = ManualRadio(fail_starts=1)
        controller = make_controller(radio, sink, anchor_registry, metrics, status=status_events)
        controller.start()

        assert wait_until(lambda: not controller.is_running)
        events = events_of_kind(status_events, StatusKind.RADIO_UNAVAILABLE)
        assert len(events) == 1
        assert "adapter disabled" in events[0].message
        assert metrics.get_counter('radio_failures') == 1
        assert not radio.open

        # A later start() succeeds
        controller.start()
        try:
            assert wait_until(lambda: radio.starts == 1)
        finally:
            controller.stop()

    def test_radio_retry(self, sink, anchor_registry, metrics, status_events):
        radio = ManualRadio(fail_starts=2)
        controller = make_controller(radio, sink, anchor_registry, metrics,
                                     status=status_events, radio_retry_interval_s=0.05)
        controller.start()
        try:
            assert wait_until(lambda: radio.starts == 1)
            assert controller.is_running
        finally:
            controller.stop()

        assert len(events_of_kind(status_events, StatusKind.RADIO_UNAVAILABLE)) == 2

    def test_sink_failure_does_not_stop_scanning(self, radio, anchor_registry, metrics):
        received = []

        def flaky_sink(observation):
            received.append(observation)
            if len(received) == 1:
                raise RuntimeError("sink exploded")

        controller = make_controller(radio, flaky_sink, anchor_registry, metrics)
        controller.start()
        try:
            assert wait_until(lambda: radio.starts == 1)
            radio.fire(RawDetection(ANCHOR1_ADDRESS, -55))
            radio.fire(RawDetection(ANCHOR2_ADDRESS, -70))
            assert wait_until(lambda: len(received) == 2)
            assert controller.is_running
        finally:
            controller.stop()

        assert metrics.get_counter('sink_errors') == 1

    def test_malformed_detection_not_propagated(self, radio, sink, anchor_registry, metrics):
        controller = make_controller(radio, sink, anchor_registry, metrics)
        controller.start()
        try:
            assert wait_until(lambda: radio.starts == 1)
            radio.fire(RawDetection(None, -55))
            radio.fire(RawDetection(ANCHOR1_ADDRESS, -55))
            assert wait_until(lambda: len(sink) == 1)
            assert controller.is_running
        finally:
            controller.stop()

        assert metrics.get_drop_count('malformed_detection') == 1

    def test_no_second_scheduler_while_stop_timed_out(self, sink, anchor_registry, metrics):
        """Test that start() waits out a scheduler stuck in the radio after stop()."""
        radio = HangingRadio()
        controller = make_controller(radio, sink, anchor_registry, metrics, stop_timeout_s=0.1)
        controller.start()
        try:
            assert radio.entered.wait(2.0)
            controller.stop()
            assert not controller.is_running
            assert controller.start() is False

            radio.release.set()
            assert wait_until(controller.start)
            assert wait_until(lambda: radio.starts == 2)
            assert radio.overlaps == 0
            schedulers = [t for t in threading.enumerate()
                          if t.name == "scan-scheduler" and t.is_alive()]
            assert len(schedulers) == 1
        finally:
            radio.release.set()
            controller.stop()


class TestUnboundDetections:
    """Tests for on_detection() without a window binding."""

    def test_accepted_while_window_open(self, radio, sink, anchor_registry, metrics):
        controller = make_controller(radio, sink, anchor_registry, metrics)
        controller.start()
        try:
            assert wait_until(lambda: radio.starts == 1)
            controller.on_detection(RawDetection(ANCHOR2_ADDRESS, -70, detected_at_ms=123))
            assert wait_until(lambda: len(sink) == 1)
        finally:
            controller.stop()

        assert sink.items[0].timestamp_ms == 123

    def test_dropped_when_never_started(self, radio, sink, anchor_registry, metrics):
        controller = make_controller(radio, sink, anchor_registry, metrics)
        controller.on_detection(RawDetection(ANCHOR2_ADDRESS, -70))
        assert len(sink) == 0


class TestSimulatedRadio:
    """Tests for the controller driven by the simulated radio."""

    def test_scripted_window_scenario(self, sink, anchor_registry, metrics):
        """Window of 0.3 s, detections at 10 ms, 150 ms and 400 ms (after close)."""
        script = [
            (0.01, RawDetection(ANCHOR1_ADDRESS, -55)),
            (0.15, RawDetection(ANCHOR2_ADDRESS, -70)),
            (0.40, RawDetection(ANCHOR1_ADDRESS, -60)),
        ]
        radio = SimulatedRadioScanner(script=script, deliver_after_stop=True)
        controller = make_controller(
            radio, sink, anchor_registry, metrics,
            duty_cycle=DutyCycle(window_duration_s=0.3, interval_between_windows_s=5.0),
        )
        controller.start()
        try:
            assert wait_until(lambda: radio.windows_stopped == 1)
            # The 400 ms detection still reaches the controller, after close
            assert wait_until(lambda: metrics.get_drop_count('window_closed') == 1)
        finally:
            controller.stop()

        assert [(o.anchor_name, o.rssi) for o in sink.items] == [("Anchor1", -55), ("Anchor2", -70)]
        assert metrics.get_counter('observations_produced') == 2

    def test_random_detections_flow(self, sink, anchor_registry, metrics):
        radio = SimulatedRadioScanner(anchor_registry.anchors, emit_interval_s=0.01, seed=7)
        controller = make_controller(radio, sink, anchor_registry, metrics,
                                     duty_cycle=DutyCycle(window_duration_s=0.1))
        controller.start()
        try:
            assert wait_until(lambda: len(sink) >= 5)
        finally:
            controller.stop()

        assert {o.anchor_name for o in sink.items} <= set(anchor_registry.names)
