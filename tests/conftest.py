"""
Pytest configuration and shared fixtures for the beacon telemetry tests.

This module provides reusable fixtures for the observation model, the scan
session controller, the telemetry uplink and the orchestrator.
"""

import sys
import threading
import time
from pathlib import Path
from typing import Callable, List

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from beacon_core.proto import AnchorInfo, AnchorRegistry, Observation, StatusEvent
from beacon_core.uplink import BackoffPolicy, UplinkConfig


# =============================================================================
# Anchor Fixtures
# =============================================================================


ANCHOR1_ADDRESS = "F0:00:00:00:00:01"
ANCHOR2_ADDRESS = "F0:00:00:00:00:02"
ANCHOR3_ADDRESS = "F0:00:00:00:00:03"


@pytest.fixture
def anchor_registry() -> AnchorRegistry:
    """
    Standard three-anchor deployment.

    - Anchor1 at (0, 0)
    - Anchor2 at (10, 0)
    - Anchor3 at (5, 8.66)
    """
    return AnchorRegistry([
        AnchorInfo("Anchor1", ANCHOR1_ADDRESS, (0.0, 0.0)),
        AnchorInfo("Anchor2", ANCHOR2_ADDRESS, (10.0, 0.0)),
        AnchorInfo("Anchor3", ANCHOR3_ADDRESS, (5.0, 8.66)),
    ])


def make_observation(anchor_name: str = "Anchor1", rssi: int = -60,
                     timestamp_ms: int = 1_700_000_000_000,
                     device_id: str = "RC_CAR_001",
                     mac_address: str = ANCHOR1_ADDRESS) -> Observation:
    """Build an Observation with sensible defaults."""
    return Observation(
        device_id=device_id,
        anchor_name=anchor_name,
        rssi=rssi,
        mac_address=mac_address,
        timestamp_ms=timestamp_ms,
    )


@pytest.fixture
def observation() -> Observation:
    return make_observation()


# =============================================================================
# Timing Helpers
# =============================================================================


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0,
               interval: float = 0.01) -> bool:
    """
    Poll predicate until it is true or timeout expires.

    Returns:
        Final value of predicate
    """
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


# =============================================================================
# Recording Fixtures
# =============================================================================


class Recorder:
    """Thread-safe list of received items."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: List = []

    def __call__(self, item):
        with self._lock:
            self._items.append(item)

    @property
    def items(self) -> List:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


@pytest.fixture
def sink() -> Recorder:
    """Records Observations produced by the scan controller."""
    return Recorder()


@pytest.fixture
def status_events() -> Recorder:
    """Records StatusEvents."""
    return Recorder()


def events_of_kind(recorder: Recorder, kind) -> List[StatusEvent]:
    return [event for event in recorder.items if event.kind == kind]


# =============================================================================
# Uplink Fixtures
# =============================================================================


@pytest.fixture
def fast_backoff() -> BackoffPolicy:
    """Millisecond backoff without jitter."""
    return BackoffPolicy(base_delay_s=0.005, multiplier=2.0, max_delay_s=0.05,
                         jitter_ratio=0.0)


@pytest.fixture
def fast_uplink_config(fast_backoff: BackoffPolicy) -> UplinkConfig:
    """Uplink configuration suitable for threaded tests."""
    return UplinkConfig(
        max_attempts=5,
        backoff=fast_backoff,
        shutdown_grace_s=1.0,
        in_flight_timeout_s=1.0,
        idle_poll_s=0.05,
    )
