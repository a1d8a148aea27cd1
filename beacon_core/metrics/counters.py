"""
Pipeline counters, drop accounting and timing histograms.

Two stages write here concurrently: the scan scheduler thread (detections,
windows, observations) and the uplink delivery thread (attempts, retries,
outcomes). Anything discarded along the way is counted under a reason
code, so a run summary accounts for every detection and every task.
"""

import logging
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


SCAN_COUNTERS = (
    'detections_in',
    'observations_produced',
    'windows_opened',
    'windows_closed',
    'radio_failures',
    'sink_errors',
)

DELIVERY_COUNTERS = (
    'tasks_submitted',
    'delivery_attempts',
    'deliveries_succeeded',
    'delivery_retries',
    'deliveries_abandoned',
)


@dataclass
class CounterSnapshot:
    """Point-in-time copy of every counter, drop reason and histogram."""

    timestamp: float
    counters: Dict[str, int]
    drop_reasons: Dict[str, int]
    histograms: Dict[str, List[float]]

    def total_dropped(self) -> int:
        return sum(self.drop_reasons.values())

    def drop_rate(self, total_items: int) -> float:
        """Dropped items as a percentage of total_items."""
        if total_items == 0:
            return 0.0
        return 100.0 * self.total_dropped() / total_items


class MetricsCollector:
    """
    Thread-safe counters for one pipeline instance.

    Every Orchestrator owns its own collector; nothing is process-wide.

    Usage:
        metrics = MetricsCollector()
        metrics.increment('delivery_attempts')
        metrics.increment_drop('window_closed')
        metrics.record_histogram('delivery_latency_ms', 42.0)
        metrics.print_summary()
    """

    DROP_REASONS = {
        'window_closed': 'Detection processed after its scan window closed',
        'malformed_detection': 'Detection without usable address or RSSI',
        'unknown_anchor': 'Detection from a non-anchor device (anchors_only)',
        'queue_full': 'Bounded delivery queue overflow (drop oldest)',
        'delivery_abandoned': 'Delivery attempts exhausted or rejected',
        'shutdown_unfinished': 'Task still pending when shutdown grace expired',
    }

    STANDARD_COUNTERS = SCAN_COUNTERS + DELIVERY_COUNTERS

    def __init__(self, histogram_size: int = 10000):
        """
        Args:
            histogram_size: Most recent samples kept per histogram
        """
        self.histogram_size = histogram_size
        self._lock = threading.Lock()
        self._counters: Counter = Counter()
        self._drops: Counter = Counter()
        self._histograms: Dict[str, Deque[float]] = {}
        self._started = time.time()

    def increment(self, counter_name: str, value: int = 1):
        with self._lock:
            self._counters[counter_name] += value

    def increment_drop(self, reason: str, value: int = 1):
        """
        Count dropped items under a reason code.

        Unknown reasons are logged and still counted.
        """
        if reason not in self.DROP_REASONS:
            logger.warning(f"Unknown drop reason '{reason}'")

        with self._lock:
            self._drops[reason] += value
            self._counters['items_dropped'] += value

    def get_counter(self, counter_name: str) -> int:
        with self._lock:
            return self._counters[counter_name]

    def get_drop_count(self, reason: str) -> int:
        with self._lock:
            return self._drops[reason]

    def record_histogram(self, histogram_name: str, value: float):
        with self._lock:
            samples = self._histograms.get(histogram_name)
            if samples is None:
                samples = deque(maxlen=self.histogram_size)
                self._histograms[histogram_name] = samples
            samples.append(float(value))

    def get_histogram_stats(self, histogram_name: str) -> Optional[Dict[str, float]]:
        """
        Summary statistics of a histogram.

        Percentiles are nearest-rank from above, so they are always one of
        the recorded samples.

        Returns:
            Dict with count, min, max, mean, median, p95, p99;
            None if nothing was recorded
        """
        with self._lock:
            samples = np.array(self._histograms.get(histogram_name, ()), dtype=float)

        if samples.size == 0:
            return None

        return {
            'count': int(samples.size),
            'min': float(samples.min()),
            'max': float(samples.max()),
            'mean': float(samples.mean()),
            'median': float(np.median(samples)),
            'p95': float(np.percentile(samples, 95, method='higher')),
            'p99': float(np.percentile(samples, 99, method='higher')),
        }

    def snapshot(self) -> CounterSnapshot:
        with self._lock:
            counters = {name: 0 for name in self.STANDARD_COUNTERS}
            counters.update(self._counters)
            drops = {reason: 0 for reason in self.DROP_REASONS}
            drops.update(self._drops)
            return CounterSnapshot(
                timestamp=time.time(),
                counters=counters,
                drop_reasons=drops,
                histograms={name: list(s) for name, s in self._histograms.items()},
            )

    def reset(self):
        with self._lock:
            self._counters.clear()
            self._drops.clear()
            self._histograms.clear()
            self._started = time.time()

    def get_uptime(self) -> float:
        return time.time() - self._started

    def print_summary(self):
        """Print a run summary grouped by pipeline stage."""
        snapshot = self.snapshot()
        counters = snapshot.counters

        print("\n" + "=" * 70)
        print(f"  METRICS SUMMARY (uptime: {self.get_uptime():.1f}s)")
        print("=" * 70)

        for title, names in (("SCAN", SCAN_COUNTERS), ("DELIVERY", DELIVERY_COUNTERS)):
            print(f"\n{title}:")
            for name in names:
                print(f"  {name:30s}: {counters[name]:8d}")

        others = sorted(set(counters) - set(self.STANDARD_COUNTERS) - {'items_dropped'})
        if others:
            print("\nOTHER:")
            for name in others:
                print(f"  {name:30s}: {counters[name]:8d}")

        total_dropped = snapshot.total_dropped()
        if total_dropped:
            print(f"\nDROPPED ({total_dropped}):")
            for reason, count in sorted(snapshot.drop_reasons.items()):
                if count:
                    print(f"  {reason:30s}: {count:8d} ({100.0 * count / total_dropped:5.1f}%)")

        if snapshot.histograms:
            print("\nTIMINGS / DISTRIBUTIONS:")
            for name in sorted(snapshot.histograms):
                stats = self.get_histogram_stats(name)
                if stats:
                    print(f"  {name}: count={stats['count']}, mean={stats['mean']:.1f}, "
                          f"p95={stats['p95']:.1f}, max={stats['max']:.1f}")

        print("=" * 70 + "\n")
