"""
Unit tests for metrics module.

Tests cover:
- Counter increment (single-threaded and multi-threaded)
- Drop reason tracking
- Histogram recording and statistics
- Snapshot and reset functionality
- Summary output
"""

import threading

from beacon_core.metrics import CounterSnapshot, MetricsCollector


class TestMetricsCollectorBasic:
    """Tests for basic metrics collector functionality."""

    def test_initialization(self):
        """Test that standard counters start at zero."""
        collector = MetricsCollector()

        assert collector.get_counter('detections_in') == 0
        assert collector.get_counter('deliveries_succeeded') == 0
        assert collector.get_counter('unknown_counter') == 0

        snapshot = collector.snapshot()
        for counter in MetricsCollector.STANDARD_COUNTERS:
            assert snapshot.counters[counter] == 0

    def test_increment_counter(self):
        collector = MetricsCollector()

        collector.increment('delivery_attempts')
        assert collector.get_counter('delivery_attempts') == 1

        collector.increment('delivery_attempts', 5)
        assert collector.get_counter('delivery_attempts') == 6

    def test_increment_drop_with_valid_reason(self):
        collector = MetricsCollector()

        collector.increment_drop('window_closed')

        assert collector.get_counter('items_dropped') == 1
        assert collector.get_drop_count('window_closed') == 1

    def test_increment_drop_unknown_reason(self, caplog):
        """Test that an unknown reason is logged and still counted."""
        collector = MetricsCollector()

        with caplog.at_level("WARNING"):
            collector.increment_drop('cosmic_ray')

        assert 'cosmic_ray' in caplog.text
        assert collector.get_counter('items_dropped') == 1
        assert collector.get_drop_count('cosmic_ray') == 1

    def test_multiple_drop_reasons(self):
        collector = MetricsCollector()

        collector.increment_drop('malformed_detection', 3)
        collector.increment_drop('queue_full', 5)
        collector.increment_drop('delivery_abandoned', 2)

        snapshot = collector.snapshot()
        assert snapshot.drop_reasons['malformed_detection'] == 3
        assert snapshot.drop_reasons['queue_full'] == 5
        assert snapshot.total_dropped() == 10


class TestHistograms:
    """Tests for histogram recording."""

    def test_empty_histogram(self):
        assert MetricsCollector().get_histogram_stats('delivery_latency_ms') is None

    def test_histogram_stats(self):
        collector = MetricsCollector()
        for value in range(1, 101):
            collector.record_histogram('delivery_latency_ms', float(value))

        stats = collector.get_histogram_stats('delivery_latency_ms')
        assert stats['count'] == 100
        assert stats['min'] == 1.0
        assert stats['max'] == 100.0
        assert stats['mean'] == 50.5
        assert stats['p95'] == 96.0

    def test_single_sample(self):
        collector = MetricsCollector()
        collector.record_histogram('rssi_dbm', -60.0)

        stats = collector.get_histogram_stats('rssi_dbm')
        assert stats['p95'] == -60.0
        assert stats['p99'] == -60.0

    def test_histogram_keeps_most_recent(self):
        collector = MetricsCollector(histogram_size=10)
        for value in range(25):
            collector.record_histogram('queue_wait_ms', float(value))

        stats = collector.get_histogram_stats('queue_wait_ms')
        assert stats['count'] == 10
        assert stats['min'] == 15.0
        assert stats['max'] == 24.0


class TestSnapshotAndReset:
    """Tests for snapshots and reset."""

    def test_snapshot_is_copy(self):
        collector = MetricsCollector()
        collector.increment('tasks_submitted')
        snapshot = collector.snapshot()

        collector.increment('tasks_submitted')

        assert isinstance(snapshot, CounterSnapshot)
        assert snapshot.counters['tasks_submitted'] == 1

    def test_drop_rate(self):
        collector = MetricsCollector()
        collector.increment_drop('window_closed', 5)
        snapshot = collector.snapshot()

        assert snapshot.drop_rate(100) == 5.0
        assert snapshot.drop_rate(0) == 0.0

    def test_reset(self):
        collector = MetricsCollector()
        collector.increment('detections_in', 10)
        collector.increment_drop('queue_full')
        collector.record_histogram('rssi_dbm', -70.0)

        collector.reset()

        assert collector.get_counter('detections_in') == 0
        assert collector.get_drop_count('queue_full') == 0
        assert collector.get_histogram_stats('rssi_dbm') is None

    def test_collectors_independent(self):
        first = MetricsCollector()
        second = MetricsCollector()
        first.increment('detections_in')
        assert second.get_counter('detections_in') == 0

    def test_uptime(self):
        assert MetricsCollector().get_uptime() >= 0.0


class TestThreadSafety:
    """Tests for concurrent updates."""

    def test_concurrent_increments(self):
        collector = MetricsCollector()

        def worker():
            for _ in range(1000):
                collector.increment('detections_in')
                collector.increment_drop('window_closed')

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert collector.get_counter('detections_in') == 8000
        assert collector.get_drop_count('window_closed') == 8000


class TestSummary:
    """Tests for print_summary()."""

    def test_print_summary(self, capsys):
        collector = MetricsCollector()
        collector.increment('deliveries_succeeded', 3)
        collector.increment_drop('delivery_abandoned')
        collector.record_histogram('delivery_latency_ms', 12.5)

        collector.print_summary()

        out = capsys.readouterr().out
        assert "METRICS SUMMARY" in out
        assert "deliveries_succeeded" in out
        assert "delivery_abandoned" in out
        assert "delivery_latency_ms" in out
