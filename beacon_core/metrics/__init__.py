"""
Metrics Module: Diagnostics, counters, histograms.

Every dropped detection or delivery task is counted with a reason code.
Each Orchestrator owns its own collector; nothing is shared process-wide.

Usage:
    from beacon_core.metrics import MetricsCollector

    metrics = MetricsCollector()
    metrics.increment('detections_in')
    metrics.increment_drop('window_closed')
    metrics.record_histogram('delivery_latency_ms', 12.5)
"""

from .counters import MetricsCollector, CounterSnapshot

__all__ = ['MetricsCollector', 'CounterSnapshot']
