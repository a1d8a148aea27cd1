"""
Beacon Core Package.

Duty-cycled BLE anchor scanning and RSSI telemetry uplink for indoor
positioning.

Package structure:
- proto: Observation model (anchors, observations, scan windows, delivery tasks)
- scan: Scan session controller, radio scanner backends, anchor resolution
- uplink: Telemetry uplink, transports, retry backoff
- orchestration: Orchestrator and status event channel
- metrics: Diagnostics, counters, histograms
"""

__version__ = "0.1.0"

from .orchestration import Orchestrator, OrchestratorConfig

__all__ = ['Orchestrator', 'OrchestratorConfig', '__version__']
