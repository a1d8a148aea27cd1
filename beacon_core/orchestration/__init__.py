"""
Orchestration Module: Pipeline wiring, lifecycle and status events.

Key classes:
- Orchestrator: scan controller -> telemetry uplink, start/stop
- StatusChannel: status event fan-out to display/logging subscribers
"""

from .status import StatusChannel
from .orchestrator import (
    Orchestrator,
    OrchestratorConfig,
    ShutdownReport,
    DEFAULT_DEVICE_ID,
)

__all__ = [
    'StatusChannel',
    'Orchestrator',
    'OrchestratorConfig',
    'ShutdownReport',
    'DEFAULT_DEVICE_ID',
]
