"""
Protocol Module: Observation model and delivery bookkeeping.

- AnchorInfo / AnchorRegistry: fixed beacons of a deployment
- Observation: one RSSI sample, the unit of telemetry
- ScanWindow: one bounded scan slice of the duty cycle
- DeliveryTask: one Observation plus retry bookkeeping
- StatusEvent: human-readable status line for display/logging
"""

from .observation import (
    AnchorInfo,
    AnchorRegistry,
    Observation,
    RssiConfidence,
    create_anchor_registry,
    RSSI_MIN_DBM,
    RSSI_MAX_DBM,
)
from .scan_window import (
    ScanWindow,
    WindowState,
)
from .delivery_task import (
    DeliveryTask,
    DeliveryState,
)
from .status_event import (
    StatusEvent,
    StatusKind,
)

__all__ = [
    'AnchorInfo',
    'AnchorRegistry',
    'Observation',
    'RssiConfidence',
    'create_anchor_registry',
    'RSSI_MIN_DBM',
    'RSSI_MAX_DBM',
    'ScanWindow',
    'WindowState',
    'DeliveryTask',
    'DeliveryState',
    'StatusEvent',
    'StatusKind',
]
