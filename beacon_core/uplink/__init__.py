"""
Uplink Module: Reliable delivery of observations to the remote collector.

Key classes:
- TelemetryUplink: queue + background delivery thread with retry/backoff
- Transport: collector exchange (HttpTransport, InMemoryTransport)
- BackoffPolicy: exponential backoff with jitter
"""

from .backoff import BackoffPolicy
from .transport import (
    Transport,
    DeliveryResult,
    HttpTransport,
    InMemoryTransport,
)
from .telemetry_uplink import (
    TelemetryUplink,
    UplinkConfig,
    TaskOutcome,
)

__all__ = [
    'BackoffPolicy',
    'Transport',
    'DeliveryResult',
    'HttpTransport',
    'InMemoryTransport',
    'TelemetryUplink',
    'UplinkConfig',
    'TaskOutcome',
]
