"""
Scan Module: Duty-cycled scanning and detection-to-observation conversion.

Key classes:
- ScanSessionController: scheduler thread driving the duty cycle
- ScanSession: window state machine and detection gating
- RadioScanner: platform radio capability (BleakRadioScanner, SimulatedRadioScanner)
- resolve_anchor_name: anchor identity resolution
"""

from .radio import (
    RadioScanner,
    RawDetection,
    RadioUnavailableError,
    SimulatedRadioScanner,
)
from .anchor_resolver import (
    normalize_address,
    resolve_anchor_name,
)
from .session import ScanSession
from .controller import (
    ScanSessionController,
    ScanConfig,
    DutyCycle,
)

__all__ = [
    'RadioScanner',
    'RawDetection',
    'RadioUnavailableError',
    'SimulatedRadioScanner',
    'normalize_address',
    'resolve_anchor_name',
    'ScanSession',
    'ScanSessionController',
    'ScanConfig',
    'DutyCycle',
]
