"""
Scan Window representation.

One bounded slice of the scan duty cycle. Created when a window opens and
retired (Idle) when its duration budget elapses or scanning is stopped.
"""

from dataclasses import dataclass
from enum import IntEnum


class WindowState(IntEnum):
    """Scan window state."""

    IDLE = 0
    ACTIVE = 1


@dataclass
class ScanWindow:
    """
    Scan window bookkeeping.

    Attributes:
        sequence: Window number within the session (1, 2, ...)
        opened_at: Open time (seconds, controller monotonic clock)
        duration_budget: Window length (seconds)
        state: ACTIVE while open, IDLE once closed
        closed_at: Close time, set when the window closes
    """

    sequence: int
    opened_at: float
    duration_budget: float
    state: WindowState = WindowState.ACTIVE
    closed_at: float = None

    @property
    def deadline(self) -> float:
        """Time at which the duration budget elapses."""
        return self.opened_at + self.duration_budget

    @property
    def is_active(self) -> bool:
        return self.state == WindowState.ACTIVE

    def is_expired(self, now: float) -> bool:
        return now >= self.deadline

    def close(self, now: float):
        """Retire the window. Closing twice keeps the first close time."""
        if self.state == WindowState.IDLE:
            return
        self.state = WindowState.IDLE
        self.closed_at = now
