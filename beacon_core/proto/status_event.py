"""
Status Event Message Schema.

Human-readable status lines emitted by the scan controller and the uplink
and fanned out by the Orchestrator to display/logging collaborators.
"""

import time
from dataclasses import dataclass, field
from enum import Enum


class StatusKind(Enum):
    """Kind of status event."""

    SCAN_STARTED = "scan_started"
    SCAN_STOPPED = "scan_stopped"
    RADIO_UNAVAILABLE = "radio_unavailable"
    DELIVERY_SUCCEEDED = "delivery_succeeded"
    DELIVERY_ABANDONED = "delivery_abandoned"
    DELIVERY_DROPPED = "delivery_dropped"
    DELIVERY_UNFINISHED = "delivery_unfinished"


# Kinds that indicate something went wrong
PROBLEM_KINDS = frozenset({
    StatusKind.RADIO_UNAVAILABLE,
    StatusKind.DELIVERY_ABANDONED,
    StatusKind.DELIVERY_DROPPED,
    StatusKind.DELIVERY_UNFINISHED,
})


@dataclass(frozen=True)
class StatusEvent:
    """
    One status line.

    Attributes:
        kind: Event kind
        message: Human-readable text
        timestamp: Wall-clock time of the event (seconds since epoch)
    """

    kind: StatusKind
    message: str
    timestamp: float = field(default_factory=time.time)

    @property
    def is_problem(self) -> bool:
        return self.kind in PROBLEM_KINDS

    def format_line(self) -> str:
        clock = time.strftime("%H:%M:%S", time.localtime(self.timestamp))
        return f"[{clock}] {self.message}"
