"""
Delivery Task representation.

Wraps one Observation with the retry bookkeeping the Telemetry Uplink
needs. Owned exclusively by the uplink delivery thread.

Lifecycle:
    PENDING -> IN_FLIGHT -> DELIVERED
                         -> PENDING (retry, after backoff)
                         -> ABANDONED
    PENDING -> ABANDONED (dropped or unfinished at shutdown)
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from .observation import Observation


class DeliveryState(IntEnum):
    """Delivery state of a task."""

    PENDING = 0
    IN_FLIGHT = 1
    DELIVERED = 2
    ABANDONED = 3


@dataclass
class DeliveryTask:
    """
    One Observation awaiting delivery.

    Attributes:
        observation: Observation to deliver
        created_at: Submission time (seconds, uplink monotonic clock)
        attempt: Number of delivery attempts started so far
        next_eligible_at: Earliest time of the next attempt (backoff deadline)
        state: Current delivery state
        last_error: Reason of the most recent failure
        last_backoff_s: Most recent backoff delay (keeps backoff monotonic)
        task_id: Task number assigned by the owning uplink
    """

    observation: Observation
    created_at: float = 0.0
    attempt: int = 0
    next_eligible_at: float = 0.0
    state: DeliveryState = DeliveryState.PENDING
    last_error: Optional[str] = None
    last_backoff_s: float = 0.0
    task_id: int = 0

    @property
    def device_id(self) -> str:
        return self.observation.device_id

    @property
    def is_terminal(self) -> bool:
        return self.state in (DeliveryState.DELIVERED, DeliveryState.ABANDONED)

    def is_eligible(self, now: float) -> bool:
        return self.state == DeliveryState.PENDING and now >= self.next_eligible_at

    def mark_in_flight(self):
        """Start a delivery attempt."""
        if self.state != DeliveryState.PENDING:
            raise RuntimeError(f"Task {self.task_id} cannot start from {self.state.name}")
        self.state = DeliveryState.IN_FLIGHT
        self.attempt += 1

    def mark_delivered(self):
        if self.state != DeliveryState.IN_FLIGHT:
            raise RuntimeError(f"Task {self.task_id} cannot be delivered from {self.state.name}")
        self.state = DeliveryState.DELIVERED
        self.last_error = None

    def schedule_retry(self, now: float, backoff_s: float, reason: str):
        """Return a failed task to PENDING until now + backoff_s."""
        if self.state != DeliveryState.IN_FLIGHT:
            raise RuntimeError(f"Task {self.task_id} cannot retry from {self.state.name}")
        self.state = DeliveryState.PENDING
        self.last_error = reason
        self.last_backoff_s = backoff_s
        self.next_eligible_at = now + backoff_s

    def mark_abandoned(self, reason: str):
        if self.is_terminal:
            raise RuntimeError(f"Task {self.task_id} already {self.state.name}")
        self.state = DeliveryState.ABANDONED
        self.last_error = reason

    def describe(self) -> str:
        return (
            f"task {self.task_id} ({self.observation.anchor_name}, "
            f"t={self.observation.timestamp_ms}, attempts={self.attempt})"
        )
