"""
Retry backoff policy.

Exponential backoff with multiplicative jitter. The delay for a task never
decreases from one failed attempt to the next.
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np


@dataclass
class BackoffPolicy:
    """
    Exponential backoff with jitter.

    delay(n) = min(max_delay_s, base_delay_s * multiplier**(n-1) * (1 + U(0, jitter_ratio)))
    and never less than the previous delay of the same task.

    Attributes:
        base_delay_s: Delay after the first failure
        multiplier: Growth factor per failure
        max_delay_s: Upper bound on any delay
        jitter_ratio: Maximum relative jitter added to each delay
        seed: Random seed (None = nondeterministic)
    """

    base_delay_s: float = 0.5
    multiplier: float = 2.0
    max_delay_s: float = 30.0
    jitter_ratio: float = 0.2
    seed: Optional[int] = None
    _rng: np.random.Generator = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.base_delay_s < 0:
            raise ValueError(f"base_delay_s cannot be negative: {self.base_delay_s}")
        if self.multiplier < 1.0:
            raise ValueError(f"multiplier must be >= 1: {self.multiplier}")
        if self.max_delay_s < self.base_delay_s:
            raise ValueError("max_delay_s must be >= base_delay_s")
        if not 0.0 <= self.jitter_ratio <= 1.0:
            raise ValueError(f"jitter_ratio must be in [0, 1]: {self.jitter_ratio}")
        self._rng = np.random.default_rng(self.seed)

    def next_delay(self, failures: int, previous_delay_s: float = 0.0) -> float:
        """
        Delay before the next attempt.

        Args:
            failures: Number of failed attempts so far (>= 1)
            previous_delay_s: Delay used after the previous failure

        Returns:
            Delay in seconds
        """
        failures = max(failures, 1)
        # Clamp the exponent so huge attempt counts cannot overflow
        exponent = min(failures - 1, 64)
        delay = self.base_delay_s * (self.multiplier ** exponent)
        if self.jitter_ratio > 0:
            delay *= 1.0 + float(self._rng.uniform(0.0, self.jitter_ratio))
        delay = min(delay, self.max_delay_s)
        return max(delay, previous_delay_s)
