# relayer/utils/backoff.py

import random
from typing import Optional

from ..types import RetryConfig


class Backoff:
    """Capped exponential backoff with bounded multiplicative jitter."""

    def __init__(self, base_delay: float, max_delay: float, jitter: float = 0.0,
                 rng: Optional[random.Random] = None):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: RetryConfig, rng: Optional[random.Random] = None) -> 'Backoff':
        return cls(config.base_delay, config.max_delay, config.jitter, rng)

    def delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based)."""
        exponent = min(max(attempt, 0), 32)
        delay = min(self.max_delay, self.base_delay * (2 ** exponent))
        if self.jitter:
            delay *= 1 + self._rng.uniform(-self.jitter, self.jitter)
        return max(0.0, min(self.max_delay, delay))
