# src/taskdeck/sync/backoff.py

from __future__ import annotations

import random
from dataclasses import dataclass, field


@dataclass(slots=True)
class BackoffPolicy:
    """
    Exponential backoff with symmetric jitter.

    delay(n) = min(cap, base * 2**(n-1)) * uniform(1 - jitter, 1 + jitter),
    clamped to [0, cap]. `attempt` is 1-based (the attempt that just failed).
    """

    base_seconds: float = 2.0
    cap_seconds: float = 300.0
    jitter: float = 0.2
    rng: random.Random = field(default_factory=random.Random)

    def raw_delay(self, attempt: int) -> float:
        n = max(1, int(attempt))
        # doubling past 2**63 changes nothing once the cap applies
        exponent = min(n - 1, 63)
        return min(self.cap_seconds, self.base_seconds * (2**exponent))

    def delay(self, attempt: int) -> float:
        raw = self.raw_delay(attempt)
        j = max(0.0, min(1.0, self.jitter))
        jittered = raw * self.rng.uniform(1.0 - j, 1.0 + j)
        return max(0.0, min(self.cap_seconds, jittered))
