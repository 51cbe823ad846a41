from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class CircuitBreaker:
    """Stop calling Bedrock for `reset_after` seconds after `threshold` consecutive failures.

    After the cool-down one trial call is let through (half-open); its outcome
    closes or re-opens the breaker.
    """

    threshold: int = 5
    reset_after: float = 30.0
    clock: Callable[[], float] = time.monotonic
    failures: int = 0
    opened_at: float | None = field(default=None)

    def allow(self) -> bool:
        if self.opened_at is None:
            return True
        return (self.clock() - self.opened_at) >= self.reset_after

    def record_success(self) -> None:
        self.failures = 0
        self.opened_at = None

    def record_failure(self) -> None:
        self.failures += 1
        if self.failures >= self.threshold:
            self.opened_at = self.clock()

    @property
    def is_open(self) -> bool:
        return not self.allow()
