# titlequote/adapters/circuit_breaker.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class CircuitBreaker:
    """
    Consecutive-failure breaker.

    Opens after `fail_threshold` failures in a row and stays open for
    `reset_s` seconds; after that one call is let through (half-open) and its
    outcome decides whether the breaker closes or re-opens.
    """

    fail_threshold: int = 5
    reset_s: float = 60.0
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    fails: int = 0
    opened_at: float | None = None

    def is_open(self) -> bool:
        if self.opened_at is None:
            return False
        return (self.clock() - self.opened_at) < float(self.reset_s)

    def on_success(self) -> None:
        self.fails = 0
        self.opened_at = None

    def on_failure(self) -> None:
        self.fails += 1
        if self.fails >= int(self.fail_threshold):
            self.opened_at = self.clock()

    @property
    def state(self) -> str:
        if self.opened_at is None:
            return "closed"
        return "open" if self.is_open() else "half_open"
