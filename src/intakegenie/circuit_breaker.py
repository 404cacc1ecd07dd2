"""Circuit breaker shared by the LLM, email and speech synthesis clients.

A provider that keeps failing is skipped for a cooldown so a live call does
not stack timeouts; after the cooldown one trial request is let through.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """closed -> open after `failure_threshold` straight failures -> half_open after `cooldown_seconds`."""

    failure_threshold: int = 3
    cooldown_seconds: float = 60.0
    label: str = "service"
    clock: object = field(default=time.monotonic, repr=False)

    _failures: int = field(default=0, init=False, repr=False)
    _opened_at: Optional[float] = field(default=None, init=False, repr=False)

    @property
    def state(self) -> str:
        if self._opened_at is None:
            return CLOSED
        if self.clock() - self._opened_at >= self.cooldown_seconds:
            return HALF_OPEN
        return OPEN

    @property
    def is_open(self) -> bool:
        return self.state == OPEN

    def should_try(self) -> bool:
        return self.state != OPEN

    def record_success(self) -> None:
        if self._opened_at is not None:
            logger.info("%s recovered, circuit closed", self.label)
        self._failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._failures += 1
        state = self.state
        if state == OPEN:
            return
        if state == HALF_OPEN or self._failures >= self.failure_threshold:
            # a failed trial restarts the cooldown
            self._opened_at = self.clock()
            logger.warning(
                "%s failed %d times in a row, circuit open for %.0fs",
                self.label, self._failures, self.cooldown_seconds,
            )
