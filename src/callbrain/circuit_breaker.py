"""Circuit breaker for the classifier call.

closed -> open after `failure_threshold` consecutive failures. Once the
cooldown has elapsed a single half-open trial call is let through; its outcome
either closes the breaker or re-opens it for another cooldown.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    failure_threshold: int = 3
    cooldown_seconds: float = 30.0
    label: str = "classifier"
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    _consecutive_failures: int = field(default=0, init=False, repr=False)
    _opened_at: Optional[float] = field(default=None, init=False, repr=False)
    _trial_in_flight: bool = field(default=False, init=False, repr=False)

    @property
    def state(self) -> str:
        if self._opened_at is None:
            return CLOSED
        if self.clock() - self._opened_at >= self.cooldown_seconds:
            return HALF_OPEN
        return OPEN

    def should_try(self) -> bool:
        state = self.state
        if state == CLOSED:
            return True
        if state == HALF_OPEN and not self._trial_in_flight:
            self._trial_in_flight = True
            logger.info("Circuit breaker for %s half-open, sending trial call", self.label)
            return True
        return False

    def record_success(self) -> None:
        if self._opened_at is not None:
            logger.info("Circuit breaker for %s closed", self.label)
        self._consecutive_failures = 0
        self._opened_at = None
        self._trial_in_flight = False

    def abandon_trial(self) -> None:
        """Release a trial call that ended without an outcome (e.g. the call hung up)."""
        if self._trial_in_flight:
            self._trial_in_flight = False
            logger.info("Circuit breaker trial call for %s abandoned", self.label)

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._trial_in_flight:
            # Failed trial call: restart the cooldown
            self._trial_in_flight = False
            self._opened_at = self.clock()
            logger.warning("Circuit breaker trial call failed for %s, re-opening", self.label)
            return
        if self._consecutive_failures >= self.failure_threshold and self._opened_at is None:
            self._opened_at = self.clock()
            logger.warning(
                "Circuit breaker OPENED for %s after %d consecutive failures, skipping for %.0fs",
                self.label,
                self._consecutive_failures,
                self.cooldown_seconds,
            )
