"""
Circuit Breaker - Protection de l'endpoint JSON-RPC

Pattern: CLOSED -> OPEN (après N échecs) -> HALF_OPEN (après timeout) -> CLOSED (si succès)

Le temps est lu via une horloge injectable (voir services.scheduling) pour
que les transitions soient testables sans attente réelle.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

from shared.exceptions import CircuitOpenError

log = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Lightweight circuit breaker for the RPC endpoint.

    States:
    - CLOSED: Normal operation. Tracks consecutive failures.
    - OPEN: All calls fail-fast. Transitions to HALF_OPEN after recovery_timeout.
    - HALF_OPEN: Allows ONE test call. Success -> CLOSED, Failure -> OPEN.

    Only exceptions listed in ``tracked_exceptions`` count as failures; a JSON-RPC
    error object is a healthy endpoint answering, not an outage.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        clock: Any = None,
        tracked_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    ):
        if clock is None:
            from services.scheduling import SystemClock
            clock = SystemClock()
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.tracked_exceptions = tracked_exceptions
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            elapsed = self._clock.now() - self._last_failure_time
            if elapsed >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                log.info(f"Circuit '{self.name}': OPEN -> HALF_OPEN (recovery timeout elapsed)")
        return self._state

    def is_available(self) -> bool:
        """Check if calls are allowed through this circuit."""
        state = self.state
        if state == CircuitState.OPEN:
            return False
        if state == CircuitState.HALF_OPEN and self._probe_in_flight:
            return False
        return True

    def record_success(self):
        """Record a successful call. Resets failure count."""
        prev = self._state
        self._failure_count = 0
        self._state = CircuitState.CLOSED
        self._probe_in_flight = False
        if prev == CircuitState.HALF_OPEN:
            log.info(f"Circuit '{self.name}': HALF_OPEN -> CLOSED (test call succeeded)")

    def record_failure(self):
        """Record a failed call. May trip the circuit to OPEN."""
        self._failure_count += 1
        self._last_failure_time = self._clock.now()
        self._probe_in_flight = False

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            log.warning(f"Circuit '{self.name}': HALF_OPEN -> OPEN (test call failed)")
        elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            log.warning(
                f"Circuit '{self.name}': CLOSED -> OPEN "
                f"({self._failure_count} consecutive failures, "
                f"recovery in {self.recovery_timeout}s)"
            )

    def raise_if_open(self):
        """Raise CircuitOpenError if the circuit rejects calls."""
        if not self.is_available():
            remaining = 0.0
            if self._last_failure_time is not None:
                remaining = max(
                    0.0,
                    self.recovery_timeout - (self._clock.now() - self._last_failure_time),
                )
            raise CircuitOpenError(self.name, remaining)

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` through the breaker, recording its outcome."""
        self.raise_if_open()
        if self._state == CircuitState.HALF_OPEN:
            self._probe_in_flight = True
        try:
            result = await fn()
        except self.tracked_exceptions:
            self.record_failure()
            raise
        except BaseException:
            self._probe_in_flight = False
            raise
        self.record_success()
        return result

    def get_status(self) -> Dict:
        """Get current status for monitoring/health-check endpoints."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout_s": self.recovery_timeout,
        }
