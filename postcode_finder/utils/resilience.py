"""Resilience utilities for the geocoder path.

Provides a circuit breaker shared by all concurrent lookups and input
sanitization applied before an address is normalized.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from postcode_finder.geocoder.base import GeocoderError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, rejecting calls
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitOpenError(GeocoderError):
    """Raised when the circuit breaker rejects an upstream call."""

    def __init__(self, name: str, seconds_until_retry: float):
        super().__init__(
            "circuit_open",
            f"Circuit '{name}' is open. Retry in {seconds_until_retry:.0f}s",
        )
        self.seconds_until_retry = seconds_until_retry


@dataclass
class CircuitBreaker:
    """Circuit breaker protecting the upstream geocoder.

    Every row of every batch goes through the same breaker, so once the
    upstream is failing the remaining rows fail fast as upstream errors
    instead of each waiting out the request timeout.

    Usage:
        breaker = CircuitBreaker(name="juso", threshold=5, reset_timeout=30)

        breaker.check()
        try:
            result = await geocoder.search(query)
            breaker.record_success()
        except GeocoderError:
            breaker.record_failure()
            raise
    """
    name: str
    threshold: int = 5
    reset_timeout: int = 30  # seconds

    # Internal state
    _failures: int = field(default=0, init=False)
    _last_failure_time: float = field(default=0.0, init=False)
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _success_count_half_open: int = field(default=0, init=False)

    @property
    def state(self) -> CircuitState:
        return self._state

    def is_available(self) -> bool:
        """Check if circuit allows calls."""
        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            if time.time() - self._last_failure_time >= self.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count_half_open = 0
                logger.info(f"Circuit '{self.name}' transitioning to HALF_OPEN")
                return True
            return False

        # HALF_OPEN - allow probing calls
        return True

    def check(self) -> None:
        """Raise CircuitOpenError if the circuit rejects calls."""
        if not self.is_available():
            raise CircuitOpenError(self.name, self.seconds_until_retry())

    def seconds_until_retry(self) -> float:
        if self._state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self.reset_timeout - (time.time() - self._last_failure_time))

    def record_success(self) -> None:
        """Record a successful call."""
        if self._state == CircuitState.HALF_OPEN:
            self._success_count_half_open += 1
            # Need 2 successes to close circuit
            if self._success_count_half_open >= 2:
                self._state = CircuitState.CLOSED
                self._failures = 0
                logger.info(f"Circuit '{self.name}' CLOSED after recovery")
        elif self._failures > 0:
            self._failures = 0

    def record_failure(self) -> None:
        """Record a failed call."""
        self._failures += 1
        self._last_failure_time = time.time()

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(f"Circuit '{self.name}' back to OPEN after failed recovery")
        elif self._state == CircuitState.CLOSED and self._failures >= self.threshold:
            self._state = CircuitState.OPEN
            logger.warning(f"Circuit '{self.name}' OPENED after {self._failures} failures")

    def get_state(self) -> dict[str, Any]:
        """Get circuit state for monitoring."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failures": self._failures,
            "threshold": self.threshold,
            "seconds_until_retry": round(self.seconds_until_retry(), 1),
        }

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_time = 0.0
        logger.info(f"Circuit '{self.name}' manually reset")


# ============================================================================
# Input Sanitization
# ============================================================================

def sanitize_address_input(
    address: str,
    max_length: int = 500,
    strip_control_chars: bool = True,
) -> str:
    """Sanitize address input before processing.

    Args:
        address: Raw address input
        max_length: Maximum allowed length
        strip_control_chars: Remove control characters

    Returns:
        Sanitized address string
    """
    if not address:
        return ""

    result = address[:max_length]

    if strip_control_chars:
        result = "".join(
            char for char in result
            if char.isprintable() or char.isspace()
        )

    # Normalize whitespace
    result = " ".join(result.split())

    return result.strip()
