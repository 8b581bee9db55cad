"""Postcode Finder utility modules."""

from .resilience import (
    CircuitBreaker,
    CircuitState,
    CircuitOpenError,
    sanitize_address_input,
)

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "CircuitOpenError",
    "sanitize_address_input",
]
