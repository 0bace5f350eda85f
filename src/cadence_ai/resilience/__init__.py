"""Failure protection for the remote completion service."""

from __future__ import annotations

from cadence_ai.resilience.circuit_breaker import CircuitBreaker, CircuitState, CircuitStats

__all__ = ["CircuitBreaker", "CircuitState", "CircuitStats"]
