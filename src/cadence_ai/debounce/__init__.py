"""Typing-aware debouncing of completion requests."""

from __future__ import annotations

from cadence_ai.debounce.coordinator import (
    DEFAULT_IMMEDIATE_TRIGGERS,
    DebouncedRequestCoordinator,
    DebounceMetrics,
    PendingOperation,
)

__all__ = [
    "DEFAULT_IMMEDIATE_TRIGGERS",
    "DebounceMetrics",
    "DebouncedRequestCoordinator",
    "PendingOperation",
]
