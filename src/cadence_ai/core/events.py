"""Typed events and an explicit observer registry.

Components receive an ``EventRegistry`` instead of emitting on a global bus.
Subscribers register per event type, the same shape as a lifecycle hook
registry::

    events.add_callback(UsageWarningEvent, on_warning)
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Optional, TypeVar

log = logging.getLogger(__name__)

E = TypeVar("E")


@dataclass(frozen=True)
class CircuitStateChangeEvent:
    breaker: str
    previous: str
    current: str
    failure_count: int = 0


@dataclass(frozen=True)
class UsageWarningEvent:
    period: str
    threshold: float
    percentage_used: float
    requests: int
    tokens: int


@dataclass(frozen=True)
class RateLimitExceededEvent:
    source: str
    period: Optional[str] = None
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset: Optional[int] = None
    retry_after: Optional[float] = None


@dataclass(frozen=True)
class DailyResetEvent:
    day: date


@dataclass(frozen=True)
class MonthlyResetEvent:
    month: str


@dataclass(frozen=True)
class SubscriptionUpdatedEvent:
    previous: str
    current: str


class EventRegistry:
    """Per-type callback lists. Callbacks that raise are logged and skipped."""

    def __init__(self) -> None:
        self._callbacks: dict[type, list[Callable[[Any], None]]] = defaultdict(list)

    def add_callback(self, event_type: type[E], callback: Callable[[E], None]) -> Callable[[], None]:
        """Subscribe ``callback`` to ``event_type``; returns an unsubscribe function."""
        self._callbacks[event_type].append(callback)

        def _remove() -> None:
            callbacks = self._callbacks.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return _remove

    def emit(self, event: Any) -> None:
        for callback in list(self._callbacks.get(type(event), ())):
            try:
                callback(event)
            except Exception:
                log.exception("Event callback failed for %s", type(event).__name__)

    def has_callbacks(self, event_type: type) -> bool:
        return bool(self._callbacks.get(event_type))

    def clear(self) -> None:
        self._callbacks.clear()
