"""Circuit breaker: stops calling a failing service for a cooldown period."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from cadence_ai.core.events import CircuitStateChangeEvent, EventRegistry
from cadence_ai.core.scheduler import AsyncioScheduler, Scheduler
from cadence_ai.exceptions import CircuitOpenError, OperationCancelledError

log = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, calls are rejected
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass(frozen=True)
class CircuitStats:
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_time: Optional[float]
    next_attempt_time: Optional[float]
    last_transition_time: float


def _count_all(error: BaseException) -> bool:
    return True


class CircuitBreaker:
    """Wraps async calls in the CLOSED -> OPEN -> HALF_OPEN state machine.

    CLOSED counts consecutive failures and opens at ``failure_threshold``.
    OPEN rejects with ``CircuitOpenError`` until ``reset_timeout_seconds``
    has passed, then lets the next call through as HALF_OPEN.  HALF_OPEN
    closes after ``success_threshold`` successes and re-opens on any failure.

    ``is_failure`` decides which exceptions count; the rest propagate without
    touching the counters.  Cancellation never counts either way.
    """

    def __init__(
        self,
        name: str = "default",
        *,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        reset_timeout_seconds: float = 60.0,
        scheduler: Optional[Scheduler] = None,
        events: Optional[EventRegistry] = None,
        is_failure: Callable[[BaseException], bool] = _count_all,
    ) -> None:
        self.name = name
        self._failure_threshold = failure_threshold
        self._success_threshold = success_threshold
        self._reset_timeout = reset_timeout_seconds
        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._events = events or EventRegistry()
        self._is_failure = is_failure

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[float] = None
        self._next_attempt_time: Optional[float] = None
        self._last_transition_time = self._scheduler.now()
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def events(self) -> EventRegistry:
        return self._events

    def get_state(self) -> CircuitState:
        return self._state

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run *operation* under the breaker.

        Raises:
            CircuitOpenError: The breaker is OPEN and the reset timeout has
                not elapsed; *operation* is not invoked.
        """
        self._before_call()
        try:
            result = await operation()
        except (asyncio.CancelledError, OperationCancelledError):
            raise
        except Exception as exc:
            if self._is_failure(exc):
                self._on_failure()
            raise
        self._on_success()
        return result

    def trip(self) -> None:
        """Force OPEN."""
        with self._lock:
            event = self._transition(CircuitState.OPEN)
        self._emit(event)

    def reset(self) -> None:
        """Manually reset the circuit breaker to CLOSED."""
        with self._lock:
            event = self._transition(CircuitState.CLOSED)
        self._emit(event)

    def stats(self) -> CircuitStats:
        with self._lock:
            return CircuitStats(
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                last_failure_time=self._last_failure_time,
                next_attempt_time=self._next_attempt_time,
                last_transition_time=self._last_transition_time,
            )

    # ── Outcome accounting ──────────────────────────────────────────

    def _before_call(self) -> None:
        event = None
        with self._lock:
            if self._state == CircuitState.OPEN:
                now = self._scheduler.now()
                next_attempt = self._next_attempt_time or now
                if now < next_attempt:
                    raise CircuitOpenError(
                        f"Circuit breaker {self.name!r} OPEN. "
                        f"Retry after {next_attempt - now:.1f}s.",
                        breaker=self.name,
                        retry_after=next_attempt - now,
                    )
                event = self._transition(CircuitState.HALF_OPEN)
        self._emit(event)

    def _on_success(self) -> None:
        event = None
        with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self._success_threshold:
                    event = self._transition(CircuitState.CLOSED)
        self._emit(event)

    def _on_failure(self) -> None:
        event = None
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._scheduler.now()
            if self._state == CircuitState.HALF_OPEN:
                event = self._transition(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self._failure_threshold
            ):
                event = self._transition(CircuitState.OPEN)
        self._emit(event)

    def _transition(self, new_state: CircuitState) -> Optional[CircuitStateChangeEvent]:
        """Apply a transition; caller holds the lock and emits the result."""
        previous = self._state
        failures = self._failure_count
        self._state = new_state
        self._last_transition_time = self._scheduler.now()

        if new_state == CircuitState.OPEN:
            self._next_attempt_time = self._last_transition_time + self._reset_timeout
            log.warning(
                "Circuit breaker %s → OPEN after %d failures", self.name, failures
            )
        elif new_state == CircuitState.HALF_OPEN:
            log.info("Circuit breaker %s → HALF_OPEN (reset timeout elapsed)", self.name)
        else:
            self._next_attempt_time = None
            log.info("Circuit breaker %s → CLOSED", self.name)
        self._failure_count = 0
        self._success_count = 0

        if previous == new_state:
            return None
        return CircuitStateChangeEvent(
            breaker=self.name,
            previous=previous.value,
            current=new_state.value,
            failure_count=failures,
        )

    def _emit(self, event: Optional[CircuitStateChangeEvent]) -> None:
        if event is not None:
            self._events.emit(event)
