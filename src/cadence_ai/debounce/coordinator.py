"""Adaptive debouncing and single-flight dispatch of completion requests."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

from cadence_ai.cache.fingerprint import compute_fingerprint
from cadence_ai.core.cancellation import CancellationToken
from cadence_ai.core.scheduler import AsyncioScheduler, Scheduler, TimerHandle
from cadence_ai.exceptions import OperationCancelledError
from cadence_ai.models import CodeContext, CompletionItem

log = logging.getLogger(__name__)

DEFAULT_IMMEDIATE_TRIGGERS = (".", "->", "::", "(", "[", "{")

FetchFn = Callable[..., Awaitable[list[CompletionItem]]]


@dataclass
class PendingOperation:
    """An in-flight dispatch for one fingerprint."""

    fingerprint: str
    token: CancellationToken
    task: asyncio.Task
    started_at: float


@dataclass(frozen=True)
class DebounceMetrics:
    pending: int
    typing_rate: float
    last_delay_ms: float
    dispatched: int
    superseded: int
    cancelled: int


class DebouncedRequestCoordinator:
    """Delays requests while the user types and keeps one dispatch per fingerprint.

    ``fetch(context, token, **kwargs)`` performs the actual work once a
    request survives its debounce window.  A newer request with the same
    fingerprint cancels the older dispatch; a newer request of any kind
    replaces the armed timer.  Requests that lose either race resolve to
    ``[]``.
    """

    def __init__(
        self,
        fetch: FetchFn,
        *,
        scheduler: Optional[Scheduler] = None,
        min_delay_ms: float = 100.0,
        max_delay_ms: float = 300.0,
        fast_typing_rate: float = 5.0,
        medium_typing_rate: float = 2.0,
        immediate_triggers: Sequence[str] = DEFAULT_IMMEDIATE_TRIGGERS,
        fingerprint_fn: Callable[[CodeContext], str] = compute_fingerprint,
    ) -> None:
        self._fetch = fetch
        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._min_delay = min_delay_ms / 1000.0
        self._max_delay = max_delay_ms / 1000.0
        self._fast_rate = fast_typing_rate
        self._medium_rate = medium_typing_rate
        self._triggers = tuple(immediate_triggers)
        self._fingerprint_fn = fingerprint_fn

        self._pending: dict[str, PendingOperation] = {}
        self._timer: Optional[TimerHandle] = None
        self._armed: Optional[asyncio.Future] = None
        self._last_call: Optional[float] = None
        self._typing_rate = 0.0
        self._last_delay = 0.0
        self._dispatched = 0
        self._superseded = 0
        self._cancelled = 0
        self._disposed = False
        self._lock = threading.Lock()

    async def request_completions(
        self,
        context: CodeContext,
        cancellation: Optional[CancellationToken] = None,
        **fetch_kwargs: Any,
    ) -> list[CompletionItem]:
        """Debounce, then dispatch *context* unless superseded or cancelled."""
        caller = cancellation or CancellationToken()
        if self._disposed or caller.is_cancelled:
            return []

        fingerprint = self._fingerprint_fn(context)
        self._cancel_pending(fingerprint)
        delay = self._next_delay()
        self._supersede_armed()

        token = CancellationToken.linked(caller)
        try:
            if self.should_trigger_immediately(context):
                log.debug("Immediate trigger for %s", fingerprint)
                return await self._dispatch(context, fingerprint, token, fetch_kwargs)

            gate: asyncio.Future = asyncio.get_running_loop().create_future()
            with self._lock:
                self._armed = gate
                self._timer = self._scheduler.after(delay, lambda: self._fire(gate))
            unregister = token.add_callback(lambda: self._close_gate(gate))
            try:
                go = await gate
            except asyncio.CancelledError:
                self._close_gate(gate)
                raise
            finally:
                unregister()

            if not go or token.is_cancelled:
                return []
            return await self._dispatch(context, fingerprint, token, fetch_kwargs)
        finally:
            token.detach()

    def should_trigger_immediately(self, context: CodeContext) -> bool:
        before = context.text_before_cursor
        return any(before.endswith(trigger) for trigger in self._triggers)

    def metrics(self) -> DebounceMetrics:
        with self._lock:
            return DebounceMetrics(
                pending=len(self._pending),
                typing_rate=self._typing_rate,
                last_delay_ms=self._last_delay * 1000.0,
                dispatched=self._dispatched,
                superseded=self._superseded,
                cancelled=self._cancelled,
            )

    def dispose(self) -> None:
        """Disarm the timer and cancel every in-flight dispatch."""
        self._disposed = True
        self._supersede_armed()
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for op in pending:
            op.token.cancel()
        if pending:
            log.info("Debounce coordinator disposed, cancelled %d pending requests", len(pending))

    # ── Internals ───────────────────────────────────────────────────

    def _next_delay(self) -> float:
        with self._lock:
            now = self._scheduler.now()
            if self._last_call is not None:
                interval = now - self._last_call
                self._typing_rate = 1.0 / interval if interval > 0 else float("inf")
            self._last_call = now

            if self._typing_rate > self._fast_rate:
                delay = self._max_delay
            elif self._typing_rate > self._medium_rate:
                delay = (self._min_delay + self._max_delay) / 2
            else:
                delay = self._min_delay
            self._last_delay = delay
            return delay

    def _cancel_pending(self, fingerprint: str) -> None:
        with self._lock:
            op = self._pending.pop(fingerprint, None)
            if op is not None:
                self._cancelled += 1
        if op is not None:
            log.info("Cancelled pending request %s", fingerprint)
            op.token.cancel()

    def _supersede_armed(self) -> None:
        with self._lock:
            gate, self._armed = self._armed, None
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        if gate is not None and not gate.done():
            with self._lock:
                self._superseded += 1
            gate.set_result(False)

    def _fire(self, gate: asyncio.Future) -> None:
        with self._lock:
            if self._armed is gate:
                self._armed = None
                self._timer = None
        if not gate.done():
            gate.set_result(True)

    def _close_gate(self, gate: asyncio.Future) -> None:
        with self._lock:
            timer = None
            if self._armed is gate:
                timer, self._timer = self._timer, None
                self._armed = None
        if timer is not None:
            timer.cancel()
        if not gate.done():
            gate.set_result(False)

    async def _dispatch(
        self,
        context: CodeContext,
        fingerprint: str,
        token: CancellationToken,
        fetch_kwargs: dict[str, Any],
    ) -> list[CompletionItem]:
        task = asyncio.get_running_loop().create_task(self._fetch(context, token, **fetch_kwargs))
        op = PendingOperation(
            fingerprint=fingerprint,
            token=token,
            task=task,
            started_at=self._scheduler.now(),
        )
        with self._lock:
            self._pending[fingerprint] = op
            self._dispatched += 1
        remove = token.add_callback(task.cancel)
        try:
            return await task
        except (asyncio.CancelledError, OperationCancelledError):
            if token.is_cancelled:
                log.debug("Completion request %s aborted", fingerprint)
                return []
            raise
        finally:
            remove()
            with self._lock:
                if self._pending.get(fingerprint) is op:
                    del self._pending[fingerprint]
