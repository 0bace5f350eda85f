"""Multi-window rate limiter with priority-based admission control.

Request count and token cost are tracked in minute / hour / day / month
windows against the ceilings of the current subscription tier.  Priority
moves the admission threshold, never the ceiling:

==================  ====================================
utilization         admitted priorities
==================  ====================================
< 90 %              all (a usage warning fires at 80 %)
90 % - 100 %        NORMAL, HIGH, CRITICAL
>= 100 %            CRITICAL only
==================  ====================================

A request that would push any window past its ceiling counts as >= 100 %.
Denied operations can wait in a priority queue that drains as windows roll
over.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from datetime import date
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from cadence_ai.core.events import (
    DailyResetEvent,
    EventRegistry,
    MonthlyResetEvent,
    RateLimitExceededEvent,
    SubscriptionUpdatedEvent,
    UsageWarningEvent,
)
from cadence_ai.core.scheduler import AsyncioScheduler, Scheduler, TimerHandle
from cadence_ai.exceptions import QueueClosedError, QueueTimeoutError, RateLimitError
from cadence_ai.ratelimit.models import (
    TIER_LIMITS,
    PeriodUsage,
    RateLimitHeaders,
    RateLimits,
    RatePeriod,
    RequestPriority,
    SubscriptionTier,
    UsageSnapshot,
)
from cadence_ai.ratelimit.queue import AdmissionQueue, QueueEntry
from cadence_ai.ratelimit.windows import RateWindow, UsageSample

log = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
    """Sliding-window quota tracking plus a priority wait queue.

    All window and queue state is guarded by one ``threading.Lock``; events
    are emitted after the lock is released.
    """

    def __init__(
        self,
        tier: SubscriptionTier = SubscriptionTier.FREE,
        *,
        tier_limits: Optional[Mapping[SubscriptionTier, RateLimits]] = None,
        warning_threshold: float = 0.8,
        low_priority_threshold: float = 0.9,
        queue_timeout_seconds: float = 300.0,
        queue_poll_interval_seconds: float = 10.0,
        scheduler: Optional[Scheduler] = None,
        events: Optional[EventRegistry] = None,
    ) -> None:
        self._tier_limits = dict(tier_limits or TIER_LIMITS)
        self._tier = SubscriptionTier(tier)
        self._limits = self._tier_limits[self._tier]
        self._warning_threshold = warning_threshold
        self._low_priority_threshold = low_priority_threshold
        self._bands = sorted({warning_threshold, low_priority_threshold, 1.0})
        self._queue_timeout = queue_timeout_seconds
        self._poll_interval = queue_poll_interval_seconds
        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._events = events or EventRegistry()

        self._windows = {period: RateWindow(period) for period in RatePeriod}
        self._warned_band = {period: 0.0 for period in RatePeriod}
        self._exceeded_notified = False

        wall = self._scheduler.wall_clock()
        self._current_day: date = wall.date()
        self._current_month = wall.strftime("%Y-%m")

        self._queue = AdmissionQueue()
        self._seq = itertools.count()
        self._drain_handle: Optional[TimerHandle] = None
        self._disposed = False
        self._lock = threading.Lock()

    @property
    def tier(self) -> SubscriptionTier:
        return self._tier

    @property
    def limits(self) -> RateLimits:
        return self._limits

    @property
    def events(self) -> EventRegistry:
        return self._events

    @property
    def queue_length(self) -> int:
        with self._lock:
            return len(self._queue)

    # ── Admission ───────────────────────────────────────────────────

    def try_admit(
        self,
        estimated_cost: int = 0,
        priority: RequestPriority = RequestPriority.NORMAL,
    ) -> bool:
        """Admit and record one request of *estimated_cost* tokens, or deny."""
        priority = RequestPriority(priority)
        with self._lock:
            events = self._refresh()
            sample, admit_events = self._admit_locked(estimated_cost, priority)
            admitted = sample is not None
            events.extend(admit_events)
        self._emit_all(events)
        if not admitted:
            log.warning(
                "Rate limit would be exceeded (priority=%s, cost=%d)", priority.name, estimated_cost
            )
        return admitted

    async def enqueue(
        self,
        operation: Callable[[], Awaitable[T]],
        priority: RequestPriority = RequestPriority.NORMAL,
        estimated_cost: int = 0,
    ) -> T:
        """Wait for admission in the priority queue, then run *operation*.

        Raises:
            QueueTimeoutError: Not admitted within ``queue_timeout_seconds``.
            QueueClosedError: The queue was cleared or the limiter disposed.
        """
        if self._disposed:
            raise QueueClosedError("Rate limiter disposed")

        loop = asyncio.get_running_loop()
        now = self._scheduler.now()
        entry = QueueEntry(
            priority=RequestPriority(priority),
            seq=next(self._seq),
            enqueued_at=now,
            expires_at=now + self._queue_timeout,
            estimated_cost=estimated_cost,
            operation=operation,
            future=loop.create_future(),
        )
        entry.expiry_handle = self._scheduler.after(self._queue_timeout, lambda: self._expire(entry))
        entry.future.add_done_callback(lambda _: self._cancel_expiry(entry))

        with self._lock:
            self._queue.push(entry)
            depth = len(self._queue)
        log.info("Queued request (priority=%s, depth=%d)", entry.priority.name, depth)

        self._drain()
        try:
            await entry.future
        except asyncio.CancelledError:
            future = entry.future
            # Admitted, but cancelled before resuming.
            if future.done() and not future.cancelled() and future.exception() is None:
                self._release(entry)
            raise
        return await operation()

    def usage_snapshot(self) -> UsageSnapshot:
        with self._lock:
            events = self._refresh()
            periods = [
                PeriodUsage(
                    period=period,
                    requests=window.requests,
                    tokens=window.tokens,
                    request_limit=self._limits.for_period(period).requests,
                    token_limit=self._limits.for_period(period).tokens,
                    percentage_used=window.utilization(self._limits.for_period(period)) * 100,
                )
                for period, window in self._windows.items()
            ]
            snapshot = UsageSnapshot(tier=self._tier, periods=periods, queue_length=len(self._queue))
        self._emit_all(events)
        return snapshot

    # ── Tier / server feedback ──────────────────────────────────────

    def update_subscription_tier(self, tier: SubscriptionTier) -> None:
        """Replace every ceiling at once with those of *tier*."""
        tier = SubscriptionTier(tier)
        with self._lock:
            previous = self._tier
            if previous == tier:
                return
            self._tier = tier
            self._limits = self._tier_limits[tier]
        log.info("Updated subscription tier %s -> %s", previous.value, tier.value)
        self._events.emit(SubscriptionUpdatedEvent(previous=previous.value, current=tier.value))
        self._drain()

    def update_from_headers(self, headers: RateLimitHeaders) -> None:
        if headers.remaining == 0 and headers.retry_after:
            self._events.emit(
                RateLimitExceededEvent(
                    source="server",
                    limit=headers.limit,
                    remaining=headers.remaining,
                    reset=headers.reset,
                    retry_after=headers.retry_after,
                )
            )

    def record_server_limit(self, error: RateLimitError) -> None:
        """Surface a 429 from the service as a ``RateLimitExceededEvent``."""
        info = error.limit_info
        self._events.emit(
            RateLimitExceededEvent(
                source="server",
                limit=info.limit if info else None,
                remaining=info.remaining if info else None,
                reset=info.reset if info else None,
                retry_after=error.retry_after,
            )
        )

    # ── Lifecycle ───────────────────────────────────────────────────

    def clear_queue(self) -> int:
        """Fail every queued operation with ``QueueClosedError``."""
        with self._lock:
            entries = self._queue.drain()
        for entry in entries:
            if not entry.done:
                entry.future.set_exception(QueueClosedError("Queue cleared"))
        return len(entries)

    def dispose(self) -> None:
        self._disposed = True
        if self._drain_handle is not None:
            self._drain_handle.cancel()
            self._drain_handle = None
        cleared = self.clear_queue()
        if cleared:
            log.info("Rate limiter disposed, rejected %d queued requests", cleared)

    # ── Internals ───────────────────────────────────────────────────

    def _refresh(self) -> list[Any]:
        """Purge stale samples and handle calendar rollovers. Lock held."""
        events: list[Any] = []
        now = self._scheduler.now()
        for window in self._windows.values():
            window.purge(now)

        wall = self._scheduler.wall_clock()
        today = wall.date()
        month = wall.strftime("%Y-%m")
        if today != self._current_day:
            self._windows[RatePeriod.DAY].reset()
            self._current_day = today
            events.append(DailyResetEvent(day=today))
            log.info("Daily usage reset (%s)", today.isoformat())
        if month != self._current_month:
            self._windows[RatePeriod.MONTH].reset()
            self._current_month = month
            events.append(MonthlyResetEvent(month=month))
            log.info("Monthly usage reset (%s)", month)

        for period, window in self._windows.items():
            band = self._band(window.utilization(self._limits.for_period(period)))
            if band < self._warned_band[period]:
                self._warned_band[period] = band
        return events

    def _admit_locked(
        self, cost: int, priority: RequestPriority
    ) -> tuple[Optional[UsageSample], list[Any]]:
        """Decide admission and record the usage; returns the recorded sample."""
        events: list[Any] = []
        utilization = 0.0
        exceeded: Optional[RatePeriod] = None
        for period, window in self._windows.items():
            limit = self._limits.for_period(period)
            utilization = max(utilization, window.utilization(limit))
            if exceeded is None and window.would_exceed(limit, 1, cost):
                exceeded = period

        if exceeded is not None or utilization >= 1.0:
            admitted = priority == RequestPriority.CRITICAL
            if not admitted and exceeded is not None and not self._exceeded_notified:
                self._exceeded_notified = True
                limit = self._limits.for_period(exceeded)
                window = self._windows[exceeded]
                events.append(
                    RateLimitExceededEvent(
                        source="local",
                        period=exceeded.value,
                        limit=limit.requests,
                        remaining=max(0, (limit.requests or 0) - window.requests),
                    )
                )
        elif utilization >= self._low_priority_threshold:
            admitted = priority > RequestPriority.LOW
        else:
            admitted = True

        if exceeded is None:
            self._exceeded_notified = False
        sample = None
        if admitted:
            sample = self._record(cost)
            events.extend(self._usage_warnings())
        return sample, events

    def _record(self, cost: int) -> UsageSample:
        sample = UsageSample(timestamp=self._scheduler.now(), requests=1, tokens=cost)
        for window in self._windows.values():
            window.record(sample)
        return sample

    def _usage_warnings(self) -> list[UsageWarningEvent]:
        """One event per upward band crossing per window."""
        events = []
        for period, window in self._windows.items():
            utilization = window.utilization(self._limits.for_period(period))
            band = self._band(utilization)
            if band > self._warned_band[period]:
                self._warned_band[period] = band
                events.append(
                    UsageWarningEvent(
                        period=period.value,
                        threshold=band,
                        percentage_used=utilization * 100,
                        requests=window.requests,
                        tokens=window.tokens,
                    )
                )
                log.warning(
                    "Used %.0f%% of %s limit", utilization * 100, period.value
                )
        return events

    def _band(self, utilization: float) -> float:
        band = 0.0
        for threshold in self._bands:
            if utilization >= threshold:
                band = threshold
        return band

    def _drain(self) -> None:
        """Admit queued operations in priority order while capacity allows."""
        admitted: list[QueueEntry] = []
        events: list[Any] = []
        with self._lock:
            events.extend(self._refresh())
            while True:
                head = self._queue.peek()
                if head is None:
                    break
                sample, admit_events = self._admit_locked(head.estimated_cost, head.priority)
                events.extend(admit_events)
                if sample is None:
                    break
                entry = self._queue.pop()
                entry.reservation = sample
                admitted.append(entry)
        self._emit_all(events)
        for entry in admitted:
            if not entry.done:
                entry.future.set_result(None)
        self._arm_drain()

    def _release(self, entry: QueueEntry) -> None:
        sample, entry.reservation = entry.reservation, None
        if sample is None:
            return
        with self._lock:
            for window in self._windows.values():
                window.release(sample)
        log.debug("Released reserved quota of cancelled request (priority=%s)", entry.priority.name)
        self._drain()

    def _arm_drain(self) -> None:
        if self._drain_handle is not None:
            self._drain_handle.cancel()
            self._drain_handle = None
        with self._lock:
            if self._disposed or not len(self._queue):
                return
            now = self._scheduler.now()
            expiries = [e for e in (w.next_expiry() for w in self._windows.values()) if e is not None]
        delay = self._poll_interval
        if expiries:
            delay = min(delay, max(0.0, min(expiries) - now))
        self._drain_handle = self._scheduler.after(delay, self._on_drain_timer)

    def _on_drain_timer(self) -> None:
        self._drain_handle = None
        self._drain()

    def _expire(self, entry: QueueEntry) -> None:
        if entry.done:
            return
        waited = self._scheduler.now() - entry.enqueued_at
        entry.future.set_exception(
            QueueTimeoutError(f"Request timed out in admission queue after {waited:.0f}s")
        )
        log.warning("Queued request expired after %.0fs (priority=%s)", waited, entry.priority.name)

    @staticmethod
    def _cancel_expiry(entry: QueueEntry) -> None:
        if entry.expiry_handle is not None:
            entry.expiry_handle.cancel()

    def _emit_all(self, events: list[Any]) -> None:
        for event in events:
            self._events.emit(event)
