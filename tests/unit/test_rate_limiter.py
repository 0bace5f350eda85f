"""Tests for tier quotas, priority admission, usage events and the wait queue."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from cadence_ai.core.config import AppSettings, RateLimitConfig
from cadence_ai.core.events import (
    DailyResetEvent,
    EventRegistry,
    MonthlyResetEvent,
    RateLimitExceededEvent,
    SubscriptionUpdatedEvent,
    UsageWarningEvent,
)
from cadence_ai.exceptions import QueueClosedError, QueueTimeoutError, RateLimitError, RateLimitInfo
from cadence_ai.ratelimit import (
    RateLimiter,
    RateLimitHeaders,
    RateLimits,
    RatePeriod,
    RequestPriority,
    SubscriptionTier,
    WindowLimit,
    create_rate_limiter,
)
from tests.fakes.fake_scheduler import VirtualScheduler, advance, settle


def _collect(events: EventRegistry, event_type: type) -> list:
    seen: list = []
    events.add_callback(event_type, seen.append)
    return seen


def _custom(scheduler: VirtualScheduler, events: EventRegistry, limits: RateLimits, **kwargs: object) -> RateLimiter:
    return RateLimiter(
        SubscriptionTier.FREE,
        tier_limits={SubscriptionTier.FREE: limits, SubscriptionTier.PRO: RateLimits()},
        scheduler=scheduler,
        events=events,
        **kwargs,
    )


async def _op(result: str = "done") -> str:
    return result


class TestAdmission:
    def test_free_tier_minute_ceiling(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        limiter = RateLimiter(scheduler=scheduler, events=events)
        assert all(limiter.try_admit() for _ in range(10))
        assert not limiter.try_admit()

        scheduler.advance(60)
        assert limiter.try_admit()

    def test_low_priority_denied_at_ninety_percent(
        self, scheduler: VirtualScheduler, events: EventRegistry
    ) -> None:
        limiter = RateLimiter(scheduler=scheduler, events=events)
        for _ in range(9):
            assert limiter.try_admit()
        assert not limiter.try_admit(priority=RequestPriority.LOW)
        assert limiter.try_admit(priority=RequestPriority.NORMAL)

    def test_low_priority_allowed_below_threshold(
        self, scheduler: VirtualScheduler, events: EventRegistry
    ) -> None:
        limiter = RateLimiter(scheduler=scheduler, events=events)
        for _ in range(8):
            limiter.try_admit()
        assert limiter.try_admit(priority=RequestPriority.LOW)

    def test_only_critical_past_ceiling(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        limiter = RateLimiter(scheduler=scheduler, events=events)
        for _ in range(10):
            limiter.try_admit()
        assert not limiter.try_admit(priority=RequestPriority.HIGH)
        assert limiter.try_admit(priority=RequestPriority.CRITICAL)
        assert limiter.usage_snapshot().for_period(RatePeriod.MINUTE).requests == 11

    def test_token_ceiling(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        limiter = RateLimiter(scheduler=scheduler, events=events)
        assert limiter.try_admit(estimated_cost=9_000)
        assert not limiter.try_admit(estimated_cost=2_000)
        assert limiter.try_admit(estimated_cost=1_000)

    def test_denied_request_not_recorded(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        limiter = RateLimiter(scheduler=scheduler, events=events)
        for _ in range(10):
            limiter.try_admit()
        limiter.try_admit()
        assert limiter.usage_snapshot().for_period(RatePeriod.HOUR).requests == 10


class TestUsageEvents:
    def test_one_warning_per_crossing(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        warnings = _collect(events, UsageWarningEvent)
        limiter = _custom(scheduler, events, RateLimits(day=WindowLimit(requests=20)))

        for _ in range(17):
            assert limiter.try_admit()

        assert len(warnings) == 1
        assert warnings[0].period == "day"
        assert warnings[0].threshold == 0.8
        assert warnings[0].percentage_used == pytest.approx(80.0)
        assert limiter.usage_snapshot().for_period(RatePeriod.DAY).percentage_used == pytest.approx(85.0)

    def test_each_band_fires_once(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        warnings = _collect(events, UsageWarningEvent)
        limiter = _custom(scheduler, events, RateLimits(minute=WindowLimit(requests=10)))
        for _ in range(10):
            limiter.try_admit()
        assert [w.threshold for w in warnings] == [0.8, 0.9, 1.0]

    def test_warning_rearms_after_drop(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        warnings = _collect(events, UsageWarningEvent)
        limiter = _custom(scheduler, events, RateLimits(minute=WindowLimit(requests=10)))
        for _ in range(8):
            limiter.try_admit()
        scheduler.advance(60)
        for _ in range(8):
            limiter.try_admit()
        assert [w.threshold for w in warnings] == [0.8, 0.8]

    def test_exceeded_event_once_per_crossing(
        self, scheduler: VirtualScheduler, events: EventRegistry
    ) -> None:
        exceeded = _collect(events, RateLimitExceededEvent)
        limiter = RateLimiter(scheduler=scheduler, events=events)
        for _ in range(10):
            limiter.try_admit()
        limiter.try_admit()
        limiter.try_admit()
        assert len(exceeded) == 1
        assert exceeded[0].source == "local"
        assert exceeded[0].period == "minute"
        assert exceeded[0].limit == 10

        scheduler.advance(60)
        for _ in range(10):
            limiter.try_admit()
        limiter.try_admit()
        assert len(exceeded) == 2

    def test_server_headers(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        exceeded = _collect(events, RateLimitExceededEvent)
        limiter = RateLimiter(scheduler=scheduler, events=events)
        limiter.update_from_headers(RateLimitHeaders(limit=50, remaining=3, reset=0))
        assert exceeded == []
        limiter.update_from_headers(RateLimitHeaders(limit=50, remaining=0, reset=1700000000, retry_after=30))
        assert len(exceeded) == 1
        assert exceeded[0].source == "server"
        assert exceeded[0].retry_after == 30

    def test_server_rate_limit_error(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        exceeded = _collect(events, RateLimitExceededEvent)
        limiter = RateLimiter(scheduler=scheduler, events=events)
        limiter.record_server_limit(
            RateLimitError("429", retry_after=12, limit_info=RateLimitInfo(limit=50, remaining=0, reset=99))
        )
        assert exceeded[0].limit == 50
        assert exceeded[0].retry_after == 12


class TestCalendarResets:
    def test_daily_reset(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        resets = _collect(events, DailyResetEvent)
        limiter = RateLimiter(scheduler=scheduler, events=events)
        limiter.try_admit(estimated_cost=500)

        scheduler.advance(12 * 3600)  # 2026-03-11 00:00 UTC
        snapshot = limiter.usage_snapshot()

        assert resets == [DailyResetEvent(day=date(2026, 3, 11))]
        assert snapshot.for_period(RatePeriod.DAY).tokens == 0
        assert snapshot.for_period(RatePeriod.MONTH).tokens == 500

    def test_monthly_reset(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        resets = _collect(events, MonthlyResetEvent)
        limiter = RateLimiter(scheduler=scheduler, events=events)
        limiter.try_admit(estimated_cost=500)

        scheduler.advance(22 * 86_400)  # 2026-04-01 12:00 UTC
        limiter.try_admit()

        assert resets == [MonthlyResetEvent(month="2026-04")]
        assert limiter.usage_snapshot().for_period(RatePeriod.MONTH).tokens == 0


class TestSubscriptionTier:
    def test_tier_change_replaces_ceilings(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        updates = _collect(events, SubscriptionUpdatedEvent)
        limiter = RateLimiter(scheduler=scheduler, events=events)
        for _ in range(10):
            limiter.try_admit()
        assert not limiter.try_admit()

        limiter.update_subscription_tier(SubscriptionTier.PRO)

        assert limiter.tier == SubscriptionTier.PRO
        assert limiter.limits.minute.requests == 50
        assert limiter.try_admit()
        assert updates == [SubscriptionUpdatedEvent(previous="free", current="pro")]

    def test_same_tier_is_a_no_op(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        updates = _collect(events, SubscriptionUpdatedEvent)
        limiter = RateLimiter(SubscriptionTier.PRO, scheduler=scheduler, events=events)
        limiter.update_subscription_tier(SubscriptionTier.PRO)
        assert updates == []
        assert limiter.tier == SubscriptionTier.PRO

    def test_snapshot(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        limiter = RateLimiter(SubscriptionTier.PRO, scheduler=scheduler, events=events)
        for _ in range(5):
            limiter.try_admit(estimated_cost=100)
        snapshot = limiter.usage_snapshot()
        minute = snapshot.for_period(RatePeriod.MINUTE)
        assert snapshot.tier == SubscriptionTier.PRO
        assert minute.requests == 5
        assert minute.request_limit == 50
        assert minute.percentage_used == pytest.approx(10.0)
        assert snapshot.queue_length == 0


class TestWaitQueue:
    async def test_runs_immediately_with_capacity(
        self, scheduler: VirtualScheduler, events: EventRegistry
    ) -> None:
        limiter = RateLimiter(scheduler=scheduler, events=events)
        assert await limiter.enqueue(_op) == "done"
        assert limiter.queue_length == 0

    async def test_waits_for_window_rollover(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        limiter = RateLimiter(scheduler=scheduler, events=events)
        for _ in range(10):
            limiter.try_admit()

        task = asyncio.create_task(limiter.enqueue(_op))
        await settle()
        assert not task.done()
        assert limiter.queue_length == 1

        await advance(scheduler, 59)
        assert not task.done()
        await advance(scheduler, 1)
        assert await task == "done"

    async def test_priority_order(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        limiter = _custom(scheduler, events, RateLimits(minute=WindowLimit(requests=1)))
        limiter.try_admit()
        ran: list[str] = []

        async def record(name: str) -> str:
            ran.append(name)
            return name

        low = asyncio.create_task(limiter.enqueue(lambda: record("low"), RequestPriority.LOW))
        high = asyncio.create_task(limiter.enqueue(lambda: record("high"), RequestPriority.HIGH))
        await settle()

        await advance(scheduler, 60)
        assert ran == ["high"]
        await advance(scheduler, 60)
        assert ran == ["high", "low"]
        assert await high == "high"
        assert await low == "low"

    async def test_tier_change_drains(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        limiter = RateLimiter(scheduler=scheduler, events=events)
        for _ in range(10):
            limiter.try_admit()
        task = asyncio.create_task(limiter.enqueue(_op))
        await settle()

        limiter.update_subscription_tier(SubscriptionTier.PRO)
        await settle()
        assert await task == "done"

    async def test_queue_timeout(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        limiter = _custom(
            scheduler, events, RateLimits(minute=WindowLimit(requests=1)), queue_timeout_seconds=30
        )
        limiter.try_admit()
        task = asyncio.create_task(limiter.enqueue(_op))
        await advance(scheduler, 30)
        with pytest.raises(QueueTimeoutError):
            await task
        assert limiter.queue_length == 0

    async def test_clear_queue(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        limiter = RateLimiter(scheduler=scheduler, events=events)
        for _ in range(10):
            limiter.try_admit()
        task = asyncio.create_task(limiter.enqueue(_op))
        await settle()
        assert limiter.clear_queue() == 1
        with pytest.raises(QueueClosedError):
            await task

    async def test_dispose(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        limiter = RateLimiter(scheduler=scheduler, events=events)
        for _ in range(10):
            limiter.try_admit()
        task = asyncio.create_task(limiter.enqueue(_op))
        await settle()
        limiter.dispose()
        with pytest.raises(QueueClosedError):
            await task
        with pytest.raises(QueueClosedError):
            await limiter.enqueue(_op)
        assert scheduler.pending_timers == 0

    async def test_cancelled_waiter_dropped(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        limiter = RateLimiter(scheduler=scheduler, events=events)
        for _ in range(10):
            limiter.try_admit()
        ran: list[str] = []

        async def record() -> None:
            ran.append("ran")

        task = asyncio.create_task(limiter.enqueue(record))
        await settle()
        task.cancel()
        await settle()

        assert limiter.queue_length == 0
        await advance(scheduler, 60)
        assert ran == []
        assert limiter.usage_snapshot().for_period(RatePeriod.MINUTE).requests == 0

    async def test_cancelled_after_admission_releases_quota(
        self, scheduler: VirtualScheduler, events: EventRegistry
    ) -> None:
        limiter = _custom(scheduler, events, RateLimits(minute=WindowLimit(requests=1)))
        limiter.try_admit()
        ran: list[str] = []

        async def record(name: str) -> str:
            ran.append(name)
            return name

        first = asyncio.create_task(limiter.enqueue(lambda: record("first")))
        second = asyncio.create_task(limiter.enqueue(lambda: record("second")))
        await settle()

        # Admit the head, then cancel it before its task resumes.
        scheduler.advance(60)
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        await settle()

        assert await second == "second"
        assert ran == ["second"]
        assert limiter.usage_snapshot().for_period(RatePeriod.MINUTE).requests == 1

    async def test_operation_error_propagates(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        limiter = RateLimiter(scheduler=scheduler, events=events)

        async def boom() -> None:
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await limiter.enqueue(boom)


class TestCreateRateLimiter:
    def test_from_settings(self, scheduler: VirtualScheduler, events: EventRegistry) -> None:
        settings = AppSettings(rate_limit=RateLimitConfig(tier="max"))
        limiter = create_rate_limiter(settings, scheduler, events)
        assert limiter.tier == SubscriptionTier.MAX
        assert limiter.events is events

    def test_defaults(self, scheduler: VirtualScheduler) -> None:
        assert create_rate_limiter(scheduler=scheduler).tier == SubscriptionTier.FREE
