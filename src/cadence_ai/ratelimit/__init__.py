"""Subscription-tier quotas, priority admission and the wait queue."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from cadence_ai.ratelimit.limiter import RateLimiter
from cadence_ai.ratelimit.models import (
    TIER_LIMITS,
    PeriodUsage,
    RateLimitHeaders,
    RateLimits,
    RatePeriod,
    RequestPriority,
    SubscriptionTier,
    UsageSnapshot,
    WindowLimit,
)
from cadence_ai.ratelimit.queue import AdmissionQueue, QueueEntry
from cadence_ai.ratelimit.windows import RateWindow, UsageSample

if TYPE_CHECKING:
    from cadence_ai.core.events import EventRegistry
    from cadence_ai.core.scheduler import Scheduler

__all__ = [
    "TIER_LIMITS",
    "AdmissionQueue",
    "PeriodUsage",
    "QueueEntry",
    "RateLimitHeaders",
    "RateLimiter",
    "RateLimits",
    "RatePeriod",
    "RateWindow",
    "RequestPriority",
    "SubscriptionTier",
    "UsageSample",
    "UsageSnapshot",
    "WindowLimit",
    "create_rate_limiter",
]


def create_rate_limiter(
    settings: object | None = None,
    scheduler: Optional[Scheduler] = None,
    events: Optional[EventRegistry] = None,
) -> RateLimiter:
    """Create a rate limiter from an ``AppSettings`` or ``RateLimitConfig``."""
    config = getattr(settings, "rate_limit", None) if settings is not None else None
    if config is None and hasattr(settings, "queue_timeout_seconds"):
        config = settings

    if config is None:
        return RateLimiter(scheduler=scheduler, events=events)

    return RateLimiter(
        SubscriptionTier(config.tier),
        warning_threshold=config.warning_threshold,
        low_priority_threshold=config.low_priority_threshold,
        queue_timeout_seconds=config.queue_timeout_seconds,
        queue_poll_interval_seconds=config.queue_poll_interval_seconds,
        scheduler=scheduler,
        events=events,
    )
