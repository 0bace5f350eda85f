"""Subscription tiers, request priorities and usage snapshots."""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Optional

from pydantic import BaseModel, Field


class SubscriptionTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    MAX = "max"


class RequestPriority(IntEnum):
    LOW = 0
    NORMAL = 1
    HIGH = 2
    CRITICAL = 3


class RatePeriod(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    MONTH = "month"

    @property
    def seconds(self) -> float:
        return _PERIOD_SECONDS[self]


_PERIOD_SECONDS: dict[RatePeriod, float] = {
    RatePeriod.MINUTE: 60.0,
    RatePeriod.HOUR: 3600.0,
    RatePeriod.DAY: 86_400.0,
    RatePeriod.MONTH: 30 * 86_400.0,
}


class WindowLimit(BaseModel):
    """Ceilings for one period. ``None`` means unbounded."""

    requests: Optional[int] = Field(default=None, ge=0)
    tokens: Optional[int] = Field(default=None, ge=0)


class RateLimits(BaseModel):
    """Per-period ceilings for a subscription tier."""

    minute: WindowLimit = Field(default_factory=WindowLimit)
    hour: WindowLimit = Field(default_factory=WindowLimit)
    day: WindowLimit = Field(default_factory=WindowLimit)
    month: WindowLimit = Field(default_factory=WindowLimit)

    def for_period(self, period: RatePeriod) -> WindowLimit:
        return getattr(self, period.value)


TIER_LIMITS: dict[SubscriptionTier, RateLimits] = {
    SubscriptionTier.FREE: RateLimits(
        minute=WindowLimit(requests=10),
        hour=WindowLimit(requests=100),
        day=WindowLimit(requests=500, tokens=10_000),
        month=WindowLimit(tokens=100_000),
    ),
    SubscriptionTier.PRO: RateLimits(
        minute=WindowLimit(requests=50),
        hour=WindowLimit(requests=1_000),
        day=WindowLimit(requests=5_000, tokens=100_000),
        month=WindowLimit(tokens=2_000_000),
    ),
    SubscriptionTier.MAX: RateLimits(
        minute=WindowLimit(requests=100),
        hour=WindowLimit(requests=2_000),
        day=WindowLimit(requests=10_000, tokens=1_000_000),
        month=WindowLimit(tokens=20_000_000),
    ),
}


class PeriodUsage(BaseModel):
    """Consumption in one window against its ceilings."""

    period: RatePeriod
    requests: int
    tokens: int
    request_limit: Optional[int] = None
    token_limit: Optional[int] = None
    percentage_used: float = 0.0


class UsageSnapshot(BaseModel):
    tier: SubscriptionTier
    periods: list[PeriodUsage]
    queue_length: int = 0

    def for_period(self, period: RatePeriod) -> PeriodUsage:
        for usage in self.periods:
            if usage.period == period:
                return usage
        raise KeyError(period)


class RateLimitHeaders(BaseModel):
    """Server-reported limit state (``x-ratelimit-*`` / ``retry-after``)."""

    limit: int = 0
    remaining: int = 0
    reset: int = 0
    retry_after: Optional[float] = None
