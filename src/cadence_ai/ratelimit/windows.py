"""Sliding consumption windows."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

from cadence_ai.ratelimit.models import RatePeriod, WindowLimit


@dataclass(frozen=True)
class UsageSample:
    timestamp: float
    requests: int
    tokens: int


@dataclass
class RateWindow:
    """Timestamped samples for one period, oldest first."""

    period: RatePeriod
    samples: deque[UsageSample] = field(default_factory=deque)
    requests: int = 0
    tokens: int = 0

    @property
    def length(self) -> float:
        return self.period.seconds

    def purge(self, now: float) -> int:
        """Drop samples older than the window length; returns how many."""
        dropped = 0
        while self.samples and now - self.samples[0].timestamp >= self.length:
            sample = self.samples.popleft()
            self.requests -= sample.requests
            self.tokens -= sample.tokens
            dropped += 1
        return dropped

    def record(self, sample: UsageSample) -> None:
        self.samples.append(sample)
        self.requests += sample.requests
        self.tokens += sample.tokens

    def release(self, sample: UsageSample) -> bool:
        """Remove a recorded *sample* that has not expired yet."""
        try:
            self.samples.remove(sample)
        except ValueError:
            return False
        self.requests -= sample.requests
        self.tokens -= sample.tokens
        return True

    def reset(self) -> None:
        self.samples.clear()
        self.requests = 0
        self.tokens = 0

    def next_expiry(self) -> float | None:
        """Monotonic time at which the oldest sample leaves the window."""
        if not self.samples:
            return None
        return self.samples[0].timestamp + self.length

    def utilization(self, limit: WindowLimit, extra_requests: int = 0, extra_tokens: int = 0) -> float:
        """Highest used/ceiling ratio across the bounded metrics."""
        ratios = [0.0]
        if limit.requests is not None:
            ratios.append(_ratio(self.requests + extra_requests, limit.requests))
        if limit.tokens is not None:
            ratios.append(_ratio(self.tokens + extra_tokens, limit.tokens))
        return max(ratios)

    def would_exceed(self, limit: WindowLimit, requests: int, tokens: int) -> bool:
        if limit.requests is not None and self.requests + requests > limit.requests:
            return True
        if limit.tokens is not None and self.tokens + tokens > limit.tokens:
            return True
        return False


def _ratio(used: int, ceiling: int) -> float:
    if ceiling <= 0:
        return float("inf") if used > 0 else 1.0
    return used / ceiling
