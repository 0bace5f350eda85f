"""Nested pydantic-settings configuration for the request core.

Each component group reads its own ``CADENCE_<GROUP>_*`` env vars::

    export CADENCE_RATE_LIMIT_TIER=pro
    export CADENCE_DEBOUNCE_MAX_DELAY_MS=400
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class CacheConfig(BaseSettings):
    """Completion cache configuration.

    Env vars use ``CADENCE_CACHE_`` prefix.
    """

    model_config = {"env_prefix": "CADENCE_CACHE_"}

    enabled: bool = True
    max_entries: int = Field(default=100, ge=1)
    ttl_seconds: float = Field(default=300.0, gt=0.0)
    max_memory_bytes: int = Field(default=50 * 1024 * 1024, ge=1)
    sweep_interval_seconds: float = Field(default=60.0, gt=0.0)
    fingerprint_prefix_chars: int = Field(default=100, ge=0)
    fingerprint_import_count: int = Field(default=5, ge=0)


class DebounceConfig(BaseSettings):
    """Adaptive debounce configuration.

    Env vars use ``CADENCE_DEBOUNCE_`` prefix.
    """

    model_config = {"env_prefix": "CADENCE_DEBOUNCE_"}

    min_delay_ms: float = Field(default=100.0, ge=0.0)
    max_delay_ms: float = Field(default=300.0, ge=0.0)
    fast_typing_rate: float = 5.0
    medium_typing_rate: float = 2.0
    immediate_triggers: list[str] = Field(default_factory=lambda: [".", "->", "::", "(", "[", "{"])


class RateLimitConfig(BaseSettings):
    """Admission control configuration.

    Env vars use ``CADENCE_RATE_LIMIT_`` prefix.
    """

    model_config = {"env_prefix": "CADENCE_RATE_LIMIT_"}

    tier: Literal["free", "pro", "max"] = "free"
    warning_threshold: float = Field(default=0.8, gt=0.0, le=1.0)
    low_priority_threshold: float = Field(default=0.9, gt=0.0, le=1.0)
    queue_timeout_seconds: float = Field(default=300.0, gt=0.0)
    queue_poll_interval_seconds: float = Field(default=10.0, gt=0.0)


class CircuitBreakerConfig(BaseSettings):
    """Circuit breaker configuration.

    Env vars use ``CADENCE_CIRCUIT_BREAKER_`` prefix.
    """

    model_config = {"env_prefix": "CADENCE_CIRCUIT_BREAKER_"}

    name: str = "completion-service"
    failure_threshold: int = Field(default=5, ge=1)
    success_threshold: int = Field(default=2, ge=1)
    reset_timeout_seconds: float = Field(default=60.0, ge=0.0)


class TokenBudgetConfig(BaseSettings):
    """Token budget / truncation configuration.

    Env vars use ``CADENCE_TOKEN_BUDGET_`` prefix.
    """

    model_config = {"env_prefix": "CADENCE_TOKEN_BUDGET_"}

    model: str = "claude-3-sonnet"
    context_ratio: float = Field(default=0.8, gt=0.0, le=1.0)
    default_limit: int = Field(default=100_000, ge=1)
    model_limits: dict[str, int] = Field(default_factory=dict)
    symbol_keep_ratio: float = Field(default=0.3, ge=0.0, le=1.0)
    min_symbols: int = Field(default=10, ge=0)
    truncation_marker: str = "..."


class ObservabilityConfig(BaseSettings):
    """Logging configuration.

    Env vars use ``CADENCE_OBSERVABILITY_`` prefix.
    """

    model_config = {"env_prefix": "CADENCE_OBSERVABILITY_"}

    log_level: str = "INFO"
    json_logs: bool | None = None


class AppSettings(BaseSettings):
    """Top-level settings aggregating all sub-configs.

    Each sub-config reads its own ``CADENCE_<GROUP>_*`` env vars.
    """

    cache: CacheConfig = CacheConfig()
    debounce: DebounceConfig = DebounceConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()
    circuit_breaker: CircuitBreakerConfig = CircuitBreakerConfig()
    token_budget: TokenBudgetConfig = TokenBudgetConfig()
    observability: ObservabilityConfig = ObservabilityConfig()
