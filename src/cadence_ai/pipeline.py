"""Request pipeline: the single entry point the editor calls per keystroke.

Flow::

    cache check -> truncate -> debounce -> admit (or queue)
        -> circuit breaker -> IDispatcher.send -> cache store

Every collaborator is owned by the pipeline instance and shares one
``Scheduler`` and one ``EventRegistry``; nothing is process-wide.
"""

from __future__ import annotations

import logging
from typing import Optional

from cadence_ai.budget import ContextTruncator, TokenBudget, count_context_tokens
from cadence_ai.cache import CacheMetrics, CompletionCache, create_completion_cache
from cadence_ai.core.cancellation import CancellationToken
from cadence_ai.core.config import AppSettings, DebounceConfig
from cadence_ai.core.events import EventRegistry
from cadence_ai.core.scheduler import AsyncioScheduler, Scheduler
from cadence_ai.debounce import DebouncedRequestCoordinator, DebounceMetrics
from cadence_ai.exceptions import (
    APIError,
    CadenceError,
    OperationCancelledError,
    RateLimitError,
    counts_as_breaker_failure,
    parse_error_response,
)
from cadence_ai.interfaces import IDispatcher
from cadence_ai.models import CodeContext, CompletionItem
from cadence_ai.ratelimit import (
    RateLimiter,
    RequestPriority,
    SubscriptionTier,
    UsageSnapshot,
    create_rate_limiter,
)
from cadence_ai.resilience import CircuitBreaker, CircuitState

log = logging.getLogger(__name__)


class CompletionPipeline:
    """Composes cache, truncator, debouncer, rate limiter and circuit breaker."""

    def __init__(
        self,
        dispatcher: IDispatcher,
        *,
        cache: CompletionCache,
        truncator: ContextTruncator,
        limiter: RateLimiter,
        breaker: CircuitBreaker,
        events: EventRegistry,
        scheduler: Scheduler,
        debounce: Optional[DebounceConfig] = None,
        cache_enabled: bool = True,
        model: Optional[str] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._cache = cache
        self._truncator = truncator
        self._limiter = limiter
        self._breaker = breaker
        self._events = events
        self._scheduler = scheduler
        self._cache_enabled = cache_enabled
        self._model = model
        self._disposed = False

        debounce = debounce or DebounceConfig()
        self._coordinator = DebouncedRequestCoordinator(
            self._fetch,
            scheduler=scheduler,
            min_delay_ms=debounce.min_delay_ms,
            max_delay_ms=debounce.max_delay_ms,
            fast_typing_rate=debounce.fast_typing_rate,
            medium_typing_rate=debounce.medium_typing_rate,
            immediate_triggers=debounce.immediate_triggers,
            fingerprint_fn=cache.fingerprint,
        )

    @property
    def events(self) -> EventRegistry:
        return self._events

    @property
    def cache(self) -> CompletionCache:
        return self._cache

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def request_completion(
        self,
        context: CodeContext,
        priority: RequestPriority = RequestPriority.NORMAL,
        cancellation: Optional[CancellationToken] = None,
    ) -> list[CompletionItem]:
        """Return completions for *context*.

        Cancelled and superseded requests resolve to ``[]``.  Service
        failures surface as ``APIError`` kinds, an open breaker as
        ``CircuitOpenError`` and queue failures as ``QueueTimeoutError`` /
        ``QueueClosedError``.
        """
        if self._disposed:
            raise CadenceError("Completion pipeline disposed")

        if not context.fingerprint:
            context = context.model_copy(update={"fingerprint": self._cache.fingerprint(context)})

        if self._cache_enabled:
            cached = self._cache.get(context)
            if cached is not None:
                log.info("Returning cached completions for %s", context.fingerprint)
                return cached

        trimmed = self._truncator.truncate(context, self._model)
        try:
            return await self._coordinator.request_completions(
                trimmed, cancellation, original=context, priority=priority
            )
        except OperationCancelledError:
            return []

    # ── Management surface ──────────────────────────────────────────

    def invalidate_cache(self, pattern: Optional[str] = None) -> int:
        return self._cache.invalidate(pattern)

    def clear_cache(self) -> int:
        return self._cache.clear()

    def cache_metrics(self) -> CacheMetrics:
        return self._cache.metrics()

    def debounce_metrics(self) -> DebounceMetrics:
        return self._coordinator.metrics()

    def usage(self) -> UsageSnapshot:
        return self._limiter.usage_snapshot()

    def update_subscription_tier(self, tier: SubscriptionTier) -> None:
        self._limiter.update_subscription_tier(tier)

    def circuit_state(self) -> CircuitState:
        return self._breaker.state

    def reset_circuit(self) -> None:
        self._breaker.reset()

    def token_info(self, context: CodeContext) -> str:
        return self._truncator.budget.format_token_info(context, self._model)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._coordinator.dispose()
        self._limiter.dispose()
        self._cache.close()
        log.info("Completion pipeline disposed")

    async def __aenter__(self) -> CompletionPipeline:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.dispose()

    # ── Request path ────────────────────────────────────────────────

    async def _fetch(
        self,
        context: CodeContext,
        token: CancellationToken,
        *,
        original: CodeContext,
        priority: RequestPriority,
    ) -> list[CompletionItem]:
        token.raise_if_cancelled()
        cost = count_context_tokens(context).total

        if self._limiter.try_admit(cost, priority):
            result = await self._guarded_send(context, token)
        else:
            log.info("Request %s queued for admission (priority=%s)", context.fingerprint, priority.name)
            result = await self._limiter.enqueue(
                lambda: self._guarded_send(context, token), priority, cost
            )

        if token.is_cancelled:
            return []
        if self._cache_enabled:
            self._cache.set(original, result)
        return result

    async def _guarded_send(
        self, context: CodeContext, token: CancellationToken
    ) -> list[CompletionItem]:
        token.raise_if_cancelled()
        return await self._breaker.execute(lambda: self._send(context))

    async def _send(self, context: CodeContext) -> list[CompletionItem]:
        try:
            return await self._dispatcher.send(context)
        except OperationCancelledError:
            raise
        except APIError as exc:
            self._on_api_error(exc)
            raise
        except Exception as exc:
            error = parse_error_response(exc)
            self._on_api_error(error)
            raise error from exc

    def _on_api_error(self, error: APIError) -> None:
        log.warning(
            "Completion request failed: %s [%s] (retryable=%s)",
            error.message, error.code.value, error.is_retryable,
        )
        if isinstance(error, RateLimitError):
            self._limiter.record_server_limit(error)


def create_pipeline(
    dispatcher: IDispatcher,
    settings: Optional[AppSettings] = None,
    *,
    scheduler: Optional[Scheduler] = None,
    events: Optional[EventRegistry] = None,
) -> CompletionPipeline:
    """Wire a pipeline and its owned collaborators from settings."""
    settings = settings or AppSettings()
    scheduler = scheduler or AsyncioScheduler()
    events = events or EventRegistry()

    budget_config = settings.token_budget
    budget = TokenBudget(
        budget_config.model_limits,
        default_limit=budget_config.default_limit,
        context_ratio=budget_config.context_ratio,
        default_model=budget_config.model,
    )
    truncator = ContextTruncator(
        budget,
        symbol_keep_ratio=budget_config.symbol_keep_ratio,
        min_symbols=budget_config.min_symbols,
        marker=budget_config.truncation_marker,
    )

    breaker_config = settings.circuit_breaker
    breaker = CircuitBreaker(
        breaker_config.name,
        failure_threshold=breaker_config.failure_threshold,
        success_threshold=breaker_config.success_threshold,
        reset_timeout_seconds=breaker_config.reset_timeout_seconds,
        scheduler=scheduler,
        events=events,
        is_failure=counts_as_breaker_failure,
    )

    return CompletionPipeline(
        dispatcher,
        cache=create_completion_cache(settings, scheduler),
        truncator=truncator,
        limiter=create_rate_limiter(settings, scheduler, events),
        breaker=breaker,
        events=events,
        scheduler=scheduler,
        debounce=settings.debounce,
        cache_enabled=settings.cache.enabled,
        model=budget_config.model,
    )
