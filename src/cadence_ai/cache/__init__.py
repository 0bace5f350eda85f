"""Completion result caching: factory + in-memory implementation."""

from __future__ import annotations

import functools
from typing import TYPE_CHECKING, Optional

from cadence_ai.cache.fingerprint import compute_fingerprint
from cadence_ai.cache.memory import CompletionCache
from cadence_ai.cache.models import CacheEntry, CacheMetrics

if TYPE_CHECKING:
    from cadence_ai.core.config import CacheConfig
    from cadence_ai.core.scheduler import Scheduler

__all__ = [
    "CacheEntry",
    "CacheMetrics",
    "CompletionCache",
    "compute_fingerprint",
    "create_completion_cache",
]


def create_completion_cache(
    settings: object | None = None,
    scheduler: Optional[Scheduler] = None,
) -> CompletionCache:
    """Create a completion cache from settings.

    Args:
        settings: An ``AppSettings`` or ``CacheConfig`` instance.
            If None, returns a cache with defaults.
        scheduler: Clock and timer source for TTL and the periodic sweep.
    """
    config: CacheConfig | None = None

    if settings is not None:
        config = getattr(settings, "cache", None)
        if config is None and hasattr(settings, "max_entries"):
            config = settings  # type: ignore[assignment]

    if config is None:
        return CompletionCache(scheduler=scheduler)

    return CompletionCache(
        max_entries=config.max_entries,
        ttl_seconds=config.ttl_seconds,
        max_memory_bytes=config.max_memory_bytes,
        sweep_interval_seconds=config.sweep_interval_seconds,
        scheduler=scheduler,
        fingerprint_fn=functools.partial(
            compute_fingerprint,
            prefix_chars=config.fingerprint_prefix_chars,
            import_count=config.fingerprint_import_count,
        ),
    )
