"""In-memory completion cache with TTL, LRU and memory-pressure eviction."""

from __future__ import annotations

import itertools
import logging
import threading
from collections import OrderedDict
from typing import Callable, Optional

from cadence_ai.cache.fingerprint import compute_fingerprint
from cadence_ai.cache.models import CacheEntry, CacheMetrics
from cadence_ai.core.scheduler import AsyncioScheduler, Scheduler, TimerHandle
from cadence_ai.models import CodeContext, CompletionItem

log = logging.getLogger(__name__)


class CompletionCache:
    """Fingerprint-keyed store of prior completion results.

    Two eviction policies run independently on write:

    - count bound: evict the least recently *accessed* entry;
    - memory bound: evict the oldest *created* entry, whatever its recency.

    Expired entries are dropped lazily on ``get`` and by a periodic sweep
    scheduled through the injected ``Scheduler``.  Thread-safe via
    ``threading.Lock``; no method suspends.
    """

    def __init__(
        self,
        *,
        max_entries: int = 100,
        ttl_seconds: float = 300.0,
        max_memory_bytes: int = 50 * 1024 * 1024,
        sweep_interval_seconds: float = 60.0,
        scheduler: Optional[Scheduler] = None,
        fingerprint_fn: Callable[[CodeContext], str] = compute_fingerprint,
    ) -> None:
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._max_memory = max_memory_bytes
        self._sweep_interval = sweep_interval_seconds
        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._fingerprint = fingerprint_fn

        # Order tracks recency of access: first item is least recently used.
        self._store: OrderedDict[str, CacheEntry] = OrderedDict()
        self._memory = 0
        self._seq = itertools.count()
        self._lock = threading.Lock()
        self._sweep_handle: Optional[TimerHandle] = None
        self._closed = False

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def fingerprint(self, context: CodeContext) -> str:
        return self._fingerprint(context)

    def get(self, context: CodeContext) -> Optional[list[CompletionItem]]:
        """Return cached completions, or None on miss or TTL expiry."""
        key = self._fingerprint(context)
        now = self._scheduler.now()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(now, self._ttl):
                self._remove(key)
                self._misses += 1
                log.debug("Cache entry %s expired", key)
                return None
            entry.access_count += 1
            entry.last_accessed = now
            self._store.move_to_end(key)
            self._hits += 1
        log.debug("Cache hit for %s", key)
        return entry.completions

    def set(self, context: CodeContext, completions: list[CompletionItem]) -> None:
        """Store completions for the context's fingerprint, evicting under pressure."""
        key = self._fingerprint(context)
        now = self._scheduler.now()
        with self._lock:
            if key in self._store:
                self._remove(key)
            elif len(self._store) >= self._max_entries:
                self._evict_lru()

            while self._store and self._memory >= self._max_memory:
                self._evict_oldest()

            entry = CacheEntry(
                fingerprint=key,
                completions=list(completions),
                created_at=now,
                last_accessed=now,
                seq=next(self._seq),
            )
            self._store[key] = entry
            self._memory += entry.estimated_size()
        log.debug("Cached %d completions for %s", len(completions), key)
        self._ensure_sweep()

    def invalidate(self, pattern: Optional[str] = None) -> int:
        """Remove entries whose fingerprint contains *pattern*; all if None."""
        if not pattern:
            return self.clear()
        with self._lock:
            keys = [k for k in self._store if pattern in k]
            for key in keys:
                self._remove(key)
            self._evictions += len(keys)
        log.info("Invalidated %d cache entries matching %r", len(keys), pattern)
        return len(keys)

    def clear(self) -> int:
        with self._lock:
            size = len(self._store)
            self._store.clear()
            self._memory = 0
            self._evictions += size
        log.info("Cache cleared (%d entries)", size)
        return size

    def sweep(self) -> int:
        """Drop every TTL-expired entry regardless of memory pressure."""
        now = self._scheduler.now()
        with self._lock:
            expired = [k for k, e in self._store.items() if e.is_expired(now, self._ttl)]
            for key in expired:
                self._remove(key)
            self._evictions += len(expired)
        if expired:
            log.info("Swept %d expired cache entries", len(expired))
        return len(expired)

    def estimated_memory_usage(self) -> int:
        with self._lock:
            return self._memory

    def metrics(self) -> CacheMetrics:
        with self._lock:
            return CacheMetrics(
                size=len(self._store),
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                estimated_memory_bytes=self._memory,
            )

    def reset_metrics(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def close(self) -> None:
        """Stop the periodic sweep. Entries stay readable."""
        self._closed = True
        if self._sweep_handle is not None:
            self._sweep_handle.cancel()
            self._sweep_handle = None

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._store

    # ── Internals (caller holds the lock) ───────────────────────────

    def _remove(self, key: str) -> None:
        entry = self._store.pop(key)
        self._memory -= entry.estimated_size()

    def _evict_lru(self) -> None:
        key = next(iter(self._store))
        self._remove(key)
        self._evictions += 1
        log.debug("Evicted LRU entry %s", key)

    def _evict_oldest(self) -> None:
        key = min(self._store.values(), key=lambda e: (e.created_at, e.seq)).fingerprint
        self._remove(key)
        self._evictions += 1
        log.debug("Evicted oldest entry %s (memory pressure)", key)

    # ── Periodic sweep ──────────────────────────────────────────────

    def _ensure_sweep(self) -> None:
        if self._closed or self._sweep_handle is not None:
            return
        self._sweep_handle = self._scheduler.after(self._sweep_interval, self._on_sweep_timer)

    def _on_sweep_timer(self) -> None:
        self._sweep_handle = None
        self.sweep()
        if self._store:
            self._ensure_sweep()
