"""Data models for the completion cache."""

from __future__ import annotations

import dataclasses

from cadence_ai.models import CompletionItem

ITEM_OVERHEAD_BYTES = 100
ENTRY_OVERHEAD_BYTES = 100


@dataclasses.dataclass
class CacheEntry:
    """Cached completions plus access bookkeeping."""

    fingerprint: str
    completions: list[CompletionItem]
    created_at: float
    last_accessed: float
    access_count: int = 0
    seq: int = 0

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        """TTL runs from write time; reads never extend it."""
        if ttl_seconds <= 0:
            return False
        return (now - self.created_at) >= ttl_seconds

    def estimated_size(self) -> int:
        """Rough byte estimate (2 bytes per char plus fixed overheads)."""
        size = ENTRY_OVERHEAD_BYTES
        for item in self.completions:
            chars = len(item.label) + len(item.detail or "") + len(item.documentation or "")
            size += chars * 2 + ITEM_OVERHEAD_BYTES
        return size


@dataclasses.dataclass(frozen=True)
class CacheMetrics:
    """Snapshot of cache effectiveness. Rates are percentages."""

    size: int
    hits: int
    misses: int
    evictions: int
    estimated_memory_bytes: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total * 100 if total else 0.0

    @property
    def miss_rate(self) -> float:
        total = self.hits + self.misses
        return self.misses / total * 100 if total else 0.0
