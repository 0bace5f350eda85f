"""Priority wait queue for operations denied admission."""

from __future__ import annotations

import asyncio
import heapq
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterator, Optional

from cadence_ai.core.scheduler import TimerHandle
from cadence_ai.ratelimit.models import RequestPriority
from cadence_ai.ratelimit.windows import UsageSample


@dataclass
class QueueEntry:
    """A deferred operation waiting for admission."""

    priority: RequestPriority
    seq: int
    enqueued_at: float
    expires_at: float
    estimated_cost: int
    operation: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    expiry_handle: Optional[TimerHandle] = field(default=None, repr=False)
    reservation: Optional[UsageSample] = field(default=None, repr=False)

    @property
    def sort_key(self) -> tuple[int, int]:
        # Highest priority first, then arrival order.
        return (-int(self.priority), self.seq)

    @property
    def done(self) -> bool:
        return self.future.done()

    def __lt__(self, other: QueueEntry) -> bool:
        return self.sort_key < other.sort_key


class AdmissionQueue:
    """Heap of ``QueueEntry`` ordered by priority then arrival.

    Entries whose future is already settled (cancelled waiter, timeout) are
    dropped lazily when they reach the head.
    """

    def __init__(self) -> None:
        self._heap: list[QueueEntry] = []

    def push(self, entry: QueueEntry) -> None:
        heapq.heappush(self._heap, entry)

    def peek(self) -> Optional[QueueEntry]:
        self._prune()
        return self._heap[0] if self._heap else None

    def pop(self) -> QueueEntry:
        self._prune()
        return heapq.heappop(self._heap)

    def drain(self) -> list[QueueEntry]:
        """Remove and return every live entry in queue order."""
        entries = sorted(e for e in self._heap if not e.done)
        self._heap.clear()
        return entries

    def __len__(self) -> int:
        return sum(1 for e in self._heap if not e.done)

    def __iter__(self) -> Iterator[QueueEntry]:
        return iter(sorted(e for e in self._heap if not e.done))

    def _prune(self) -> None:
        while self._heap and self._heap[0].done:
            heapq.heappop(self._heap)
