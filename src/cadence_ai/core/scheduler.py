"""Scheduler abstraction: the only source of unsolicited work in the core.

Debounce timers, the cache sweep and the admission-queue drain all go
through ``Scheduler.after`` so tests can drive them with a virtual clock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol, runtime_checkable

log = logging.getLogger(__name__)


@runtime_checkable
class TimerHandle(Protocol):
    """Handle returned by ``Scheduler.after``."""

    def cancel(self) -> None:
        """Prevent the callback from running. Idempotent."""
        ...


@runtime_checkable
class Scheduler(Protocol):
    """Clock plus one-shot timers."""

    def now(self) -> float:
        """Monotonic time in seconds."""
        ...

    def wall_clock(self) -> datetime:
        """Timezone-aware UTC wall-clock time, used for calendar rollovers."""
        ...

    def after(self, delay: float, fn: Callable[[], None]) -> TimerHandle:
        """Run ``fn`` once after ``delay`` seconds."""
        ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio loop (``loop.call_later``)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def now(self) -> float:
        return time.monotonic()

    def wall_clock(self) -> datetime:
        return datetime.now(timezone.utc)

    def after(self, delay: float, fn: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), _guarded(fn))


def _guarded(fn: Callable[[], None]) -> Callable[[], None]:
    def _run() -> None:
        try:
            fn()
        except Exception:
            log.exception("Scheduled callback %r failed", fn)

    return _run
