"""Cooperative cancellation tokens threaded through every async boundary."""

from __future__ import annotations

import logging
from typing import Callable

from cadence_ai.exceptions import OperationCancelledError

log = logging.getLogger(__name__)


class CancellationToken:
    """One-shot cancellation flag with callbacks.

    The editor cancels a token when the user keeps typing or moves the
    cursor.  Callbacks run synchronously inside ``cancel()``; a callback
    registered after cancellation runs immediately.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []
        self._unlinks: list[Callable[[], None]] = []

    @classmethod
    def linked(cls, *parents: CancellationToken) -> CancellationToken:
        """A child token cancelled whenever any parent is cancelled.

        Call ``detach()`` on the child once it is finished so long-lived
        parents do not accumulate its callback.
        """
        child = cls()
        child._unlinks = [parent.add_callback(child.cancel) for parent in parents]
        return child

    def detach(self) -> None:
        """Stop following the parents this token was linked to."""
        unlinks, self._unlinks = self._unlinks, []
        for unlink in unlinks:
            unlink()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def callback_count(self) -> int:
        return len(self._callbacks)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                log.exception("Cancellation callback failed")

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""
        if self._cancelled:
            callback()
            return _noop
        self._callbacks.append(callback)

        def _remove() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return _remove

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelledError("Operation cancelled")


def _noop() -> None:
    return None
