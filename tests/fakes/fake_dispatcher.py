"""In-memory IDispatcher for pipeline tests."""

from __future__ import annotations

import asyncio
from typing import Optional

from cadence_ai.interfaces import IDispatcher
from cadence_ai.models import CodeContext, CompletionItem


class FakeDispatcher(IDispatcher):
    """Records every request; returns canned completions or raises queued errors.

    Set ``gate`` to an unset ``asyncio.Event`` to hold requests in flight.
    """

    def __init__(
        self,
        completions: Optional[list[CompletionItem]] = None,
        *,
        errors: Optional[list[BaseException]] = None,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.completions = completions if completions is not None else [
            CompletionItem(label="print", insert_text="print()", kind="function")
        ]
        self.errors = list(errors or [])
        self.gate = gate
        self.calls: list[CodeContext] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def send(self, context: CodeContext) -> list[CompletionItem]:
        self.calls.append(context)
        if self.gate is not None:
            await self.gate.wait()
        if self.errors:
            raise self.errors.pop(0)
        return list(self.completions)
