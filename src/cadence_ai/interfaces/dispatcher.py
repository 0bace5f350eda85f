"""Abstract completion dispatcher (the remote model client)."""

from __future__ import annotations

from abc import ABC, abstractmethod

from cadence_ai.models import CodeContext, CompletionItem


class IDispatcher(ABC):
    @abstractmethod
    async def send(self, context: CodeContext) -> list[CompletionItem]:
        """Send one completion request to the model service.

        Implementations raise the ``APIError`` kinds from
        ``cadence_ai.exceptions``; anything else is classified with
        ``parse_error_response`` by the caller.
        """
