"""Shared fixtures for cadence-ai tests."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from cadence_ai.core.events import EventRegistry
from cadence_ai.models import CodeContext, Position
from tests.fakes.fake_dispatcher import FakeDispatcher
from tests.fakes.fake_scheduler import VirtualScheduler


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


@pytest.fixture
def events() -> EventRegistry:
    return EventRegistry()


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def make_context() -> Callable[..., CodeContext]:
    """Factory for a Python context with the cursor at the end of ``current_line``."""

    def _make(
        current_line: str = "    result = compute",
        *,
        prefix: str = "import os\n\ndef main():\n",
        **overrides: Any,
    ) -> CodeContext:
        fields: dict[str, Any] = {
            "language": "python",
            "prefix": prefix + current_line,
            "suffix": "\n    return result\n",
            "current_line": current_line,
            "cursor": Position(line=3, character=len(current_line)),
            "imports": ["os"],
        }
        fields.update(overrides)
        return CodeContext(**fields)

    return _make
