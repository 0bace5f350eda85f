"""cadence-ai: request core for editor-embedded AI code completion.

Usage::

    from cadence_ai import create_pipeline, CodeContext, RequestPriority

    pipeline = create_pipeline(dispatcher)
    items = await pipeline.request_completion(context, RequestPriority.NORMAL)
"""

from __future__ import annotations

from cadence_ai.core.cancellation import CancellationToken
from cadence_ai.core.config import AppSettings
from cadence_ai.core.events import (
    CircuitStateChangeEvent,
    DailyResetEvent,
    EventRegistry,
    MonthlyResetEvent,
    RateLimitExceededEvent,
    SubscriptionUpdatedEvent,
    UsageWarningEvent,
)
from cadence_ai.core.logging_config import setup_logging
from cadence_ai.core.scheduler import AsyncioScheduler, Scheduler
from cadence_ai.exceptions import (
    APIError,
    CadenceError,
    CircuitOpenError,
    OperationCancelledError,
    QueueClosedError,
    QueueTimeoutError,
)
from cadence_ai.interfaces import IDispatcher
from cadence_ai.models import (
    CodeContext,
    CompletionItem,
    Position,
    ProjectInfo,
    Range,
    SymbolInfo,
)
from cadence_ai.pipeline import CompletionPipeline, create_pipeline
from cadence_ai.ratelimit import RequestPriority, SubscriptionTier

__version__ = "0.1.0"

__all__ = [
    "APIError",
    "AppSettings",
    "AsyncioScheduler",
    "CadenceError",
    "CancellationToken",
    "CircuitOpenError",
    "CircuitStateChangeEvent",
    "CodeContext",
    "CompletionItem",
    "CompletionPipeline",
    "DailyResetEvent",
    "EventRegistry",
    "IDispatcher",
    "MonthlyResetEvent",
    "OperationCancelledError",
    "Position",
    "ProjectInfo",
    "QueueClosedError",
    "QueueTimeoutError",
    "Range",
    "RateLimitExceededEvent",
    "RequestPriority",
    "Scheduler",
    "SubscriptionTier",
    "SubscriptionUpdatedEvent",
    "SymbolInfo",
    "UsageWarningEvent",
    "create_pipeline",
    "setup_logging",
]
