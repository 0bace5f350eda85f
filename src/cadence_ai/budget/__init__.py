"""Token estimation and context truncation."""

from __future__ import annotations

from cadence_ai.budget.estimator import (
    DEFAULT_MODEL_LIMITS,
    TokenBreakdown,
    TokenBudget,
    count_context_tokens,
    estimate_tokens,
)
from cadence_ai.budget.truncator import ContextTruncator

__all__ = [
    "DEFAULT_MODEL_LIMITS",
    "ContextTruncator",
    "TokenBreakdown",
    "TokenBudget",
    "count_context_tokens",
    "estimate_tokens",
]
