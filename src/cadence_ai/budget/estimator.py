"""Heuristic token estimation and per-model context budgets.

The estimate is words plus punctuation characters.  It over-counts compared
to a BPE tokenizer on ordinary code, which is the safe direction for a
budget check.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, fields
from typing import Mapping, Optional

from cadence_ai.models import CodeContext, ProjectInfo, SymbolInfo

log = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\b\w+\b")
_PUNCT_RE = re.compile(r"[^\w\s]")

# Raw context windows by model id; callers may extend via config.
DEFAULT_MODEL_LIMITS: dict[str, int] = {
    "claude-3-opus": 200_000,
    "claude-3-sonnet": 200_000,
    "claude-3-haiku": 200_000,
    "claude-2.1": 100_000,
    "claude-2": 100_000,
    "claude-instant": 100_000,
}


def estimate_tokens(text: Optional[str]) -> int:
    """Return the word + punctuation estimate for *text*."""
    if not text:
        return 0
    return len(_WORD_RE.findall(text)) + len(_PUNCT_RE.findall(text))


def symbols_text(symbols: list[SymbolInfo]) -> str:
    return "\n".join(f"{s.name}: {s.kind}" for s in symbols)


def project_info_text(info: Optional[ProjectInfo]) -> str:
    data = info.model_dump(exclude_none=True) if info is not None else {}
    return json.dumps(data, separators=(",", ":"))


@dataclass(frozen=True)
class TokenBreakdown:
    """Estimated tokens per context field."""

    prefix: int = 0
    suffix: int = 0
    imports: int = 0
    symbols: int = 0
    readme: int = 0
    project_info: int = 0

    @property
    def total(self) -> int:
        return sum(getattr(self, f.name) for f in fields(self))


def count_context_tokens(context: CodeContext) -> TokenBreakdown:
    return TokenBreakdown(
        prefix=estimate_tokens(context.prefix),
        suffix=estimate_tokens(context.suffix),
        imports=estimate_tokens("\n".join(context.imports)),
        symbols=estimate_tokens(symbols_text(context.symbols)),
        readme=estimate_tokens(context.readme_content),
        project_info=estimate_tokens(project_info_text(context.project_info)),
    )


class TokenBudget:
    """Per-model token limits with a reserved share for the completion."""

    def __init__(
        self,
        model_limits: Optional[Mapping[str, int]] = None,
        *,
        default_limit: int = 100_000,
        context_ratio: float = 0.8,
        default_model: str = "claude-3-sonnet",
    ) -> None:
        self._limits = {**DEFAULT_MODEL_LIMITS, **(model_limits or {})}
        self._default_limit = default_limit
        self._context_ratio = context_ratio
        self.default_model = default_model

    def token_limit(self, model: Optional[str] = None) -> int:
        return self._limits.get(model or self.default_model, self._default_limit)

    def context_limit(self, model: Optional[str] = None) -> int:
        """Share of the raw limit available to context."""
        return int(self.token_limit(model) * self._context_ratio)

    def format_token_info(self, context: CodeContext, model: Optional[str] = None) -> str:
        breakdown = count_context_tokens(context)
        limit = self.context_limit(model)
        percentage = breakdown.total / limit * 100 if limit else 0.0
        return (
            f"Token usage: {breakdown.total}/{limit} ({percentage:.1f}%)\n"
            "Breakdown:\n"
            f"  - Prefix: {breakdown.prefix}\n"
            f"  - Suffix: {breakdown.suffix}\n"
            f"  - Imports: {breakdown.imports}\n"
            f"  - Symbols: {breakdown.symbols}\n"
            f"  - README: {breakdown.readme}\n"
            f"  - Project: {breakdown.project_info}"
        )
