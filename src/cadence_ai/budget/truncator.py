"""Trim a ``CodeContext`` to a token budget in a fixed priority order.

Order, least to most valuable to the model: suffix, README text, project
metadata, symbols, prefix.  The estimate is recomputed after every step and
trimming stops as soon as the context fits.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from cadence_ai.budget.estimator import TokenBudget, count_context_tokens, estimate_tokens
from cadence_ai.models import CodeContext, ProjectInfo

log = logging.getLogger(__name__)

_Step = Callable[[CodeContext, int], CodeContext]


class ContextTruncator:
    """Budget-aware context trimming."""

    def __init__(
        self,
        budget: Optional[TokenBudget] = None,
        *,
        symbol_keep_ratio: float = 0.3,
        min_symbols: int = 10,
        marker: str = "...",
        max_frameworks: int = 3,
    ) -> None:
        self._budget = budget or TokenBudget()
        self._symbol_keep_ratio = symbol_keep_ratio
        self._min_symbols = min_symbols
        self._marker = marker
        self._max_frameworks = max_frameworks
        self._steps: list[tuple[str, _Step]] = [
            ("suffix", self._shrink_suffix),
            ("readme", self._drop_readme),
            ("project_info", self._reduce_project_info),
            ("symbols", self._reduce_symbols),
            ("prefix", self._shrink_prefix),
        ]

    @property
    def budget(self) -> TokenBudget:
        return self._budget

    def truncate(
        self,
        context: CodeContext,
        model: Optional[str] = None,
        *,
        budget: Optional[int] = None,
    ) -> CodeContext:
        """Return *context* if it fits, else a trimmed copy.

        Args:
            context: The caller's context; never mutated.
            model: Model id used to look up the budget.
            budget: Explicit token budget, overriding the model lookup.
        """
        limit = budget if budget is not None else self._budget.context_limit(model)
        total = count_context_tokens(context).total
        if total <= limit:
            return context

        original_total = total
        current = context
        for name, step in self._steps:
            current = step(current, limit)
            total = count_context_tokens(current).total
            if total <= limit:
                log.debug(
                    "Truncated context %d -> %d tokens (budget %d, last step: %s)",
                    original_total, total, limit, name,
                )
                return current

        log.warning(
            "Context still over budget after truncation: %d > %d tokens", total, limit
        )
        return current

    # ── Steps ────────────────────────────────────────────────────────

    def _shrink_suffix(self, context: CodeContext, limit: int) -> CodeContext:
        suffix_tokens = estimate_tokens(context.suffix)
        if suffix_tokens == 0:
            return context
        over = count_context_tokens(context).total - limit
        ratio = max(0.0, 1 - over / suffix_tokens)
        keep = int(len(context.suffix) * ratio)
        return context.model_copy(update={"suffix": context.suffix[:keep] + self._marker})

    def _drop_readme(self, context: CodeContext, limit: int) -> CodeContext:
        if context.readme_content is None:
            return context
        return context.model_copy(update={"readme_content": None})

    def _reduce_project_info(self, context: CodeContext, limit: int) -> CodeContext:
        info = context.project_info
        if info is None:
            return context
        minimal = ProjectInfo(
            project_type=info.project_type,
            frameworks=info.frameworks[: self._max_frameworks],
        )
        return context.model_copy(update={"project_info": minimal})

    def _reduce_symbols(self, context: CodeContext, limit: int) -> CodeContext:
        if not context.symbols:
            return context
        cap = max(self._min_symbols, int(len(context.symbols) * self._symbol_keep_ratio))
        kept = [s for s in context.symbols if s.range.contains(context.cursor)][:cap]
        return context.model_copy(update={"symbols": kept})

    def _shrink_prefix(self, context: CodeContext, limit: int) -> CodeContext:
        prefix = context.prefix
        if not prefix:
            return context
        others = count_context_tokens(context.model_copy(update={"prefix": ""})).total
        available = limit - others

        def fits(start: int) -> bool:
            return estimate_tokens(self._marker + prefix[start:]) <= available

        if not fits(len(prefix)):
            # Not even the marker fits next to the untrimmed fields.
            return context.model_copy(update={"prefix": ""})

        # Tail estimate never grows as the start moves right, so bisect for
        # the longest tail that fits.
        lo, hi = 0, len(prefix)
        while lo < hi:
            mid = (lo + hi) // 2
            if fits(mid):
                hi = mid
            else:
                lo = mid + 1
        if lo == 0:
            return context
        return context.model_copy(update={"prefix": self._marker + prefix[lo:]})
