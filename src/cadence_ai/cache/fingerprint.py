"""Fingerprint computation: deterministic keys for equivalent requests."""

from __future__ import annotations

import hashlib

from cadence_ai.models import CodeContext


def compute_fingerprint(
    context: CodeContext,
    *,
    prefix_chars: int = 100,
    import_count: int = 5,
) -> str:
    """Return the context's precomputed fingerprint or derive one.

    The derived key covers language, the prefix tail nearest the cursor, the
    current line, the leading imports and the cursor position, so typing
    elsewhere in the file does not change it.
    """
    if context.fingerprint:
        return context.fingerprint

    parts = [
        context.language,
        context.prefix[-prefix_chars:] if prefix_chars else "",
        context.current_line,
        ",".join(context.imports[:import_count]),
        str(context.cursor.line),
        str(context.cursor.character),
    ]
    raw = "|".join(parts)
    return hashlib.sha256(raw.encode()).hexdigest()[:16]
