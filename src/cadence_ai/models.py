"""Pydantic data models for cadence-ai.

``CodeContext`` is built by the editor integration (symbol extraction, import
resolution) and handed to the core read-only.  Components that need a
smaller context produce copies via ``model_copy``; the caller's instance is
never mutated.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ── Editor geometry ──────────────────────────────────────────────────


class Position(BaseModel):
    """Zero-based line / character cursor position."""

    model_config = ConfigDict(frozen=True)

    line: int = Field(default=0, ge=0)
    character: int = Field(default=0, ge=0)

    def as_tuple(self) -> tuple[int, int]:
        return (self.line, self.character)


class Range(BaseModel):
    """Source range, inclusive on both ends."""

    model_config = ConfigDict(frozen=True)

    start: Position
    end: Position

    def contains(self, position: Position) -> bool:
        return self.start.as_tuple() <= position.as_tuple() <= self.end.as_tuple()


# ── Context ──────────────────────────────────────────────────────────


class SymbolInfo(BaseModel):
    """A symbol descriptor from the editor's document symbol provider."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: str
    range: Range
    detail: Optional[str] = None


class ProjectInfo(BaseModel):
    """Project metadata detected from manifests (package.json, pyproject, ...)."""

    model_config = ConfigDict(frozen=True)

    project_type: Optional[str] = None
    frameworks: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    related_files: list[str] = Field(default_factory=list)


class CodeContext(BaseModel):
    """Everything the completion service sees about the cursor location."""

    model_config = ConfigDict(frozen=True)

    language: str
    prefix: str = ""
    suffix: str = ""
    current_line: str = ""
    cursor: Position = Field(default_factory=Position)
    imports: list[str] = Field(default_factory=list)
    symbols: list[SymbolInfo] = Field(default_factory=list)
    readme_content: Optional[str] = None
    project_info: Optional[ProjectInfo] = None
    fingerprint: Optional[str] = None

    @property
    def text_before_cursor(self) -> str:
        """Current line up to the cursor column."""
        return self.current_line[: self.cursor.character]


# ── Results ──────────────────────────────────────────────────────────


class CompletionItem(BaseModel):
    """A single suggestion returned by the completion service."""

    label: str
    detail: Optional[str] = None
    documentation: Optional[str] = None
    insert_text: Optional[str] = None
    kind: str = "text"
