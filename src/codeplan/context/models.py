"""Data models for budgeted context packing."""

from __future__ import annotations

import math
from enum import Enum

from pydantic import BaseModel, Field


class TokenEstimator:
    """Estimate token counts for code.

    Every budget in codeplan is computed and checked with this one estimator.
    """

    # Rough heuristic: 1 token ≈ 4 characters for code
    CHARS_PER_TOKEN = 4.0

    @classmethod
    def estimate(cls, text: str) -> int:
        """Estimate token count for a string."""
        return math.ceil(len(text) / cls.CHARS_PER_TOKEN)


class SymbolInfo(BaseModel):
    """A pre-extracted symbol inside a file (lines are 0-based)."""

    name: str
    kind: str  # "class", "function", "method", "interface", "variable", ...
    line: int
    end_line: int | None = None
    signature: str = ""
    parent: str = ""  # enclosing symbol name, empty for top-level symbols
    references: list[str] = Field(default_factory=list)


class FileIndex(BaseModel):
    """Pre-computed index entry for one file, supplied by the index provider."""

    path: str
    language: str = ""
    symbols: list[SymbolInfo] = Field(default_factory=list)
    import_summary: list[str] = Field(default_factory=list)
    chunk_boundaries: list[int] = Field(default_factory=list)  # 0-based line starts
    summary: str = ""

    @property
    def top_level_symbols(self) -> list[SymbolInfo]:
        return sorted(
            (
                s for s in self.symbols
                if not s.parent and s.kind in ("class", "function", "interface")
            ),
            key=lambda s: s.line,
        )


class Candidate(BaseModel):
    """A file offered for inclusion in a context window."""

    path: str
    content: str
    relevance_score: float = 1.0
    index: FileIndex | None = None

    @property
    def token_count(self) -> int:
        return TokenEstimator.estimate(self.content)

    @property
    def language(self) -> str:
        return self.index.language if self.index else ""


class CodeChunk(BaseModel):
    """A structurally-bounded fragment of a file (end_line inclusive)."""

    id: str
    path: str
    start_line: int
    end_line: int
    content: str
    symbols: list[str] = Field(default_factory=list)

    @property
    def token_count(self) -> int:
        return TokenEstimator.estimate(self.content)


class InclusionMode(str, Enum):
    """How a file made it into the window."""

    FULL = "full"
    CHUNKED = "chunked"
    CONDENSED = "condensed"


class ContextFile(BaseModel):
    """One file's contribution to a context window."""

    path: str
    content: str
    language: str = ""
    tokens: int = 0
    relevance: float = 0.0
    mode: InclusionMode = InclusionMode.FULL
    summary: str = ""
    included_chunks: list[str] = Field(default_factory=list)


class ContextWindow(BaseModel):
    """The bounded set of source fragments assembled for one service call."""

    files: list[ContextFile] = Field(default_factory=list)
    total_tokens: int = 0
    token_budget: int = 0
    summary: str = ""
    relevance: dict[str, float] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.files

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]

    def render(self) -> str:
        """Render the window as prompt text, files in packing order."""
        sections: list[str] = []
        if self.summary:
            sections.append(f"# {self.summary}")
            sections.append("")

        for f in self.files:
            header = f"## {f.path}"
            if f.mode != InclusionMode.FULL:
                header += f" ({f.mode.value})"
            sections.append(header)
            fence = f"```{f.language}" if f.language else "```"
            sections.append(fence)
            sections.append(f.content)
            sections.append("```")
            sections.append("")

        return "\n".join(sections)
