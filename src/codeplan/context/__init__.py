"""Budgeted context packing.

Ranks candidate files against a query and packs whole files, structural
chunks, or condensed symbol summaries into a token-bounded window.

Usage:
    from codeplan.context import ContextPacker, RelevanceRanker

    packer = ContextPacker(RelevanceRanker())
    window = await packer.prepare_context(candidates, token_budget=8000, query="fix login")
    print(window.render())
"""

from codeplan.context.models import (
    Candidate,
    CodeChunk,
    ContextFile,
    ContextWindow,
    FileIndex,
    InclusionMode,
    SymbolInfo,
    TokenEstimator,
)
from codeplan.context.packer import ContextPacker
from codeplan.context.ranking import RelevanceRanker

__all__ = [
    "Candidate",
    "CodeChunk",
    "ContextFile",
    "ContextPacker",
    "ContextWindow",
    "FileIndex",
    "InclusionMode",
    "RelevanceRanker",
    "SymbolInfo",
    "TokenEstimator",
]
