"""Budgeted context packing.

Candidates are visited in descending relevance. Each one is included by the
first strategy that fits the remaining budget:

  1. whole file, when it is small (below ``small_file_tokens``) and fits
  2. smart chunks, highest-scoring first, until the next chunk does not fit
  3. condensed form: header section plus top-level symbol blocks, in order,
     until the next block does not fit

Units are never cut mid-way. Packing stops at the first candidate that cannot
contribute anything within the remaining budget, so ``total_tokens`` never
exceeds the budget.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING

from codeplan.config import ContextConfig
from codeplan.context.chunking import assemble_chunks, condensed_units, split_chunks
from codeplan.context.models import (
    Candidate,
    CodeChunk,
    ContextFile,
    ContextWindow,
    InclusionMode,
    TokenEstimator,
)
from codeplan.context.ranking import RelevanceRanker
from codeplan.exceptions import ContextBudgetExceeded

if TYPE_CHECKING:
    from codeplan.index.provider import JsonCodebaseIndex

logger = logging.getLogger("codeplan.context")

Summarizer = Callable[[ContextWindow, "str | None"], Awaitable[str]]


class ContextPacker:
    """Assembles a token-bounded context window from ranked candidates.

    Usage:
        packer = ContextPacker(RelevanceRanker())
        window = await packer.prepare_context(candidates, 8000, "fix login")
        prompt_context = window.render()
    """

    def __init__(
        self,
        ranker: RelevanceRanker | None = None,
        config: ContextConfig | None = None,
        index: JsonCodebaseIndex | None = None,
        summarizer: Summarizer | None = None,
    ) -> None:
        self.ranker = ranker or RelevanceRanker()
        self.config = config or ContextConfig()
        self.index = index
        self.summarizer = summarizer

    # -------------------------------------------------------------------
    # Main entry point
    # -------------------------------------------------------------------

    async def prepare_context(
        self,
        candidates: Sequence[Candidate],
        token_budget: int,
        query: str | None = None,
    ) -> ContextWindow:
        """Pack the most relevant candidates into at most `token_budget` tokens."""
        window = ContextWindow(token_budget=token_budget)
        ranked = await self.ranker.rank_candidates(candidates, query)

        for scored in ranked:
            remaining = token_budget - window.total_tokens
            if remaining <= 0:
                break

            candidate: Candidate = scored.item
            context_file = await self._pack_candidate(candidate, remaining, query)
            if context_file is None:
                logger.debug("Budget exhausted at %s (%d tokens left)", candidate.path, remaining)
                break

            context_file.relevance = round(scored.score, 4)
            window.files.append(context_file)
            window.relevance[candidate.path] = context_file.relevance
            window.total_tokens += context_file.tokens

        if window.total_tokens > token_budget:
            raise ContextBudgetExceeded(window.total_tokens, token_budget)

        window.summary = await self._summarize(window, query)
        return window

    async def create_task_context(
        self,
        task: str,
        base_files: Sequence[str],
        token_budget: int,
    ) -> ContextWindow:
        """Pack `base_files` plus the index's best search hits for `task`."""
        paths = list(base_files)
        if self.index is not None:
            for hit in self.index.search(task, limit=self.config.max_search_results):
                if hit not in paths:
                    paths.append(hit)

        return await self.prepare_context(self._load_candidates(paths), token_budget, task)

    async def expand_context(
        self,
        window: ContextWindow,
        symbol: str,
        max_additional_tokens: int,
    ) -> ContextWindow:
        """Return a copy of `window` with files referencing `symbol` appended."""
        expanded = window.model_copy(deep=True)
        if self.index is None:
            return expanded

        present = set(window.paths)
        references: list[str] = []
        for path in self.index.files():
            if path in present:
                continue
            entry = self.index.get_file_index(path)
            if entry and any(s.name == symbol or symbol in s.references for s in entry.symbols):
                references.append(path)

        added = 0
        for candidate in self._load_candidates(references):
            remaining = max_additional_tokens - added
            if remaining <= 0:
                break
            context_file = await self._pack_candidate(candidate, remaining, symbol)
            if context_file is None:
                break
            expanded.files.append(context_file)
            expanded.total_tokens += context_file.tokens
            added += context_file.tokens

        expanded.token_budget = window.token_budget + max_additional_tokens
        return expanded

    # -------------------------------------------------------------------
    # Per-candidate strategies
    # -------------------------------------------------------------------

    async def _pack_candidate(
        self, candidate: Candidate, remaining: int, query: str | None
    ) -> ContextFile | None:
        language = candidate.language

        if candidate.token_count < self.config.small_file_tokens and candidate.token_count <= remaining:
            return ContextFile(
                path=candidate.path,
                content=candidate.content,
                language=language,
                tokens=candidate.token_count,
                mode=InclusionMode.FULL,
                summary=candidate.index.summary if candidate.index else "",
            )

        chunks = split_chunks(candidate.content, candidate.index, self.config.chunk_lines)
        if chunks:
            selected = await self._select_chunks(chunks, remaining, query, language)
            if selected:
                content = assemble_chunks(selected, language)
                return ContextFile(
                    path=candidate.path,
                    content=content,
                    language=language,
                    tokens=TokenEstimator.estimate(content),
                    mode=InclusionMode.CHUNKED,
                    summary=candidate.index.summary if candidate.index else "",
                    included_chunks=[c.id for c in sorted(selected, key=lambda c: c.start_line)],
                )

        content = self._condense(candidate, remaining)
        if not content:
            return None
        return ContextFile(
            path=candidate.path,
            content=content,
            language=language,
            tokens=TokenEstimator.estimate(content),
            mode=InclusionMode.CONDENSED,
            summary=candidate.index.summary if candidate.index else "",
        )

    async def _select_chunks(
        self,
        chunks: list[CodeChunk],
        max_tokens: int,
        query: str | None,
        language: str,
    ) -> list[CodeChunk]:
        """Accept chunks best-first until the next one would overflow.

        The budget is checked against the assembled text, elision markers
        included.
        """
        ranked = await self.ranker.rank_chunks(chunks, query)
        selected: list[CodeChunk] = []
        for scored in ranked:
            trial = selected + [scored.item]
            if TokenEstimator.estimate(assemble_chunks(trial, language)) > max_tokens:
                break
            selected = trial
        return selected

    def _condense(self, candidate: Candidate, max_tokens: int) -> str:
        units = condensed_units(
            candidate.content,
            candidate.index,
            self.config.symbol_line_cap,
            self.config.symbol_keep_lines,
        )
        accepted: list[str] = []
        for unit in units:
            trial = "\n".join(accepted + [unit])
            if TokenEstimator.estimate(trial) > max_tokens:
                break
            accepted.append(unit)
        return "\n".join(accepted)

    async def _summarize(self, window: ContextWindow, query: str | None) -> str:
        fallback = (
            f"Context includes {len(window.files)} files with "
            f"{window.total_tokens} total tokens."
        )
        if self.summarizer is None or window.is_empty:
            return fallback
        try:
            return await self.summarizer(window, query)
        except Exception as e:
            logger.warning("Context summary failed, using default: %s", e)
            return fallback

    def _load_candidates(self, paths: Sequence[str]) -> list[Candidate]:
        if self.index is None:
            return []
        candidates = []
        for path in paths:
            candidate = self.index.candidate(path)
            if candidate is not None:
                candidates.append(candidate)
        return candidates
