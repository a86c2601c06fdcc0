"""Relevance ranking of candidate files and chunks against a query.

Two strategies:
  - semantic: cosine similarity between embeddings (when an embedding
    service is configured)
  - lexical: term overlap, where a term found in a symbol name scores 2 and a
    term found anywhere in the body or path scores 1

Anything scoring zero is dropped. Sorting is stable, so ties keep the order
the candidates were supplied in.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import numpy as np

from codeplan.context.models import Candidate, CodeChunk
from codeplan.exceptions import LLMError
from codeplan.llm.base import EmbeddingProvider

logger = logging.getLogger("codeplan.context")

SYMBOL_MATCH_WEIGHT = 2.0
BODY_MATCH_WEIGHT = 1.0

_STOP_WORDS = {
    "the", "and", "for", "that", "this", "with", "from", "into", "all", "are",
    "was", "its", "our", "your", "use", "using", "to", "in", "of", "on", "a",
    "an", "is", "it", "be", "by", "or", "as", "at", "so",
}


@dataclass
class ScoredItem:
    """An item paired with its relevance score and original position."""

    item: object
    score: float
    position: int
    matched_terms: list[str] = field(default_factory=list)


def query_terms(query: str) -> list[str]:
    """Split a query into unique lowercase terms, in first-seen order."""
    terms: list[str] = []
    for word in re.findall(r"[a-z0-9_]+", query.lower()):
        if len(word) < 2 or word in _STOP_WORDS or word in terms:
            continue
        terms.append(word)
    return terms


def lexical_score(terms: Sequence[str], text: str, symbols: Sequence[str]) -> tuple[float, list[str]]:
    """Score `text` and its `symbols` against pre-split query terms."""
    if not terms:
        return 0.0, []

    text_lower = text.lower()
    symbol_names = [s.lower() for s in symbols]
    score = 0.0
    matched: list[str] = []

    for term in terms:
        hit = False
        if term in text_lower:
            score += BODY_MATCH_WEIGHT
            hit = True
        if any(term in name for name in symbol_names):
            score += SYMBOL_MATCH_WEIGHT
            hit = True
        if hit:
            matched.append(term)

    return score, matched


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        return 0.0
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)


class RelevanceRanker:
    """Scores candidates and chunks against a query.

    Usage:
        ranker = RelevanceRanker(embedder=None)
        ranked = await ranker.rank_candidates(candidates, "fix the login flow")
    """

    def __init__(
        self,
        embedder: EmbeddingProvider | None = None,
        on_embed: Callable[[str], None] | None = None,
    ) -> None:
        self.embedder = embedder
        self.on_embed = on_embed

    @property
    def is_semantic(self) -> bool:
        return self.embedder is not None

    async def rank_candidates(
        self, candidates: Sequence[Candidate], query: str | None = None
    ) -> list[ScoredItem]:
        """Rank whole-file candidates, highest score first.

        Without a query the supplied ``relevance_score`` is used unchanged.
        """
        if not query:
            scored = [
                ScoredItem(item=c, score=c.relevance_score, position=i)
                for i, c in enumerate(candidates)
            ]
            return _sorted_nonzero(scored)

        texts = [f"{c.path}\n{c.content}" for c in candidates]
        symbols = [
            [s.name for s in c.index.symbols] if c.index else [] for c in candidates
        ]
        scores = await self._score(query, texts, symbols)
        scored = [
            ScoredItem(item=c, score=s, position=i, matched_terms=m)
            for i, (c, (s, m)) in enumerate(zip(candidates, scores))
        ]
        return _sorted_nonzero(scored)

    async def rank_chunks(
        self, chunks: Sequence[CodeChunk], query: str | None = None
    ) -> list[ScoredItem]:
        """Rank chunks of one file, highest score first.

        Without a query, chunks defining more symbols rank higher.
        """
        if not query:
            scored = [
                ScoredItem(item=c, score=float(len(c.symbols) + 1), position=i)
                for i, c in enumerate(chunks)
            ]
            return _sorted_nonzero(scored)

        scores = await self._score(
            query, [c.content for c in chunks], [c.symbols for c in chunks]
        )
        scored = [
            ScoredItem(item=c, score=s, position=i, matched_terms=m)
            for i, (c, (s, m)) in enumerate(zip(chunks, scores))
        ]
        return _sorted_nonzero(scored)

    async def _score(
        self, query: str, texts: Sequence[str], symbols: Sequence[Sequence[str]]
    ) -> list[tuple[float, list[str]]]:
        if self.embedder is not None:
            try:
                return await self._semantic_scores(query, texts)
            except LLMError as e:
                logger.warning("Embedding service unavailable, using lexical ranking: %s", e)

        terms = query_terms(query)
        return [lexical_score(terms, t, s) for t, s in zip(texts, symbols)]

    async def _semantic_scores(
        self, query: str, texts: Sequence[str]
    ) -> list[tuple[float, list[str]]]:
        """Embed query and texts concurrently, then score by cosine similarity."""
        vectors = await asyncio.gather(
            self._embed(query), *(self._embed(t) for t in texts)
        )
        query_vec, text_vecs = vectors[0], vectors[1:]
        return [(max(0.0, cosine_similarity(query_vec, v)), []) for v in text_vecs]

    async def _embed(self, text: str) -> list[float]:
        vector = await self.embedder.embed(text)
        if self.on_embed:
            self.on_embed(text)
        return vector


def _sorted_nonzero(scored: list[ScoredItem]) -> list[ScoredItem]:
    kept = [s for s in scored if s.score > 0]
    # sorted() is stable: equal scores keep their original position
    return sorted(kept, key=lambda s: -s.score)
