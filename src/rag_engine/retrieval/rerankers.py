"""Rerankers: reorder the top-k vector matches with a more expensive relevance signal.

Every strategy scores only the first top_k candidates and appends the rest unchanged,
after optional min-max normalisation of the reranked head.
"""

import logging
from dataclasses import dataclass

from rag_engine.cancellation import CancellationToken
from rag_engine.errors import ConfigurationError
from rag_engine.vector_store.base import VectorSearchMatch

logger = logging.getLogger(__name__)

RERANKER_KINDS = ("none", "heuristic", "smart-heuristic", "cross-encoder")


@dataclass
class RerankOptions:
    top_k: int = 20
    min_score: float = 0.0
    normalize: bool = True


def query_terms(query: str) -> list[str]:
    """Lower-cased whitespace tokens longer than two characters."""
    return [t for t in query.lower().split() if len(t) > 2]


def finalize(
    scored: list[VectorSearchMatch], rest: list[VectorSearchMatch], options: RerankOptions
) -> list[VectorSearchMatch]:
    """Filter by min_score, normalise to [0, 1], sort descending, then append the untouched remainder."""
    head = [m for m in scored if m.score >= options.min_score]
    if options.normalize and head:
        lo = min(m.score for m in head)
        hi = max(m.score for m in head)
        if hi - lo > 0:
            head = [VectorSearchMatch(m.chunk, (m.score - lo) / (hi - lo)) for m in head]
    head.sort(key=lambda m: m.score, reverse=True)
    return head + list(rest)


class Reranker:
    """Subclasses implement score(); rerank() handles the top-k split and finalisation."""

    name = "base"

    def rerank(
        self,
        query: str,
        matches: list[VectorSearchMatch],
        options: RerankOptions | None = None,
        token: CancellationToken | None = None,
    ) -> list[VectorSearchMatch]:
        options = options or RerankOptions()
        if not matches:
            return []
        head, rest = matches[: options.top_k], matches[options.top_k :]
        scores = self.score(query, head, token)
        scored = [VectorSearchMatch(m.chunk, s) for m, s in zip(head, scores)]
        logger.debug("retrieval.rerank: %s scored %d of %d matches", self.name, len(head), len(matches))
        return finalize(scored, rest, options)

    def score(
        self, query: str, matches: list[VectorSearchMatch], token: CancellationToken | None = None
    ) -> list[float]:
        raise NotImplementedError


class NoneReranker(Reranker):
    """Passes matches through in their original order."""

    name = "none"

    def rerank(self, query, matches, options=None, token=None) -> list[VectorSearchMatch]:
        return list(matches)


class HeuristicReranker(Reranker):
    """Keyword overlap boost: +0.2 x text match fraction, +0.1 x path match fraction, capped at 1."""

    name = "heuristic"

    def score(self, query, matches, token=None) -> list[float]:
        terms = query_terms(query)
        if not terms:
            return [m.score for m in matches]
        out = []
        for m in matches:
            text = m.chunk.text.lower()
            path = m.chunk.path.lower()
            in_text = sum(1 for t in terms if t in text)
            in_path = sum(1 for t in terms if t in path)
            boosted = m.score + 0.2 * in_text / len(terms) + 0.1 * in_path / len(terms)
            out.append(min(1.0, boosted))
        return out


def create_reranker(kind: str = "smart-heuristic", **kwargs) -> Reranker:
    """none | heuristic | smart-heuristic | cross-encoder."""
    if kind == "none":
        return NoneReranker()
    if kind == "heuristic":
        return HeuristicReranker()
    if kind == "smart-heuristic":
        from rag_engine.retrieval.smart import SmartHeuristicReranker

        return SmartHeuristicReranker(**kwargs)
    if kind == "cross-encoder":
        from rag_engine.retrieval.cross_encoder import CrossEncoderReranker

        return CrossEncoderReranker(**kwargs)
    raise ConfigurationError(f"Unknown reranker: {kind}. Expected one of {', '.join(RERANKER_KINDS)}")
