"""Hybrid retrieval: BM25 keyword candidates fused with vector hits.

Both candidate lists are merged by weighted reciprocal rank (RRF). Chunks found by
both searches rank ahead of single-source hits. Weights adapt to the query: identifier
lookups lean on keywords, "how does X work" questions lean on vectors.
"""

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass

from rag_engine.retrieval.smart import extract_identifiers
from rag_engine.vector_store.base import SearchFilters, StoredChunk, VectorSearchMatch, VectorStore

logger = logging.getLogger(__name__)

RRF_K = 60
BOTH_BOOST = 1.2
CONCEPT_PATTERN = re.compile(
    r"^(how\s+(does|do|to|can|should)|what\s+(is|are|does)|why\s+(does|do|is|are)|explain|describe)\b"
    r"|architecture|design|relationship\s+between|difference\s+between",
    re.IGNORECASE,
)


@dataclass
class HybridWeights:
    vector: float = 0.7
    keyword: float = 0.3

    def normalized(self) -> "HybridWeights":
        total = self.vector + self.keyword
        if total <= 0:
            return HybridWeights()
        return HybridWeights(self.vector / total, self.keyword / total)


LOOKUP_WEIGHTS = HybridWeights(vector=0.3, keyword=0.7)
CONCEPT_WEIGHTS = HybridWeights(vector=0.8, keyword=0.2)


def query_weights(query: str) -> HybridWeights:
    if CONCEPT_PATTERN.search(query.strip()):
        return CONCEPT_WEIGHTS
    if extract_identifiers(query):
        return LOOKUP_WEIGHTS
    return HybridWeights()


def tokenize(text: str) -> list[str]:
    return re.findall(r"\w+", text.lower())


def keyword_search(
    chunks: list[StoredChunk],
    query: str,
    limit: int,
    filters: SearchFilters | None = None,
    k1: float = 1.2,
    b: float = 0.75,
) -> list[VectorSearchMatch]:
    """BM25 over chunk texts. Chunks sharing no term with the query are left out."""
    candidates = [c for c in chunks if filters is None or filters.matches(c)]
    terms = tokenize(query)
    if not candidates or not terms:
        return []

    docs = [Counter(tokenize(c.text)) for c in candidates]
    lengths = [sum(d.values()) for d in docs]
    avg_length = (sum(lengths) / len(docs)) or 1.0
    doc_freq = Counter(term for d in docs for term in d)
    n = len(docs)

    matches: list[VectorSearchMatch] = []
    for chunk, tf, length in zip(candidates, docs, lengths):
        score = 0.0
        norm = 1 - b + b * length / avg_length
        for term in terms:
            f = tf.get(term, 0)
            if not f:
                continue
            idf = math.log((n - doc_freq[term] + 0.5) / (doc_freq[term] + 0.5) + 1)
            score += idf * f * (k1 + 1) / (f + k1 * norm)
        if score > 0:
            matches.append(VectorSearchMatch(chunk=chunk, score=score))
    matches.sort(key=lambda m: m.score, reverse=True)
    return matches[:limit]


def fuse(
    vector_hits: list[VectorSearchMatch],
    keyword_hits: list[VectorSearchMatch],
    limit: int,
    weights: HybridWeights | None = None,
    rrf_k: int = RRF_K,
) -> list[VectorSearchMatch]:
    """Weighted RRF; the vector-side match is kept when a chunk appears in both lists."""
    w = (weights or HybridWeights()).normalized()
    scores: dict[str, float] = {}
    for hits, weight in ((vector_hits, w.vector), (keyword_hits, w.keyword)):
        for rank, m in enumerate(hits, start=1):
            scores[m.chunk.chunk_id] = scores.get(m.chunk.chunk_id, 0.0) + weight / (rrf_k + rank)

    by_id = {m.chunk.chunk_id: m for m in keyword_hits}
    by_id.update({m.chunk.chunk_id: m for m in vector_hits})
    in_both = {m.chunk.chunk_id for m in vector_hits} & {m.chunk.chunk_id for m in keyword_hits}

    fused = [
        (cid in in_both, scores[cid] * (BOTH_BOOST if cid in in_both else 1.0), by_id[cid])
        for cid in by_id
    ]
    fused.sort(key=lambda item: (item[0], item[1]), reverse=True)
    return [VectorSearchMatch(chunk=m.chunk, score=score) for _, score, m in fused[:limit]]


def hybrid_search(
    store: VectorStore,
    scope_id: str,
    vector: list[float],
    query: str,
    limit: int,
    filters: SearchFilters | None = None,
    weights: HybridWeights | None = None,
    candidate_limit: int | None = None,
) -> list[VectorSearchMatch]:
    """Vector and keyword candidates for one scope, fused.

    Keyword scoring reads every chunk of the scope through get_all_chunks.
    """
    candidate_limit = candidate_limit or limit * 2
    weights = weights or query_weights(query)
    vector_hits = store.search(scope_id, vector, candidate_limit, filters)
    keyword_hits = keyword_search(store.get_all_chunks(scope_id, filters), query, candidate_limit, filters)
    logger.debug(
        "retrieval.hybrid: %d vector + %d keyword candidates (weights %.1f/%.1f)",
        len(vector_hits),
        len(keyword_hits),
        weights.vector,
        weights.keyword,
    )
    return fuse(vector_hits, keyword_hits, limit, weights)
