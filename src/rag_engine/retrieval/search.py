"""Query-time search: embed, vector (or hybrid) search, rerank, dedup."""

import logging
import time

from rag_engine.cancellation import CancellationToken
from rag_engine.embeddings.base import EmbeddingProvider, sanitize_text
from rag_engine.retrieval.dedup import SemanticDeduplicator
from rag_engine.retrieval.hybrid import hybrid_search
from rag_engine.retrieval.rerankers import Reranker, RerankOptions
from rag_engine.vector_store.base import SearchFilters, VectorSearchMatch, VectorStore

logger = logging.getLogger(__name__)

CANDIDATE_MULTIPLIER = 3
MAX_SNIPPET_LINES = 30


def snippet(text: str, max_lines: int = MAX_SNIPPET_LINES) -> str:
    lines = text.splitlines()
    if len(lines) > max_lines:
        return "\n".join(lines[:max_lines]) + "\n..."
    return text


def search(
    store: VectorStore,
    provider: EmbeddingProvider,
    scope_id: str,
    query: str,
    limit: int = 8,
    reranker: Reranker | None = None,
    deduplicator: SemanticDeduplicator | None = None,
    filters: SearchFilters | None = None,
    rerank_options: RerankOptions | None = None,
    token: CancellationToken | None = None,
    hybrid: bool = False,
) -> list[VectorSearchMatch]:
    """Top `limit` matches for query in scope_id.

    With hybrid, BM25 keyword candidates are fused with the vector hits before reranking.
    Reranking and dedup are best effort: a failure in either keeps the list it was given.
    """
    if not query or not query.strip():
        logger.debug("retrieval.search: empty query, returning []")
        return []
    if not store.scope_exists(scope_id):
        logger.warning("retrieval.search: scope %s has no index", scope_id)
        return []

    t0 = time.monotonic()
    vector = provider.embed([sanitize_text(query)], token=token)[0]
    widen = reranker is not None or deduplicator is not None
    fetch = limit * CANDIDATE_MULTIPLIER if widen else limit
    if hybrid:
        matches = hybrid_search(store, scope_id, vector, query, fetch, filters)
    else:
        matches = store.search(scope_id, vector, fetch, filters)
    logger.debug("retrieval.search: %d candidates from %s (%.1fs)", len(matches), scope_id, time.monotonic() - t0)

    if reranker is not None and matches:
        try:
            matches = reranker.rerank(query, matches, rerank_options, token=token)
        except Exception as e:
            logger.warning("retrieval.search: rerank (%s) failed, keeping vector order: %s", reranker.name, e)
    if deduplicator is not None and matches:
        matches = deduplicator.deduplicate(matches).matches

    results = matches[:limit]
    logger.info("retrieval.search: returned %d results for query (%.1fs)", len(results), time.monotonic() - t0)
    return results
