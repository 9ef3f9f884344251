"""Query-time retrieval: rerankers, semantic dedup, search and the LangChain retriever."""

from rag_engine.retrieval.dedup import DedupResult, DuplicateGroup, SemanticDeduplicator, ensure_file_diversity
from rag_engine.retrieval.hybrid import HybridWeights, fuse, hybrid_search, keyword_search, query_weights
from rag_engine.retrieval.rerankers import (
    HeuristicReranker,
    NoneReranker,
    Reranker,
    RerankOptions,
    create_reranker,
)
from rag_engine.retrieval.search import search, snippet
from rag_engine.retrieval.smart import SmartHeuristicReranker, SmartWeights


def __getattr__(name: str):
    if name == "CrossEncoderReranker":
        from rag_engine.retrieval.cross_encoder import CrossEncoderReranker

        return CrossEncoderReranker
    if name == "CodebaseRetriever":
        from rag_engine.retrieval.retriever import CodebaseRetriever

        return CodebaseRetriever
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "Reranker",
    "RerankOptions",
    "NoneReranker",
    "HeuristicReranker",
    "SmartHeuristicReranker",
    "SmartWeights",
    "CrossEncoderReranker",
    "create_reranker",
    "SemanticDeduplicator",
    "DedupResult",
    "DuplicateGroup",
    "ensure_file_diversity",
    "HybridWeights",
    "keyword_search",
    "fuse",
    "hybrid_search",
    "query_weights",
    "search",
    "snippet",
    "CodebaseRetriever",
]
