"""LangChain BaseRetriever over a scope of the vector store."""

import logging
from typing import Any

from langchain_core.callbacks import CallbackManagerForRetrieverRun
from langchain_core.documents import Document
from langchain_core.retrievers import BaseRetriever

from rag_engine.embeddings.base import EmbeddingProvider
from rag_engine.retrieval.dedup import SemanticDeduplicator
from rag_engine.retrieval.rerankers import Reranker
from rag_engine.retrieval.search import search, snippet
from rag_engine.vector_store.base import VectorStore

logger = logging.getLogger(__name__)


class CodebaseRetriever(BaseRetriever):
    """LangChain retriever that wraps retrieval.search() for one scope.

    Returns Document objects with page_content (snippet) and metadata
    (file_path, start_line, end_line, chunk_id, source_id, score). Compatible with
    create_retrieval_chain and friends.
    """

    store: VectorStore
    """Vector store holding the indexed chunks."""

    provider: EmbeddingProvider
    """Provider used to embed the query; must match the one used at index time."""

    scope_id: str
    """Scope (index partition) to search."""

    top_k: int = 8
    """Maximum number of documents to return."""

    reranker: Reranker | None = None
    deduplicator: SemanticDeduplicator | None = None

    hybrid: bool = False
    """Fuse keyword (BM25) candidates with the vector hits."""

    def _get_relevant_documents(
        self, query: str, *, run_manager: CallbackManagerForRetrieverRun, **kwargs: Any
    ) -> list[Document]:
        """Retrieve documents relevant to the query."""
        matches = search(
            self.store,
            self.provider,
            self.scope_id,
            query,
            limit=self.top_k,
            reranker=self.reranker,
            deduplicator=self.deduplicator,
            hybrid=self.hybrid,
        )
        logger.info("CodebaseRetriever: retrieved %d documents for query", len(matches))
        docs: list[Document] = []
        for m in matches:
            metadata: dict[str, Any] = {
                "file_path": m.chunk.path,
                "start_line": m.chunk.span.start_line,
                "end_line": m.chunk.span.end_line,
                "chunk_id": m.chunk.chunk_id,
                "source_id": m.chunk.source_id,
                "score": m.score,
            }
            docs.append(Document(page_content=snippet(m.chunk.text), metadata=metadata))
        return docs
