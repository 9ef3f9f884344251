"""Vector store contract, implementations and factory."""

from rag_engine.config.providers import ChromaStoreConfig, LocalStoreConfig, RemoteStoreConfig, VectorStoreConfig
from rag_engine.errors import ConfigurationError
from rag_engine.runtime import RuntimeAdapter, SandboxedFileSystem
from rag_engine.vector_store.base import (
    FILE_HASH,
    FILE_MTIME,
    FILE_SIZE,
    ChunkRef,
    FileRecord,
    IncrementalPlan,
    SearchFilters,
    Span,
    StoredChunk,
    VectorSearchMatch,
    VectorStore,
    cosine_similarity,
    point_id,
)
from rag_engine.vector_store.local import LocalVectorStore
from rag_engine.vector_store.remote import RemoteVectorStore
from rag_engine.vector_store.scoped import ScopedStore

__all__ = [
    "FILE_HASH",
    "FILE_MTIME",
    "FILE_SIZE",
    "ChromaVectorStore",
    "ChunkRef",
    "FileRecord",
    "IncrementalPlan",
    "LocalVectorStore",
    "RemoteVectorStore",
    "ScopedStore",
    "SearchFilters",
    "Span",
    "StoredChunk",
    "VectorSearchMatch",
    "VectorStore",
    "cosine_similarity",
    "create_vector_store",
    "point_id",
]


def __getattr__(name: str):
    """Lazy import for chromadb."""
    if name == "ChromaVectorStore":
        from rag_engine.vector_store.chroma import ChromaVectorStore
        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def create_vector_store(config: VectorStoreConfig, runtime: RuntimeAdapter | None = None) -> VectorStore:
    if isinstance(config, LocalStoreConfig):
        if not config.path:
            return LocalVectorStore()
        return LocalVectorStore(fs=SandboxedFileSystem(config.path), directory=".")
    if isinstance(config, ChromaStoreConfig):
        from rag_engine.vector_store.chroma import ChromaVectorStore
        return ChromaVectorStore(config.path, config.collection)
    if isinstance(config, RemoteStoreConfig):
        if runtime is None:
            raise ConfigurationError("Remote vector store needs a runtime fetch")
        return RemoteVectorStore(config, runtime.fetch)
    raise ConfigurationError(f"Unsupported vector store config: {config!r}")
