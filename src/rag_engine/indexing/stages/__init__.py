"""Default indexing stages, in pipeline order."""

from rag_engine.indexing.stages.chunking import ChunkingStage, make_chunk_id
from rag_engine.indexing.stages.discovery import DiscoveryStage, should_index_path
from rag_engine.indexing.stages.embedding import EmbeddingStage
from rag_engine.indexing.stages.filtering import FilteringStage, file_hash
from rag_engine.indexing.stages.storage import StorageStage

__all__ = [
    "ChunkingStage",
    "DiscoveryStage",
    "EmbeddingStage",
    "FilteringStage",
    "StorageStage",
    "file_hash",
    "make_chunk_id",
    "should_index_path",
]
