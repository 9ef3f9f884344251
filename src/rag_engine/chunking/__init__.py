"""Chunkers and the registry that picks one per file."""

from rag_engine.chunking.base import Chunk, Chunker, ChunkerRegistry, normalize_extension
from rag_engine.chunking.code import CodeChunker
from rag_engine.chunking.line_based import LineBasedChunker, StreamingLineChunker
from rag_engine.chunking.markdown import MarkdownChunker

# Above this size files are chunked as a stream, whatever their type.
LARGE_FILE_BYTES = 1024 * 1024

__all__ = [
    "Chunk",
    "Chunker",
    "ChunkerRegistry",
    "CodeChunker",
    "LineBasedChunker",
    "MarkdownChunker",
    "StreamingLineChunker",
    "default_registry",
    "normalize_extension",
    "select_chunker",
]


def default_registry() -> ChunkerRegistry:
    registry = ChunkerRegistry()
    registry.register(CodeChunker())
    registry.register(MarkdownChunker())
    return registry


_line_fallback = LineBasedChunker()
_streaming_fallback = StreamingLineChunker()


def select_chunker(
    registry: ChunkerRegistry,
    path: str,
    size: int,
    language: str | None = None,
    large_file_bytes: int = LARGE_FILE_BYTES,
) -> Chunker:
    """Registry match for normal files, streaming line windows for very large ones."""
    if size > large_file_bytes:
        return _streaming_fallback
    return registry.find(path, language) or _line_fallback
