"""Chunk and embed synced document content into StoredChunks."""

from rag_engine.chunking import Chunk, ChunkerRegistry, LineBasedChunker, default_registry
from rag_engine.embeddings.base import EmbeddingProvider, sanitize_text
from rag_engine.indexing.stages.chunking import truncate_content
from rag_engine.sync.models import ChunkRecord, DocumentRecord
from rag_engine.sync.partial import text_hash
from rag_engine.vector_store.base import Span, StoredChunk

CONTENT_EXTENSIONS = {"markdown": ".md", "md": ".md", "html": ".html"}


def document_chunk_id(record: DocumentRecord, chunk: Chunk, ordinal: int) -> str:
    return f"{record.source}:{record.id}:{chunk.start_line}-{chunk.end_line}:{ordinal}"


def document_path(record: DocumentRecord) -> str:
    return f"external://{record.source}/{record.id}"


def chunk_record(chunk: StoredChunk) -> ChunkRecord:
    return ChunkRecord(
        chunk_id=chunk.chunk_id,
        content_hash=text_hash(chunk.text),
        text=chunk.text,
        start_line=chunk.span.start_line,
        end_line=chunk.span.end_line,
    )


class DocumentChunker:
    """Picks a chunker from metadata["content_type"] (markdown, html, else plain text)."""

    def __init__(self, provider: EmbeddingProvider, chunkers: ChunkerRegistry | None = None):
        self.provider = provider
        self.chunkers = chunkers or default_registry()
        self.fallback = LineBasedChunker(max_lines=150, min_lines=30)

    def chunk(self, content: str, record: DocumentRecord) -> list[Chunk]:
        content = truncate_content(content)
        ext = CONTENT_EXTENSIONS.get(str(record.metadata.get("content_type", "")).lower(), ".txt")
        path = f"{record.source}/{record.id}{ext}"
        chunker = self.chunkers.find(path) or self.fallback
        return chunker.chunk(content, path)

    def embed(self, record: DocumentRecord, chunks: list[Chunk]) -> list[StoredChunk]:
        """Embed chunks in one call; ids use each chunk's position in the list."""
        if not chunks:
            return []
        vectors = self.provider.embed([sanitize_text(c.text) for c in chunks])
        return [
            StoredChunk(
                chunk_id=document_chunk_id(record, c, i),
                scope_id=record.scope_id,
                source_id=record.document_id,
                path=document_path(record),
                span=Span(c.start_line, c.end_line),
                text=c.text,
                embedding=v,
                metadata={
                    **record.metadata,
                    "source": record.source,
                    "external_id": record.id,
                    "sync_hash": text_hash(c.text),
                },
            )
            for i, (c, v) in enumerate(zip(chunks, vectors))
        ]
