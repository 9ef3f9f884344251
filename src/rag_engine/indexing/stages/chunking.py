"""Chunking stage: split each remaining file with its resolved chunker."""

import logging
from typing import Iterable, Iterator

from rag_engine.chunking import LARGE_FILE_BYTES, Chunk, ChunkerRegistry, default_registry, select_chunker
from rag_engine.indexing.context import FileMetadata, PipelineContext, Stage, StageResult
from rag_engine.indexing.stages.filtering import file_hash
from rag_engine.vector_store.base import FILE_HASH, FILE_MTIME, FILE_SIZE, Span, StoredChunk

logger = logging.getLogger(__name__)

MAX_CONTENT_BYTES = 10 * 1024 * 1024
TRUNCATION_MARKER = "\n\n[Content truncated due to size limit]"


def make_chunk_id(source_id: str, path: str, chunk: Chunk, ordinal: int) -> str:
    """Stable id from (source, path, span, ordinal)."""
    return f"{source_id}:{path}:{chunk.start_line}-{chunk.end_line}:{ordinal}"


def truncate_content(text: str, limit: int = MAX_CONTENT_BYTES) -> str:
    data = text.encode("utf-8")
    if len(data) <= limit:
        return text
    return data[:limit].decode("utf-8", errors="ignore") + TRUNCATION_MARKER


def bounded_lines(lines: Iterable[str], limit: int = MAX_CONTENT_BYTES) -> Iterator[str]:
    """Yield lines until limit bytes have been read, then the truncation marker."""
    used = 0
    for line in lines:
        used += len(line.encode("utf-8")) + 1
        if used > limit:
            yield from TRUNCATION_MARKER.lstrip("\n").splitlines()
            return
        yield line


class ChunkingStage(Stage):
    name = "chunking"
    description = "Split files into semantic chunks"

    def __init__(self, registry: ChunkerRegistry | None = None, large_file_bytes: int = LARGE_FILE_BYTES):
        self.registry = registry or default_registry()
        self.large_file_bytes = large_file_bytes

    def _batch_size(self, ctx: PipelineContext) -> int:
        ratio = ctx.memory_monitor.usage_ratio()
        if ratio > 0.8:
            return 5
        if ratio > 0.6:
            return 10
        return 20

    def _chunk_file(self, ctx: PipelineContext, f: FileMetadata) -> list[StoredChunk]:
        fs = ctx.runtime.fs
        chunker = select_chunker(
            self.registry, f.relative_path, f.size, f.source_language, self.large_file_bytes
        )
        if f.hash is None:
            f.hash = file_hash(fs.read_bytes(f.relative_path))
        if f.size > self.large_file_bytes:
            chunks = list(chunker.chunk_stream(bounded_lines(fs.iter_lines(f.relative_path)), f.relative_path))
        else:
            text = truncate_content(fs.read_text(f.relative_path))
            chunks = chunker.chunk(text, f.relative_path)

        out = []
        for ordinal, c in enumerate(chunks):
            metadata = {
                **c.metadata,
                "kind": f.source_kind,
                "language": f.source_language,
                "chunker": chunker.id,
                "chunk_type": c.type,
                "chunk_name": c.name,
                FILE_HASH: f.hash,
                FILE_MTIME: f.mtime,
                FILE_SIZE: f.size,
            }
            out.append(
                StoredChunk(
                    chunk_id=make_chunk_id(f.source_id, f.relative_path, c, ordinal),
                    scope_id=ctx.scope_id,
                    source_id=f.source_id,
                    path=f.relative_path,
                    span=Span(c.start_line, c.end_line),
                    text=c.text,
                    embedding=[],
                    metadata=metadata,
                )
            )
        return out

    def execute(self, ctx: PipelineContext) -> StageResult:
        total = len(ctx.files)
        chunked: list[StoredChunk] = []
        processed = failed = 0
        i = 0
        while i < total:
            if ctx.token is not None:
                ctx.token.raise_if_cancelled()
            size = self._batch_size(ctx)
            for f in ctx.files[i : i + size]:
                try:
                    chunked.extend(self._chunk_file(ctx, f))
                    processed += 1
                except (OSError, UnicodeDecodeError, ValueError) as e:
                    failed += 1
                    ctx.add_error(f.relative_path, f"chunking failed: {e}")
                    ctx.log(logging.WARNING, f"indexing.chunking: {f.relative_path}: {e}")
                    if ctx.error_budget_exhausted:
                        break
            i += size
            ctx.progress(self.name, min(i, total), total)
            if ctx.error_budget_exhausted:
                break
            ctx.backpressure()

        ctx.chunks = chunked
        ctx.stats.total_chunks = len(chunked)
        ctx.log(logging.INFO, f"indexing.chunking: {len(chunked)} chunks from {processed} files ({failed} failed)")
        return StageResult(
            success=failed == 0,
            data={"files_chunked": processed, "files_failed": failed, "total_chunks": len(chunked)},
            error=f"{failed} files failed to chunk" if failed else None,
        )
