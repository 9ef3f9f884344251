"""Partial document update: re-embed only spans whose text changed.

The plan and its embeddings are computed before anything is written. A plan that
changes more than (1 - similarity_threshold) of the chunks is rejected so the caller
falls back to a full rebuild.
"""

import hashlib
import logging
from dataclasses import dataclass, field

from rag_engine.chunking import Chunk
from rag_engine.errors import RagEngineError
from rag_engine.sync.models import ChunkRecord, DocumentRecord

logger = logging.getLogger(__name__)


class PartialUpdateRejected(RagEngineError):
    """Change set too large (or otherwise unsuitable) for a partial update."""


def text_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def span_key(start_line: int, end_line: int) -> str:
    return f"{start_line}-{end_line}"


@dataclass
class PartialPlan:
    kept: list[ChunkRecord] = field(default_factory=list)
    updated: list[tuple[ChunkRecord, Chunk]] = field(default_factory=list)
    added: list[tuple[int, Chunk]] = field(default_factory=list)
    deleted: list[ChunkRecord] = field(default_factory=list)

    @property
    def total_changes(self) -> int:
        return len(self.updated) + len(self.added) + len(self.deleted)

    def to_embed(self) -> list[Chunk]:
        return [new for _, new in self.updated] + [new for _, new in self.added]


def plan_partial_update(existing: DocumentRecord, new_chunks: list[Chunk], similarity_threshold: float) -> PartialPlan:
    """Match chunks by span; unchanged text is kept, changed text is updated in place."""
    if not existing.chunks:
        raise PartialUpdateRejected("Document has no chunks to diff against")
    by_span = {span_key(c.start_line, c.end_line): c for c in existing.chunks}
    new_spans = {span_key(c.start_line, c.end_line) for c in new_chunks}
    plan = PartialPlan()
    for ordinal, chunk in enumerate(new_chunks):
        old = by_span.get(span_key(chunk.start_line, chunk.end_line))
        if old is None:
            plan.added.append((ordinal, chunk))
        elif old.content_hash != text_hash(chunk.text):
            plan.updated.append((old, chunk))
        else:
            plan.kept.append(old)
    plan.deleted = [c for c in existing.chunks if span_key(c.start_line, c.end_line) not in new_spans]

    ratio = plan.total_changes / max(len(existing.chunks), len(new_chunks), 1)
    if ratio > 1 - similarity_threshold:
        raise PartialUpdateRejected(
            f"Too many changes for partial update ({ratio:.2f} > {1 - similarity_threshold:.2f})"
        )
    logger.debug(
        "sync.partial: %s kept=%d updated=%d added=%d deleted=%d",
        existing.document_id,
        len(plan.kept),
        len(plan.updated),
        len(plan.added),
        len(plan.deleted),
    )
    return plan
