"""DocumentSyncAPI: add/update/delete/restore externally sourced documents.

Lifecycle per (source, id, scope): absent -> active <-> soft-deleted -> restored | hard-deleted.
Public methods never raise; failures come back as SyncResult(success=False, error=...).
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import requests

from rag_engine.chunking import Chunk, ChunkerRegistry
from rag_engine.embeddings.base import EmbeddingProvider
from rag_engine.errors import DocumentNotFoundError, DocumentStateError, RagEngineError, TTLExpiredError
from rag_engine.runtime import RuntimeAdapter
from rag_engine.sync.chunks import DocumentChunker, chunk_record, document_chunk_id
from rag_engine.sync.models import ChunkRecord, DocumentRecord, SyncConfig, SyncResult, registry_key
from rag_engine.sync.partial import plan_partial_update, text_hash
from rag_engine.sync.registry import DocumentRegistry, KeyedLocks
from rag_engine.vector_store.base import VectorStore

logger = logging.getLogger(__name__)

SYNC_ERRORS = (RagEngineError, requests.RequestException, ValueError, OSError)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentSyncAPI:
    def __init__(
        self,
        registry: DocumentRegistry,
        store: VectorStore,
        provider: EmbeddingProvider,
        runtime: RuntimeAdapter | None = None,
        config: SyncConfig | None = None,
        chunkers: ChunkerRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.registry = registry
        self.store = store
        self.provider = provider
        self.runtime = runtime
        self.config = config or SyncConfig()
        self.chunker = DocumentChunker(provider, chunkers)
        self._clock = clock
        self._locks = KeyedLocks()

    def add_document(
        self, source: str, doc_id: str, scope_id: str, content: str, metadata: dict[str, Any] | None = None
    ) -> SyncResult:
        """Add a document. Existing records (active or soft-deleted) go through update."""
        def run() -> SyncResult:
            existing = self.registry.get(source, doc_id, scope_id)
            if existing is not None:
                return self._update(existing, content, metadata)
            now = self._clock()
            record = DocumentRecord(
                source=source,
                id=doc_id,
                scope_id=scope_id,
                content_hash=text_hash(content),
                metadata=metadata or {},
                synced_at=now,
                updated_at=now,
            )
            stored = self.chunker.embed(record, self.chunker.chunk(content, record))
            self.store.upsert_chunks(scope_id, stored)
            record.chunks = [chunk_record(c) for c in stored]
            self.registry.save(record)
            return self._ok(record, added=len(stored))

        return self._guard("add", source, doc_id, scope_id, run)

    def update_document(
        self, source: str, doc_id: str, scope_id: str, content: str, metadata: dict[str, Any] | None = None
    ) -> SyncResult:
        def run() -> SyncResult:
            existing = self.registry.get(source, doc_id, scope_id)
            if existing is None:
                return self.add_document(source, doc_id, scope_id, content, metadata)
            return self._update(existing, content, metadata)

        return self._guard("update", source, doc_id, scope_id, run)

    def delete_document(self, source: str, doc_id: str, scope_id: str, soft: bool = True) -> SyncResult:
        """Remove the document's chunks; keep the record for restore when soft-deleting."""
        def run() -> SyncResult:
            record = self._require(source, doc_id, scope_id)
            removed = self._remove_chunks(record)
            if soft and self.config.soft_delete.enabled:
                if not record.deleted:
                    record.deleted = True
                    record.deleted_at = self._clock()
                    self.registry.save(record)
            else:
                self.registry.delete(source, doc_id, scope_id)
            return self._ok(record, deleted=removed)

        return self._guard("delete", source, doc_id, scope_id, run)

    def hard_delete_document(self, source: str, doc_id: str, scope_id: str) -> SyncResult:
        return self.delete_document(source, doc_id, scope_id, soft=False)

    def restore_document(self, source: str, doc_id: str, scope_id: str) -> SyncResult:
        """Undo a soft delete within the TTL window and re-insert the recorded chunks."""
        def run() -> SyncResult:
            record = self._require(source, doc_id, scope_id)
            if not record.deleted:
                raise DocumentStateError("Document is not deleted")
            if self._expired(record):
                raise TTLExpiredError("Document TTL expired, cannot restore")
            stored = self.chunker.embed(record, [Chunk(c.text, c.start_line, c.end_line) for c in record.chunks])
            for cr, sc in zip(record.chunks, stored):
                sc.chunk_id = cr.chunk_id
            self.store.upsert_chunks(scope_id, stored)
            record.deleted = False
            record.deleted_at = None
            record.updated_at = self._clock()
            self.registry.save(record)
            return self._ok(record, added=len(stored))

        return self._guard("restore", source, doc_id, scope_id, run)

    def get_document(self, source: str, doc_id: str, scope_id: str) -> DocumentRecord | None:
        return self.registry.get(source, doc_id, scope_id)

    def list_documents(
        self, source: str | None = None, scope_id: str | None = None, include_deleted: bool = False
    ) -> list[DocumentRecord]:
        return self.registry.list(source, scope_id, include_deleted)

    def cleanup_expired(self) -> int:
        """Hard-delete registry records whose soft-delete TTL has passed."""
        removed = 0
        for record in self.registry.list(include_deleted=True):
            with self._locks.hold(record.key):
                current = self.registry.get(record.source, record.id, record.scope_id)
                if current is not None and current.deleted and self._expired(current):
                    self.registry.delete(record.source, record.id, record.scope_id)
                    removed += 1
        if removed:
            logger.info("sync.documents: cleaned up %d expired documents", removed)
        return removed

    def _update(self, existing: DocumentRecord, content: str, metadata: dict[str, Any] | None) -> SyncResult:
        new_hash = text_hash(content)
        merged = {**existing.metadata, **(metadata or {})}
        if existing.content_hash == new_hash and merged == existing.metadata and not existing.deleted:
            logger.debug("sync.documents: %s unchanged, skipping", existing.document_id)
            return self._ok(existing)

        existing.metadata = merged
        new_chunks = self.chunker.chunk(content, existing)
        partial = self.config.partial_updates.enabled and existing.chunks and not existing.deleted
        if partial and existing.content_hash != new_hash:
            try:
                return self._partial(existing, new_chunks, new_hash)
            except SYNC_ERRORS as e:
                logger.warning("sync.documents: partial update of %s failed, rebuilding: %s", existing.document_id, e)

        stored = self.chunker.embed(existing, new_chunks)
        old_ids = {c.chunk_id for c in existing.chunks}
        new_ids = {c.chunk_id for c in stored}
        self.store.upsert_chunks(existing.scope_id, stored)
        stale = sorted(old_ids - new_ids)
        if stale:
            self.store.delete_chunks(existing.scope_id, stale)
        self._save(existing, new_hash, [chunk_record(c) for c in stored])
        return self._ok(existing, added=len(new_ids - old_ids), updated=len(new_ids & old_ids), deleted=len(stale))

    def _partial(self, existing: DocumentRecord, new_chunks: list[Chunk], new_hash: str) -> SyncResult:
        plan = plan_partial_update(existing, new_chunks, self.config.partial_updates.similarity_threshold)
        embedded = self.chunker.embed(existing, plan.to_embed())
        for (old, _), sc in zip(plan.updated, embedded):
            sc.chunk_id = old.chunk_id
        for (ordinal, chunk), sc in zip(plan.added, embedded[len(plan.updated) :]):
            sc.chunk_id = document_chunk_id(existing, chunk, ordinal)
        written = {c.chunk_id for c in embedded}
        stale = [c.chunk_id for c in plan.deleted if c.chunk_id not in written]
        if embedded:
            self.store.upsert_chunks(existing.scope_id, embedded)
        if stale:
            self.store.delete_chunks(existing.scope_id, stale)
        records = plan.kept + [chunk_record(c) for c in embedded]
        records.sort(key=lambda r: (r.start_line, r.end_line))
        self._save(existing, new_hash, records)
        return self._ok(existing, added=len(plan.added), updated=len(plan.updated), deleted=len(plan.deleted))

    def _save(self, record: DocumentRecord, content_hash: str, chunks: list[ChunkRecord]) -> None:
        record.content_hash = content_hash
        record.chunks = chunks
        record.updated_at = self._clock()
        record.deleted = False
        record.deleted_at = None
        self.registry.save(record)

    def _remove_chunks(self, record: DocumentRecord) -> int:
        if record.deleted or not record.chunks:
            return 0
        ids = [c.chunk_id for c in record.chunks]
        self.store.delete_chunks(record.scope_id, ids)
        return len(ids)

    def _require(self, source: str, doc_id: str, scope_id: str) -> DocumentRecord:
        record = self.registry.get(source, doc_id, scope_id)
        if record is None:
            raise DocumentNotFoundError("Document not found")
        return record

    def _expired(self, record: DocumentRecord) -> bool:
        if record.deleted_at is None:
            return False
        return self._clock() - record.deleted_at > timedelta(days=self.config.soft_delete.ttl_days)

    @staticmethod
    def _ok(record: DocumentRecord, added: int = 0, updated: int = 0, deleted: int = 0) -> SyncResult:
        return SyncResult(
            success=True, document_id=record.document_id, scope_id=record.scope_id,
            chunks_added=added, chunks_updated=updated, chunks_deleted=deleted,
        )

    def _guard(self, action: str, source: str, doc_id: str, scope_id: str, fn: Callable[[], SyncResult]) -> SyncResult:
        t0 = time.monotonic()
        document_id = f"{source}:{doc_id}"
        try:
            with self._locks.hold(registry_key(source, doc_id, scope_id)):
                result = fn()
        except SYNC_ERRORS as e:
            logger.error("sync.documents: %s %s failed: %s", action, document_id, e)
            self._log("error", f"Failed to {action} document", {"document_id": document_id, "error": str(e)})
            return SyncResult(success=False, document_id=document_id, scope_id=scope_id, error=str(e))
        logger.info("sync.documents: %s %s (%.1fs)", action, document_id, time.monotonic() - t0)
        self._log("info", f"Document {action}", result.model_dump())
        return result

    def _log(self, level: str, message: str, meta: dict) -> None:
        if self.runtime is not None and self.runtime.log is not None:
            self.runtime.log(level, message, meta)

