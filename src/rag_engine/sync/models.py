"""Pydantic models for document sync: registry records, results and config."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from rag_engine.vector_store.base import Span


class ChunkRecord(BaseModel):
    chunk_id: str
    content_hash: str
    text: str
    start_line: int
    end_line: int

    @property
    def span(self) -> Span:
        return Span(self.start_line, self.end_line)


class DocumentRecord(BaseModel):
    """Registry entry for one externally synced document."""

    source: str
    id: str
    scope_id: str
    content_hash: str
    chunks: list[ChunkRecord] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    synced_at: datetime
    updated_at: datetime
    deleted: bool = False
    deleted_at: datetime | None = None

    @property
    def key(self) -> str:
        return registry_key(self.source, self.id, self.scope_id)

    @property
    def document_id(self) -> str:
        return f"{self.source}:{self.id}"


def registry_key(source: str, doc_id: str, scope_id: str) -> str:
    return f"{source}:{doc_id}:{scope_id}"


class SyncResult(BaseModel):
    success: bool
    document_id: str
    scope_id: str
    chunks_added: int = 0
    chunks_updated: int = 0
    chunks_deleted: int = 0
    error: str | None = None


class SyncOperation(BaseModel):
    operation: Literal["add", "update", "delete"]
    source: str
    id: str
    scope_id: str
    content: str | None = None
    metadata: dict[str, Any] | None = None


class BatchSyncResult(BaseModel):
    total: int
    successful: int
    failed: int
    results: list[SyncResult]


class SoftDeleteConfig(BaseModel):
    enabled: bool = True
    ttl_days: int = 30


class PartialUpdateConfig(BaseModel):
    enabled: bool = True
    similarity_threshold: float = Field(0.8, ge=0.0, le=1.0)


class BatchConfig(BaseModel):
    max_size: int = 100
    concurrency: int = 5


class SyncConfig(BaseModel):
    soft_delete: SoftDeleteConfig = Field(default_factory=SoftDeleteConfig)
    partial_updates: PartialUpdateConfig = Field(default_factory=PartialUpdateConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)


class SyncMetrics(BaseModel):
    total_documents: int = 0
    total_chunks: int = 0
    deleted_documents: int = 0
    documents_by_source: dict[str, int] = Field(default_factory=dict)
    chunks_by_source: dict[str, int] = Field(default_factory=dict)
    deleted_by_source: dict[str, int] = Field(default_factory=dict)
    documents_by_scope: dict[str, int] = Field(default_factory=dict)
    chunks_by_scope: dict[str, int] = Field(default_factory=dict)
    last_sync_time: dict[str, datetime] = Field(default_factory=dict)
