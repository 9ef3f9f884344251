"""Document synchronization for content that does not come from a filesystem scan."""

from rag_engine.sync.batch import batch_sync
from rag_engine.sync.chunks import DocumentChunker
from rag_engine.sync.documents import DocumentSyncAPI
from rag_engine.sync.metrics import calculate_metrics
from rag_engine.sync.models import (
    BatchSyncResult,
    ChunkRecord,
    DocumentRecord,
    SyncConfig,
    SyncMetrics,
    SyncOperation,
    SyncResult,
)
from rag_engine.sync.partial import PartialUpdateRejected, plan_partial_update
from rag_engine.sync.registry import DocumentRegistry, FileSystemRegistry, InMemoryRegistry, create_registry
from rag_engine.sync.scheduler import schedule_cleanup

__all__ = [
    "BatchSyncResult",
    "ChunkRecord",
    "DocumentChunker",
    "DocumentRecord",
    "DocumentRegistry",
    "DocumentSyncAPI",
    "FileSystemRegistry",
    "InMemoryRegistry",
    "PartialUpdateRejected",
    "SyncConfig",
    "SyncMetrics",
    "SyncOperation",
    "SyncResult",
    "batch_sync",
    "calculate_metrics",
    "create_registry",
    "plan_partial_update",
    "schedule_cleanup",
]
