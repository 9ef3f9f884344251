"""Registry-derived sync metrics."""

from rag_engine.sync.models import SyncMetrics
from rag_engine.sync.registry import DocumentRegistry


def calculate_metrics(registry: DocumentRegistry) -> SyncMetrics:
    metrics = SyncMetrics()
    for record in registry.list(include_deleted=True):
        active = 0 if record.deleted else 1
        chunks = len(record.chunks)
        if record.deleted:
            metrics.deleted_documents += 1
            metrics.deleted_by_source[record.source] = metrics.deleted_by_source.get(record.source, 0) + 1
        else:
            metrics.total_documents += 1
        metrics.total_chunks += chunks
        metrics.documents_by_source[record.source] = metrics.documents_by_source.get(record.source, 0) + active
        metrics.chunks_by_source[record.source] = metrics.chunks_by_source.get(record.source, 0) + chunks
        metrics.documents_by_scope[record.scope_id] = metrics.documents_by_scope.get(record.scope_id, 0) + active
        metrics.chunks_by_scope[record.scope_id] = metrics.chunks_by_scope.get(record.scope_id, 0) + chunks
        last = metrics.last_sync_time.get(record.source)
        if last is None or record.updated_at > last:
            metrics.last_sync_time[record.source] = record.updated_at
    return metrics
