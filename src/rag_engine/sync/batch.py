"""Batch sync: validate size up front, then run operations with bounded concurrency."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable

from rag_engine.errors import BatchSizeError
from rag_engine.sync.documents import SYNC_ERRORS, DocumentSyncAPI
from rag_engine.sync.models import BatchSyncResult, SyncOperation, SyncResult

logger = logging.getLogger(__name__)


def _run(api: DocumentSyncAPI, op: SyncOperation) -> SyncResult:
    document_id = f"{op.source}:{op.id}"
    if op.operation in ("add", "update") and op.content is None:
        return SyncResult(
            success=False,
            document_id=document_id,
            scope_id=op.scope_id,
            error=f"Content is required for {op.operation} operation",
        )
    try:
        if op.operation == "add":
            return api.add_document(op.source, op.id, op.scope_id, op.content, op.metadata)
        if op.operation == "update":
            return api.update_document(op.source, op.id, op.scope_id, op.content, op.metadata)
        return api.delete_document(op.source, op.id, op.scope_id)
    except SYNC_ERRORS as e:
        return SyncResult(success=False, document_id=document_id, scope_id=op.scope_id, error=str(e))


def batch_sync(
    api: DocumentSyncAPI,
    operations: Iterable[SyncOperation | dict],
    max_size_override: int | None = None,
    concurrency: int | None = None,
) -> BatchSyncResult:
    """Run operations and collect one SyncResult each, in input order.

    Raises BatchSizeError before anything runs when the batch is larger than allowed.
    """
    ops = [op if isinstance(op, SyncOperation) else SyncOperation.model_validate(op) for op in operations]
    max_size = max_size_override or api.config.batch.max_size
    if len(ops) > max_size:
        raise BatchSizeError(
            f"Batch size {len(ops)} exceeds maximum allowed size of {max_size}. "
            "Use --max-size or raise batch.max_size in the sync config."
        )
    workers = max(1, concurrency or api.config.batch.concurrency)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rag-sync") as executor:
        results = list(executor.map(lambda op: _run(api, op), ops))
    successful = sum(1 for r in results if r.success)
    logger.info("sync.batch: %d operations, %d ok, %d failed", len(ops), successful, len(ops) - successful)
    return BatchSyncResult(total=len(ops), successful=successful, failed=len(ops) - successful, results=results)
