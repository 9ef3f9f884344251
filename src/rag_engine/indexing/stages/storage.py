"""Storage stage: write embedded chunks to the vector store and drop stale ones."""

import logging
from collections import defaultdict

from rag_engine.errors import RagEngineError
from rag_engine.indexing.context import PipelineContext, Stage, StageResult
from rag_engine.vector_store.base import FILE_HASH, StoredChunk, VectorStore

logger = logging.getLogger(__name__)


class StorageStage(Stage):
    name = "storage"
    description = "Persist chunks to the vector store"

    def __init__(
        self,
        store: VectorStore,
        batch_size: int = 100,
        deduplication: bool = True,
        update_existing: bool = True,
        prune_deleted: bool = True,
        gc_interval: int = 10,
    ):
        self.store = store
        self.batch_size = batch_size
        self.deduplication = deduplication
        self.update_existing = update_existing
        self.prune_deleted = prune_deleted
        self.gc_interval = max(1, gc_interval)

    def _dedupe(self, ctx: PipelineContext, by_path: dict[str, list[StoredChunk]]) -> int:
        """Drop files already stored under the same content hash and chunk ids."""
        scoped = self.store.scoped(ctx.scope_id)
        hashes = {chunks[0].metadata.get(FILE_HASH) for chunks in by_path.values()}
        stored = {h: set(ids) for h, ids in scoped.get_chunks_by_hash(h for h in hashes if h).items()}
        skipped = 0
        for path in list(by_path):
            chunks = by_path[path]
            ids = {c.chunk_id for c in chunks}
            if ids <= stored.get(chunks[0].metadata.get(FILE_HASH), set()):
                del by_path[path]
                skipped += 1
        return skipped

    def execute(self, ctx: PipelineContext) -> StageResult:
        scoped = self.store.scoped(ctx.scope_id)
        failed_paths = {e.file for e in ctx.stats.errors}
        by_path: dict[str, list[StoredChunk]] = defaultdict(list)
        for c in ctx.chunks:
            by_path[c.path].append(c)
        incomplete = [p for p in by_path if p in failed_paths]
        for path in incomplete:
            del by_path[path]
        if incomplete:
            logger.warning("indexing.storage: holding back %d files with failed chunks", len(incomplete))

        skipped_files = self._dedupe(ctx, by_path) if self.deduplication else 0
        ctx.stats.files_skipped += skipped_files
        pending = [c for chunks in by_path.values() for c in chunks]
        existing = scoped.check_existence(c.chunk_id for c in pending)

        inserted = updated = skipped_chunks = failed = 0
        for n, i in enumerate(range(0, len(pending), self.batch_size), start=1):
            if ctx.token is not None:
                ctx.token.raise_if_cancelled()
            batch = pending[i : i + self.batch_size]
            new = [c for c in batch if c.chunk_id not in existing]
            old = [c for c in batch if c.chunk_id in existing]
            if not self.update_existing:
                skipped_chunks += len(old)
                old = []
            try:
                scoped.insert_batch(new)
                scoped.update_batch(old)
                inserted += len(new)
                updated += len(old)
            except RagEngineError as e:
                failed += len(batch)
                for c in batch:
                    failed_paths.add(c.path)
                    ctx.add_error(c.path, f"storage failed for {c.chunk_id}: {e}")
                if ctx.error_budget_exhausted:
                    break
            ctx.progress(self.name, min(i + self.batch_size, len(pending)), len(pending))
            if n % self.gc_interval == 0:
                ctx.memory_monitor.force_gc()
                ctx.backpressure()

        written = [p for p in by_path if p not in failed_paths]
        deleted = self._delete_stale(ctx, by_path, written)
        pruned = self._prune(ctx) if self.prune_deleted and not ctx.error_budget_exhausted else 0

        ctx.stats.files_processed += len(written)
        ctx.log(
            logging.INFO,
            f"indexing.storage: {inserted} inserted, {updated} updated, {deleted} stale removed, "
            f"{pruned} pruned, {skipped_files} files deduplicated, {failed} failed",
        )
        return StageResult(
            success=failed == 0,
            data={
                "inserted": inserted,
                "updated": updated,
                "skipped_chunks": skipped_chunks,
                "skipped_files": skipped_files,
                "stale_deleted": deleted,
                "pruned": pruned,
                "failed": failed,
                "held_back_files": len(incomplete),
            },
            error=f"{failed} chunks failed to store" if failed else None,
        )

    def _delete_stale(self, ctx: PipelineContext, by_path: dict[str, list[StoredChunk]], paths: list[str]) -> int:
        """Remove ids a re-indexed file no longer produces."""
        if not paths:
            return 0
        scoped = self.store.scoped(ctx.scope_id)
        stale = []
        for path, ids in scoped.chunk_ids_by_path(paths).items():
            stale.extend(ids - {c.chunk_id for c in by_path[path]})
        try:
            scoped.delete_batch(stale)
        except RagEngineError as e:
            ctx.add_error("storage", f"stale chunk cleanup failed: {e}")
            return 0
        return len(stale)

    def _prune(self, ctx: PipelineContext) -> int:
        """Remove chunks of files that discovery no longer finds."""
        scoped = self.store.scoped(ctx.scope_id)
        gone = [
            cid
            for path, ids in scoped.chunk_ids_by_path().items()
            if path not in ctx.discovered_paths
            for cid in ids
        ]
        if not gone:
            return 0
        try:
            scoped.delete_batch(gone)
        except RagEngineError as e:
            ctx.add_error("storage", f"pruning deleted files failed: {e}")
            return 0
        logger.info("indexing.storage: pruned %d chunks of deleted files", len(gone))
        return len(gone)
