"""Filtering stage: drop files the store already holds unchanged.

Tier 1 skips on an exact mtime+size match, tier 2 reads and hashes the rest and skips
on a content-hash match, and everything else moves on to chunking.
"""

import hashlib
import logging
from typing import Callable, Iterable

from rag_engine.indexing.context import FileMetadata, PipelineContext, Stage, StageResult
from rag_engine.vector_store.base import FileRecord

logger = logging.getLogger(__name__)

MetadataLookup = Callable[[str, Iterable[str]], dict[str, FileRecord]]


def file_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FilteringStage(Stage):
    name = "filtering"
    description = "Skip files unchanged since the last index"

    def __init__(
        self,
        lookup: MetadataLookup | None,
        quick_filter: bool = True,
        hash_filter: bool = True,
        batch_size: int = 100,
    ):
        self.lookup = lookup
        self.quick_filter = quick_filter
        self.hash_filter = hash_filter
        self.batch_size = batch_size

    def execute(self, ctx: PipelineContext) -> StageResult:
        total = len(ctx.files)
        if self.lookup is None or not (self.quick_filter or self.hash_filter):
            ctx.log(logging.INFO, "indexing.filtering: no metadata lookup or filters disabled, keeping all files")
            return StageResult(True, self._data(total, total, 0, 0))

        kept: list[FileMetadata] = []
        new_files = skipped_mtime = skipped_hash = 0
        for i in range(0, total, self.batch_size):
            batch = ctx.files[i : i + self.batch_size]
            stored = self.lookup(ctx.scope_id, [f.relative_path for f in batch])
            for f in batch:
                rec = stored.get(f.relative_path)
                if rec is None:
                    new_files += 1
                    kept.append(f)
                    continue
                if self.quick_filter and rec.mtime == f.mtime and rec.size == f.size:
                    skipped_mtime += 1
                    continue
                if not self.hash_filter:
                    kept.append(f)
                    continue
                try:
                    f.hash = file_hash(ctx.runtime.fs.read_bytes(f.relative_path))
                except OSError as e:
                    ctx.add_error(f.relative_path, f"read failed: {e}")
                    continue
                if f.hash == rec.hash:
                    skipped_hash += 1
                else:
                    kept.append(f)
            ctx.progress(self.name, min(i + self.batch_size, total), total)

        ctx.files = kept
        ctx.stats.files_skipped += skipped_mtime + skipped_hash
        ctx.log(
            logging.INFO,
            f"indexing.filtering: {len(kept)}/{total} files to index "
            f"({new_files} new, {skipped_mtime} skipped by mtime, {skipped_hash} skipped by hash)",
        )
        return StageResult(True, self._data(total, len(kept), skipped_mtime, skipped_hash))

    @staticmethod
    def _data(total: int, filtered: int, by_mtime: int, by_hash: int) -> dict:
        return {
            "total_files": total,
            "filtered_files": filtered,
            "skipped_by_mtime": by_mtime,
            "skipped_by_hash": by_hash,
        }
