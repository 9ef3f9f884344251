"""Scope-bound view of a vector store, used by the storage stage and document sync."""

from collections import defaultdict
from typing import Iterable

from rag_engine.vector_store.base import FileRecord, StoredChunk, VectorStore


class ScopedStore:
    def __init__(self, store: VectorStore, scope_id: str):
        self.store = store
        self.scope_id = scope_id

    def insert_batch(self, chunks: list[StoredChunk]) -> None:
        if chunks:
            self.store.upsert_chunks(self.scope_id, chunks)

    def update_batch(self, chunks: list[StoredChunk]) -> None:
        if chunks:
            self.store.upsert_chunks(self.scope_id, chunks)

    def delete_batch(self, chunk_ids: Iterable[str]) -> None:
        ids = list(chunk_ids)
        if ids:
            self.store.delete_chunks(self.scope_id, ids)

    def check_existence(self, chunk_ids: Iterable[str]) -> set[str]:
        wanted = set(chunk_ids)
        return {ref.chunk_id for ref in self.store.chunk_refs(self.scope_id) if ref.chunk_id in wanted}

    def get_chunks_by_hash(self, file_hashes: Iterable[str]) -> dict[str, list[str]]:
        """Map each known file hash to the chunk ids stored under it."""
        wanted = set(file_hashes)
        out: dict[str, list[str]] = defaultdict(list)
        for ref in self.store.chunk_refs(self.scope_id):
            if ref.file_hash in wanted:
                out[ref.file_hash].append(ref.chunk_id)
        return dict(out)

    def chunk_ids_by_path(self, paths: Iterable[str] | None = None) -> dict[str, set[str]]:
        wanted = set(paths) if paths is not None else None
        out: dict[str, set[str]] = defaultdict(set)
        for ref in self.store.chunk_refs(self.scope_id):
            if wanted is None or ref.path in wanted:
                out[ref.path].add(ref.chunk_id)
        return dict(out)

    def files_metadata(self, paths: Iterable[str] | None = None) -> dict[str, FileRecord]:
        return self.store.get_files_metadata(self.scope_id, paths)
