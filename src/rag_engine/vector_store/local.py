"""In-process vector store with optional JSON persistence per scope.

Every mutation is a read-modify-write of the whole scope followed by a replace.
Writes to one scope are serialised by a per-scope lock held across the whole cycle.
"""

import hashlib
import json
import logging
import re
import threading
import time
from collections import defaultdict

from rag_engine.runtime import SandboxedFileSystem
from rag_engine.vector_store.base import (
    SearchFilters,
    StoredChunk,
    VectorSearchMatch,
    VectorStore,
    cosine_similarity,
)

logger = logging.getLogger(__name__)


def _scope_filename(scope_id: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9_.-]", "_", scope_id)[:64]
    digest = hashlib.sha256(scope_id.encode("utf-8")).hexdigest()[:8]
    return f"{slug}-{digest}.json"


class LocalVectorStore(VectorStore):
    def __init__(self, fs: SandboxedFileSystem | None = None, directory: str = "index"):
        self._fs = fs
        self._dir = directory
        self._scopes: dict[str, dict[str, StoredChunk]] = {}
        self._locks: defaultdict[str, threading.RLock] = defaultdict(threading.RLock)
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Scope loading and commit
    # ------------------------------------------------------------------

    def _lock(self, scope_id: str) -> threading.RLock:
        with self._locks_guard:
            return self._locks[scope_id]

    def _path(self, scope_id: str) -> str:
        return f"{self._dir}/{_scope_filename(scope_id)}"

    def _load(self, scope_id: str) -> dict[str, StoredChunk]:
        if scope_id in self._scopes:
            return self._scopes[scope_id]
        chunks: dict[str, StoredChunk] = {}
        if self._fs is not None and self._fs.exists(self._path(scope_id)):
            raw = json.loads(self._fs.read_text(self._path(scope_id)))
            chunks = {c["chunk_id"]: StoredChunk.from_dict(c) for c in raw["chunks"]}
            logger.debug("vector_store.local: loaded %d chunks for scope %s", len(chunks), scope_id)
        self._scopes[scope_id] = chunks
        return chunks

    def _commit(self, scope_id: str, chunks: dict[str, StoredChunk]) -> None:
        """Persist first, then swap, so a failed write leaves the previous scope visible."""
        if self._fs is not None:
            payload = {"scope_id": scope_id, "updated_at": time.time(), "chunks": [c.to_dict() for c in chunks.values()]}
            self._fs.write_text(self._path(scope_id), json.dumps(payload))
        self._scopes[scope_id] = chunks

    # ------------------------------------------------------------------
    # VectorStore
    # ------------------------------------------------------------------

    def replace_scope(self, scope_id: str, chunks: list[StoredChunk]) -> None:
        with self._lock(scope_id):
            self._commit(scope_id, {c.chunk_id: c for c in chunks})
        logger.info("vector_store.local: replaced scope %s (%d chunks)", scope_id, len(chunks))

    def upsert_chunks(self, scope_id: str, chunks: list[StoredChunk]) -> None:
        with self._lock(scope_id):
            updated = dict(self._load(scope_id))
            for c in chunks:
                updated[c.chunk_id] = c
            self._commit(scope_id, updated)

    def delete_chunks(self, scope_id: str, chunk_ids: list[str]) -> None:
        with self._lock(scope_id):
            current = self._load(scope_id)
            doomed = set(chunk_ids)
            self._commit(scope_id, {k: v for k, v in current.items() if k not in doomed})

    def update_scope(self, scope_id, chunks, file_metadata=None):
        with self._lock(scope_id):
            return super().update_scope(scope_id, chunks, file_metadata)

    def get_all_chunks(self, scope_id: str, filters: SearchFilters | None = None) -> list[StoredChunk]:
        with self._lock(scope_id):
            chunks = list(self._load(scope_id).values())
        if filters is None:
            return chunks
        return [c for c in chunks if filters.matches(c)]

    def search(
        self,
        scope_id: str,
        vector: list[float],
        limit: int,
        filters: SearchFilters | None = None,
    ) -> list[VectorSearchMatch]:
        matches = [
            VectorSearchMatch(chunk=c, score=cosine_similarity(vector, c.embedding))
            for c in self.get_all_chunks(scope_id, filters)
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:limit]

    def scope_exists(self, scope_id: str) -> bool:
        with self._lock(scope_id):
            return bool(self._load(scope_id))

    def delete_scope(self, scope_id: str) -> None:
        with self._lock(scope_id):
            self._scopes[scope_id] = {}
            if self._fs is not None:
                self._fs.remove(self._path(scope_id))
        logger.info("vector_store.local: deleted scope %s", scope_id)
