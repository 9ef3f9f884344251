"""Persistent local vector store on ChromaDB.

One collection holds every scope; scope_id, source_id and path live in each record's
metadata so scopes can be filtered and deleted independently.
"""

import json
import logging
import threading
from collections import defaultdict

import chromadb
from chromadb.config import Settings as ChromaSettings

from rag_engine.vector_store.base import (
    SearchFilters,
    Span,
    StoredChunk,
    VectorSearchMatch,
    VectorStore,
    point_id,
)

logger = logging.getLogger(__name__)

ADD_BATCH = 500


def _to_metadata(chunk: StoredChunk) -> dict:
    return {
        "scope_id": chunk.scope_id,
        "chunk_id": chunk.chunk_id,
        "source_id": chunk.source_id,
        "path": chunk.path,
        "start_line": chunk.span.start_line,
        "end_line": chunk.span.end_line,
        "metadata": json.dumps(chunk.metadata),
    }


def _from_record(meta: dict, document: str, embedding) -> StoredChunk:
    return StoredChunk(
        chunk_id=meta["chunk_id"],
        scope_id=meta["scope_id"],
        source_id=meta["source_id"],
        path=meta["path"],
        span=Span(meta["start_line"], meta["end_line"]),
        text=document or "",
        embedding=[float(v) for v in embedding] if embedding is not None else [],
        metadata=json.loads(meta.get("metadata") or "{}"),
    )


class ChromaVectorStore(VectorStore):
    def __init__(self, path: str, collection: str = "codebase", client=None):
        self._client = client or chromadb.PersistentClient(
            path=path, settings=ChromaSettings(anonymized_telemetry=False)
        )
        self._collection = self._client.get_or_create_collection(collection, metadata={"hnsw:space": "cosine"})
        self._locks: defaultdict[str, threading.RLock] = defaultdict(threading.RLock)
        logger.info("vector_store.chroma: opened collection %s at %s", collection, path)

    @staticmethod
    def _where(scope_id: str, filters: SearchFilters | None = None) -> dict:
        clauses: list[dict] = [{"scope_id": scope_id}]
        if filters is not None and filters.source_ids:
            clauses.append({"source_id": {"$in": sorted(filters.source_ids)}})
        return clauses[0] if len(clauses) == 1 else {"$and": clauses}

    def _add(self, chunks: list[StoredChunk]) -> None:
        for i in range(0, len(chunks), ADD_BATCH):
            batch = chunks[i : i + ADD_BATCH]
            self._collection.upsert(
                ids=[point_id(c.scope_id, c.chunk_id) for c in batch],
                embeddings=[c.embedding for c in batch],
                documents=[c.text for c in batch],
                metadatas=[_to_metadata(c) for c in batch],
            )

    def replace_scope(self, scope_id: str, chunks: list[StoredChunk]) -> None:
        with self._locks[scope_id]:
            new_ids = {point_id(scope_id, c.chunk_id) for c in chunks}
            old_ids = self._collection.get(where=self._where(scope_id), include=[])["ids"]
            self._add(chunks)
            stale = [i for i in old_ids if i not in new_ids]
            if stale:
                self._collection.delete(ids=stale)
        logger.info("vector_store.chroma: replaced scope %s (%d chunks)", scope_id, len(chunks))

    def upsert_chunks(self, scope_id: str, chunks: list[StoredChunk]) -> None:
        with self._locks[scope_id]:
            self._add(chunks)

    def delete_chunks(self, scope_id: str, chunk_ids: list[str]) -> None:
        if chunk_ids:
            with self._locks[scope_id]:
                self._collection.delete(ids=[point_id(scope_id, cid) for cid in chunk_ids])

    def update_scope(self, scope_id, chunks, file_metadata=None):
        with self._locks[scope_id]:
            return super().update_scope(scope_id, chunks, file_metadata)

    def get_all_chunks(self, scope_id: str, filters: SearchFilters | None = None) -> list[StoredChunk]:
        res = self._collection.get(
            where=self._where(scope_id, filters),
            include=["documents", "metadatas", "embeddings"],
        )
        embeddings = res.get("embeddings")
        if embeddings is None:
            embeddings = [None] * len(res["ids"])
        chunks = [
            _from_record(meta, doc, emb)
            for meta, doc, emb in zip(res["metadatas"], res["documents"], embeddings)
        ]
        if filters is not None and filters.path_matcher:
            chunks = [c for c in chunks if filters.path_matcher(c.path)]
        return chunks

    def search(
        self,
        scope_id: str,
        vector: list[float],
        limit: int,
        filters: SearchFilters | None = None,
    ) -> list[VectorSearchMatch]:
        count = self._collection.count()
        if count == 0:
            return []
        n = min(count, limit * 3 if filters is not None and filters.path_matcher else limit)
        res = self._collection.query(
            query_embeddings=[vector],
            n_results=n,
            where=self._where(scope_id, filters),
            include=["documents", "metadatas", "distances", "embeddings"],
        )
        embeddings = res["embeddings"][0] if res.get("embeddings") is not None else [None] * len(res["ids"][0])
        matches: list[VectorSearchMatch] = []
        rows = zip(res["metadatas"][0], res["documents"][0], res["distances"][0], embeddings)
        for meta, doc, dist, emb in rows:
            chunk = _from_record(meta, doc, emb)
            if filters is not None and filters.path_matcher and not filters.path_matcher(chunk.path):
                continue
            matches.append(VectorSearchMatch(chunk=chunk, score=1.0 - dist))
        return matches[:limit]

    def scope_exists(self, scope_id: str) -> bool:
        return bool(self._collection.get(where=self._where(scope_id), limit=1, include=[])["ids"])

    def delete_scope(self, scope_id: str) -> None:
        with self._locks[scope_id]:
            self._collection.delete(where=self._where(scope_id))
        logger.info("vector_store.chroma: deleted scope %s", scope_id)
