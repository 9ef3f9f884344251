"""Qdrant REST payloads: point ids, filters and chunk <-> point conversion."""

from rag_engine.vector_store.base import FILE_HASH, FILE_MTIME, FILE_SIZE, ChunkRef, Span, StoredChunk, point_id


def scope_filter(scope_id: str, source_ids=None, paths=None) -> dict:
    must: list[dict] = [{"key": "scope_id", "match": {"value": scope_id}}]
    if source_ids:
        must.append({"key": "source_id", "match": {"any": sorted(source_ids)}})
    if paths:
        must.append({"key": "path", "match": {"any": sorted(paths)}})
    return {"must": must}


def to_point(chunk: StoredChunk) -> dict:
    return {
        "id": point_id(chunk.scope_id, chunk.chunk_id),
        "vector": chunk.embedding,
        "payload": {
            "scope_id": chunk.scope_id,
            "chunk_id": chunk.chunk_id,
            "source_id": chunk.source_id,
            "path": chunk.path,
            "span": {"start_line": chunk.span.start_line, "end_line": chunk.span.end_line},
            "text": chunk.text,
            "metadata": chunk.metadata,
            "file_hash": chunk.metadata.get(FILE_HASH),
            "file_mtime": chunk.metadata.get(FILE_MTIME),
        },
    }


def from_point(point: dict) -> StoredChunk:
    p = point["payload"]
    vector = point.get("vector") or []
    return StoredChunk(
        chunk_id=p["chunk_id"],
        scope_id=p["scope_id"],
        source_id=p["source_id"],
        path=p["path"],
        span=Span(**p["span"]),
        text=p.get("text", ""),
        embedding=vector if isinstance(vector, list) else [],
        metadata=p.get("metadata") or {},
    )


def ref_from_point(point: dict) -> ChunkRef:
    p = point["payload"]
    meta = p.get("metadata") or {}
    return ChunkRef(
        chunk_id=p["chunk_id"],
        path=p["path"],
        file_hash=p.get("file_hash"),
        file_mtime=p.get("file_mtime"),
        file_size=meta.get(FILE_SIZE),
    )
