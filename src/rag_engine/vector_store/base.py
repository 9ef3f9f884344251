"""Vector store contract and the chunk types it stores."""

import hashlib
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Iterable

FILE_HASH = "file_hash"
FILE_MTIME = "file_mtime"
FILE_SIZE = "file_size"


@dataclass
class Span:
    start_line: int
    end_line: int


@dataclass
class StoredChunk:
    chunk_id: str
    scope_id: str
    source_id: str
    path: str
    span: Span
    text: str
    embedding: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "StoredChunk":
        data = dict(data)
        data["span"] = Span(**data["span"])
        return cls(**data)


@dataclass
class VectorSearchMatch:
    chunk: StoredChunk
    score: float


@dataclass
class SearchFilters:
    source_ids: set[str] | None = None
    path_matcher: Callable[[str], bool] | None = None

    def matches(self, chunk: StoredChunk) -> bool:
        if self.source_ids and chunk.source_id not in self.source_ids:
            return False
        if self.path_matcher is not None and not self.path_matcher(chunk.path):
            return False
        return True


@dataclass
class FileRecord:
    mtime: float
    size: int
    hash: str


@dataclass
class ChunkRef:
    """Chunk identity and file bookkeeping without text or vector."""

    chunk_id: str
    path: str
    file_hash: str | None
    file_mtime: float | None
    file_size: int | None


def chunk_ref(chunk: StoredChunk) -> ChunkRef:
    m = chunk.metadata
    return ChunkRef(chunk.chunk_id, chunk.path, m.get(FILE_HASH), m.get(FILE_MTIME), m.get(FILE_SIZE))


def point_id(scope_id: str, chunk_id: str) -> str:
    """Deterministic UUID-shaped id from sha256(scope_id:chunk_id)."""
    h = hashlib.sha256(f"{scope_id}:{chunk_id}".encode("utf-8")).hexdigest()
    return f"{h[0:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """0.0 on length mismatch or a zero vector."""
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0 or nb == 0:
        return 0.0
    return dot / (na * nb)


def files_from_refs(refs: Iterable[ChunkRef]) -> dict[str, FileRecord]:
    files: dict[str, FileRecord] = {}
    for ref in refs:
        if ref.file_hash is not None and ref.path not in files:
            files[ref.path] = FileRecord(ref.file_mtime or 0.0, ref.file_size or 0, ref.file_hash)
    return files


@dataclass
class IncrementalPlan:
    changed_paths: set[str]
    deleted_paths: set[str]
    to_write: list[StoredChunk]
    stale_ids: list[str]


def plan_incremental_update(
    existing: list[ChunkRef],
    chunks: list[StoredChunk],
    file_metadata: dict[str, FileRecord],
) -> IncrementalPlan:
    """Diff stored vs. new per-file hash/mtime into writes and stale deletions."""
    old_files = files_from_refs(existing)
    changed = {
        path
        for path, rec in file_metadata.items()
        if path not in old_files or old_files[path].hash != rec.hash or old_files[path].mtime != rec.mtime
    }
    old_paths = {ref.path for ref in existing}
    deleted = old_paths - set(file_metadata)
    to_write = [c for c in chunks if c.path in changed]
    new_ids = {c.chunk_id for c in to_write}
    stale = [
        ref.chunk_id
        for ref in existing
        if ref.path in deleted or (ref.path in changed and ref.chunk_id not in new_ids)
    ]
    return IncrementalPlan(changed, deleted, to_write, stale)


class VectorStore:
    """Scope-partitioned chunk storage. Implementations override the abstract methods."""

    def replace_scope(self, scope_id: str, chunks: list[StoredChunk]) -> None:
        raise NotImplementedError

    def upsert_chunks(self, scope_id: str, chunks: list[StoredChunk]) -> None:
        raise NotImplementedError

    def delete_chunks(self, scope_id: str, chunk_ids: list[str]) -> None:
        raise NotImplementedError

    def search(
        self,
        scope_id: str,
        vector: list[float],
        limit: int,
        filters: SearchFilters | None = None,
    ) -> list[VectorSearchMatch]:
        raise NotImplementedError

    def get_all_chunks(self, scope_id: str, filters: SearchFilters | None = None) -> list[StoredChunk]:
        raise NotImplementedError

    def scope_exists(self, scope_id: str) -> bool:
        raise NotImplementedError

    def delete_scope(self, scope_id: str) -> None:
        raise NotImplementedError

    def update_scope(
        self,
        scope_id: str,
        chunks: list[StoredChunk],
        file_metadata: dict[str, FileRecord] | None = None,
    ) -> IncrementalPlan | None:
        """Incremental update when file metadata is known, otherwise a full replace."""
        if not file_metadata:
            self.replace_scope(scope_id, chunks)
            return None
        plan = plan_incremental_update(self.chunk_refs(scope_id), chunks, file_metadata)
        if plan.to_write:
            self.upsert_chunks(scope_id, plan.to_write)
        if plan.stale_ids:
            self.delete_chunks(scope_id, plan.stale_ids)
        return plan

    def chunk_refs(self, scope_id: str) -> list[ChunkRef]:
        return [chunk_ref(c) for c in self.get_all_chunks(scope_id)]

    def get_files_metadata(self, scope_id: str, paths: Iterable[str] | None = None) -> dict[str, FileRecord]:
        files = files_from_refs(self.chunk_refs(scope_id))
        if paths is None:
            return files
        return {p: files[p] for p in paths if p in files}

    def scoped(self, scope_id: str) -> "ScopedStore":
        from rag_engine.vector_store.scoped import ScopedStore

        return ScopedStore(self, scope_id)
