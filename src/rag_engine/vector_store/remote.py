"""Remote vector store over the Qdrant REST API.

Writes are all-or-nothing per call: new points go in first (100 per request, each
batch retried), stale points are deleted last, and any failure rolls back the points
already written before the error is re-raised.
"""

import logging
import time

from rag_engine.config.providers import RemoteStoreConfig
from rag_engine.errors import ConfigurationError, InvalidInputError, RagEngineError, retry_call
from rag_engine.runtime import Fetch, request_json
from rag_engine.vector_store.base import (
    ChunkRef,
    FileRecord,
    IncrementalPlan,
    SearchFilters,
    StoredChunk,
    VectorSearchMatch,
    VectorStore,
    plan_incremental_update,
    point_id,
)
from rag_engine.vector_store.qdrant_wire import from_point, ref_from_point, scope_filter, to_point

logger = logging.getLogger(__name__)

UPSERT_BATCH = 100
SCROLL_PAGE = 256


class RemoteVectorStore(VectorStore):
    def __init__(self, config: RemoteStoreConfig, fetch: Fetch, max_retries: int = 3, retry_delay: float = 1.0):
        if not config.url:
            raise ConfigurationError("Remote vector store URL is required")
        self.config = config
        self._fetch = fetch
        self._base = config.url.rstrip("/")
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._collection_ready = False

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, payload: dict | None = None):
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["api-key"] = self.config.api_key
        url = f"{self._base}/collections/{self.config.collection}{path}"
        return retry_call(
            lambda: request_json(self._fetch, method, url, json=payload, headers=headers, timeout=self.config.timeout),
            max_retries=self._max_retries,
            base_delay=self._retry_delay,
            label=f"qdrant {method} {path or '/'}",
        )

    def ensure_collection(self) -> None:
        if self._collection_ready:
            return
        try:
            self._request("GET", "")
        except InvalidInputError as e:
            if e.status_code != 404:
                raise
            self._request("PUT", "", {"vectors": {"size": self.config.dimension, "distance": "Cosine"}})
            logger.info("vector_store.remote: created collection %s (dim=%d)", self.config.collection, self.config.dimension)
        self._collection_ready = True

    def _upsert_points(self, chunks: list[StoredChunk]) -> None:
        for i in range(0, len(chunks), UPSERT_BATCH):
            batch = chunks[i : i + UPSERT_BATCH]
            self._request("PUT", "/points?wait=true", {"points": [to_point(c) for c in batch]})

    def _delete_points(self, scope_id: str, chunk_ids: list[str]) -> None:
        for i in range(0, len(chunk_ids), UPSERT_BATCH):
            ids = [point_id(scope_id, cid) for cid in chunk_ids[i : i + UPSERT_BATCH]]
            self._request("POST", "/points/delete?wait=true", {"points": ids})

    def _scroll(self, flt: dict, with_vector: bool, limit: int | None = None) -> list[dict]:
        points: list[dict] = []
        offset = None
        while True:
            body: dict = {"filter": flt, "limit": SCROLL_PAGE, "with_payload": True, "with_vector": with_vector}
            if offset is not None:
                body["offset"] = offset
            try:
                result = self._request("POST", "/points/scroll", body)["result"]
            except InvalidInputError as e:
                if e.status_code == 404:
                    return []
                raise
            points.extend(result.get("points", []))
            offset = result.get("next_page_offset")
            if offset is None or (limit is not None and len(points) >= limit):
                return points[:limit] if limit is not None else points

    def _get_points(self, scope_id: str, chunk_ids: list[str]) -> list[StoredChunk]:
        found: list[StoredChunk] = []
        for i in range(0, len(chunk_ids), UPSERT_BATCH):
            ids = [point_id(scope_id, cid) for cid in chunk_ids[i : i + UPSERT_BATCH]]
            try:
                result = self._request("POST", "/points", {"ids": ids, "with_payload": True, "with_vector": True})
            except InvalidInputError as e:
                if e.status_code == 404:
                    return []
                raise
            found.extend(from_point(p) for p in result["result"])
        return found

    # ------------------------------------------------------------------
    # All-or-nothing write
    # ------------------------------------------------------------------

    def _apply(
        self,
        scope_id: str,
        to_write: list[StoredChunk],
        stale_ids: list[str],
        previous: dict[str, StoredChunk],
    ) -> None:
        self.ensure_collection()
        written: list[StoredChunk] = []
        try:
            for i in range(0, len(to_write), UPSERT_BATCH):
                batch = to_write[i : i + UPSERT_BATCH]
                self._upsert_points(batch)
                written.extend(batch)
            if stale_ids:
                self._delete_points(scope_id, stale_ids)
        except RagEngineError:
            self._rollback(scope_id, written, previous)
            raise

    def _rollback(self, scope_id: str, written: list[StoredChunk], previous: dict[str, StoredChunk]) -> None:
        restore = [previous[c.chunk_id] for c in written if c.chunk_id in previous]
        created = [c.chunk_id for c in written if c.chunk_id not in previous]
        logger.warning(
            "vector_store.remote: rolling back scope %s (%d restored, %d removed)", scope_id, len(restore), len(created)
        )
        try:
            if restore:
                self._upsert_points(restore)
            if created:
                self._delete_points(scope_id, created)
        except RagEngineError as e:
            logger.error("vector_store.remote: rollback failed for scope %s: %s", scope_id, e)

    # ------------------------------------------------------------------
    # VectorStore
    # ------------------------------------------------------------------

    def replace_scope(self, scope_id: str, chunks: list[StoredChunk]) -> None:
        t0 = time.monotonic()
        previous = {c.chunk_id: c for c in self.get_all_chunks(scope_id)}
        new_ids = {c.chunk_id for c in chunks}
        stale = [cid for cid in previous if cid not in new_ids]
        self._apply(scope_id, chunks, stale, previous)
        logger.info("vector_store.remote: replaced scope %s (%d chunks, %.1fs)", scope_id, len(chunks), time.monotonic() - t0)

    def update_scope(
        self,
        scope_id: str,
        chunks: list[StoredChunk],
        file_metadata: dict[str, FileRecord] | None = None,
    ) -> IncrementalPlan | None:
        if not file_metadata:
            self.replace_scope(scope_id, chunks)
            return None
        plan = plan_incremental_update(self.chunk_refs(scope_id), chunks, file_metadata)
        touched = plan.changed_paths | plan.deleted_paths
        previous: dict[str, StoredChunk] = {}
        if touched:
            points = self._scroll(scope_filter(scope_id, paths=touched), with_vector=True)
            previous = {c.chunk_id: c for c in map(from_point, points)}
        self._apply(scope_id, plan.to_write, plan.stale_ids, previous)
        logger.info(
            "vector_store.remote: scope %s updated (%d changed, %d deleted files)",
            scope_id,
            len(plan.changed_paths),
            len(plan.deleted_paths),
        )
        return plan

    def upsert_chunks(self, scope_id: str, chunks: list[StoredChunk]) -> None:
        previous = {c.chunk_id: c for c in self._get_points(scope_id, [c.chunk_id for c in chunks])}
        self._apply(scope_id, chunks, [], previous)

    def delete_chunks(self, scope_id: str, chunk_ids: list[str]) -> None:
        self.ensure_collection()
        self._delete_points(scope_id, list(chunk_ids))

    def search(
        self,
        scope_id: str,
        vector: list[float],
        limit: int,
        filters: SearchFilters | None = None,
    ) -> list[VectorSearchMatch]:
        filters = filters or SearchFilters()
        fetch_limit = limit * 3 if filters.path_matcher else limit
        body = {
            "vector": vector,
            "limit": fetch_limit,
            "filter": scope_filter(scope_id, source_ids=filters.source_ids),
            "with_payload": True,
            "with_vector": True,
        }
        try:
            result = self._request("POST", "/points/search", body)["result"]
        except InvalidInputError as e:
            if e.status_code == 404:
                return []
            raise
        matches = [VectorSearchMatch(chunk=from_point(p), score=p.get("score", 0.0)) for p in result]
        if filters.path_matcher:
            matches = [m for m in matches if filters.path_matcher(m.chunk.path)]
        return matches[:limit]

    def get_all_chunks(self, scope_id: str, filters: SearchFilters | None = None) -> list[StoredChunk]:
        filters = filters or SearchFilters()
        points = self._scroll(scope_filter(scope_id, source_ids=filters.source_ids), with_vector=True)
        chunks = [from_point(p) for p in points]
        return [c for c in chunks if filters.matches(c)]

    def chunk_refs(self, scope_id: str) -> list[ChunkRef]:
        return [ref_from_point(p) for p in self._scroll(scope_filter(scope_id), with_vector=False)]

    def scope_exists(self, scope_id: str) -> bool:
        return bool(self._scroll(scope_filter(scope_id), with_vector=False, limit=1))

    def delete_scope(self, scope_id: str) -> None:
        try:
            self._request("POST", "/points/delete?wait=true", {"filter": scope_filter(scope_id)})
        except InvalidInputError as e:
            if e.status_code != 404:
                raise
            logger.debug("vector_store.remote: collection missing, nothing to delete for %s", scope_id)
