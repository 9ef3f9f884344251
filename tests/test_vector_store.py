"""Tests for the local, Chroma and remote (Qdrant REST) vector stores."""

import threading
import uuid

import chromadb
import pytest

from helpers import FakeFetch, FakeResponse, make_chunk
from rag_engine.config import RemoteStoreConfig
from rag_engine.errors import InvalidInputError
from rag_engine.retrieval import SemanticDeduplicator
from rag_engine.runtime import SandboxedFileSystem
from rag_engine.vector_store import (
    FILE_HASH,
    FILE_MTIME,
    ChromaVectorStore,
    FileRecord,
    LocalVectorStore,
    RemoteVectorStore,
    SearchFilters,
    cosine_similarity,
    point_id,
)

BASE = "http://qdrant:6333/collections/mind_chunks"


def test_point_id_deterministic_uuid_shape():
    """Point ids are stable per (scope, chunk) and shaped like a UUID."""
    a = point_id("scope", "src/a.py:1-2:0")
    assert a == point_id("scope", "src/a.py:1-2:0")
    assert a != point_id("other", "src/a.py:1-2:0")
    assert [len(p) for p in a.split("-")] == [8, 4, 4, 4, 12]


def test_cosine_similarity_edge_cases():
    """Length mismatch and zero vectors score 0."""
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0], [1.0, 0.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0


def test_local_store_search_and_filters():
    """Search ranks by cosine; filters apply source ids and path predicate."""
    store = LocalVectorStore()
    store.replace_scope(
        "s",
        [
            make_chunk("a", path="src/a.py", embedding=[1.0, 0.0, 0.0]),
            make_chunk("b", path="docs/b.md", embedding=[0.7, 0.7, 0.0]),
            make_chunk("c", path="src/c.py", embedding=[0.0, 1.0, 0.0]),
        ],
    )
    assert [m.chunk.chunk_id for m in store.search("s", [1.0, 0.0, 0.0], 3)] == ["a", "b", "c"]
    only_src = SearchFilters(path_matcher=lambda p: p.startswith("src/"))
    assert [m.chunk.chunk_id for m in store.search("s", [1.0, 0.0, 0.0], 3, only_src)] == ["a", "c"]
    assert store.search("s", [1.0, 0.0, 0.0], 3, SearchFilters(source_ids={"other"})) == []
    assert store.scope_exists("s") and not store.scope_exists("empty")


def test_local_store_persists_through_runtime_fs(tmp_path):
    """A second store over the same directory sees the committed scope."""
    fs = SandboxedFileSystem(tmp_path)
    LocalVectorStore(fs=fs).upsert_chunks("s", [make_chunk("a"), make_chunk("b")])
    reloaded = LocalVectorStore(fs=fs)
    assert sorted(c.chunk_id for c in reloaded.get_all_chunks("s")) == ["a", "b"]
    reloaded.delete_chunks("s", ["a"])
    assert [c.chunk_id for c in LocalVectorStore(fs=fs).get_all_chunks("s")] == ["b"]
    reloaded.delete_scope("s")
    assert not LocalVectorStore(fs=fs).scope_exists("s")


def test_local_store_concurrent_upserts_are_serialised():
    """Parallel upserts to one scope never lose writes."""
    store = LocalVectorStore()

    def writer(n):
        for i in range(20):
            store.upsert_chunks("s", [make_chunk(f"w{n}-{i}")])

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(store.get_all_chunks("s")) == 100


def test_update_scope_incremental_plan():
    """Only changed files are rewritten; chunks of removed files are deleted."""
    store = LocalVectorStore()
    meta = lambda h: {FILE_HASH: h, FILE_MTIME: 1.0}  # noqa: E731
    store.replace_scope(
        "s",
        [
            make_chunk("a1", path="a.py", metadata=meta("ha")),
            make_chunk("b1", path="b.py", metadata=meta("hb")),
            make_chunk("gone", path="gone.py", metadata=meta("hg")),
        ],
    )
    new = [
        make_chunk("a1", path="a.py", metadata=meta("ha")),
        make_chunk("b2", path="b.py", metadata=meta("hb2")),
    ]
    plan = store.update_scope("s", new, {"a.py": FileRecord(1.0, 10, "ha"), "b.py": FileRecord(1.0, 12, "hb2")})
    assert plan.changed_paths == {"b.py"}
    assert plan.deleted_paths == {"gone.py"}
    assert sorted(plan.stale_ids) == ["b1", "gone"]
    assert sorted(c.chunk_id for c in store.get_all_chunks("s")) == ["a1", "b2"]
    assert store.get_files_metadata("s", ["b.py"]) == {"b.py": FileRecord(1.0, 0, "hb2")}


def test_scoped_store_helpers():
    """Scoped view answers existence, hash and per-path lookups."""
    store = LocalVectorStore()
    scoped = store.scoped("s")
    scoped.insert_batch([make_chunk("a", path="a.py", metadata={FILE_HASH: "h1"}), make_chunk("b", path="b.py")])
    assert scoped.check_existence(["a", "zzz"]) == {"a"}
    assert scoped.get_chunks_by_hash(["h1"]) == {"h1": ["a"]}
    assert scoped.chunk_ids_by_path(["a.py"]) == {"a.py": {"a"}}
    scoped.delete_batch(["a"])
    assert scoped.check_existence(["a", "b"]) == {"b"}


def test_chroma_store_roundtrip():
    """Chroma-backed store supports replace, search and scope deletion."""
    store = ChromaVectorStore("unused", collection=f"t{uuid.uuid4().hex[:8]}", client=chromadb.EphemeralClient())
    store.replace_scope("scope", [make_chunk("a", embedding=[1.0, 0.0, 0.0]), make_chunk("b", embedding=[0.0, 1.0, 0.0])])
    store.replace_scope("other", [make_chunk("x", scope_id="other")])
    top = store.search("scope", [1.0, 0.0, 0.0], 1)
    assert top[0].chunk.chunk_id == "a"
    store.replace_scope("scope", [make_chunk("b", embedding=[0.0, 1.0, 0.0])])
    assert [c.chunk_id for c in store.get_all_chunks("scope")] == ["b"]
    store.delete_scope("scope")
    assert not store.scope_exists("scope")
    assert store.scope_exists("other")


class FakeQdrant:
    """Minimal in-memory Qdrant REST server for one collection."""

    def __init__(self, fail_upsert_calls: set[int] | None = None):
        self.exists = False
        self.points: dict[str, dict] = {}
        self.upsert_calls = 0
        self.fail_upsert_calls = fail_upsert_calls or set()

    def _matches(self, point: dict, flt: dict | None) -> bool:
        for clause in (flt or {}).get("must", []):
            value = point["payload"].get(clause["key"])
            match = clause["match"]
            if "value" in match and value != match["value"]:
                return False
            if "any" in match and value not in match["any"]:
                return False
        return True

    def __call__(self, method: str, url: str, body: dict | None) -> FakeResponse:
        path = url[len(BASE) :]
        if path == "":
            if method == "GET":
                return FakeResponse(200, {"result": {}}) if self.exists else FakeResponse(404, {"status": "missing"})
            self.exists = True
            return FakeResponse(200, {"result": True})
        if not self.exists:
            return FakeResponse(404, {"status": "missing"})
        if path.startswith("/points?"):
            self.upsert_calls += 1
            if self.upsert_calls in self.fail_upsert_calls:
                return FakeResponse(400, {"status": "bad batch"})
            for p in body["points"]:
                self.points[p["id"]] = p
            return FakeResponse(200, {"result": {"status": "completed"}})
        if path.startswith("/points/delete"):
            if "points" in body:
                for pid in body["points"]:
                    self.points.pop(pid, None)
            else:
                for pid in [k for k, p in self.points.items() if self._matches(p, body["filter"])]:
                    del self.points[pid]
            return FakeResponse(200, {"result": {"status": "completed"}})
        if path == "/points/scroll":
            found = [p for p in self.points.values() if self._matches(p, body["filter"])]
            return FakeResponse(200, {"result": {"points": found, "next_page_offset": None}})
        if path == "/points":
            return FakeResponse(200, {"result": [self.points[i] for i in body["ids"] if i in self.points]})
        if path == "/points/search":
            found = [dict(p, score=cosine_similarity(body["vector"], p["vector"])) for p in self.points.values()
                     if self._matches(p, body["filter"])]
            if not body.get("with_vector"):
                found = [{k: v for k, v in p.items() if k != "vector"} for p in found]
            found.sort(key=lambda p: p["score"], reverse=True)
            return FakeResponse(200, {"result": found[: body["limit"]]})
        raise AssertionError(f"unexpected {method} {url}")


def make_remote(server: FakeQdrant) -> tuple[RemoteVectorStore, FakeFetch]:
    fetch = FakeFetch(server)
    config = RemoteStoreConfig(url="http://qdrant:6333", dimension=3)
    return RemoteVectorStore(config, fetch, retry_delay=0.0), fetch


def test_remote_creates_collection_and_batches_upserts():
    """Missing collection is created with size+Cosine; upserts go 100 points per request."""
    server = FakeQdrant()
    store, fetch = make_remote(server)
    store.upsert_chunks("scope", [make_chunk(f"c{i}") for i in range(250)])
    create = [c for c in fetch.calls if c[0] == "PUT" and c[1] == BASE]
    assert create[0][2] == {"vectors": {"size": 3, "distance": "Cosine"}}
    upserts = [c for c in fetch.calls if c[1].startswith(f"{BASE}/points?")]
    assert [len(c[2]["points"]) for c in upserts] == [100, 100, 50]
    assert len(store.get_all_chunks("scope")) == 250


def test_remote_search_uses_scope_filter():
    """Search posts a must-filter on scope_id and maps payloads back to chunks."""
    server = FakeQdrant()
    store, fetch = make_remote(server)
    store.upsert_chunks("scope", [make_chunk("a", embedding=[1.0, 0.0, 0.0]), make_chunk("b", embedding=[0.0, 1.0, 0.0])])
    store.upsert_chunks("other", [make_chunk("z", scope_id="other", embedding=[1.0, 0.0, 0.0])])
    matches = store.search("scope", [1.0, 0.0, 0.0], 5)
    assert [m.chunk.chunk_id for m in matches] == ["a", "b"]
    body = [c for c in fetch.calls if c[1].endswith("/points/search")][0][2]
    assert body["filter"] == {"must": [{"key": "scope_id", "match": {"value": "scope"}}]}


def test_remote_failed_batch_rolls_back():
    """A failing second batch restores overwritten points and removes newly created ones."""
    server = FakeQdrant()
    store, _ = make_remote(server)
    store.upsert_chunks("scope", [make_chunk("c0", text="original")])
    server.fail_upsert_calls = {server.upsert_calls + 2}

    with pytest.raises(InvalidInputError):
        store.upsert_chunks("scope", [make_chunk(f"c{i}", text="new") for i in range(150)])

    chunks = store.get_all_chunks("scope")
    assert [(c.chunk_id, c.text) for c in chunks] == [("c0", "original")]


def test_remote_incremental_update_and_delete_scope():
    """update_scope rewrites only changed files; delete_scope clears the scope."""
    server = FakeQdrant()
    store, _ = make_remote(server)
    meta = lambda h: {FILE_HASH: h, FILE_MTIME: 1.0}  # noqa: E731
    store.replace_scope("scope", [make_chunk("a1", path="a.py", metadata=meta("ha")), make_chunk("b1", path="b.py", metadata=meta("hb"))])
    plan = store.update_scope(
        "scope",
        [make_chunk("a1", path="a.py", metadata=meta("ha")), make_chunk("b2", path="b.py", metadata=meta("hb2"))],
        {"a.py": FileRecord(1.0, 0, "ha"), "b.py": FileRecord(1.0, 0, "hb2")},
    )
    assert plan.changed_paths == {"b.py"}
    assert sorted(c.chunk_id for c in store.get_all_chunks("scope")) == ["a1", "b2"]
    store.delete_scope("scope")
    assert not store.scope_exists("scope")


def test_search_results_carry_embeddings_for_dedup():
    """Remote and Chroma matches include vectors, so identical chunks in two files collapse."""
    text = "def load(path):\n    return open(path).read()"
    chunks = [
        make_chunk("a", path="src/a.py", text=text, embedding=[1.0, 0.0, 0.0]),
        make_chunk("b", path="src/b.py", text=text, embedding=[1.0, 0.0, 0.0]),
    ]
    remote, _ = make_remote(FakeQdrant())
    chroma = ChromaVectorStore("unused", collection=f"t{uuid.uuid4().hex[:8]}", client=chromadb.EphemeralClient())
    dedup = SemanticDeduplicator(threshold=0.9, strategy="greedy", preserve_top_n=0, min_different_files=1)
    for store in (remote, chroma, LocalVectorStore()):
        store.upsert_chunks("scope", chunks)
        matches = store.search("scope", [1.0, 0.0, 0.0], 5)
        assert all(m.chunk.embedding == pytest.approx([1.0, 0.0, 0.0]) for m in matches)
        assert len(dedup.deduplicate(matches).matches) == 1
