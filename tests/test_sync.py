"""Tests for document sync: lifecycle, partial updates, registry, batch and metrics."""

import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from rag_engine.embeddings import DeterministicEmbeddingProvider
from rag_engine.errors import BatchSizeError, ConfigurationError
from rag_engine.runtime import SandboxedFileSystem
from rag_engine.sync import (
    DocumentSyncAPI,
    FileSystemRegistry,
    InMemoryRegistry,
    SyncConfig,
    batch_sync,
    calculate_metrics,
    create_registry,
    schedule_cleanup,
)
from rag_engine.sync import registry as registry_module
from rag_engine.sync.scheduler import run_cleanup_job
from rag_engine.vector_store import LocalVectorStore

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
LONG_DOC = "\n".join(f"line {i} of the handbook" for i in range(1340))


class CountingProvider(DeterministicEmbeddingProvider):
    def __init__(self):
        super().__init__(dimension=16)
        self.calls: list[list[str]] = []

    def embed(self, texts, token=None):
        self.calls.append(list(texts))
        return super().embed(texts, token)


class Clock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def api(clock):
    return DocumentSyncAPI(InMemoryRegistry(), LocalVectorStore(), CountingProvider(), clock=clock)


def stored_ids(api: DocumentSyncAPI, scope: str = "kb") -> list[str]:
    return sorted(c.chunk_id for c in api.store.get_all_chunks(scope))


def test_add_is_idempotent(api):
    """Adding identical content twice writes nothing the second time."""
    first = api.add_document("notion", "p1", "kb", "Vacation policy\nTwenty days per year")
    second = api.add_document("notion", "p1", "kb", "Vacation policy\nTwenty days per year")
    assert first.success and first.chunks_added == 1
    assert second.success and second.chunks_added == 0 and second.chunks_updated == 0
    assert stored_ids(api) == ["notion:p1:1-2:0"]
    chunk = api.store.get_all_chunks("kb")[0]
    assert chunk.source_id == "notion:p1"
    assert chunk.path == "external://notion/p1"


def test_update_missing_document_adds_it(api):
    result = api.update_document("notion", "p2", "kb", "hello")
    assert result.success and result.chunks_added == 1
    assert api.get_document("notion", "p2", "kb") is not None


def test_partial_update_reembeds_only_changed_window(api):
    """One edited line re-embeds only the window that contains it."""
    api.add_document("confluence", "handbook", "kb", LONG_DOC)
    before = {c.chunk_id: c.text for c in api.store.get_all_chunks("kb")}
    assert len(before) == 11
    api.provider.calls.clear()

    edited = LONG_DOC.replace("line 699 of the handbook", "line 699 was rewritten")
    result = api.update_document("confluence", "handbook", "kb", edited)

    assert result.success
    assert (result.chunks_added, result.chunks_updated, result.chunks_deleted) == (0, 1, 0)
    assert len(api.provider.calls) == 1 and len(api.provider.calls[0]) == 1
    after = {c.chunk_id: c.text for c in api.store.get_all_chunks("kb")}
    assert set(after) == set(before)
    assert [cid for cid in after if after[cid] != before[cid]] == ["confluence:handbook:651-800:5"]


def test_large_change_falls_back_to_full_rebuild(api):
    """Rewriting every window exceeds the partial threshold and rebuilds all chunks."""
    api.add_document("confluence", "handbook", "kb", LONG_DOC)
    api.provider.calls.clear()
    result = api.update_document("confluence", "handbook", "kb", LONG_DOC.replace("handbook", "manual"))
    assert result.success and result.chunks_updated == 11
    assert len(api.provider.calls) == 1 and len(api.provider.calls[0]) == 11
    assert all("manual" in c.text for c in api.store.get_all_chunks("kb"))


def test_metadata_change_is_propagated(api):
    api.add_document("notion", "p1", "kb", "body", {"team": "hr"})
    result = api.update_document("notion", "p1", "kb", "body", {"owner": "ana"})
    assert result.success and result.chunks_updated == 1
    meta = api.store.get_all_chunks("kb")[0].metadata
    assert meta["team"] == "hr" and meta["owner"] == "ana"
    assert api.get_document("notion", "p1", "kb").metadata == {"team": "hr", "owner": "ana"}


def test_soft_delete_and_restore_within_ttl(api, clock):
    api.add_document("notion", "p1", "kb", "body")
    deleted = api.delete_document("notion", "p1", "kb")
    assert deleted.success and deleted.chunks_deleted == 1
    assert stored_ids(api) == []
    assert api.list_documents(scope_id="kb") == []
    assert len(api.list_documents(scope_id="kb", include_deleted=True)) == 1

    clock.now = T0 + timedelta(days=1)
    restored = api.restore_document("notion", "p1", "kb")
    assert restored.success and restored.chunks_added == 1
    assert stored_ids(api) == ["notion:p1:1-1:0"]
    assert not api.get_document("notion", "p1", "kb").deleted


def test_restore_after_ttl_fails_and_cleanup_removes(api, clock):
    api.add_document("notion", "p1", "kb", "body")
    api.delete_document("notion", "p1", "kb")
    clock.now = T0 + timedelta(days=31)

    result = api.restore_document("notion", "p1", "kb")
    assert not result.success
    assert result.error == "Document TTL expired, cannot restore"
    assert api.cleanup_expired() == 1
    assert api.get_document("notion", "p1", "kb") is None


def test_restore_active_document_is_rejected(api):
    api.add_document("notion", "p1", "kb", "body")
    result = api.restore_document("notion", "p1", "kb")
    assert not result.success and result.error == "Document is not deleted"


def test_hard_delete_removes_record(api):
    api.add_document("notion", "p1", "kb", "body")
    result = api.hard_delete_document("notion", "p1", "kb")
    assert result.success and result.chunks_deleted == 1
    assert api.get_document("notion", "p1", "kb") is None
    assert stored_ids(api) == []


def test_delete_unknown_document_reports_error(api):
    result = api.delete_document("notion", "missing", "kb")
    assert not result.success and result.error == "Document not found"


def test_readding_soft_deleted_document_reactivates_it(api):
    api.add_document("notion", "p1", "kb", "body")
    api.delete_document("notion", "p1", "kb")
    result = api.add_document("notion", "p1", "kb", "body")
    assert result.success
    assert stored_ids(api) == ["notion:p1:1-1:0"]
    assert not api.get_document("notion", "p1", "kb").deleted


def test_filesystem_registry_persists_and_rotates_backups(tmp_path, clock, monkeypatch):
    """Each write after the first snapshots the previous file; only backup_retention remain."""
    ticks = iter(range(1_000, 10_000))
    monkeypatch.setattr(registry_module, "time", SimpleNamespace(time=lambda: next(ticks)))
    fs = SandboxedFileSystem(tmp_path)
    registry = FileSystemRegistry(fs, backup_retention=2)
    api = DocumentSyncAPI(registry, LocalVectorStore(), CountingProvider(), clock=clock)
    for i in range(5):
        api.add_document("notion", f"p{i}", "kb", f"page {i}")

    backups = registry.backups()
    assert len(backups) == 2
    assert backups[0] > backups[1]
    reloaded = FileSystemRegistry(fs)
    assert sorted(r.id for r in reloaded.list()) == [f"p{i}" for i in range(5)]
    assert reloaded.get("notion", "p0", "kb").synced_at == T0


def test_create_registry_kinds(tmp_path):
    assert isinstance(create_registry("memory"), InMemoryRegistry)
    assert isinstance(create_registry("filesystem", fs=SandboxedFileSystem(tmp_path)), FileSystemRegistry)
    with pytest.raises(ConfigurationError):
        create_registry("filesystem")
    with pytest.raises(ConfigurationError, match="not implemented"):
        create_registry("database")
    with pytest.raises(ConfigurationError, match="Unknown registry type"):
        create_registry("redis")


def test_batch_sync_rejects_oversized_batch(api):
    ops = [{"operation": "add", "source": "s", "id": str(i), "scope_id": "kb", "content": "x"} for i in range(3)]
    with pytest.raises(BatchSizeError):
        batch_sync(api, ops, max_size_override=2)
    assert api.list_documents() == []


def test_batch_sync_collects_results_in_order(api):
    ops = [
        {"operation": "add", "source": "s", "id": "a", "scope_id": "kb", "content": "alpha"},
        {"operation": "update", "source": "s", "id": "b", "scope_id": "kb"},
        {"operation": "delete", "source": "s", "id": "zzz", "scope_id": "kb"},
        {"operation": "add", "source": "s", "id": "c", "scope_id": "kb", "content": "gamma"},
    ]
    result = batch_sync(api, ops, concurrency=2)
    assert (result.total, result.successful, result.failed) == (4, 2, 2)
    assert [r.document_id for r in result.results] == ["s:a", "s:b", "s:zzz", "s:c"]
    assert result.results[1].error == "Content is required for update operation"


def test_calculate_metrics(api, clock):
    api.add_document("notion", "p1", "kb", "one")
    api.add_document("notion", "p2", "kb", "two")
    clock.now = T0 + timedelta(hours=1)
    api.add_document("drive", "d1", "ops", "three")
    api.delete_document("notion", "p2", "kb")

    m = calculate_metrics(api.registry)
    assert m.total_documents == 2 and m.deleted_documents == 1
    assert m.documents_by_source == {"notion": 1, "drive": 1}
    assert m.deleted_by_source == {"notion": 1}
    assert m.documents_by_scope == {"kb": 1, "ops": 1}
    assert m.last_sync_time["drive"] == T0 + timedelta(hours=1)


def test_disabled_soft_delete_removes_record(clock):
    config = SyncConfig.model_validate({"soft_delete": {"enabled": False}})
    api = DocumentSyncAPI(InMemoryRegistry(), LocalVectorStore(), CountingProvider(), config=config, clock=clock)
    api.add_document("notion", "p1", "kb", "body")
    assert api.delete_document("notion", "p1", "kb").success
    assert api.get_document("notion", "p1", "kb") is None


def test_cleanup_job_and_schedule(api, clock):
    api.add_document("notion", "p1", "kb", "body")
    api.delete_document("notion", "p1", "kb")
    clock.now = T0 + timedelta(days=40)
    assert run_cleanup_job(api) == 1

    scheduler = schedule_cleanup(api, hours=6, scheduler=BackgroundScheduler())
    try:
        job = scheduler.get_job("sync_cleanup")
        assert job is not None and job.args == (api,)
    finally:
        scheduler.shutdown(wait=False)


class SlowProvider(CountingProvider):
    def embed(self, texts, token=None):
        time.sleep(0.05)
        return super().embed(texts, token)


def test_concurrent_operations_on_one_document_are_serialized(clock):
    """Only the first of several parallel adds of the same document embeds and writes."""
    api = DocumentSyncAPI(InMemoryRegistry(), LocalVectorStore(), SlowProvider(), clock=clock)
    op = {"operation": "add", "source": "notion", "id": "p1", "scope_id": "kb", "content": "Vacation policy\nTwenty days"}
    result = batch_sync(api, [op] * 6, concurrency=6)
    assert result.successful == 6
    assert sorted(r.chunks_added for r in result.results) == [0, 0, 0, 0, 0, 1]
    assert len(api.provider.calls) == 1
    assert stored_ids(api) == ["notion:p1:1-2:0"]
    assert len(api.list_documents()) == 1
