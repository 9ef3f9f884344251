"""End-to-end tests for the five-stage indexing pipeline."""

import os

import pytest

from helpers import make_monitor, make_runtime
from rag_engine.cancellation import CancellationToken
from rag_engine.embeddings import DeterministicEmbeddingProvider
from rag_engine.indexing import CheckpointStore, PipelineContext, SourceConfig, build_pipeline, load_sources
from rag_engine.errors import ConfigurationError, InvalidInputError, TransientError
from rag_engine.runtime import SandboxedFileSystem
from rag_engine.vector_store import LocalVectorStore

SCOPE = "workspace-1"


def write_module(root, i: int, value: int | None = None) -> str:
    name = f"pkg/mod_{i:03d}.py"
    path = root / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"def func_{i:03d}():\n    return {value if value is not None else i:03d}\n")
    return name


def bump_mtime(root, name: str, seconds: float = 100.0) -> None:
    st = (root / name).stat()
    os.utime(root / name, (st.st_atime, st.st_mtime + seconds))


@pytest.fixture
def repo(tmp_path):
    for i in range(120):
        write_module(tmp_path, i)
    return tmp_path


@pytest.fixture
def store():
    return LocalVectorStore()


def run(root, store, checkpoints=None, token=None, provider=None):
    provider = provider or DeterministicEmbeddingProvider(dimension=16)
    pipeline = build_pipeline(store, provider, checkpoints=checkpoints)
    ctx = PipelineContext(
        sources=[SourceConfig(id="repo", paths=["**/*.py"])],
        scope_id=SCOPE,
        runtime=make_runtime(root),
        memory_monitor=make_monitor(),
        token=token,
    )
    return pipeline, ctx, pipeline.execute(ctx)


def test_first_run_indexes_everything(repo, store):
    _, _, result = run(repo, store)
    assert result.success
    assert result.stats.files_discovered == 120
    assert result.stats.files_processed == 120
    assert result.stage_results["storage"].data["inserted"] == 120
    ids = {c.chunk_id for c in store.get_all_chunks(SCOPE)}
    assert "repo:pkg/mod_000.py:1-2:0" in ids
    assert all(len(c.embedding) == 16 for c in store.get_all_chunks(SCOPE))


def test_rerun_without_changes_is_a_noop(repo, store):
    """A second run skips every file on mtime+size and leaves the store identical."""
    run(repo, store)
    before = {c.chunk_id: c.text for c in store.get_all_chunks(SCOPE)}

    _, _, result = run(repo, store)
    filtering = result.stage_results["filtering"].data
    assert filtering["filtered_files"] == 0
    assert filtering["skipped_by_mtime"] == 120
    assert result.stage_results["storage"].data["inserted"] == 0
    assert result.stage_results["storage"].data["updated"] == 0
    assert {c.chunk_id: c.text for c in store.get_all_chunks(SCOPE)} == before


def test_filtering_tiers(repo, store):
    """New and edited files are indexed; touched-but-identical files are skipped by hash."""
    run(repo, store)
    write_module(repo, 120)
    bump_mtime(repo, "pkg/mod_003.py")
    write_module(repo, 10, value=999)
    bump_mtime(repo, "pkg/mod_010.py")

    _, _, result = run(repo, store)
    filtering = result.stage_results["filtering"].data
    assert filtering["total_files"] == 121
    assert filtering["filtered_files"] == 2
    assert filtering["skipped_by_mtime"] + filtering["skipped_by_hash"] == 119
    assert filtering["skipped_by_hash"] == 1
    assert result.stage_results["storage"].data["inserted"] == 1
    assert result.stage_results["storage"].data["updated"] == 1


def test_one_byte_change_updates_chunk_in_place(repo, store):
    """Same span and ordinal keep the chunk id; the stored text follows the edit."""
    run(repo, store)
    write_module(repo, 7, value=8)
    bump_mtime(repo, "pkg/mod_007.py")

    _, _, result = run(repo, store)
    storage = result.stage_results["storage"].data
    assert (storage["inserted"], storage["updated"]) == (0, 1)
    chunk = next(c for c in store.get_all_chunks(SCOPE) if c.path == "pkg/mod_007.py")
    assert chunk.chunk_id == "repo:pkg/mod_007.py:1-2:0"
    assert "return 008" in chunk.text


def test_deleted_files_are_pruned(repo, store):
    run(repo, store)
    (repo / "pkg/mod_050.py").unlink()

    _, _, result = run(repo, store)
    assert result.stage_results["storage"].data["pruned"] == 1
    assert not [c for c in store.get_all_chunks(SCOPE) if c.path == "pkg/mod_050.py"]
    assert len(store.get_all_chunks(SCOPE)) == 119


def test_grown_file_drops_stale_chunks(repo, store):
    """Re-chunking a file removes ids it no longer produces."""
    run(repo, store)
    (repo / "pkg/mod_001.py").write_text("import os\n\n\ndef renamed():\n    return os.sep\n")
    bump_mtime(repo, "pkg/mod_001.py")

    run(repo, store)
    ids = sorted(c.chunk_id for c in store.get_all_chunks(SCOPE) if c.path == "pkg/mod_001.py")
    assert ids == ["repo:pkg/mod_001.py:1-3:0", "repo:pkg/mod_001.py:4-5:1"]


def test_cancelled_token_stops_before_stages(repo, store):
    token = CancellationToken()
    token.cancel()
    _, _, result = run(repo, store, token=token)
    assert not result.success
    assert result.stage_results == {}
    assert not store.scope_exists(SCOPE)


def test_checkpoint_saved_and_resumed(repo, store, tmp_path_factory):
    """The discovery checkpoint lets a later run skip the filesystem walk."""
    checkpoints = CheckpointStore(SandboxedFileSystem(tmp_path_factory.mktemp("state")))
    run(repo, store, checkpoints=checkpoints)
    cp = checkpoints.load(SCOPE)
    assert cp is not None and cp.stage == "discovery"
    assert len(cp.processed_files) == 120

    pipeline = build_pipeline(store, DeterministicEmbeddingProvider(dimension=16), checkpoints=checkpoints)
    ctx = PipelineContext(
        sources=[SourceConfig(id="repo", paths=["**/*.py"])],
        scope_id=SCOPE,
        runtime=make_runtime(repo),
        memory_monitor=make_monitor(),
    )
    assert pipeline.resume(ctx)
    result = pipeline.execute(ctx)
    assert result.stage_results["discovery"].data["restored"] is True
    checkpoints.clear(SCOPE)
    assert checkpoints.load(SCOPE) is None


def test_load_sources(tmp_path):
    path = tmp_path / "sources.yaml"
    path.write_text("root: repo\nsources:\n  - id: app\n    paths: ['src/**/*.py']\n    exclude: ['*_test.py']\n")
    root, sources = load_sources(path)
    assert root == (tmp_path / "repo").resolve()
    assert sources[0].id == "app" and sources[0].exclude == ["*_test.py"]

    (tmp_path / "empty.yaml").write_text("root: .\n")
    with pytest.raises(ConfigurationError):
        load_sources(tmp_path / "empty.yaml")


class RejectingProvider(DeterministicEmbeddingProvider):
    """Rejects any request that contains the marker text, like a 400 from an HTTP provider."""

    def __init__(self, marker: str = "BOOM"):
        super().__init__(dimension=16)
        self.marker = marker
        self.requests: list[int] = []

    def embed(self, texts, token=None):
        self.requests.append(len(texts))
        if any(self.marker in t for t in texts):
            raise InvalidInputError("input rejected", status_code=400)
        return super().embed(texts, token)


def test_rejected_text_fails_only_its_own_chunk(tmp_path, store):
    """Splitting isolates the rejected text; the other files in the batch are stored."""
    for i in range(5):
        (tmp_path / f"good_{i}.py").write_text(f"def good_{i}():\n    return {i}\n")
    (tmp_path / "bad.py").write_text("def bad():\n    return 'BOOM'\n")

    _, _, result = run(tmp_path, store, provider=RejectingProvider())
    assert result.stage_results["embedding"].data["failed"] == 1
    assert [e.file for e in result.errors] == ["bad.py"]
    assert sorted({c.path for c in store.get_all_chunks(SCOPE)}) == [f"good_{i}.py" for i in range(5)]


def test_file_with_failed_chunk_is_retried_next_run(tmp_path, store):
    """A partly embedded file stores nothing, so the next run indexes it in full."""
    (tmp_path / "a.py").write_text("def ok():\n    return 1\n\ndef bad():\n    return 'BOOM'\n")

    _, _, first = run(tmp_path, store, provider=RejectingProvider())
    assert not first.success
    assert first.stage_results["storage"].data["held_back_files"] == 1
    assert store.get_all_chunks(SCOPE) == []

    _, _, second = run(tmp_path, store)
    assert second.success
    assert second.stage_results["filtering"].data["filtered_files"] == 1
    ids = sorted(c.chunk_id for c in store.get_all_chunks(SCOPE))
    assert ids == ["repo:a.py:1-3:0", "repo:a.py:4-5:1"]


class FlakyProvider(DeterministicEmbeddingProvider):
    def __init__(self):
        super().__init__(dimension=16)
        self.calls = 0

    def embed(self, texts, token=None):
        self.calls += 1
        raise TransientError("upstream unavailable", status_code=503)


def test_embedding_stage_leaves_retries_to_the_provider(tmp_path, store):
    """A transient failure escaping the provider is recorded once, not retried again."""
    (tmp_path / "a.py").write_text("def a():\n    return 1\n")
    provider = FlakyProvider()
    _, _, result = run(tmp_path, store, provider=provider)
    assert provider.calls == 1
    assert result.stage_results["embedding"].data["failed"] == 1
    assert store.get_all_chunks(SCOPE) == []
