"""Wire the default five-stage pipeline and run a full index from Settings."""

import logging
import time
from dataclasses import dataclass
from pathlib import Path

import yaml

from rag_engine.cancellation import CancellationToken
from rag_engine.chunking import ChunkerRegistry
from rag_engine.config import Settings, provider_config_from_settings, store_config_from_settings, workspace_root
from rag_engine.embeddings import EmbeddingCache, EmbeddingProvider, create_embedding_provider
from rag_engine.errors import ConfigurationError
from rag_engine.events import EventBus
from rag_engine.governor import MB, MemoryMonitor, WorkerPool, create_auto_scaler
from rag_engine.indexing.checkpoint import CheckpointStore
from rag_engine.indexing.context import PipelineContext, SourceConfig
from rag_engine.indexing.pipeline import Pipeline, PipelineConfig, PipelineResult
from rag_engine.indexing.stages import ChunkingStage, DiscoveryStage, EmbeddingStage, FilteringStage, StorageStage
from rag_engine.rate_limit import RateLimiter, create_rate_limiter
from rag_engine.runtime import RuntimeAdapter, SandboxedFileSystem, create_runtime
from rag_engine.vector_store import VectorStore, create_vector_store

logger = logging.getLogger(__name__)


@dataclass
class Components:
    provider: EmbeddingProvider
    store: VectorStore
    rate_limiter: RateLimiter | None


def create_components(s: Settings, runtime: RuntimeAdapter) -> Components:
    """Embedding provider, vector store and (for HTTP providers) a rate limiter."""
    provider_config = provider_config_from_settings(s)
    provider = create_embedding_provider(provider_config, runtime.fetch)
    store = create_vector_store(store_config_from_settings(s, provider.dimension), runtime)
    limiter = None
    if provider_config.type in ("openai", "ollama"):
        limiter = create_rate_limiter(s.rag_rate_limit_preset)
    return Components(provider, store, limiter)


def build_pipeline(
    store: VectorStore,
    provider: EmbeddingProvider,
    rate_limiter: RateLimiter | None = None,
    registry: ChunkerRegistry | None = None,
    config: PipelineConfig | None = None,
    checkpoints: CheckpointStore | None = None,
    prune_deleted: bool = True,
) -> Pipeline:
    """Discovery -> Filtering -> Chunking -> Embedding -> Storage."""
    config = config or PipelineConfig()
    return (
        Pipeline(config, checkpoints)
        .add_stage(DiscoveryStage())
        .add_stage(FilteringStage(store.get_files_metadata))
        .add_stage(ChunkingStage(registry))
        .add_stage(EmbeddingStage(provider, rate_limiter, max_concurrency=max(1, config.workers)))
        .add_stage(StorageStage(store, prune_deleted=prune_deleted, gc_interval=config.gc_interval))
    )


def load_sources(path: Path | str) -> tuple[Path, list[SourceConfig]]:
    """Read a YAML sources file: optional `root` (relative to the file) and a `sources` list."""
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read sources file {path}: {e}") from e
    if not isinstance(data, dict) or not data.get("sources"):
        raise ConfigurationError(f"Sources file {path} has no 'sources' list")
    root = (path.parent / data.get("root", ".")).resolve()
    return root, [SourceConfig.model_validate(src) for src in data["sources"]]


def index_workspace(
    sources_file: Path | str,
    scope_id: str,
    s: Settings,
    token: CancellationToken | None = None,
    events: EventBus | None = None,
    resume: bool = False,
) -> PipelineResult:
    """Index every source listed in sources_file into scope_id."""
    t0 = time.monotonic()
    root, sources = load_sources(sources_file)
    runtime = create_runtime(root)
    components = create_components(s, runtime)
    memory_limit = s.rag_memory_limit_mb * MB
    config = PipelineConfig(memory_limit=memory_limit)

    monitor = MemoryMonitor(memory_limit=memory_limit)
    pool = WorkerPool(concurrency=1)
    scaler = create_auto_scaler(pool, monitor)
    config.workers = scaler.target_workers
    checkpoints = CheckpointStore(SandboxedFileSystem(workspace_root(s)), config.checkpoint_dir)
    pipeline = build_pipeline(
        components.store, components.provider, components.rate_limiter, config=config, checkpoints=checkpoints
    )
    ctx = PipelineContext(
        sources=sources,
        scope_id=scope_id,
        runtime=runtime,
        memory_monitor=monitor,
        events=events or EventBus(),
        cache=EmbeddingCache(max_size=s.rag_cache_size, ttl_seconds=s.rag_cache_ttl_hours * 3600),
        pool=pool,
        token=token,
    )
    logger.info(
        "indexing: %s -> scope %s (%s, %d workers)", root, scope_id, components.provider.id, scaler.target_workers
    )
    if resume and pipeline.resume(ctx):
        logger.info("indexing: resumed from checkpoint")

    scaler.start()
    try:
        result = pipeline.execute(ctx)
    finally:
        scaler.stop()
        pool.shutdown()
    if result.success:
        checkpoints.clear(scope_id)
    logger.info("indexing: finished scope %s (%.1fs)", scope_id, time.monotonic() - t0)
    return result
