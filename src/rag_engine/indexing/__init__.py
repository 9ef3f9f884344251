"""Indexing pipeline: stages, context, checkpoints and the default builder."""

from rag_engine.indexing.builder import (
    Components,
    build_pipeline,
    create_components,
    index_workspace,
    load_sources,
)
from rag_engine.indexing.checkpoint import CheckpointStore
from rag_engine.indexing.context import (
    Checkpoint,
    ErrorEntry,
    FileMetadata,
    PipelineContext,
    PipelineStats,
    SourceConfig,
    Stage,
    StageResult,
)
from rag_engine.indexing.pipeline import Pipeline, PipelineConfig, PipelineResult

__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "Components",
    "ErrorEntry",
    "FileMetadata",
    "Pipeline",
    "PipelineConfig",
    "PipelineContext",
    "PipelineResult",
    "PipelineStats",
    "SourceConfig",
    "Stage",
    "StageResult",
    "build_pipeline",
    "create_components",
    "index_workspace",
    "load_sources",
]
