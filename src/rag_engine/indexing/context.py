"""Shared pipeline state, stage interface and result types."""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from rag_engine.cancellation import CancellationToken
from rag_engine.embeddings.cache import EmbeddingCache
from rag_engine.events import EventBus, LogEvent, ProgressEvent
from rag_engine.governor.memory import MemoryMonitor
from rag_engine.governor.pool import WorkerPool
from rag_engine.runtime import RuntimeAdapter
from rag_engine.vector_store.base import StoredChunk

logger = logging.getLogger(__name__)


class SourceConfig(BaseModel):
    """A named group of glob patterns to index."""

    id: str
    paths: list[str] = Field(..., description="Glob patterns relative to the workspace root")
    kind: str = "code"
    language: str | None = None
    exclude: list[str] = Field(default_factory=list, description="fnmatch patterns to skip")


@dataclass
class FileMetadata:
    relative_path: str
    full_path: str
    size: int
    mtime: float
    extension: str
    source_id: str
    source_kind: str
    source_language: str | None = None
    hash: str | None = None


@dataclass
class ErrorEntry:
    file: str
    error: str


@dataclass
class PipelineStats:
    files_discovered: int = 0
    files_processed: int = 0
    files_skipped: int = 0
    total_chunks: int = 0
    start_time: float = field(default_factory=time.time)
    errors: list[ErrorEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StageResult:
    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


@dataclass
class Checkpoint:
    stage: str
    processed_files: list[str]
    stats: dict[str, Any]
    timestamp: float
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class PipelineContext:
    sources: list[SourceConfig]
    scope_id: str
    runtime: RuntimeAdapter
    memory_monitor: MemoryMonitor
    events: EventBus = field(default_factory=EventBus)
    cache: EmbeddingCache | None = None
    pool: WorkerPool | None = None
    token: CancellationToken | None = None
    max_errors: int = 100
    files: list[FileMetadata] = field(default_factory=list)
    discovered_paths: set[str] = field(default_factory=set)
    chunks: list[StoredChunk] = field(default_factory=list)
    stats: PipelineStats = field(default_factory=PipelineStats)

    def log(self, level: int, message: str, meta: dict[str, Any] | None = None) -> None:
        meta = meta or {}
        logger.log(level, message)
        name = logging.getLevelName(level).lower()
        self.events.publish(LogEvent(level=name, message=message, meta=meta))
        if self.runtime.log is not None:
            self.runtime.log(name, message, meta)

    def progress(self, stage: str, current: int, total: int, message: str = "") -> None:
        self.events.publish(ProgressEvent(stage=stage, current=current, total=total, message=message))

    def add_error(self, file: str, error: str) -> None:
        self.stats.errors.append(ErrorEntry(file=file, error=error))

    @property
    def error_budget_exhausted(self) -> bool:
        return len(self.stats.errors) >= self.max_errors

    def backpressure(self) -> int:
        return self.memory_monitor.apply_backpressure(self.token)


class Stage:
    """One pipeline step. prepare/cleanup/checkpoint/restore are optional hooks."""

    name: str = "stage"
    description: str = ""

    def prepare(self, ctx: PipelineContext) -> None:
        pass

    def execute(self, ctx: PipelineContext) -> StageResult:
        raise NotImplementedError

    def cleanup(self, ctx: PipelineContext) -> None:
        pass

    def checkpoint(self, ctx: PipelineContext) -> Checkpoint | None:
        return None

    def restore(self, ctx: PipelineContext, checkpoint: Checkpoint) -> None:
        pass
