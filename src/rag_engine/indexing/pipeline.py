"""Staged indexing pipeline: stages run strictly in order over a shared context."""

import logging
import time
from dataclasses import dataclass, field

from pydantic import BaseModel

from rag_engine.errors import OperationCancelled
from rag_engine.governor.memory import GB
from rag_engine.indexing.checkpoint import CheckpointStore
from rag_engine.indexing.context import (
    Checkpoint,
    ErrorEntry,
    PipelineContext,
    PipelineStats,
    Stage,
    StageResult,
)

logger = logging.getLogger(__name__)


class PipelineConfig(BaseModel):
    memory_limit: int = 4 * GB
    batch_size: int = 20
    workers: int = 1
    checkpoint_interval: int = 1000
    checkpoint_dir: str = ".checkpoints"
    continue_on_error: bool = True
    max_errors: int = 100
    gc_interval: int = 10


@dataclass
class PipelineResult:
    success: bool
    stats: PipelineStats
    errors: list[ErrorEntry] = field(default_factory=list)
    duration: float = 0.0
    stage_results: dict[str, StageResult] = field(default_factory=dict)


class Pipeline:
    def __init__(self, config: PipelineConfig | None = None, checkpoints: CheckpointStore | None = None):
        self.config = config or PipelineConfig()
        self.checkpoints = checkpoints
        self.stages: list[Stage] = []

    def add_stage(self, stage: Stage) -> "Pipeline":
        self.stages.append(stage)
        return self

    def execute(self, ctx: PipelineContext) -> PipelineResult:
        """Run every stage in order. Stops early once errors reach max_errors."""
        t0 = time.monotonic()
        ctx.max_errors = self.config.max_errors
        results: dict[str, StageResult] = {}
        ctx.log(
            logging.INFO,
            f"indexing.pipeline: starting {len(self.stages)} stages for scope {ctx.scope_id}",
            {"stages": [s.name for s in self.stages]},
        )
        try:
            for stage in self.stages:
                if ctx.token is not None:
                    ctx.token.raise_if_cancelled()
                results[stage.name] = self._execute_stage(stage, ctx)
                if not results[stage.name].success and not self.config.continue_on_error:
                    ctx.log(logging.ERROR, f"indexing.pipeline: stage {stage.name} failed, stopping")
                    break
                if ctx.error_budget_exhausted:
                    ctx.log(
                        logging.ERROR,
                        f"indexing.pipeline: error budget reached ({len(ctx.stats.errors)} errors), aborting remaining stages",
                    )
                    break
        except OperationCancelled as e:
            ctx.add_error("pipeline", str(e))
            ctx.log(logging.WARNING, f"indexing.pipeline: cancelled ({e})")
        except Exception as e:
            ctx.add_error("pipeline", str(e))
            logger.exception("indexing.pipeline: failed")
            return PipelineResult(False, ctx.stats, list(ctx.stats.errors), time.monotonic() - t0, results)

        duration = time.monotonic() - t0
        success = not ctx.stats.errors
        ctx.log(
            logging.INFO,
            f"indexing.pipeline: complete, {ctx.stats.files_processed} files, {ctx.stats.total_chunks} chunks, "
            f"{len(ctx.stats.errors)} errors ({duration:.1f}s)",
        )
        return PipelineResult(success, ctx.stats, list(ctx.stats.errors), duration, results)

    def _execute_stage(self, stage: Stage, ctx: PipelineContext) -> StageResult:
        t0 = time.monotonic()
        ctx.log(logging.INFO, f"indexing.{stage.name}: starting")
        try:
            stage.prepare(ctx)
            result = stage.execute(ctx)
            ctx.log(
                logging.INFO,
                f"indexing.{stage.name}: {'done' if result.success else 'failed'} ({time.monotonic() - t0:.1f}s)",
                result.data,
            )
            ctx.progress(stage.name, 1, 1, "done")
            self._save_checkpoint(stage, ctx)
            return result
        except Exception as e:
            ctx.log(logging.ERROR, f"indexing.{stage.name}: error: {e}")
            raise
        finally:
            stage.cleanup(ctx)

    def _save_checkpoint(self, stage: Stage, ctx: PipelineContext) -> None:
        if self.checkpoints is None:
            return
        cp = stage.checkpoint(ctx)
        if cp is not None:
            self.checkpoints.save(ctx.scope_id, cp)

    def create_checkpoint(self, ctx: PipelineContext) -> Checkpoint:
        """Checkpoint of the last stage that produces one, or an empty 'none' checkpoint."""
        for stage in reversed(self.stages):
            cp = stage.checkpoint(ctx)
            if cp is not None:
                return cp
        return Checkpoint(stage="none", processed_files=[], stats=ctx.stats.to_dict(), timestamp=time.time())

    def restore_from_checkpoint(self, ctx: PipelineContext, checkpoint: Checkpoint) -> bool:
        """Hand the checkpoint to the stage with the same name. Returns False if none matches."""
        for stage in self.stages:
            if stage.name == checkpoint.stage:
                stage.restore(ctx, checkpoint)
                ctx.log(logging.INFO, f"indexing.pipeline: restored {checkpoint.stage} checkpoint")
                return True
        return False

    def resume(self, ctx: PipelineContext) -> bool:
        """Restore the persisted checkpoint for ctx.scope_id, if any."""
        if self.checkpoints is None:
            return False
        cp = self.checkpoints.load(ctx.scope_id)
        return cp is not None and self.restore_from_checkpoint(ctx, cp)
