"""Discovery stage: expand each source's globs into file metadata."""

import fnmatch
import logging
import time
from dataclasses import asdict
from pathlib import Path, PurePosixPath

from rag_engine.indexing.context import Checkpoint, FileMetadata, PipelineContext, Stage, StageResult

logger = logging.getLogger(__name__)

# Dir names to skip when walking
SKIP_DIRS = frozenset(
    {"node_modules", "__pycache__", ".git", "build", "dist", ".next", "venv", ".venv", ".rag_engine"}
)
# File patterns to skip
SKIP_EXTENSIONS = frozenset(
    {".pyc", ".png", ".jpg", ".jpeg", ".gif", ".ico", ".woff", ".woff2", ".lock", ".zip", ".gz"}
)


def should_index_path(file_path: PurePosixPath | Path) -> bool:
    """Return True if the file should be indexed."""
    if any(part in SKIP_DIRS for part in file_path.parts):
        return False
    if file_path.suffix.lower() in SKIP_EXTENSIONS:
        return False
    name = file_path.name
    if name.endswith(".min.js") or name.endswith(".min.css"):
        return False
    return True


class DiscoveryStage(Stage):
    name = "discovery"
    description = "Find files matching each source's glob patterns"

    def __init__(self):
        self._restored = False

    def execute(self, ctx: PipelineContext) -> StageResult:
        if self._restored:
            self._restored = False
            return StageResult(True, {"files_discovered": len(ctx.files), "restored": True})
        fs = ctx.runtime.fs
        seen: dict[str, FileMetadata] = {}
        for source in ctx.sources:
            for pattern in source.paths:
                for full in fs.glob(pattern):
                    rel = PurePosixPath(full.relative_to(fs.root).as_posix())
                    key = rel.as_posix()
                    if key in seen or not should_index_path(rel):
                        continue
                    if any(fnmatch.fnmatch(key, ex) for ex in source.exclude):
                        continue
                    try:
                        if not fs.is_file(full):
                            continue
                        st = fs.stat(full)
                    except OSError as e:
                        ctx.log(logging.WARNING, f"indexing.discovery: cannot stat {key}: {e}")
                        continue
                    seen[key] = FileMetadata(
                        relative_path=key,
                        full_path=str(full),
                        size=st.st_size,
                        mtime=st.st_mtime,
                        extension=rel.suffix.lower(),
                        source_id=source.id,
                        source_kind=source.kind,
                        source_language=source.language,
                    )
            ctx.progress(self.name, len(seen), len(seen), f"source {source.id}")

        ctx.files = sorted(seen.values(), key=lambda f: f.relative_path)
        ctx.discovered_paths = set(seen)
        ctx.stats.files_discovered = len(ctx.files)
        return StageResult(True, {"files_discovered": len(ctx.files), "sources": len(ctx.sources)})

    def checkpoint(self, ctx: PipelineContext) -> Checkpoint:
        return Checkpoint(
            stage=self.name,
            processed_files=[f.relative_path for f in ctx.files],
            stats=ctx.stats.to_dict(),
            timestamp=time.time(),
            data={"discovered_files": [asdict(f) for f in ctx.files]},
        )

    def restore(self, ctx: PipelineContext, checkpoint: Checkpoint) -> None:
        ctx.files = [FileMetadata(**f) for f in checkpoint.data.get("discovered_files", [])]
        ctx.discovered_paths = {f.relative_path for f in ctx.files}
        self._restored = True
        ctx.stats.files_discovered = len(ctx.files)
        logger.info("indexing.discovery: restored %d files from checkpoint", len(ctx.files))
