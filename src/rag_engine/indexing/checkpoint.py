"""Persist the latest pipeline checkpoint per scope as JSON."""

import hashlib
import json
import logging
from dataclasses import asdict

from rag_engine.indexing.context import Checkpoint
from rag_engine.runtime import SandboxedFileSystem

logger = logging.getLogger(__name__)


class CheckpointStore:
    def __init__(self, fs: SandboxedFileSystem, directory: str = ".checkpoints"):
        self._fs = fs
        self._dir = directory

    def _path(self, scope_id: str) -> str:
        return f"{self._dir}/{hashlib.sha256(scope_id.encode('utf-8')).hexdigest()[:16]}.json"

    def save(self, scope_id: str, checkpoint: Checkpoint) -> None:
        self._fs.write_text(self._path(scope_id), json.dumps(asdict(checkpoint)))
        logger.debug("indexing.checkpoint: saved %s checkpoint for %s", checkpoint.stage, scope_id)

    def load(self, scope_id: str) -> Checkpoint | None:
        path = self._path(scope_id)
        if not self._fs.exists(path):
            return None
        try:
            return Checkpoint(**json.loads(self._fs.read_text(path)))
        except (ValueError, TypeError) as e:
            logger.warning("indexing.checkpoint: ignoring unreadable checkpoint %s: %s", path, e)
            return None

    def clear(self, scope_id: str) -> None:
        self._fs.remove(self._path(scope_id))
