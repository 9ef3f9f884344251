"""Document registries keyed by (source, id, scope_id)."""

import json
import logging
import threading
import time
from pathlib import PurePosixPath

from rag_engine.errors import ConfigurationError
from rag_engine.runtime import SandboxedFileSystem
from rag_engine.sync.models import DocumentRecord, registry_key

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_PATH = "sync/registry.json"


class DocumentRegistry:
    """save/get/delete/list/exists over DocumentRecords."""

    def save(self, record: DocumentRecord) -> None:
        raise NotImplementedError

    def get(self, source: str, doc_id: str, scope_id: str) -> DocumentRecord | None:
        raise NotImplementedError

    def delete(self, source: str, doc_id: str, scope_id: str) -> None:
        raise NotImplementedError

    def list(
        self, source: str | None = None, scope_id: str | None = None, include_deleted: bool = False
    ) -> list[DocumentRecord]:
        raise NotImplementedError

    def exists(self, source: str, doc_id: str, scope_id: str) -> bool:
        return self.get(source, doc_id, scope_id) is not None


class KeyedLocks:
    """One re-entrant lock per registry key, created on first use."""

    def __init__(self):
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def hold(self, key: str) -> threading.RLock:
        with self._guard:
            return self._locks.setdefault(key, threading.RLock())


def _matches(record: DocumentRecord, source: str | None, scope_id: str | None, include_deleted: bool) -> bool:
    if source and record.source != source:
        return False
    if scope_id and record.scope_id != scope_id:
        return False
    return include_deleted or not record.deleted


class InMemoryRegistry(DocumentRegistry):
    def __init__(self):
        self._records: dict[str, DocumentRecord] = {}
        self._lock = threading.Lock()

    def save(self, record: DocumentRecord) -> None:
        with self._lock:
            self._records[record.key] = record.model_copy(deep=True)

    def get(self, source: str, doc_id: str, scope_id: str) -> DocumentRecord | None:
        record = self._records.get(registry_key(source, doc_id, scope_id))
        return record.model_copy(deep=True) if record else None

    def delete(self, source: str, doc_id: str, scope_id: str) -> None:
        with self._lock:
            self._records.pop(registry_key(source, doc_id, scope_id), None)

    def list(self, source=None, scope_id=None, include_deleted=False) -> list[DocumentRecord]:
        return [r.model_copy(deep=True) for r in self._records.values() if _matches(r, source, scope_id, include_deleted)]

    def reset(self) -> None:
        with self._lock:
            self._records.clear()


class FileSystemRegistry(DocumentRegistry):
    """JSON object {"source:id:scope": record} with rotated timestamped backups."""

    def __init__(
        self,
        fs: SandboxedFileSystem,
        path: str = DEFAULT_REGISTRY_PATH,
        backup: bool = True,
        backup_retention: int = 7,
    ):
        self._fs = fs
        self.path = PurePosixPath(path)
        self.backup = backup
        self.backup_retention = backup_retention
        self._cache: dict[str, DocumentRecord] | None = None
        self._lock = threading.RLock()

    def _load(self) -> dict[str, DocumentRecord]:
        if self._cache is not None:
            return self._cache
        if not self._fs.exists(self.path):
            self._cache = {}
            return self._cache
        raw = json.loads(self._fs.read_text(self.path))
        self._cache = {key: DocumentRecord.model_validate(value) for key, value in raw.items()}
        logger.debug("sync.registry: loaded %d records from %s", len(self._cache), self.path)
        return self._cache

    def _write(self, data: dict[str, DocumentRecord]) -> None:
        if self.backup and self._fs.exists(self.path):
            backup_path = f"{self.path}.backup.{int(time.time() * 1000)}"
            self._fs.write_text(backup_path, self._fs.read_text(self.path))
            self._rotate_backups()
        payload = {key: record.model_dump(mode="json") for key, record in data.items()}
        self._fs.write_text(self.path, json.dumps(payload, indent=2))
        self._cache = data

    def backups(self) -> list[str]:
        """Backup file paths, newest first."""
        prefix = f"{self.path.name}.backup."
        names = [n for n in self._fs.list_dir(self.path.parent) if n.startswith(prefix)]
        names.sort(key=lambda n: int(n.rsplit(".", 1)[-1]) if n.rsplit(".", 1)[-1].isdigit() else 0, reverse=True)
        return [str(self.path.parent / n) for n in names]

    def _rotate_backups(self) -> None:
        for old in self.backups()[self.backup_retention :]:
            try:
                self._fs.remove(old)
            except OSError as e:
                logger.warning("sync.registry: could not remove backup %s: %s", old, e)

    def save(self, record: DocumentRecord) -> None:
        with self._lock:
            data = dict(self._load())
            data[record.key] = record.model_copy(deep=True)
            self._write(data)

    def get(self, source: str, doc_id: str, scope_id: str) -> DocumentRecord | None:
        with self._lock:
            record = self._load().get(registry_key(source, doc_id, scope_id))
        return record.model_copy(deep=True) if record else None

    def delete(self, source: str, doc_id: str, scope_id: str) -> None:
        with self._lock:
            data = dict(self._load())
            if data.pop(registry_key(source, doc_id, scope_id), None) is not None:
                self._write(data)

    def list(self, source=None, scope_id=None, include_deleted=False) -> list[DocumentRecord]:
        with self._lock:
            records = list(self._load().values())
        return [r.model_copy(deep=True) for r in records if _matches(r, source, scope_id, include_deleted)]


def create_registry(
    kind: str = "filesystem",
    fs: SandboxedFileSystem | None = None,
    path: str = DEFAULT_REGISTRY_PATH,
    backup_retention: int = 7,
) -> DocumentRegistry:
    if kind == "filesystem":
        if fs is None:
            raise ConfigurationError("Filesystem registry needs a sandboxed fs")
        return FileSystemRegistry(fs, path, backup_retention=backup_retention)
    if kind == "memory":
        return InMemoryRegistry()
    if kind == "database":
        raise ConfigurationError("Database registry is not implemented. Use the filesystem registry.")
    raise ConfigurationError(f"Unknown registry type: {kind}")
