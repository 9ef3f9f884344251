"""Test helpers: quiet memory monitor, chunk builder and a fake fetch."""

import json
from typing import Any

from rag_engine.governor import GB, MemoryMonitor
from rag_engine.runtime import FilteredEnv, RuntimeAdapter, SandboxedFileSystem
from rag_engine.vector_store import Span, StoredChunk


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, headers: dict | None = None):
        self.status_code = status_code
        self.headers = headers or {}
        self.text = json.dumps(payload) if payload is not None else ""
        self._payload = payload

    def json(self) -> Any:
        return self._payload


class FakeFetch:
    """Records calls; responds with handler(method, url, json) -> FakeResponse."""

    def __init__(self, handler):
        self.handler = handler
        self.calls: list[tuple[str, str, Any]] = []

    def __call__(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append((method, url, kwargs.get("json")))
        return self.handler(method, url, kwargs.get("json"))


def make_monitor(used: int = 0, limit: int = GB) -> MemoryMonitor:
    return MemoryMonitor(memory_limit=limit, sampler=lambda: used, sleep=lambda s: None)


def make_chunk(
    chunk_id: str,
    path: str = "src/a.py",
    text: str = "def a():\n    return 1",
    embedding: list[float] | None = None,
    scope_id: str = "scope",
    start: int = 1,
    end: int = 2,
    metadata: dict | None = None,
) -> StoredChunk:
    return StoredChunk(
        chunk_id=chunk_id,
        scope_id=scope_id,
        source_id="src",
        path=path,
        span=Span(start, end),
        text=text,
        embedding=embedding if embedding is not None else [1.0, 0.0, 0.0],
        metadata=metadata or {},
    )


def make_runtime(root, fetch=None) -> RuntimeAdapter:
    def no_network(method, url, **kwargs):
        raise AssertionError(f"unexpected network call: {method} {url}")

    return RuntimeAdapter(fetch=fetch or no_network, env=FilteredEnv(source={}), fs=SandboxedFileSystem(root))
