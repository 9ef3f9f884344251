"""Runtime adapter: the only seam through which the engine performs I/O.

fetch goes through a requests.Session, env lookups are allow-listed and file access is
confined to a sandbox root. Tests swap any of the three for fakes.
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Protocol

import requests

from rag_engine.errors import InvalidInputError, RateLimitError, TransientError

logger = logging.getLogger(__name__)

DEFAULT_ENV_ALLOWLIST = ("OPENAI_", "ANTHROPIC_", "QDRANT_", "OLLAMA_", "RAG_")


class Fetch(Protocol):
    def __call__(self, method: str, url: str, **kwargs: Any) -> Any: ...


class Analytics(Protocol):
    def track(self, event: str, props: dict | None = None) -> None: ...

    def metric(self, name: str, value: float, tags: dict | None = None) -> None: ...


class FilteredEnv:
    """Read-only view of os.environ limited to allow-listed keys or prefixes."""

    def __init__(self, allowlist: Iterable[str] = DEFAULT_ENV_ALLOWLIST, source: dict | None = None):
        self._allow = tuple(allowlist)
        self._source = source if source is not None else os.environ

    def get(self, key: str, default: str | None = None) -> str | None:
        if not any(key == a or (a.endswith("_") and key.startswith(a)) for a in self._allow):
            logger.debug("runtime.env: %s not in allowlist", key)
            return default
        return self._source.get(key, default)


class SandboxedFileSystem:
    """File access restricted to root. Paths may be relative to root or absolute inside it."""

    def __init__(self, root: Path | str):
        self.root = Path(root).expanduser().resolve()

    def resolve(self, path: Path | str) -> Path:
        p = Path(path)
        full = (p if p.is_absolute() else self.root / p).resolve()
        if full != self.root and self.root not in full.parents:
            raise PermissionError(f"Path escapes sandbox: {path}")
        return full

    def read_text(self, path: Path | str) -> str:
        return self.resolve(path).read_text(encoding="utf-8", errors="replace")

    def read_bytes(self, path: Path | str) -> bytes:
        return self.resolve(path).read_bytes()

    def iter_lines(self, path: Path | str) -> Iterator[str]:
        """Yield lines without trailing newlines, reading lazily."""
        with self.resolve(path).open("r", encoding="utf-8", errors="replace") as f:
            for line in f:
                yield line.rstrip("\r\n")

    def write_text(self, path: Path | str, content: str) -> None:
        """Atomic write: temp file in the same directory, then replace."""
        full = self.resolve(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=full.parent, prefix=f".{full.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp, full)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def mkdir(self, path: Path | str) -> None:
        self.resolve(path).mkdir(parents=True, exist_ok=True)

    def exists(self, path: Path | str) -> bool:
        return self.resolve(path).exists()

    def is_file(self, path: Path | str) -> bool:
        return self.resolve(path).is_file()

    def stat(self, path: Path | str) -> os.stat_result:
        return self.resolve(path).stat()

    def remove(self, path: Path | str) -> None:
        self.resolve(path).unlink(missing_ok=True)

    def list_dir(self, path: Path | str) -> list[str]:
        full = self.resolve(path)
        if not full.is_dir():
            return []
        return sorted(p.name for p in full.iterdir())

    def glob(self, pattern: str, base: Path | str = ".") -> Iterator[Path]:
        yield from self.resolve(base).glob(pattern)


@dataclass
class RuntimeAdapter:
    fetch: Fetch
    env: FilteredEnv
    fs: SandboxedFileSystem
    analytics: Analytics | None = None
    log: Callable[[str, str, dict], None] | None = None

    def track(self, event: str, props: dict | None = None) -> None:
        if self.analytics is not None:
            self.analytics.track(event, props or {})

    def metric(self, name: str, value: float, tags: dict | None = None) -> None:
        if self.analytics is not None:
            self.analytics.metric(name, value, tags or {})


def create_runtime(root: Path | str, env_allowlist: Iterable[str] = DEFAULT_ENV_ALLOWLIST) -> RuntimeAdapter:
    """Default runtime: requests session, filtered env, fs sandboxed at root."""
    session = requests.Session()
    return RuntimeAdapter(fetch=session.request, env=FilteredEnv(env_allowlist), fs=SandboxedFileSystem(root))


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Seconds to wait from a Retry-After header: delta-seconds or an HTTP-date.

    Unparseable values return None so the caller falls back to exponential backoff.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("runtime: unparseable Retry-After %r", value)
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


def request_json(
    fetch: Fetch,
    method: str,
    url: str,
    *,
    json: Any = None,
    headers: dict | None = None,
    timeout: float = 30.0,
) -> Any:
    """Send a JSON request and map failures onto the error taxonomy.

    429 -> RateLimitError (Retry-After honoured), 5xx/timeouts -> TransientError,
    other 4xx -> InvalidInputError carrying status_code.
    """
    try:
        resp = fetch(method, url, json=json, headers=headers, timeout=timeout)
    except (requests.Timeout, requests.ConnectionError) as e:
        raise TransientError(f"{method} {url}: {e}") from e

    status = resp.status_code
    if status == 429:
        retry_after = resp.headers.get("Retry-After") if resp.headers else None
        raise RateLimitError(f"{method} {url}: rate limited", retry_after=parse_retry_after(retry_after))
    if status >= 500:
        raise TransientError(f"{method} {url}: HTTP {status} {resp.text[:200]}", status_code=status)
    if status >= 400:
        raise InvalidInputError(f"{method} {url}: HTTP {status} {resp.text[:200]}", status_code=status)
    if not resp.text:
        return None
    return resp.json()
