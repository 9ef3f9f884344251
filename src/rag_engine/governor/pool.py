"""Bounded worker pool whose concurrency can be resized while work is running."""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class ResizableSemaphore:
    def __init__(self, limit: int):
        self._limit = max(1, limit)
        self._active = 0
        self._cond = threading.Condition()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def active(self) -> int:
        return self._active

    def acquire(self, token=None) -> None:
        with self._cond:
            while self._active >= self._limit:
                if token is not None:
                    token.raise_if_cancelled()
                self._cond.wait(timeout=0.05)
            self._active += 1

    def release(self) -> None:
        with self._cond:
            self._active -= 1
            self._cond.notify()

    def resize(self, limit: int) -> None:
        with self._cond:
            self._limit = max(1, limit)
            self._cond.notify_all()


class WorkerPool:
    """Thread pool with semaphore-gated admission.

    adjust_concurrency() takes a factor (target / current) so an auto-scaler can
    steer it without knowing the pool's internals.
    """

    def __init__(self, concurrency: int = 1, min_workers: int = 1, max_workers: int | None = None):
        self.min_workers = max(1, min_workers)
        self.max_workers = max_workers or max(4, (os.cpu_count() or 1) * 2)
        self._sem = ResizableSemaphore(min(max(concurrency, self.min_workers), self.max_workers))
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="rag-worker")
        self._queued = 0
        self._lock = threading.Lock()

    @property
    def concurrency(self) -> int:
        return self._sem.limit

    @property
    def active_tasks(self) -> int:
        return self._sem.active

    @property
    def queued_tasks(self) -> int:
        return self._queued

    def adjust_concurrency(self, factor: float) -> int:
        """Scale the concurrency limit by factor, clamped to [min_workers, max_workers]."""
        target = max(self.min_workers, min(self.max_workers, round(self.concurrency * factor)))
        if target != self.concurrency:
            logger.debug("governor.pool: concurrency %d -> %d", self.concurrency, target)
            self._sem.resize(target)
        return target

    def _run(self, fn: Callable[[T], R], item: T, token) -> R:
        self._sem.acquire(token)
        with self._lock:
            self._queued -= 1
        try:
            if token is not None:
                token.raise_if_cancelled()
            return fn(item)
        finally:
            self._sem.release()

    def map(self, fn: Callable[[T], R], items: Iterable[T], token=None) -> list[R]:
        """Run fn over items, returning results in input order. The first exception propagates."""
        items = list(items)
        with self._lock:
            self._queued += len(items)
        futures = [self._executor.submit(self._run, fn, item, token) for item in items]
        try:
            return [f.result() for f in futures]
        finally:
            for f in futures:
                if f.cancel():
                    with self._lock:
                        self._queued -= 1

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)
