"""Memory pressure monitor and backpressure for the indexing pipeline.

Process RSS (via psutil) stands in for heap usage, measured against a configured
limit capped at physical memory.
"""

import gc
import logging
import time
from dataclasses import dataclass
from typing import Callable

import psutil

logger = logging.getLogger(__name__)

GB = 1024**3
MB = 1024**2
MIN_GC_INTERVAL = 1.0


@dataclass
class MemoryStats:
    heap_used: int
    heap_limit: int
    heap_percent: float
    rss: int
    available: int


def _process_rss() -> int:
    return psutil.Process().memory_info().rss


def _physical_memory() -> int:
    return psutil.virtual_memory().total


class MemoryMonitor:
    """Samples memory usage and applies backpressure above warning/critical thresholds."""

    def __init__(
        self,
        memory_limit: int = 4 * GB,
        warning_threshold: float = 0.70,
        critical_threshold: float = 0.85,
        gc_enabled: bool = True,
        sampler: Callable[[], int] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not 0 < warning_threshold <= critical_threshold <= 1:
            raise ValueError("thresholds must satisfy 0 < warning <= critical <= 1")
        self._sampler = sampler or _process_rss
        self.memory_limit = memory_limit if sampler else min(memory_limit, _physical_memory())
        self.warning_threshold = warning_threshold
        self.critical_threshold = critical_threshold
        self.gc_enabled = gc_enabled
        self._sleep = sleep
        self._last_gc = 0.0

    def get_stats(self) -> MemoryStats:
        used = self._sampler()
        return MemoryStats(
            heap_used=used,
            heap_limit=self.memory_limit,
            heap_percent=used / self.memory_limit if self.memory_limit else 1.0,
            rss=used,
            available=max(0, self.memory_limit - used),
        )

    def usage_ratio(self) -> float:
        return self.get_stats().heap_percent

    def is_warning(self) -> bool:
        return self.usage_ratio() >= self.warning_threshold

    def is_critical(self) -> bool:
        return self.usage_ratio() >= self.critical_threshold

    def can_allocate(self, num_bytes: int) -> bool:
        """True if allocating num_bytes keeps usage below the critical threshold."""
        used = self._sampler()
        return (used + num_bytes) / self.memory_limit < self.critical_threshold

    def force_gc(self) -> bool:
        """Run one collection pass, at most once per MIN_GC_INTERVAL. Returns True if run."""
        if not self.gc_enabled:
            return False
        now = time.monotonic()
        if now - self._last_gc < MIN_GC_INTERVAL:
            return False
        self._last_gc = now
        collected = gc.collect()
        logger.debug("governor.memory: gc collected %d objects", collected)
        self._sleep(0.05)
        return True

    def aggressive_cleanup(self) -> None:
        """Two full collection passes with a pause between them."""
        if not self.gc_enabled:
            return
        for _ in range(2):
            gc.collect()
            self._sleep(0.1)
        self._last_gc = time.monotonic()

    def apply_backpressure(self, token=None) -> int:
        """Block briefly under pressure. Returns the delay applied in ms (500, 100 or 0)."""
        sleep = token.sleep if token is not None else self._sleep
        if self.is_critical():
            logger.warning("governor.memory: critical pressure (%s), backing off 500ms", self.format_stats())
            self.aggressive_cleanup()
            sleep(0.5)
            return 500
        if self.is_warning():
            logger.info("governor.memory: warning pressure (%s), backing off 100ms", self.format_stats())
            self.force_gc()
            sleep(0.1)
            return 100
        return 0

    def recommend_batch_size(self, file_size: int, memory_multiplier: float = 3.0, max_batch_size: int = 20) -> int:
        """Headroom below the warning threshold divided by per-item cost, in [1, max_batch_size]."""
        stats = self.get_stats()
        available = self.memory_limit * (self.warning_threshold - stats.heap_percent)
        per_item = max(1.0, file_size * memory_multiplier)
        return max(1, min(max_batch_size, int(available // per_item)))

    def format_stats(self) -> str:
        stats = self.get_stats()
        return f"{stats.heap_used / MB:.0f}MB / {stats.heap_limit / MB:.0f}MB ({stats.heap_percent * 100:.1f}%)"
