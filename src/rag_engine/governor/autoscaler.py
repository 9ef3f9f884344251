"""Auto-scaler: steers WorkerPool concurrency from memory pressure and queue depth.

Ticks run on an APScheduler BackgroundScheduler interval job between start() and stop().
"""

import logging
import math
import os
from dataclasses import dataclass

from apscheduler.schedulers.background import BackgroundScheduler

from rag_engine.governor.memory import GB, MemoryMonitor
from rag_engine.governor.pool import WorkerPool

logger = logging.getLogger(__name__)


@dataclass
class AutoScalerStats:
    current_workers: int
    target_workers: int
    memory_usage: float
    scale_events: int
    last_scale_direction: str | None


def initial_workers(memory_limit: int, min_workers: int, max_workers: int, aggressive: bool = False) -> int:
    """Banded worker count from available memory, clamped to [min_workers, max_workers]."""
    gb = memory_limit / GB
    if gb <= 1:
        workers = 1
    elif gb <= 4:
        workers = math.floor(gb)
    elif gb <= 16:
        workers = 4 + math.floor((gb - 4) * 2)
    else:
        workers = 28 + math.floor((gb - 16) * 1.5)
    if aggressive:
        workers = math.floor(workers * 1.5)
    return max(min_workers, min(max_workers, workers))


def recommended_config(memory_limit: int) -> dict:
    """Worker and batch-size recommendation for a memory budget."""
    gb = memory_limit / GB
    for limit, workers, batch in ((2, 1, 5), (4, 2, 10), (8, 4, 20), (16, 8, 30)):
        if gb < limit:
            return {"workers": workers, "batch_size": batch}
    return {"workers": 16, "batch_size": 50}


class AutoScaler:
    def __init__(
        self,
        pool: WorkerPool,
        monitor: MemoryMonitor,
        min_workers: int = 1,
        max_workers: int = 8,
        scale_down_threshold: float = 0.8,
        scale_up_threshold: float = 0.5,
        check_interval: float = 1.0,
        aggressive: bool = False,
    ):
        if min_workers > max_workers:
            raise ValueError("min_workers must be <= max_workers")
        self.pool = pool
        self.monitor = monitor
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.scale_down_threshold = scale_down_threshold
        self.scale_up_threshold = scale_up_threshold
        self.check_interval = check_interval
        self.aggressive = aggressive
        self.target_workers = initial_workers(monitor.memory_limit, min_workers, max_workers, aggressive)
        self._scale_events = 0
        self._last_direction: str | None = None
        self._scheduler: BackgroundScheduler | None = None
        self._apply_target()

    def adjust(self) -> int:
        """One tick: scale down under memory pressure, up when idle memory and queued work."""
        ratio = self.monitor.usage_ratio()
        previous = self.target_workers
        if ratio > self.scale_down_threshold:
            factor = 0.5 if ratio > 0.9 else 0.75
            self.target_workers = max(self.min_workers, math.floor(self.target_workers * factor))
        elif ratio < self.scale_up_threshold and self.pool.queued_tasks > 0:
            factor = 1.5 if self.aggressive else 1.25
            self.target_workers = min(self.max_workers, math.ceil(self.target_workers * factor))
        self.target_workers = max(self.min_workers, min(self.max_workers, self.target_workers))

        if self.target_workers != previous:
            self._scale_events += 1
            self._last_direction = "down" if self.target_workers < previous else "up"
            logger.info(
                "governor.autoscaler: scaling %s %d -> %d (memory %.0f%%)",
                self._last_direction,
                previous,
                self.target_workers,
                ratio * 100,
            )
            self._apply_target()
        return self.target_workers

    def _apply_target(self) -> None:
        current = self.pool.concurrency
        if current and current != self.target_workers:
            self.pool.adjust_concurrency(self.target_workers / current)

    def start(self) -> None:
        if self._scheduler is not None:
            return
        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self.adjust,
            trigger="interval",
            seconds=self.check_interval,
            id="autoscaler_tick",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("governor.autoscaler: started (%d workers, tick %.1fs)", self.target_workers, self.check_interval)

    def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("governor.autoscaler: stopped after %d scale events", self._scale_events)

    def get_stats(self) -> AutoScalerStats:
        return AutoScalerStats(
            current_workers=self.pool.concurrency,
            target_workers=self.target_workers,
            memory_usage=self.monitor.usage_ratio(),
            scale_events=self._scale_events,
            last_scale_direction=self._last_direction,
        )


def create_auto_scaler(
    pool: WorkerPool,
    monitor: MemoryMonitor,
    min_workers: int = 1,
    max_workers: int | None = None,
    aggressive: bool = False,
) -> AutoScaler:
    """AutoScaler with max_workers defaulting to max(4, cpu_count * 2)."""
    max_workers = max_workers or max(4, (os.cpu_count() or 1) * 2)
    return AutoScaler(pool, monitor, min_workers=min_workers, max_workers=max_workers, aggressive=aggressive)
