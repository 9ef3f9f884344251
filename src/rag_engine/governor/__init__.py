"""Resource governor: memory monitor, auto-scaler and the worker pool they steer."""

from rag_engine.governor.autoscaler import (
    AutoScaler,
    AutoScalerStats,
    create_auto_scaler,
    initial_workers,
    recommended_config,
)
from rag_engine.governor.memory import GB, MB, MemoryMonitor, MemoryStats
from rag_engine.governor.pool import WorkerPool

__all__ = [
    "AutoScaler",
    "AutoScalerStats",
    "GB",
    "MB",
    "MemoryMonitor",
    "MemoryStats",
    "WorkerPool",
    "create_auto_scaler",
    "initial_workers",
    "recommended_config",
]
