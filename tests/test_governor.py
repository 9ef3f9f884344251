"""Tests for the memory monitor, worker pool and auto-scaler."""

import threading

import pytest

from helpers import make_monitor
from rag_engine.cancellation import CancellationToken
from rag_engine.errors import OperationCancelled
from rag_engine.governor import GB, AutoScaler, WorkerPool, initial_workers, recommended_config


def test_backpressure_levels():
    """Critical pressure backs off 500ms, warning 100ms, normal 0."""
    assert make_monitor(used=int(0.9 * GB)).apply_backpressure() == 500
    assert make_monitor(used=int(0.75 * GB)).apply_backpressure() == 100
    assert make_monitor(used=int(0.1 * GB)).apply_backpressure() == 0


def test_backpressure_respects_cancelled_token():
    """A cancelled token aborts the backpressure sleep."""
    token = CancellationToken()
    token.cancel()
    with pytest.raises(OperationCancelled):
        make_monitor(used=int(0.9 * GB)).apply_backpressure(token)


def test_can_allocate_and_batch_size():
    """can_allocate stays under critical; recommend_batch_size is clamped to [1, max]."""
    monitor = make_monitor(used=int(0.5 * GB))
    assert monitor.can_allocate(int(0.2 * GB))
    assert not monitor.can_allocate(int(0.4 * GB))
    assert monitor.recommend_batch_size(1024) == 20
    assert make_monitor(used=int(0.8 * GB)).recommend_batch_size(1024) == 1


def test_force_gc_rate_limited():
    """force_gc runs at most once per second."""
    monitor = make_monitor()
    assert monitor.force_gc() is True
    assert monitor.force_gc() is False


def test_worker_pool_preserves_order():
    """map returns results in input order."""
    pool = WorkerPool(concurrency=4, max_workers=4)
    try:
        assert pool.map(lambda x: x * 2, range(20)) == [x * 2 for x in range(20)]
    finally:
        pool.shutdown()


def test_worker_pool_limits_concurrency():
    """No more than `concurrency` tasks run at once."""
    pool = WorkerPool(concurrency=2, max_workers=8)
    lock = threading.Lock()
    running = 0
    peak = 0

    def work(_):
        nonlocal running, peak
        with lock:
            running += 1
            peak = max(peak, running)
        threading.Event().wait(0.01)
        with lock:
            running -= 1

    try:
        pool.map(work, range(12))
    finally:
        pool.shutdown()
    assert peak <= 2


def test_worker_pool_adjust_concurrency_clamped():
    """adjust_concurrency scales by factor within [min_workers, max_workers]."""
    pool = WorkerPool(concurrency=4, min_workers=2, max_workers=6)
    try:
        assert pool.adjust_concurrency(0.1) == 2
        assert pool.adjust_concurrency(10) == 6
    finally:
        pool.shutdown()


@pytest.mark.parametrize("ratio", [0.0, 0.3, 0.55, 0.85, 0.95, 1.5])
@pytest.mark.parametrize("queued", [0, 50])
def test_autoscaler_target_within_bounds(ratio, queued):
    """Target workers stay within [min_workers, max_workers] for any memory ratio and queue."""
    pool = WorkerPool(concurrency=3, max_workers=16)
    pool._queued = queued
    monitor = make_monitor(used=int(ratio * 8 * GB), limit=8 * GB)
    scaler = AutoScaler(pool, monitor, min_workers=2, max_workers=5)
    try:
        for _ in range(6):
            assert 2 <= scaler.adjust() <= 5
    finally:
        pool.shutdown()


def test_autoscaler_scales_down_under_pressure():
    """Above 90% memory the target halves."""
    pool = WorkerPool(concurrency=1, max_workers=16)
    monitor = make_monitor(used=int(7.6 * GB), limit=8 * GB)
    scaler = AutoScaler(pool, monitor, min_workers=1, max_workers=16)
    try:
        before = scaler.target_workers
        assert scaler.adjust() == max(1, before // 2)
        assert scaler.get_stats().last_scale_direction == "down"
        assert pool.concurrency == scaler.target_workers
    finally:
        pool.shutdown()


def test_initial_workers_and_recommended_config():
    """Memory bands map to worker counts and batch sizes."""
    assert initial_workers(1 * GB, 1, 64) == 1
    assert initial_workers(3 * GB, 1, 64) == 3
    assert initial_workers(8 * GB, 1, 64) == 12
    assert initial_workers(8 * GB, 1, 4) == 4
    assert recommended_config(1 * GB) == {"workers": 1, "batch_size": 5}
    assert recommended_config(32 * GB) == {"workers": 16, "batch_size": 50}
