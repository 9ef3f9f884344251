"""Token/request budget enforcement for outbound provider calls.

Limits are tracked in one-minute and one-second windows. acquire() blocks until the
request fits, then reserves it; release() frees its concurrency slot.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from rag_engine.rate_limit.presets import RateLimitConfig

logger = logging.getLogger(__name__)


@dataclass
class RateLimiterStats:
    tokens_this_minute: int
    requests_this_minute: int
    requests_this_second: int
    active_requests: int
    total_requests: int
    total_tokens: int
    wait_count: int
    total_wait_time: float


def _apply_margin(limit: int | None, margin: float) -> int | None:
    return math.floor(limit * margin) if limit else None


class RateLimiter:
    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not 0 < config.safety_margin <= 1:
            raise ValueError("safety_margin must be in (0, 1]")
        self.config = config
        self.tpm = _apply_margin(config.tokens_per_minute, config.safety_margin)
        self.rpm = _apply_margin(config.requests_per_minute, config.safety_margin)
        self.rps = _apply_margin(config.requests_per_second, config.safety_margin)
        self.max_concurrent = config.max_concurrent_requests
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        # Held while waiting under the queue strategy so excess requests go one at a time.
        self._queue = threading.Lock()

        now = clock()
        self._minute_start = now
        self._second_start = now
        self._tokens_minute = 0
        self._requests_minute = 0
        self._requests_second = 0
        self._active = 0
        self._total_requests = 0
        self._total_tokens = 0
        self._wait_count = 0
        self._total_wait = 0.0

    def _reset_windows(self) -> None:
        now = self._clock()
        if now - self._minute_start >= 60:
            self._tokens_minute = 0
            self._requests_minute = 0
            self._minute_start = now
        if now - self._second_start >= 1:
            self._requests_second = 0
            self._second_start = now

    def _fits(self, tokens: int) -> bool:
        # A single request larger than the whole budget may run alone in a fresh window.
        if self.tpm and self._tokens_minute + tokens > self.tpm and not (tokens > self.tpm and self._tokens_minute == 0):
            return False
        if self.rpm and self._requests_minute >= self.rpm:
            return False
        if self.rps and self._requests_second >= self.rps:
            return False
        if self.max_concurrent and self._active >= self.max_concurrent:
            return False
        return True

    def _wait_time(self, tokens: int) -> float:
        now = self._clock()
        delays: list[float] = []
        minute_left = 60 - (now - self._minute_start)
        if self.tpm and self._tokens_minute + tokens > self.tpm:
            delays.append(max(0.1, minute_left + 0.1))
        if self.rpm and self._requests_minute >= self.rpm:
            delays.append(max(0.1, minute_left + 0.1))
        if self.rps and self._requests_second >= self.rps:
            delays.append(max(0.05, 1 - (now - self._second_start) + 0.05))
        if self.max_concurrent and self._active >= self.max_concurrent:
            delays.append(0.1)
        return min(delays) if delays else 0.05

    def acquire(self, tokens: int, token=None) -> None:
        """Block until capacity for tokens is available, then reserve it."""
        if self.config.strategy == "queue":
            with self._queue:
                self._acquire(tokens, token)
        else:
            self._acquire(tokens, token)

    def _acquire(self, tokens: int, token) -> None:
        started = self._clock()
        waited = False
        while True:
            with self._lock:
                self._reset_windows()
                if self._fits(tokens):
                    self._tokens_minute += tokens
                    self._requests_minute += 1
                    self._requests_second += 1
                    self._active += 1
                    self._total_requests += 1
                    self._total_tokens += tokens
                    if waited:
                        self._wait_count += 1
                        self._total_wait += self._clock() - started
                    return
                delay = self._wait_time(tokens)
            if not waited:
                logger.debug("rate_limit: waiting %.2fs for capacity (%d tokens)", delay, tokens)
            waited = True
            if token is not None:
                token.sleep(delay)
            else:
                self._sleep(delay)

    def release(self) -> None:
        with self._lock:
            self._active = max(0, self._active - 1)

    def can_proceed(self, tokens: int) -> bool:
        with self._lock:
            self._reset_windows()
            return self._fits(tokens)

    def get_stats(self) -> RateLimiterStats:
        with self._lock:
            self._reset_windows()
            return RateLimiterStats(
                tokens_this_minute=self._tokens_minute,
                requests_this_minute=self._requests_minute,
                requests_this_second=self._requests_second,
                active_requests=self._active,
                total_requests=self._total_requests,
                total_tokens=self._total_tokens,
                wait_count=self._wait_count,
                total_wait_time=self._total_wait,
            )

    def remaining_capacity(self) -> dict[str, int | None]:
        with self._lock:
            self._reset_windows()
            return {
                "tokens": max(0, self.tpm - self._tokens_minute) if self.tpm else None,
                "requests_per_minute": max(0, self.rpm - self._requests_minute) if self.rpm else None,
                "requests_per_second": max(0, self.rps - self._requests_second) if self.rps else None,
                "concurrent_slots": max(0, self.max_concurrent - self._active) if self.max_concurrent else None,
            }

    def optimal_batch_size(self, avg_tokens_per_item: int, max_batch_size: int) -> int:
        """Largest batch that fits the remaining token budget (0 when exhausted)."""
        size = max_batch_size
        if self.config.max_inputs_per_request:
            size = min(size, self.config.max_inputs_per_request)
        remaining = self.remaining_capacity()["tokens"]
        if remaining is not None and avg_tokens_per_item > 0:
            size = min(size, remaining // avg_tokens_per_item)
        return max(0, size)
