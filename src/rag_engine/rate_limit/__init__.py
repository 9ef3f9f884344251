"""Provider rate limiting."""

from rag_engine.rate_limit.limiter import RateLimiter, RateLimiterStats
from rag_engine.rate_limit.presets import (
    DEFAULT_PRESET,
    PRESETS,
    RateLimitConfig,
    estimate_batch_tokens,
    estimate_tokens,
    get_preset,
)

__all__ = [
    "DEFAULT_PRESET",
    "PRESETS",
    "RateLimitConfig",
    "RateLimiter",
    "RateLimiterStats",
    "create_rate_limiter",
    "estimate_batch_tokens",
    "estimate_tokens",
    "get_preset",
]


def create_rate_limiter(preset: str | RateLimitConfig = DEFAULT_PRESET) -> RateLimiter:
    config = get_preset(preset) if isinstance(preset, str) else preset
    return RateLimiter(config)
