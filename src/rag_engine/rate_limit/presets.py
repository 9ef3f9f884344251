"""Named rate-limit presets for embedding and LLM providers."""

import math
from typing import Literal

from pydantic import BaseModel

from rag_engine.errors import ConfigurationError

CHARS_PER_TOKEN = 3.5


class RateLimitConfig(BaseModel):
    tokens_per_minute: int | None = None
    requests_per_minute: int | None = None
    requests_per_second: int | None = None
    max_tokens_per_request: int | None = None
    max_inputs_per_request: int | None = None
    max_concurrent_requests: int | None = None
    safety_margin: float = 0.9
    strategy: Literal["wait", "backoff", "queue"] = "wait"


PRESETS: dict[str, RateLimitConfig] = {
    "openai-tier-1": RateLimitConfig(
        tokens_per_minute=1_000_000,
        requests_per_minute=3_000,
        max_tokens_per_request=8191,
        max_inputs_per_request=2048,
        safety_margin=0.85,
    ),
    "openai-tier-2": RateLimitConfig(
        tokens_per_minute=2_000_000,
        requests_per_minute=5_000,
        max_tokens_per_request=8191,
        max_inputs_per_request=2048,
    ),
    "openai-tier-3": RateLimitConfig(
        tokens_per_minute=5_000_000,
        requests_per_minute=5_000,
        max_tokens_per_request=8191,
        max_inputs_per_request=2048,
    ),
    "openai-tier-4": RateLimitConfig(
        tokens_per_minute=10_000_000,
        requests_per_minute=10_000,
        max_tokens_per_request=8191,
        max_inputs_per_request=2048,
    ),
    "openai-tier-5": RateLimitConfig(
        tokens_per_minute=50_000_000,
        requests_per_minute=10_000,
        max_tokens_per_request=8191,
        max_inputs_per_request=2048,
    ),
    "sber-gigachat": RateLimitConfig(
        requests_per_minute=100,
        requests_per_second=5,
        max_inputs_per_request=100,
        safety_margin=0.8,
        strategy="backoff",
    ),
    "yandex-gpt": RateLimitConfig(
        requests_per_minute=100,
        requests_per_second=10,
        max_inputs_per_request=50,
        safety_margin=0.8,
        strategy="backoff",
    ),
    "ollama-local": RateLimitConfig(max_concurrent_requests=4, max_inputs_per_request=100, strategy="queue"),
    "vllm-local": RateLimitConfig(
        requests_per_second=100,
        max_concurrent_requests=8,
        max_inputs_per_request=256,
        strategy="queue",
    ),
    "tei-local": RateLimitConfig(max_concurrent_requests=16, max_inputs_per_request=256, strategy="queue"),
    "unlimited": RateLimitConfig(),
}

DEFAULT_PRESET = "openai-tier-2"


def get_preset(name: str) -> RateLimitConfig:
    try:
        return PRESETS[name].model_copy()
    except KeyError:
        raise ConfigurationError(
            f"Unknown rate limit preset {name!r}. Available: {', '.join(sorted(PRESETS))}"
        ) from None


def estimate_tokens(text: str) -> int:
    """Conservative token estimate: one token per 3.5 characters."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_batch_tokens(texts: list[str]) -> int:
    return sum(estimate_tokens(t) for t in texts)
