"""Error taxonomy for indexing, sync and retrieval.

Configuration errors fail fast. Transient and rate-limit errors are retried by
retry_call(). Everything else propagates to the caller.
"""

import logging
import time
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RagEngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(RagEngineError):
    """Missing or invalid provider credentials, URLs or options."""


class TransientError(RagEngineError):
    """HTTP 5xx, timeouts and connection resets. Safe to retry."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(TransientError):
    """HTTP 429. retry_after is in seconds when the server sent one."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class InvalidInputError(RagEngineError):
    """Non-retryable request error (4xx other than 429, empty input)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConsistencyError(RagEngineError):
    """Stored hash/checksum does not match the content. Caller must re-index."""


class OperationCancelled(RagEngineError):
    """Raised when a cancellation token is cancelled or its deadline passes."""


class BatchSizeError(RagEngineError):
    """Batch sync request exceeds the configured maximum size."""


class DocumentNotFoundError(RagEngineError):
    """No registry record for (source, id, scope)."""


class DocumentStateError(RagEngineError):
    """Operation not valid in the document's current lifecycle state."""


class TTLExpiredError(DocumentStateError):
    """Soft-deleted document is past its restore window."""


def retry_call(
    fn: Callable[[], T],
    max_retries: int = 3,
    base_delay: float = 1.0,
    token=None,
    rate_limit_multiplier: float = 1.0,
    label: str = "call",
) -> T:
    """Call fn, retrying TransientError with exponential backoff.

    RateLimitError waits retry_after when given, otherwise the backoff delay scaled by
    rate_limit_multiplier. Any other exception propagates on the first failure.
    """
    attempt = 0
    while True:
        if token is not None:
            token.raise_if_cancelled()
        try:
            return fn()
        except RateLimitError as e:
            if attempt >= max_retries:
                raise
            delay = e.retry_after if e.retry_after is not None else base_delay * rate_limit_multiplier * 2**attempt
            logger.warning("retry: %s rate limited, waiting %.1fs (attempt %d/%d)", label, delay, attempt + 1, max_retries)
        except TransientError as e:
            if attempt >= max_retries:
                raise
            delay = base_delay * 2**attempt
            logger.warning("retry: %s failed (%s), retrying in %.1fs (attempt %d/%d)", label, e, delay, attempt + 1, max_retries)
        attempt += 1
        if token is not None:
            token.sleep(delay)
        else:
            time.sleep(delay)
