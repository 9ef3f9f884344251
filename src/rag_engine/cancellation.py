"""Deadline and abort signal shared by every blocking call."""

import threading
import time

from rag_engine.errors import OperationCancelled


class CancellationToken:
    """Cancelled explicitly via cancel() or implicitly once timeout seconds elapse."""

    def __init__(self, timeout: float | None = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds until the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            reason = "deadline exceeded" if not self._event.is_set() else "cancelled"
            raise OperationCancelled(f"Operation {reason}")

    def sleep(self, seconds: float) -> None:
        """Wait up to seconds, waking early on cancel. Raises OperationCancelled."""
        self.raise_if_cancelled()
        remaining = self.remaining()
        wait = seconds if remaining is None else min(seconds, remaining)
        if wait > 0:
            self._event.wait(wait)
        self.raise_if_cancelled()

    def timeout_for(self, default: float) -> float:
        """HTTP timeout bounded by the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return default
        return max(0.001, min(default, remaining))
