"""Cancellation tokens for update sessions."""

from __future__ import annotations

import threading
import time


class CancelToken:
    """Signals that a session should stop, either on request or after a timeout.

    Safe to cancel from another thread. Collaborators poll ``cancelled``
    between units of work.
    """

    def __init__(self, timeout_seconds: float | None = None):
        self._event = threading.Event()
        self._reason = ""
        self._deadline = (
            time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        )
        self._timeout_seconds = timeout_seconds

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel(f"timed out after {self._timeout_seconds}s")
            return True
        return False

    @property
    def reason(self) -> str:
        return self._reason

    def remaining(self) -> float | None:
        """Seconds left before the timeout, or None when there is no timeout."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())
