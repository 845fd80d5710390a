from __future__ import annotations

import threading
import time
from typing import Optional

from .errors import OperationCancelledError


class CancellationToken:
    """Cooperative cancellation signal with an optional deadline.

    Query operations call ``raise_if_cancelled()`` at safe points: between
    lineage traversal levels, per rule, per batch of fuzzy alias candidates
    and before a registry scan.
    """

    def __init__(self, *, timeout_seconds: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout_seconds if timeout_seconds is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self, operation: str = "") -> None:
        if self.cancelled:
            reason = "deadline exceeded" if not self._event.is_set() else "cancelled"
            raise OperationCancelledError(
                f"Operation {operation or 'query'} {reason}",
                details={"operation": operation, "reason": reason},
            )
