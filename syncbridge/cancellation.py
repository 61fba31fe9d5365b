"""Cooperative cancellation handle passed down every sync call chain."""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class OperationCancelled(Exception):
    """Raised when a caller-requested cancellation aborts an operation."""


class CancellationToken:
    """Thread-safe cancellation signal.

    Callers hand the same token to every adapter call of a pass. Adapters either poll it
    (`raise_if_cancelled`) or register a callback that interrupts a blocking wait, e.g. by
    closing an HTTP session.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Operation cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cancellation callback failed: {e}")

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "Operation cancelled")

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run `callback` on cancellation (immediately if already cancelled).

        Returns a function that unregisters the callback.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def _unregister() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return _unregister
        callback()
        return lambda: None

    def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; returns True if cancelled meanwhile."""
        return self._event.wait(timeout)


def ensure_token(cancellation: Optional[CancellationToken]) -> CancellationToken:
    """Return `cancellation`, or a fresh token that is never cancelled."""
    return cancellation if cancellation is not None else CancellationToken()
