"""Cooperative cancellation shared by callers and in-flight statements."""

import logging
import threading
from typing import Callable, Dict

logger = logging.getLogger(__name__)


class ExecutionCancelled(Exception):
    """Raised inside a worker when the caller's token has fired."""


class CancellationToken:
    """Thread-safe cancellation signal.

    Callers own the token and call :meth:`cancel`; executors register
    callbacks that abort the driver-level statement. Callbacks registered
    after the token fired run immediately.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: Dict[int, Callable[[], None]] = {}
        self._next_handle = 0

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Fire the token. Subsequent calls are no-ops."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()

        for callback in callbacks:
            self._invoke(callback)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExecutionCancelled()

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` when the token fires.

        Returns:
            A callable that unregisters the callback.
        """
        with self._lock:
            if not self._event.is_set():
                handle = self._next_handle
                self._next_handle += 1
                self._callbacks[handle] = callback

                def unregister() -> None:
                    with self._lock:
                        self._callbacks.pop(handle, None)

                return unregister

        self._invoke(callback)
        return lambda: None

    def link(self, other: "CancellationToken") -> Callable[[], None]:
        """Cancel this token whenever ``other`` is cancelled."""
        return other.register(self.cancel)

    @staticmethod
    def _invoke(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception as e:
            logger.warning(f"Cancellation callback failed: {e}")
