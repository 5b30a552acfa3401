# taskweave/core/runner/cancellation.py
from __future__ import annotations
import asyncio
import contextlib
import threading
from typing import Callable, Optional


class TaskCancelledError(Exception):
    """Raised by ``raise_if_cancelled`` inside an executor."""


class CancellationToken:
    """
    Cooperative cancellation flag shared between the coordinator, the
    runner and the executor.

    Sync executors poll ``cancelled`` (or ``wait``) from a worker thread;
    async code awaits ``wait_async``. Child tokens fire with their parent.
    """

    def __init__(self, parent: Optional[CancellationToken] = None) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self.reason: str = ''
        if parent is not None:
            parent.add_callback(lambda: self.cancel(parent.reason))

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = 'cancelled') -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on cancel (immediately if already cancelled)."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def child(self) -> CancellationToken:
        return CancellationToken(parent=self)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block the calling thread until cancelled; True if cancelled."""
        return self._event.wait(timeout)

    async def wait_async(self) -> None:
        """Resolve once cancelled. Safe to call from any running loop."""
        if self._event.is_set():
            return
        loop = asyncio.get_running_loop()
        fired: asyncio.Future[None] = loop.create_future()

        def _set() -> None:
            if not fired.done():
                fired.set_result(None)

        def _wake() -> None:
            # The loop may already be closed when a late cancel fires.
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(_set)

        self.add_callback(_wake)
        await fired

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TaskCancelledError(self.reason)
