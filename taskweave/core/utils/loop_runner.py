# taskweave/core/utils/loop_runner.py
from __future__ import annotations
import asyncio
import contextlib
import threading
from concurrent.futures import Future
from typing import Any, Awaitable, Callable
from taskweave.core.logging import get_logger


class LoopRunnerError(RuntimeError):
    """Infrastructure failure in the sync->async bridge."""


class LoopRunner:
    """
    Owns an event loop on a daemon thread so sync callers can drive the
    async engine. Every coordinator, timer and history write of a sync
    Taskweave instance lives on this one loop.
    """

    def __init__(self, name: str = 'taskweave-loop') -> None:
        self.logger = get_logger('loop_runner')
        self._name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._started = False
        self._closed = False
        self._state_lock = threading.RLock()

    @property
    def loop(self) -> asyncio.AbstractEventLoop | None:
        return self._loop

    @property
    def running(self) -> bool:
        return self._started and not self._closed

    def start(self) -> None:
        with self._state_lock:
            if self._closed:
                raise LoopRunnerError('Loop runner has been stopped and cannot be restarted')
            if self._started:
                return
            self._loop = asyncio.new_event_loop()
            self._thread = threading.Thread(
                target=self._loop.run_forever, name=self._name, daemon=True,
            )
            try:
                self._thread.start()
            except RuntimeError as exc:
                self._loop.close()
                self._loop = None
                self._thread = None
                raise LoopRunnerError(
                    f'Failed to start loop runner thread: {type(exc).__name__}: {exc}',
                ) from exc
            self._started = True

    def stop(self, timeout: float = 2.0) -> None:
        with self._state_lock:
            if self._started and self._loop is not None:
                self._loop.call_soon_threadsafe(self._loop.stop)
                if self._thread is not None:
                    self._thread.join(timeout=timeout)
                    if self._thread.is_alive():
                        self.logger.warning(
                            'Loop runner thread did not stop within timeout; leaving loop open'
                        )
                        return
                self._loop.close()
                self._loop = None
                self._thread = None
                self._started = False
            self._closed = True

    def submit(
        self, coro_fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any
    ) -> Future[Any]:
        """Schedule an async function on the loop; returns a concurrent future."""
        if not self._started:
            self.start()
        with self._state_lock:
            loop = self._loop
            if self._closed or not self._started or loop is None:
                raise LoopRunnerError('Loop runner is not running')
        if threading.current_thread() is self._thread:
            raise LoopRunnerError(
                'sync API called from the loop runner thread; use the *_async methods'
            )
        coro: Awaitable[Any] | None = None
        try:
            coro = coro_fn(*args, **kwargs)
            return asyncio.run_coroutine_threadsafe(coro, loop)  # type: ignore[arg-type]
        except Exception as exc:
            # Close the created coroutine to avoid "never awaited" warnings.
            if asyncio.iscoroutine(coro):
                with contextlib.suppress(RuntimeError):
                    coro.close()
            raise LoopRunnerError(
                f'Failed to schedule coroutine on loop runner: {type(exc).__name__}: {exc}',
            ) from exc

    def call(
        self, coro_fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any
    ) -> Any:
        """Run an async function on the loop and block until it completes."""
        self.logger.debug(f'Calling {getattr(coro_fn, "__name__", coro_fn)}')
        return self.submit(coro_fn, *args, **kwargs).result()
