# taskweave/core/runner/task_runner.py
from __future__ import annotations
import asyncio
import inspect
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from taskweave.core.logging import get_logger
from taskweave.core.models.definition import TaskSpec
from taskweave.core.models.execution import (
    AttemptRecord,
    OutcomeKind,
    TaskErrorCode,
    TaskOutcome,
)
from taskweave.core.registry.executors import (
    Executor,
    ExecutorRegistry,
    NotRegistered,
    is_async_executor,
    resolve_callable,
)
from taskweave.core.runner.cancellation import CancellationToken, TaskCancelledError
from taskweave.core.runner.context import TaskContext

logger = get_logger('runner')

ContextFactory = Callable[[int, CancellationToken], TaskContext]
AttemptCallback = Callable[[AttemptRecord], None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return f'{type(exc).__name__}: {text}' if text else type(exc).__name__


class TaskRunner:
    """
    Runs one task to its final outcome: attempts, timeouts, retries.

    Async executors run as tasks on the calling loop; sync executors run on
    a bounded thread pool shared by every execution. ``run`` never raises
    for executor problems: everything is folded into a TaskOutcome.
    """

    def __init__(
        self,
        registry: ExecutorRegistry,
        *,
        worker_threads: int = 8,
        default_timeout_seconds: Optional[float] = None,
    ) -> None:
        self.registry = registry
        self.default_timeout_seconds = default_timeout_seconds
        self._worker_threads = worker_threads
        self._pool: ThreadPoolExecutor | None = None

    def _get_pool(self) -> ThreadPoolExecutor:
        if self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=self._worker_threads,
                thread_name_prefix='taskweave-worker',
            )
        return self._pool

    def shutdown(self) -> None:
        """Release the thread pool; abandoned sync executors keep their threads."""
        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)
            self._pool = None

    async def run(
        self,
        spec: TaskSpec,
        ctx_factory: ContextFactory,
        token: CancellationToken,
        on_attempt: AttemptCallback | None = None,
    ) -> TaskOutcome:
        """
        Run ``spec`` with up to ``retry_count`` retries.

        Args:
            spec: the task to run
            ctx_factory: builds the TaskContext for (attempt, attempt_token)
            token: the task's cancellation token (fired on stop)
            on_attempt: called with each finished attempt's record

        Returns:
            The final outcome, carrying every attempt record.
        """
        try:
            executor = self.registry[spec.executor]
        except NotRegistered:
            logger.error(f"Task '{spec.name}': executor '{spec.executor}' not registered")
            return TaskOutcome.failure(
                f"executor '{spec.executor}' not registered",
                TaskErrorCode.EXECUTOR_NOT_FOUND,
            )

        timeout = spec.timeout_seconds or self.default_timeout_seconds
        max_attempts = spec.retry_count + 1
        attempts: list[AttemptRecord] = []
        outcome = TaskOutcome.failure('not started')

        for attempt in range(1, max_attempts + 1):
            if token.cancelled:
                outcome = TaskOutcome.failure(
                    token.reason or 'cancelled', TaskErrorCode.CANCELLED,
                )
                break

            attempt_token = token.child()
            ctx = ctx_factory(attempt, attempt_token)
            started = _now()
            logger.debug(f"Task '{spec.name}' attempt {attempt}/{max_attempts} started")
            outcome = await self._run_attempt(executor, ctx, attempt_token, timeout)
            record = AttemptRecord(
                attempt=attempt,
                started_at=started,
                ended_at=_now(),
                succeeded=outcome.kind != OutcomeKind.FAILURE,
                error_code=outcome.error_code,
                message=outcome.message,
            )
            attempts.append(record)
            if on_attempt is not None:
                on_attempt(record)

            if outcome.kind != OutcomeKind.FAILURE:
                break
            if outcome.error_code == TaskErrorCode.CANCELLED.value:
                break
            if attempt < max_attempts:
                logger.warning(
                    f"Task '{spec.name}' attempt {attempt}/{max_attempts} failed "
                    f'({outcome.error_code}): {outcome.message}; retrying'
                )
                if spec.retry_delay_seconds > 0 and await self._sleep_or_cancel(
                    spec.retry_delay_seconds, token,
                ):
                    outcome = TaskOutcome.failure(
                        token.reason or 'cancelled', TaskErrorCode.CANCELLED,
                    )
                    break

        return outcome.with_attempts(attempts)

    async def _run_attempt(
        self,
        executor: Executor,
        ctx: TaskContext,
        attempt_token: CancellationToken,
        timeout: Optional[float],
    ) -> TaskOutcome:
        loop = asyncio.get_running_loop()
        fn = resolve_callable(executor)
        work: asyncio.Future[Any]
        if is_async_executor(executor):
            work = asyncio.ensure_future(self._call_async(fn, ctx))
        else:
            work = loop.run_in_executor(self._get_pool(), fn, ctx)
        cancel_wait = asyncio.ensure_future(attempt_token.wait_async())

        try:
            done, _ = await asyncio.wait(
                {work, cancel_wait},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            attempt_token.cancel('runner cancelled')
            work.cancel()
            raise
        finally:
            cancel_wait.cancel()

        if work in done:
            outcome = self._fold(work)
            if outcome.is_success and attempt_token.cancelled and not isinstance(
                work.result(), TaskOutcome,
            ):
                # Returned after being told to stop: the work did not complete.
                return TaskOutcome.failure(
                    attempt_token.reason or 'cancelled', TaskErrorCode.CANCELLED,
                )
            return outcome

        # Timed out or cancelled: tell the executor, then stop waiting for it.
        cancelled = cancel_wait in done or attempt_token.cancelled
        attempt_token.cancel('stopped' if cancelled else 'timeout')
        work.cancel()
        work.add_done_callback(self._drain)
        if cancelled:
            return TaskOutcome.failure(
                attempt_token.reason or 'cancelled', TaskErrorCode.CANCELLED,
            )
        return TaskOutcome.failure(
            f'attempt exceeded timeout of {timeout}s', TaskErrorCode.TIMEOUT,
        )

    @staticmethod
    async def _call_async(fn: Executor, ctx: TaskContext) -> Any:
        value = fn(ctx)
        if inspect.isawaitable(value):
            value = await value
        return value

    @staticmethod
    def _fold(work: asyncio.Future[Any]) -> TaskOutcome:
        """Turn a finished attempt future into an outcome."""
        if work.cancelled():
            return TaskOutcome.failure('attempt cancelled', TaskErrorCode.CANCELLED)
        exc = work.exception()
        if isinstance(exc, TaskCancelledError):
            return TaskOutcome.failure(str(exc) or 'cancelled', TaskErrorCode.CANCELLED)
        if exc is not None:
            return TaskOutcome.failure(_describe(exc), TaskErrorCode.TASK_EXCEPTION)
        value = work.result()
        if isinstance(value, TaskOutcome):
            return value
        return TaskOutcome.success()

    @staticmethod
    def _drain(work: asyncio.Future[Any]) -> None:
        # Retrieve late exceptions of abandoned attempts so they are not reported as unhandled.
        if not work.cancelled() and work.exception() is not None:
            logger.debug(f'Abandoned attempt finished with {_describe(work.exception())}')  # type: ignore[arg-type]

    @staticmethod
    async def _sleep_or_cancel(delay: float, token: CancellationToken) -> bool:
        """Sleep ``delay`` seconds; True if the token fired first."""
        waiter = asyncio.ensure_future(token.wait_async())
        try:
            done, _ = await asyncio.wait({waiter}, timeout=delay)
        finally:
            waiter.cancel()
        return waiter in done
