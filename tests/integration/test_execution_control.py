"""Integration tests for pause, resume and stop of live executions."""

from __future__ import annotations

import asyncio
import threading
from typing import Awaitable, Callable

import pytest

from taskweave.core.app import Taskweave
from taskweave.core.models.definition import TaskSpec
from taskweave.core.models.execution import ExecutionResult, TaskErrorCode, TaskOutcome
from taskweave.core.runner.context import TaskContext
from taskweave.core.types.results import LifecycleErrorCode
from taskweave.core.types.status import ExecutionStatus, SkipReason, TaskRunStatus

StatusWaiter = Callable[..., Awaitable[None]]


async def _wait_started(event: asyncio.Event) -> None:
    await asyncio.wait_for(event.wait(), timeout=3)


@pytest.mark.integration
class TestPauseResume:
    @pytest.mark.asyncio(loop_scope='function')
    async def test_pause_holds_dispatch_until_resume(
        self, app: Taskweave, until_status: StatusWaiter,
    ) -> None:
        first_started = asyncio.Event()
        release_first = asyncio.Event()
        ran: list[str] = []

        @app.executor('first')
        async def first(ctx: TaskContext) -> None:
            ran.append('first')
            first_started.set()
            await release_first.wait()

        @app.executor('second')
        async def second(ctx: TaskContext) -> None:
            ran.append('second')

        app.create_workflow('two-step')
        app.add_task('two-step', TaskSpec(name='first', executor='first'))
        app.add_task('two-step', TaskSpec(name='second', executor='second', dependencies=('first',)))

        started = await app.start_async('two-step')
        execution_id = started.ok_value
        await _wait_started(first_started)

        paused = await app.pause_async(execution_id)
        assert paused.ok_value is True
        assert (await app.pause_async(execution_id)).ok_value is False
        await until_status(app, execution_id, ExecutionStatus.PAUSED)

        # The in-flight task drains; nothing new is dispatched.
        release_first.set()
        for _ in range(20):
            await asyncio.sleep(0.01)
        info = (await app.get_status_async(execution_id)).ok_value
        states = {t.task_name: t.status for t in info.tasks}
        assert info.status == ExecutionStatus.PAUSED
        assert states['first'] == TaskRunStatus.SUCCEEDED
        assert states['second'] == TaskRunStatus.PENDING
        assert ran == ['first']

        resumed = await app.resume_async(execution_id)
        assert resumed.ok_value is True
        result = await app.wait_async(execution_id, timeout=5)

        assert result.ok_value.overall_result == ExecutionStatus.COMPLETED
        assert ran == ['first', 'second']

    @pytest.mark.asyncio(loop_scope='function')
    async def test_pause_then_resume_matches_unpaused_run(self, app: Taskweave) -> None:
        @app.executor('step')
        async def step(ctx: TaskContext) -> None:
            await asyncio.sleep(0.01)

        @app.executor('flaky')
        async def flaky(ctx: TaskContext) -> TaskOutcome | None:
            if ctx.attempt == 1:
                return TaskOutcome.failure('first try refused', 'REFUSED')
            return None

        @app.executor('broken')
        async def broken(ctx: TaskContext) -> None:
            raise RuntimeError('always broken')

        app.create_workflow('mixed')
        app.add_task('mixed', TaskSpec(name='a', executor='step'))
        app.add_task('mixed', TaskSpec(name='b', executor='flaky', dependencies=('a',), retry_count=1))
        app.add_task('mixed', TaskSpec(name='c', executor='broken', dependencies=('a',)))
        app.add_task('mixed', TaskSpec(name='d', executor='step', dependencies=('b', 'c')))
        app.add_task('mixed', TaskSpec(name='e', executor='step', dependencies=('b',)))

        def shape(result: ExecutionResult) -> list[tuple[str, TaskRunStatus, int, str | None]]:
            return [
                (t.task_name, t.status, t.attempt_count, t.error_code)
                for t in result.task_results
            ]

        plain_id = (await app.start_async('mixed')).ok_value
        plain = (await app.wait_async(plain_id, timeout=5)).ok_value

        paused_id = (await app.start_async('mixed')).ok_value
        assert (await app.pause_async(paused_id)).ok_value is True
        assert (await app.resume_async(paused_id)).ok_value is True
        resumed = (await app.wait_async(paused_id, timeout=5)).ok_value

        assert resumed.overall_result == plain.overall_result == ExecutionStatus.FAILED
        assert shape(resumed) == shape(plain)
        assert resumed.summary == plain.summary

    @pytest.mark.asyncio(loop_scope='function')
    async def test_resume_of_running_execution_is_noop(self, app: Taskweave) -> None:
        release = asyncio.Event()

        @app.executor('hold')
        async def hold(ctx: TaskContext) -> None:
            await release.wait()

        app.create_workflow('held')
        app.add_task('held', TaskSpec(name='hold', executor='hold'))
        execution_id = (await app.start_async('held')).ok_value

        assert (await app.resume_async(execution_id)).ok_value is False

        release.set()
        await app.wait_async(execution_id, timeout=5)


@pytest.mark.integration
class TestStop:
    @pytest.mark.asyncio(loop_scope='function')
    async def test_stop_cancels_in_flight_and_skips_pending(self, app: Taskweave) -> None:
        started = asyncio.Event()
        reasons: list[str] = []

        @app.executor('long')
        async def long(ctx: TaskContext) -> None:
            ctx.cancel_token.add_callback(lambda: reasons.append(ctx.cancel_token.reason))
            started.set()
            await asyncio.sleep(10)

        @app.executor('after')
        async def after(ctx: TaskContext) -> None:
            raise AssertionError('must not run')

        app.create_workflow('stoppable')
        app.add_task('stoppable', TaskSpec(name='long', executor='long', retry_count=3))
        app.add_task('stoppable', TaskSpec(name='after', executor='after', dependencies=('long',)))

        execution_id = (await app.start_async('stoppable')).ok_value
        await _wait_started(started)

        stopped = await app.stop_async(execution_id)
        assert stopped.ok_value is True
        result = (await app.wait_async(execution_id, timeout=5)).ok_value

        assert result.overall_result == ExecutionStatus.STOPPED
        long_result = result.task('long')
        after_result = result.task('after')
        assert long_result is not None and after_result is not None
        assert long_result.status == TaskRunStatus.SKIPPED
        assert long_result.skip_reason == SkipReason.STOPPED
        assert long_result.attempt_count == 1
        assert after_result.status == TaskRunStatus.SKIPPED
        assert after_result.skip_reason == SkipReason.STOPPED
        assert after_result.error_code == TaskErrorCode.EXECUTION_STOPPED.value
        assert reasons == ['stopped']

        # A finished execution answers control calls with Ok(False).
        assert (await app.stop_async(execution_id)).ok_value is False
        assert (await app.resume_async(execution_id)).ok_value is False

    @pytest.mark.asyncio(loop_scope='function')
    async def test_stop_signals_sync_executor_token(self, app: Taskweave) -> None:
        in_thread = threading.Event()
        observed: list[bool] = []

        @app.executor('cooperative')
        def cooperative(ctx: TaskContext) -> None:
            in_thread.set()
            observed.append(ctx.cancel_token.wait(timeout=3))

        app.create_workflow('threaded')
        app.add_task('threaded', TaskSpec(name='work', executor='cooperative'))

        execution_id = (await app.start_async('threaded')).ok_value
        for _ in range(300):
            if in_thread.is_set():
                break
            await asyncio.sleep(0.01)

        assert (await app.stop_async(execution_id)).ok_value is True
        result = (await app.wait_async(execution_id, timeout=5)).ok_value
        for _ in range(300):
            if observed:
                break
            await asyncio.sleep(0.01)

        assert result.overall_result == ExecutionStatus.STOPPED
        assert observed == [True]
        # Returning after the stop signal does not count as completing the work.
        work = result.task('work')
        assert work is not None
        assert work.status == TaskRunStatus.SKIPPED
        assert work.skip_reason == SkipReason.STOPPED

    @pytest.mark.asyncio(loop_scope='function')
    async def test_stop_while_paused(self, app: Taskweave, until_status: StatusWaiter) -> None:
        started = asyncio.Event()

        @app.executor('hold')
        async def hold(ctx: TaskContext) -> None:
            started.set()
            await asyncio.sleep(10)

        app.create_workflow('paused-stop')
        app.add_task('paused-stop', TaskSpec(name='hold', executor='hold'))
        app.add_task('paused-stop', TaskSpec(name='next', executor='hold', dependencies=('hold',)))
        execution_id = (await app.start_async('paused-stop')).ok_value
        await _wait_started(started)

        assert (await app.pause_async(execution_id)).ok_value is True
        await until_status(app, execution_id, ExecutionStatus.PAUSED)
        assert (await app.stop_async(execution_id)).ok_value is True

        result = (await app.wait_async(execution_id, timeout=5)).ok_value
        assert result.overall_result == ExecutionStatus.STOPPED
        assert all(t.status == TaskRunStatus.SKIPPED for t in result.task_results)

    @pytest.mark.asyncio(loop_scope='function')
    async def test_completed_task_stays_succeeded_after_stop(self, app: Taskweave) -> None:
        second_started = asyncio.Event()

        @app.executor('quick')
        async def quick(ctx: TaskContext) -> None:
            return None

        @app.executor('hold')
        async def hold(ctx: TaskContext) -> None:
            second_started.set()
            await asyncio.sleep(10)

        app.create_workflow('partial')
        app.add_task('partial', TaskSpec(name='quick', executor='quick'))
        app.add_task('partial', TaskSpec(name='hold', executor='hold', dependencies=('quick',)))
        execution_id = (await app.start_async('partial')).ok_value
        await _wait_started(second_started)

        await app.stop_async(execution_id)
        result = (await app.wait_async(execution_id, timeout=5)).ok_value

        quick_result = result.task('quick')
        assert quick_result is not None and quick_result.status == TaskRunStatus.SUCCEEDED
        assert result.summary == 'STOPPED: 1 succeeded, 0 failed, 1 skipped of 2 task(s)'


@pytest.mark.integration
class TestUnknownExecution:
    @pytest.mark.asyncio(loop_scope='function')
    async def test_lifecycle_on_unknown_id(self, app: Taskweave) -> None:
        for call in (app.stop_async, app.pause_async, app.resume_async):
            outcome = await call('no-such-execution')
            assert outcome.is_err()
            assert outcome.err_value.code == LifecycleErrorCode.EXECUTION_NOT_FOUND
            assert outcome.err_value.execution_id == 'no-such-execution'
