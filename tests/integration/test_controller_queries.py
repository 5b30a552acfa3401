"""Integration tests for execution start validation and status/result/history queries."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from taskweave.core.app import Taskweave
from taskweave.core.errors import DefinitionInUseError
from taskweave.core.models.definition import TaskSpec
from taskweave.core.models.execution import ExecutionResult
from taskweave.core.runner.context import TaskContext
from taskweave.core.types.results import QueryErrorCode, StartErrorCode
from taskweave.core.types.status import ExecutionStatus


def _register_noop(app: Taskweave) -> None:
    @app.executor('noop')
    async def noop(ctx: TaskContext) -> None:
        return None


@pytest.mark.integration
class TestStartValidation:
    @pytest.mark.asyncio(loop_scope='function')
    async def test_unknown_workflow(self, app: Taskweave) -> None:
        started = await app.start_async('ghost')
        assert started.is_err()
        assert started.err_value.code == StartErrorCode.WORKFLOW_NOT_FOUND
        assert started.err_value.workflow_name == 'ghost'

    @pytest.mark.asyncio(loop_scope='function')
    async def test_disabled_workflow(self, app: Taskweave) -> None:
        _register_noop(app)
        app.create_workflow('off', enabled=False)
        app.add_task('off', TaskSpec(name='a', executor='noop'))

        started = await app.start_async('off')

        assert started.is_err()
        assert started.err_value.code == StartErrorCode.WORKFLOW_DISABLED
        # A rejected start releases its reference.
        await app.delete_workflow_async('off')

    @pytest.mark.asyncio(loop_scope='function')
    async def test_empty_workflow(self, app: Taskweave) -> None:
        app.create_workflow('empty')
        started = await app.start_async('empty')
        assert started.err_value.code == StartErrorCode.VALIDATION_FAILED

    @pytest.mark.asyncio(loop_scope='function')
    async def test_missing_executors_listed(self, app: Taskweave) -> None:
        _register_noop(app)
        app.create_workflow('partial')
        app.add_task('partial', TaskSpec(name='a', executor='noop'))
        app.add_task('partial', TaskSpec(name='b', executor='mailer', dependencies=('a',)))
        app.add_task('partial', TaskSpec(name='c', executor='mailer'))
        app.add_task('partial', TaskSpec(name='d', executor='archiver'))

        started = await app.start_async('partial')

        assert started.err_value.code == StartErrorCode.VALIDATION_FAILED
        assert started.err_value.details == {'missing_executors': ['mailer', 'archiver']}
        assert app.definitions.pin_count('partial') == 0

    @pytest.mark.asyncio(loop_scope='function')
    async def test_re_enabled_workflow_starts(self, app: Taskweave) -> None:
        _register_noop(app)
        app.create_workflow('toggle', enabled=False)
        app.add_task('toggle', TaskSpec(name='a', executor='noop'))
        app.set_workflow_enabled('toggle', True)

        started = await app.start_async('toggle')
        assert started.is_ok()
        await app.wait_async(started.ok_value, timeout=5)


@pytest.mark.integration
class TestQueries:
    @pytest.mark.asyncio(loop_scope='function')
    async def test_live_then_finished(self, app: Taskweave) -> None:
        release = asyncio.Event()
        entered = asyncio.Event()

        @app.executor('gate')
        async def gate(ctx: TaskContext) -> None:
            entered.set()
            await release.wait()

        app.create_workflow('gated')
        app.add_task('gated', TaskSpec(name='gate', executor='gate'))
        execution_id = (await app.start_async('gated')).ok_value
        await asyncio.wait_for(entered.wait(), timeout=3)

        status = (await app.get_status_async(execution_id)).ok_value
        assert status.status == ExecutionStatus.RUNNING
        assert status.current_task == 'gate'
        assert status.workflow_name == 'gated'
        assert app.list_running().ok_value == [execution_id]

        not_ready = await app.get_result_async(execution_id)
        assert not_ready.err_value.code == QueryErrorCode.RESULT_NOT_READY
        assert not_ready.err_value.retryable is True

        timed_out = await app.wait_async(execution_id, timeout=0.05)
        assert timed_out.err_value.code == QueryErrorCode.WAIT_TIMEOUT

        with pytest.raises(DefinitionInUseError):
            await app.delete_workflow_async('gated')

        release.set()
        finished = (await app.wait_async(execution_id, timeout=5)).ok_value

        assert finished.overall_result == ExecutionStatus.COMPLETED
        assert app.list_running().ok_value == []
        status = (await app.get_status_async(execution_id)).ok_value
        assert status.status == ExecutionStatus.COMPLETED
        assert status.current_task == 'gate'
        assert (await app.get_result_async(execution_id)).ok_value == finished
        # A finished execution can be waited on again.
        assert (await app.wait_async(execution_id)).ok_value == finished

        await app.delete_workflow_async('gated')
        assert (await app.get_result_async(execution_id)).is_ok()

    @pytest.mark.asyncio(loop_scope='function')
    async def test_unknown_execution(self, app: Taskweave) -> None:
        for outcome in (
            await app.get_status_async('nope'),
            await app.get_result_async('nope'),
            await app.wait_async('nope', timeout=0.1),
        ):
            assert outcome.is_err()
            assert outcome.err_value.code == QueryErrorCode.NOT_FOUND

    @pytest.mark.asyncio(loop_scope='function')
    async def test_concurrent_executions_are_isolated(self, app: Taskweave) -> None:
        seen: list[tuple[str, int]] = []

        @app.executor('tag')
        async def tag(ctx: TaskContext) -> None:
            await asyncio.sleep(0.01)
            seen.append((ctx.execution_id, ctx.user_data))

        app.create_workflow('parallel')
        app.add_task('parallel', TaskSpec(name='a', executor='tag'))

        ids = [(await app.start_async('parallel', user_data=i)).ok_value for i in range(12)]
        results = [(await app.wait_async(i, timeout=5)).ok_value for i in ids]

        assert len(set(ids)) == 12
        assert all(r.overall_result == ExecutionStatus.COMPLETED for r in results)
        assert sorted(seen, key=lambda s: s[1]) == [(ids[i], i) for i in range(12)]
        assert app.definitions.pin_count('parallel') == 0

        # Executions finishing together all reach history.
        history = (await app.get_history_async('parallel')).ok_value
        assert sorted(r.execution_id for r in history) == sorted(ids)
        assert app.scheduler.unrecorded == {}
        for execution_id in ids:
            assert (await app.get_result_async(execution_id)).is_ok()


@pytest.mark.integration
class TestHistory:
    @pytest.mark.asyncio(loop_scope='function')
    async def test_history_filters(self, app: Taskweave) -> None:
        _register_noop(app)
        app.create_workflow('nightly')
        app.add_task('nightly', TaskSpec(name='a', executor='noop'))
        app.create_workflow('other')
        app.add_task('other', TaskSpec(name='a', executor='noop'))

        before = datetime.now(timezone.utc) - timedelta(seconds=1)
        ids = []
        for _ in range(3):
            execution_id = (await app.start_async('nightly')).ok_value
            await app.wait_async(execution_id, timeout=5)
            ids.append(execution_id)
        other_id = (await app.start_async('other')).ok_value
        await app.wait_async(other_id, timeout=5)

        everything = (await app.get_history_async('nightly')).ok_value
        assert [r.execution_id for r in everything] == ids

        limited = (await app.get_history_async('nightly', max_results=2)).ok_value
        assert [r.execution_id for r in limited] == ids[:2]

        assert (await app.get_history_async('nightly', max_results=0)).ok_value == []
        in_future = datetime.now(timezone.utc) + timedelta(hours=1)
        assert (await app.get_history_async('nightly', start=in_future)).ok_value == []
        windowed = (
            await app.get_history_async('nightly', start=before, end=in_future)
        ).ok_value
        assert len(windowed) == 3
        assert (await app.get_history_async('unknown')).ok_value == []

    @pytest.mark.asyncio(loop_scope='function')
    async def test_history_write_crash_still_releases_workflow(
        self, app: Taskweave, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        _register_noop(app)
        app.create_workflow('fragile')
        app.add_task('fragile', TaskSpec(name='a', executor='noop'))

        async def crash(result: ExecutionResult) -> None:
            raise RuntimeError('history backend exploded')

        monkeypatch.setattr(app.history, 'record', crash)
        execution_id = (await app.start_async('fragile')).ok_value
        finished = (await app.wait_async(execution_id, timeout=5)).ok_value

        assert finished.overall_result == ExecutionStatus.COMPLETED
        assert app.definitions.pin_count('fragile') == 0
        assert app.list_running().ok_value == []
        assert app.scheduler.unrecorded[execution_id] == finished
        assert (await app.get_result_async(execution_id)).ok_value == finished
        await app.delete_workflow_async('fragile')
