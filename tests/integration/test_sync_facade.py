"""Integration tests for the blocking facade backed by the background loop."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator

import pytest

from taskweave.core.app import Taskweave
from taskweave.core.errors import NotFoundError
from taskweave.core.models.app import EngineConfig
from taskweave.core.models.definition import TaskSpec
from taskweave.core.models.schedule import ScheduledPolicy
from taskweave.core.runner.context import TaskContext
from taskweave.core.types.results import LifecycleErrorCode, QueryErrorCode
from taskweave.core.types.status import ExecutionStatus, TaskRunStatus


@pytest.fixture
def engine(engine_config: EngineConfig) -> Generator[Taskweave, None, None]:
    with Taskweave(engine_config) as tw:
        yield tw


def _poll(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            pytest.fail('condition not reached in time')
        time.sleep(0.01)


@pytest.mark.integration
class TestSyncExecutions:
    def test_start_wait_result(self, engine: Taskweave) -> None:
        seen: list[str] = []

        @engine.executor
        def fetch(ctx: TaskContext) -> None:
            seen.append(threading.current_thread().name)

        @engine.executor('publish')
        async def publish(ctx: TaskContext) -> None:
            return None

        engine.create_workflow('sync-flow')
        engine.add_task('sync-flow', TaskSpec(name='fetch', executor='fetch'))
        engine.add_task(
            'sync-flow', TaskSpec(name='publish', executor='publish', dependencies=('fetch',)),
        )

        started = engine.start('sync-flow', user_data=['a', 1])
        assert started.is_ok()
        result = engine.wait(started.ok_value, timeout=5).ok_value

        assert result.overall_result == ExecutionStatus.COMPLETED
        assert result.user_data == ['a', 1]
        assert seen[0].startswith('taskweave-worker')
        assert engine.get_result(started.ok_value).ok_value == result
        status = engine.get_status(started.ok_value).ok_value
        assert status.status == ExecutionStatus.COMPLETED
        history = engine.get_history('sync-flow').ok_value
        assert [r.execution_id for r in history] == [started.ok_value]

    def test_stop_and_pause(self, engine: Taskweave) -> None:
        entered = threading.Event()

        @engine.executor('cooperative')
        def cooperative(ctx: TaskContext) -> None:
            entered.set()
            ctx.cancel_token.wait(timeout=5)

        engine.create_workflow('blocking')
        engine.add_task('blocking', TaskSpec(name='work', executor='cooperative'))
        engine.add_task(
            'blocking', TaskSpec(name='after', executor='cooperative', dependencies=('work',)),
        )
        execution_id = engine.start('blocking').ok_value
        assert entered.wait(timeout=3)

        assert engine.pause(execution_id).ok_value is True
        _poll(lambda: engine.get_status(execution_id).ok_value.status == ExecutionStatus.PAUSED)
        assert engine.stop(execution_id).ok_value is True

        result = engine.wait(execution_id, timeout=5).ok_value
        assert result.overall_result == ExecutionStatus.STOPPED
        assert all(t.status == TaskRunStatus.SKIPPED for t in result.task_results)
        assert engine.resume(execution_id).ok_value is False

    def test_unknown_ids_return_errors(self, engine: Taskweave) -> None:
        assert engine.stop('missing').err_value.code == LifecycleErrorCode.EXECUTION_NOT_FOUND
        assert engine.pause('missing').err_value.code == LifecycleErrorCode.EXECUTION_NOT_FOUND
        assert engine.get_status('missing').err_value.code == QueryErrorCode.NOT_FOUND
        assert engine.wait('missing', timeout=0.1).err_value.code == QueryErrorCode.NOT_FOUND

    def test_scheduled_trigger(self, engine: Taskweave) -> None:
        @engine.executor('noop')
        def noop(ctx: TaskContext) -> None:
            return None

        engine.create_workflow('timed')
        engine.add_task('timed', TaskSpec(name='only', executor='noop'))
        at = datetime.now(timezone.utc) + timedelta(milliseconds=50)
        engine.set_schedule('timed', 'scheduled', at.isoformat())
        assert engine.get_schedule('timed') == ScheduledPolicy(at=at)

        engine.start_triggers()
        _poll(lambda: engine.triggers.fire_counts.get('timed') == 1)
        engine.stop_triggers()
        engine.clear_schedule('timed')
        _poll(lambda: not engine.controller.has_live_execution('timed'))

        assert len(engine.get_history('timed').ok_value) == 1


@pytest.mark.integration
class TestSyncDefinitions:
    def test_export_import_and_files(self, engine: Taskweave, tmp_path: Path) -> None:
        engine.create_workflow('original', description='copied around')
        engine.update_workflow_info('original', version='2.1')
        engine.add_task('original', TaskSpec(name='a', executor='noop', context={'k': [1, 2]}))
        engine.add_task('original', TaskSpec(name='b', executor='noop', dependencies=('a',)))

        text = engine.export_json('original')
        engine.delete_workflow('original')
        with pytest.raises(NotFoundError):
            engine.get_workflow_info('original')

        restored = engine.import_json(text)
        assert restored.version == '2.1'
        assert [t.name for t in restored.tasks] == ['a', 'b']

        path = tmp_path / 'original.json'
        engine.save('original', path)
        reloaded = engine.load(path, replace=True)
        assert reloaded == restored
        assert engine.list_workflows().ok_value == ['original']

    def test_templates(self, engine: Taskweave) -> None:
        @engine.executor('copy')
        def copy(ctx: TaskContext) -> None:
            return None

        engine.create_workflow('blueprint', description='sync ${region}')
        engine.add_task(
            'blueprint',
            TaskSpec(name='copy', executor='copy', context={'bucket': 'data-${region}', 'n': '${n}'}),
        )
        engine.create_template('regional', 'blueprint')

        instance = engine.instantiate_template('regional', 'sync-eu', {'region': 'eu', 'n': 3})
        task = instance.get_task('copy')

        assert instance.description == 'sync eu'
        assert task is not None and task.context == {'bucket': 'data-eu', 'n': 3}
        assert engine.list_templates() == ['regional']
        result = engine.wait(engine.start('sync-eu').ok_value, timeout=5).ok_value
        assert result.overall_result == ExecutionStatus.COMPLETED

        engine.delete_template('regional')
        assert engine.list_templates() == []
