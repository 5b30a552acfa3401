# taskweave/core/app.py
from __future__ import annotations
import asyncio
import os
from datetime import datetime
from pathlib import Path
from typing import (
    Any,
    Awaitable,
    Callable,
    Mapping,
    Optional,
    TypeVar,
    overload,
)
from result import Err
from taskweave.core.codec.serde import (
    definition_from_json,
    definition_to_json,
    load_definition,
    save_definition,
)
from taskweave.core.collaborators import ResourceLayer, RuleEvaluator
from taskweave.core.definitions.store import DefinitionStore
from taskweave.core.engine.controller import ExecutionController
from taskweave.core.engine.scheduler import ExecutionScheduler
from taskweave.core.errors import SourceLocation
from taskweave.core.history.store import HistoryStore
from taskweave.core.logging import get_logger
from taskweave.core.models.app import EngineConfig
from taskweave.core.models.definition import TaskSpec, WorkflowDefinition
from taskweave.core.models.execution import ExecutionInfo, ExecutionResult
from taskweave.core.models.schedule import TriggerPolicy
from taskweave.core.registry.executors import Executor, ExecutorRegistry
from taskweave.core.runner.task_runner import TaskRunner
from taskweave.core.templates.manager import TemplateManager
from taskweave.core.triggers.manager import TriggerManager, parse_schedule
from taskweave.core.types.results import (
    LifecycleErrorCode,
    LifecycleOperationError,
    LifecycleResult,
    QueryError,
    QueryErrorCode,
    QueryResult,
    StartError,
    StartErrorCode,
    StartResult,
)
from taskweave.core.utils.loop_runner import LoopRunner, LoopRunnerError

_F = TypeVar('_F', bound=Callable[..., Any])
_T = TypeVar('_T')


def _source_of(fn: Any) -> str | None:
    location = SourceLocation.from_function(fn)
    if location is None:
        return None
    return f'{os.path.realpath(location.file)}:{location.line}'


class Taskweave:
    """
    The workflow engine: definitions, executions, schedules and templates
    behind one object.

    Definition and template operations are plain synchronous calls that
    raise ``TaskweaveError`` subclasses. Execution, schedule and history
    operations come in two flavours:

    * ``*_async`` coroutines, for callers that own an event loop. All of
      them must be awaited on the same loop.
    * sync methods of the same name without the suffix, which run the
      coroutine on a private background loop (``LoopRunner``).

    Pick one flavour per engine instance; executions started on one loop
    are not reachable from the other.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        resources: ResourceLayer | Any = None,
        rule_evaluator: Optional[RuleEvaluator] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.logger = get_logger('app')
        self.executors = ExecutorRegistry()
        self.definitions = DefinitionStore(self.config.max_task_dependencies)
        self.templates = TemplateManager(self.definitions)
        self.history = HistoryStore(self.config.history)
        self.runner = TaskRunner(
            self.executors,
            worker_threads=self.config.worker_threads,
            default_timeout_seconds=self.config.default_task_timeout_seconds,
        )
        self.scheduler = ExecutionScheduler(
            self.definitions,
            self.runner,
            self.history,
            max_concurrent_tasks=self.config.max_concurrent_tasks,
            resources=resources,
        )
        self.controller = ExecutionController(self.definitions, self.scheduler, self.history)
        self.triggers = TriggerManager(
            self.definitions,
            self.controller,
            config=self.config.triggers,
            rule_evaluator=rule_evaluator,
            resources=resources,
        )
        self._loop_runner: LoopRunner | None = None
        self._closed = False
        self.logger.info(
            f'taskweave initialized (max_concurrent_tasks={self.config.max_concurrent_tasks}, '
            f'worker_threads={self.config.worker_threads})'
        )

    # --- executors ---

    @overload
    def executor(self, name: _F) -> _F: ...

    @overload
    def executor(self, name: Optional[str] = None) -> Callable[[_F], _F]: ...

    def executor(self, name: Any = None) -> Any:
        """
        Register a function as an executor.

        Usable bare (``@app.executor``, the function name is the executor
        name) or with an explicit name (``@app.executor('send-report')``).
        The function receives a ``TaskContext``; it may be sync or async.
        """
        if callable(name):
            return self.executor(None)(name)

        def decorator(fn: _F) -> _F:
            executor_name = name or fn.__name__
            self.executors.register(fn, name=executor_name, source=_source_of(fn))
            setattr(fn, 'executor_name', executor_name)
            return fn

        return decorator

    def register_executor(self, name: str, executor: Executor) -> None:
        """Register a callable, or an object with a ``run(ctx)`` method, under ``name``."""
        self.executors.register(executor, name=name, source=_source_of(executor))

    # --- definitions ---

    def create_workflow(
        self,
        name: str,
        *,
        description: str = '',
        version: str = '1.0',
        enabled: bool = True,
    ) -> WorkflowDefinition:
        return self.definitions.create(
            name, description=description, version=version, enabled=enabled,
        )

    def add_task(self, workflow_name: str, task: TaskSpec) -> WorkflowDefinition:
        return self.definitions.add_task(workflow_name, task)

    def remove_task(self, workflow_name: str, task_name: str) -> WorkflowDefinition:
        return self.definitions.remove_task(workflow_name, task_name)

    def update_task(
        self, workflow_name: str, task_name: str, task: TaskSpec,
    ) -> WorkflowDefinition:
        return self.definitions.update_task(workflow_name, task_name, task)

    def get_workflow_info(self, workflow_name: str) -> WorkflowDefinition:
        return self.definitions.get_info(workflow_name)

    def list_workflows(self) -> QueryResult[list[str]]:
        return self.definitions.list()

    def set_workflow_enabled(self, workflow_name: str, enabled: bool) -> WorkflowDefinition:
        return self.definitions.set_enabled(workflow_name, enabled)

    def update_workflow_info(
        self,
        workflow_name: str,
        *,
        description: Optional[str] = None,
        version: Optional[str] = None,
    ) -> WorkflowDefinition:
        return self.definitions.update_info(
            workflow_name, description=description, version=version,
        )

    def validate_dependencies(self, workflow_name: str) -> list[str]:
        """Topological task order; raises CyclicDependencyError / UnresolvedDependencyError."""
        return self.definitions.validate_dependencies(workflow_name)

    def delete_workflow(self, workflow_name: str) -> None:
        """Delete a definition and its scheduling policy."""
        self._sync(self.delete_workflow_async, workflow_name)

    async def delete_workflow_async(self, workflow_name: str) -> None:
        self.definitions.delete(workflow_name)
        await self.triggers.clear_schedule(workflow_name)

    # --- persistence ---

    def export_json(self, workflow_name: str) -> str:
        return definition_to_json(self.definitions.get_info(workflow_name))

    def import_json(self, text: str | bytes, *, replace: bool = False) -> WorkflowDefinition:
        definition = definition_from_json(text)
        self.definitions.register(definition, replace=replace)
        return definition

    def save(self, workflow_name: str, path: str | Path) -> None:
        save_definition(self.definitions.get_info(workflow_name), path)

    def load(self, path: str | Path, *, replace: bool = False) -> WorkflowDefinition:
        definition = load_definition(path)
        self.definitions.register(definition, replace=replace)
        return definition

    # --- templates ---

    def create_template(self, template_name: str, workflow_name: str) -> WorkflowDefinition:
        return self.templates.create_template(template_name, workflow_name)

    def instantiate_template(
        self,
        template_name: str,
        new_workflow_name: str,
        parameters: Mapping[str, Any] | str | None = None,
    ) -> WorkflowDefinition:
        return self.templates.instantiate_template(template_name, new_workflow_name, parameters)

    def list_templates(self) -> list[str]:
        return self.templates.list_templates()

    def delete_template(self, template_name: str) -> None:
        self.templates.delete_template(template_name)

    # --- executions ---

    async def start_async(
        self, workflow_name: str, *, user_data: Any = None,
    ) -> StartResult[str]:
        return await self.controller.start(workflow_name, user_data=user_data)

    def start(self, workflow_name: str, *, user_data: Any = None) -> StartResult[str]:
        """Start an execution; returns its id without waiting for completion."""
        try:
            return self._sync(self.start_async, workflow_name, user_data=user_data)
        except LoopRunnerError as exc:
            return Err(
                StartError(
                    code=StartErrorCode.LOOP_RUNNER_FAILED,
                    message=f'Loop runner failed for start: {exc}',
                    retryable=False,
                    workflow_name=workflow_name,
                    exception=exc,
                )
            )

    async def stop_async(self, execution_id: str) -> LifecycleResult[bool]:
        return await self.controller.stop(execution_id)

    async def pause_async(self, execution_id: str) -> LifecycleResult[bool]:
        return await self.controller.pause(execution_id)

    async def resume_async(self, execution_id: str) -> LifecycleResult[bool]:
        return await self.controller.resume(execution_id)

    def stop(self, execution_id: str) -> LifecycleResult[bool]:
        return self._lifecycle_call(self.stop_async, 'stop', execution_id)

    def pause(self, execution_id: str) -> LifecycleResult[bool]:
        return self._lifecycle_call(self.pause_async, 'pause', execution_id)

    def resume(self, execution_id: str) -> LifecycleResult[bool]:
        return self._lifecycle_call(self.resume_async, 'resume', execution_id)

    async def get_status_async(self, execution_id: str) -> QueryResult[ExecutionInfo]:
        return await self.controller.get_status(execution_id)

    async def get_result_async(self, execution_id: str) -> QueryResult[ExecutionResult]:
        return await self.controller.get_result(execution_id)

    async def wait_async(
        self, execution_id: str, timeout: Optional[float] = None,
    ) -> QueryResult[ExecutionResult]:
        return await self.controller.wait(execution_id, timeout)

    async def get_history_async(
        self,
        workflow_name: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        max_results: Optional[int] = None,
    ) -> QueryResult[list[ExecutionResult]]:
        return await self.controller.get_history(workflow_name, start, end, max_results)

    def get_status(self, execution_id: str) -> QueryResult[ExecutionInfo]:
        return self._query_call(self.get_status_async, 'get_status', execution_id)

    def get_result(self, execution_id: str) -> QueryResult[ExecutionResult]:
        return self._query_call(self.get_result_async, 'get_result', execution_id)

    def wait(
        self, execution_id: str, timeout: Optional[float] = None,
    ) -> QueryResult[ExecutionResult]:
        """Block until the execution is terminal and recorded."""
        return self._query_call(self.wait_async, 'wait', execution_id, timeout)

    def get_history(
        self,
        workflow_name: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        max_results: Optional[int] = None,
    ) -> QueryResult[list[ExecutionResult]]:
        return self._query_call(
            self.get_history_async, 'get_history', workflow_name, start, end, max_results,
        )

    def list_running(self) -> QueryResult[list[str]]:
        return self.controller.list_running()

    # --- schedules ---

    async def set_schedule_async(
        self,
        workflow_name: str,
        policy: TriggerPolicy | str,
        schedule_data: str | Mapping[str, Any] | None = None,
    ) -> TriggerPolicy:
        """
        Attach a scheduling policy to a workflow.

        ``policy`` is either a policy model or a policy name
        ('immediate', 'scheduled', 'conditional') combined with
        ``schedule_data`` as accepted by ``parse_schedule``.
        """
        if isinstance(policy, str):
            policy = parse_schedule(policy, schedule_data)
        await self.triggers.set_schedule(workflow_name, policy)
        return policy

    def set_schedule(
        self,
        workflow_name: str,
        policy: TriggerPolicy | str,
        schedule_data: str | Mapping[str, Any] | None = None,
    ) -> TriggerPolicy:
        return self._sync(self.set_schedule_async, workflow_name, policy, schedule_data)

    def get_schedule(self, workflow_name: str) -> TriggerPolicy:
        return self.triggers.get_schedule(workflow_name)

    async def clear_schedule_async(self, workflow_name: str) -> None:
        await self.triggers.clear_schedule(workflow_name)

    def clear_schedule(self, workflow_name: str) -> None:
        self._sync(self.clear_schedule_async, workflow_name)

    async def start_triggers_async(self) -> None:
        await self.triggers.start()

    def start_triggers(self) -> None:
        """Arm every stored scheduled/conditional policy on the background loop."""
        self._sync(self.start_triggers_async)

    async def stop_triggers_async(self) -> None:
        await self.triggers.stop()

    def stop_triggers(self) -> None:
        self._sync(self.stop_triggers_async)

    # --- lifecycle ---

    async def shutdown_async(self) -> None:
        """Disarm triggers, stop live executions and release the history engine."""
        if self._closed:
            return
        self._closed = True
        await self.triggers.stop()
        await self.scheduler.shutdown()
        self.runner.shutdown()
        await self.history.close()
        self.logger.info('taskweave shut down')

    def shutdown(self) -> None:
        if self._closed:
            return
        try:
            self._sync(self.shutdown_async)
        finally:
            if self._loop_runner is not None:
                self._loop_runner.stop()
                self._loop_runner = None

    def __enter__(self) -> Taskweave:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()

    async def __aenter__(self) -> Taskweave:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown_async()

    # --- sync bridge ---

    def _get_loop_runner(self) -> LoopRunner:
        if self._loop_runner is None:
            self._loop_runner = LoopRunner()
            self._loop_runner.start()
        return self._loop_runner

    def _sync(self, coro_fn: Callable[..., Awaitable[_T]], *args: Any, **kwargs: Any) -> _T:
        return self._get_loop_runner().call(coro_fn, *args, **kwargs)

    def _lifecycle_call(
        self,
        coro_fn: Callable[[str], Awaitable[LifecycleResult[bool]]],
        operation: str,
        execution_id: str,
    ) -> LifecycleResult[bool]:
        try:
            return self._sync(coro_fn, execution_id)
        except asyncio.CancelledError:
            raise
        except LoopRunnerError as exc:
            return Err(
                LifecycleOperationError(
                    code=LifecycleErrorCode.LOOP_RUNNER_FAILED,
                    message=f'Loop runner failed for {operation}: {exc}',
                    retryable=False,
                    operation=operation,
                    execution_id=execution_id,
                    exception=exc,
                )
            )

    def _query_call(
        self,
        coro_fn: Callable[..., Awaitable[QueryResult[_T]]],
        operation: str,
        *args: Any,
    ) -> QueryResult[_T]:
        try:
            return self._sync(coro_fn, *args)
        except asyncio.CancelledError:
            raise
        except LoopRunnerError as exc:
            return Err(
                QueryError(
                    code=QueryErrorCode.LOOP_RUNNER_FAILED,
                    message=f'Loop runner failed for {operation}: {exc}',
                    retryable=False,
                    exception=exc,
                )
            )
