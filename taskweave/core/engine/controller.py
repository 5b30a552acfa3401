# taskweave/core/engine/controller.py
from __future__ import annotations
import asyncio
import threading
import uuid
from datetime import datetime
from typing import Any, Optional
from result import Err, Ok, is_ok
from taskweave.core.definitions.graph import validate_graph
from taskweave.core.definitions.store import DefinitionStore
from taskweave.core.engine.scheduler import ControlKind, ExecutionScheduler
from taskweave.core.errors import NotFoundError, TaskweaveError
from taskweave.core.history.store import HistoryStore
from taskweave.core.logging import get_logger
from taskweave.core.models.execution import Execution, ExecutionInfo, ExecutionResult
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

logger = get_logger('controller')


class ExecutionController:
    """
    Public entry point for executions: start, lifecycle control and queries.

    Keeps the index of live executions; state changes themselves are
    forwarded to the scheduler's coordinators. All coroutines must run on
    the engine's event loop.
    """

    def __init__(
        self,
        store: DefinitionStore,
        scheduler: ExecutionScheduler,
        history: HistoryStore,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.history = history
        self._live: dict[str, Execution] = {}
        self._live_lock = threading.Lock()
        scheduler.on_retired = self._retire

    # --- start ---

    async def start(self, workflow_name: str, *, user_data: Any = None) -> StartResult[str]:
        """
        Validate and launch one execution of ``workflow_name``.

        Returns ``Ok(execution_id)`` as soon as the coordinator is running;
        completion is observed through get_status/get_result/wait.
        """
        try:
            definition = self.store.pin(workflow_name)
        except NotFoundError as exc:
            return Err(
                StartError(
                    code=StartErrorCode.WORKFLOW_NOT_FOUND,
                    message=exc.message,
                    retryable=False,
                    workflow_name=workflow_name,
                    exception=exc,
                )
            )

        failure = self._prevalidate(definition.name, definition)
        if failure is not None:
            self.store.unpin(workflow_name)
            logger.warning(f"Start of '{workflow_name}' rejected: {failure.message}")
            return Err(failure)

        execution = Execution(
            execution_id=str(uuid.uuid4()),
            definition=definition,
            user_data=user_data,
        )
        with self._live_lock:
            self._live[execution.execution_id] = execution
        self.scheduler.launch(execution)
        return Ok(execution.execution_id)

    def _prevalidate(self, workflow_name: str, definition: Any) -> StartError | None:
        if not definition.enabled:
            return StartError(
                code=StartErrorCode.WORKFLOW_DISABLED,
                message=f"workflow '{workflow_name}' is disabled",
                retryable=False,
                workflow_name=workflow_name,
            )
        if not definition.tasks:
            return StartError(
                code=StartErrorCode.VALIDATION_FAILED,
                message=f"workflow '{workflow_name}' has no tasks",
                retryable=False,
                workflow_name=workflow_name,
            )
        try:
            validate_graph(definition, self.store.max_task_dependencies)
        except TaskweaveError as exc:
            return StartError(
                code=StartErrorCode.VALIDATION_FAILED,
                message=exc.message,
                retryable=False,
                workflow_name=workflow_name,
                exception=exc,
            )
        executors = list(dict.fromkeys(t.executor for t in definition.tasks))
        missing = self.scheduler.runner.registry.missing(executors)
        if missing:
            return StartError(
                code=StartErrorCode.VALIDATION_FAILED,
                message=f"workflow '{workflow_name}' uses unregistered executors: {missing}",
                retryable=False,
                workflow_name=workflow_name,
                details={'missing_executors': missing},
            )
        return None

    # --- lifecycle ---

    async def stop(self, execution_id: str) -> LifecycleResult[bool]:
        return await self._control(execution_id, 'stop')

    async def pause(self, execution_id: str) -> LifecycleResult[bool]:
        return await self._control(execution_id, 'pause')

    async def resume(self, execution_id: str) -> LifecycleResult[bool]:
        return await self._control(execution_id, 'resume')

    async def _control(self, execution_id: str, kind: ControlKind) -> LifecycleResult[bool]:
        applied = await self.scheduler.control(execution_id, kind)
        if applied is not None:
            return Ok(applied)
        # Not live: a finished execution answers False, an unknown one is an error.
        if execution_id in self.scheduler.unrecorded or is_ok(
            await self.history.get(execution_id)
        ):
            return Ok(False)
        return Err(
            LifecycleOperationError(
                code=LifecycleErrorCode.EXECUTION_NOT_FOUND,
                message=f'Execution {execution_id} not found',
                retryable=False,
                operation=kind,
                execution_id=execution_id,
            )
        )

    # --- queries ---

    async def get_status(self, execution_id: str) -> QueryResult[ExecutionInfo]:
        with self._live_lock:
            execution = self._live.get(execution_id)
        if execution is not None:
            return Ok(execution.snapshot())
        finished = await self._finished_result(execution_id)
        if finished.is_err():
            return finished  # type: ignore[return-value]
        return Ok(ExecutionInfo.from_result(finished.ok_value))

    async def get_result(self, execution_id: str) -> QueryResult[ExecutionResult]:
        with self._live_lock:
            live = execution_id in self._live
        if live:
            return Err(
                QueryError(
                    code=QueryErrorCode.RESULT_NOT_READY,
                    message=f'Execution {execution_id} is still running',
                    retryable=True,
                )
            )
        return await self._finished_result(execution_id)

    async def wait(
        self, execution_id: str, timeout: Optional[float] = None,
    ) -> QueryResult[ExecutionResult]:
        """Block until the execution is terminal (and recorded) or ``timeout`` passes."""
        coordinator = self.scheduler.get(execution_id)
        if coordinator is None:
            return await self._finished_result(execution_id)
        try:
            return Ok(await asyncio.wait_for(asyncio.shield(coordinator.done), timeout))
        except TimeoutError:
            return Err(
                QueryError(
                    code=QueryErrorCode.WAIT_TIMEOUT,
                    message=f'Execution {execution_id} did not finish within {timeout}s',
                    retryable=True,
                )
            )

    def list_running(self) -> QueryResult[list[str]]:
        with self._live_lock:
            return Ok([
                execution_id
                for execution_id, execution in self._live.items()
                if not execution.status.is_terminal
            ])

    def has_live_execution(self, workflow_name: str) -> bool:
        with self._live_lock:
            return any(e.workflow_name == workflow_name for e in self._live.values())

    async def get_history(
        self,
        workflow_name: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        max_results: Optional[int] = None,
    ) -> QueryResult[list[ExecutionResult]]:
        return await self.history.query(workflow_name, start, end, max_results)

    # --- internal ---

    async def _finished_result(self, execution_id: str) -> QueryResult[ExecutionResult]:
        unrecorded = self.scheduler.unrecorded.get(execution_id)
        if unrecorded is not None:
            return Ok(unrecorded)
        return await self.history.get(execution_id)

    def _retire(self, execution_id: str) -> None:
        with self._live_lock:
            self._live.pop(execution_id, None)
