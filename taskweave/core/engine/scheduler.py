# taskweave/core/engine/scheduler.py
"""
Per-execution coordinators: readiness, dispatch, outcome folding and
pause/resume/stop, driven by one asyncio event queue per execution.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Literal, Optional, Protocol

from result import is_err

from taskweave.core.definitions.graph import topological_order
from taskweave.core.definitions.store import DefinitionStore
from taskweave.core.logging import get_logger
from taskweave.core.models.execution import (
    AttemptRecord,
    Execution,
    ExecutionResult,
    OutcomeKind,
    TaskErrorCode,
    TaskOutcome,
    TaskRunState,
)
from taskweave.core.runner.cancellation import CancellationToken
from taskweave.core.runner.context import TaskContext
from taskweave.core.runner.task_runner import TaskRunner
from taskweave.core.types.results import HistoryResult
from taskweave.core.types.status import ExecutionStatus, SkipReason, TaskRunStatus

logger = get_logger('scheduler')

ControlKind = Literal['pause', 'resume', 'stop']


class HistoryWriter(Protocol):
    """What the scheduler needs from the history store."""

    async def record(self, result: ExecutionResult) -> HistoryResult[None]: ...


# --- coordinator events ---


@dataclass(frozen=True)
class AttemptFinished:
    task_name: str
    record: AttemptRecord


@dataclass(frozen=True)
class TaskFinished:
    task_name: str
    outcome: TaskOutcome


@dataclass(frozen=True)
class Control:
    kind: ControlKind
    ack: asyncio.Future[bool]


Event = AttemptFinished | TaskFinished | Control


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _json_safe(value: Any) -> Any:
    if value is None:
        return None
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return None
    return value


class Coordinator:
    """
    Owns one Execution. Every state transition happens inside ``run``,
    which blocks on the event queue and never polls.
    """

    def __init__(self, scheduler: ExecutionScheduler, execution: Execution) -> None:
        self.scheduler = scheduler
        self.execution = execution
        self.order = topological_order(execution.definition)
        self.queue: asyncio.Queue[Event] = asyncio.Queue()
        self.token = CancellationToken()
        self.in_flight: dict[str, asyncio.Task[None]] = {}
        self.closed = False
        self.done: asyncio.Future[ExecutionResult] = asyncio.get_running_loop().create_future()
        self._task: asyncio.Task[None] | None = None

    @property
    def execution_id(self) -> str:
        return self.execution.execution_id

    def start(self) -> None:
        self._task = asyncio.create_task(
            self.run(), name=f'taskweave-coordinator-{self.execution_id}',
        )

    async def send(self, kind: ControlKind) -> bool:
        """Deliver a control signal; True if the transition applied."""
        if self.closed:
            return False
        ack: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self.queue.put_nowait(Control(kind, ack))
        return await ack

    # --- main loop ---

    async def run(self) -> None:
        execution = self.execution
        execution.status = ExecutionStatus.RUNNING
        execution.start_time = _now()
        logger.info(
            f"Execution {self.execution_id} of '{execution.workflow_name}' started "
            f'({len(execution.tasks)} tasks)'
        )
        try:
            self._advance()
            while not self._finished():
                event = await self.queue.get()
                self._handle(event)
                self._advance()
        except Exception:
            logger.exception(f'Coordinator for execution {self.execution_id} crashed')
            self._abort()
        finally:
            self._close()
        await self._finalize()

    def _finished(self) -> bool:
        return self.execution.status.is_terminal and not self.in_flight

    def _handle(self, event: Event) -> None:
        match event:
            case AttemptFinished(task_name=name, record=record):
                state = self.execution.tasks[name]
                state.attempts.append(record)
                state.attempt_count = len(state.attempts)
                state.message = record.message
                state.error_code = record.error_code
            case TaskFinished(task_name=name, outcome=outcome):
                self.in_flight.pop(name, None)
                self._apply_outcome(self.execution.tasks[name], outcome)
            case Control(kind=kind, ack=ack):
                applied = self._apply_control(kind)
                if not ack.done():
                    ack.set_result(applied)

    # --- readiness, dispatch, completion ---

    def _advance(self) -> None:
        if self.execution.status != ExecutionStatus.RUNNING:
            return
        self._update_readiness()
        self._dispatch()
        self._check_completion()

    def _update_readiness(self) -> None:
        tasks = self.execution.tasks
        definition = self.execution.definition
        for name in self.order:
            state = tasks[name]
            if state.status != TaskRunStatus.PENDING:
                continue
            spec = definition.get_task(name)
            assert spec is not None
            deps = [tasks[d] for d in spec.dependencies]
            if not all(d.status.is_terminal for d in deps):
                continue
            if spec.allow_failed_deps or all(d.status == TaskRunStatus.SUCCEEDED for d in deps):
                state.status = TaskRunStatus.READY
                continue
            failed = [
                d.name
                for d in deps
                if d.status == TaskRunStatus.FAILED or d.skip_reason == SkipReason.FAILURE
            ]
            if failed:
                self._skip(
                    state,
                    SkipReason.FAILURE,
                    f"dependency '{failed[0]}' failed",
                    TaskErrorCode.UPSTREAM_FAILED.value,
                )
            else:
                skipped = next(d.name for d in deps if d.status == TaskRunStatus.SKIPPED)
                self._skip(
                    state,
                    SkipReason.DESIGN,
                    f"dependency '{skipped}' was skipped",
                    TaskErrorCode.UPSTREAM_SKIPPED.value,
                )

    def _dispatch(self) -> None:
        limit = self.scheduler.max_concurrent_tasks
        for name in self.execution.definition.task_names():
            if len(self.in_flight) >= limit:
                return
            state = self.execution.tasks[name]
            if state.status == TaskRunStatus.READY:
                self._launch(state)

    def _launch(self, state: TaskRunState) -> None:
        spec = self.execution.definition.get_task(state.name)
        assert spec is not None
        state.status = TaskRunStatus.RUNNING
        state.start_time = _now()
        self.execution.current_task = state.name
        logger.debug(f'Execution {self.execution_id}: dispatching {state.name}')

        token = self.token.child()
        execution = self.execution
        resources = self.scheduler.resources

        def ctx_factory(attempt: int, attempt_token: CancellationToken) -> TaskContext:
            return TaskContext(
                execution_id=execution.execution_id,
                workflow_name=execution.workflow_name,
                task_name=spec.name,
                attempt=attempt,
                context=dict(spec.context),
                user_data=execution.user_data,
                resources=resources,
                cancel_token=attempt_token,
            )

        async def run_task() -> None:
            try:
                outcome = await self.scheduler.runner.run(
                    spec,
                    ctx_factory,
                    token,
                    on_attempt=lambda record: self.queue.put_nowait(
                        AttemptFinished(spec.name, record)
                    ),
                )
            except Exception as exc:
                logger.exception(f"Runner failed for task '{spec.name}'")
                outcome = TaskOutcome.failure(
                    f'{type(exc).__name__}: {exc}', TaskErrorCode.TASK_EXCEPTION,
                )
            self.queue.put_nowait(TaskFinished(spec.name, outcome))

        self.in_flight[state.name] = asyncio.create_task(
            run_task(), name=f'taskweave-task-{self.execution_id}-{state.name}',
        )

    def _check_completion(self) -> None:
        if self.in_flight:
            return
        states = self.execution.tasks.values()
        if not all(s.status.is_terminal for s in states):
            return
        failed = any(
            s.status == TaskRunStatus.FAILED or s.skip_reason == SkipReason.FAILURE
            for s in states
        )
        self.execution.status = ExecutionStatus.FAILED if failed else ExecutionStatus.COMPLETED

    # --- outcomes ---

    def _apply_outcome(self, state: TaskRunState, outcome: TaskOutcome) -> None:
        state.end_time = _now()
        if outcome.attempts:
            state.attempts = list(outcome.attempts)
            state.attempt_count = len(state.attempts)
        state.message = outcome.message
        state.error_code = outcome.error_code

        if self.execution.status == ExecutionStatus.STOPPED and not outcome.is_success:
            state.status = TaskRunStatus.SKIPPED
            state.skip_reason = SkipReason.STOPPED
            state.error_code = TaskErrorCode.EXECUTION_STOPPED.value
            return

        match outcome.kind:
            case OutcomeKind.SUCCESS:
                state.status = TaskRunStatus.SUCCEEDED
                state.error_code = None
                logger.debug(f'Execution {self.execution_id}: {state.name} succeeded')
            case OutcomeKind.FAILURE:
                state.status = TaskRunStatus.FAILED
                logger.warning(
                    f'Execution {self.execution_id}: {state.name} failed after '
                    f'{state.attempt_count} attempt(s) ({outcome.error_code}): {outcome.message}'
                )
            case OutcomeKind.SKIP:
                state.status = TaskRunStatus.SKIPPED
                state.skip_reason = SkipReason.DESIGN
                logger.info(f'Execution {self.execution_id}: {state.name} skipped: {outcome.message}')

    def _skip(
        self,
        state: TaskRunState,
        reason: SkipReason,
        message: str,
        error_code: Optional[str] = None,
    ) -> None:
        state.status = TaskRunStatus.SKIPPED
        state.skip_reason = reason
        state.message = message
        state.error_code = error_code
        state.end_time = _now()

    # --- control ---

    def _apply_control(self, kind: ControlKind) -> bool:
        execution = self.execution
        match kind:
            case 'pause':
                if execution.status != ExecutionStatus.RUNNING:
                    return False
                execution.status = ExecutionStatus.PAUSED
                logger.info(
                    f'Execution {self.execution_id} paused ({len(self.in_flight)} task(s) draining)'
                )
                return True
            case 'resume':
                if execution.status != ExecutionStatus.PAUSED:
                    return False
                execution.status = ExecutionStatus.RUNNING
                logger.info(f'Execution {self.execution_id} resumed')
                return True
            case 'stop':
                if execution.status.is_terminal:
                    return False
                self._stop()
                return True
        return False

    def _stop(self) -> None:
        self.execution.status = ExecutionStatus.STOPPED
        for state in self.execution.tasks.values():
            if state.status in (TaskRunStatus.PENDING, TaskRunStatus.READY):
                self._skip(
                    state,
                    SkipReason.STOPPED,
                    'execution stopped',
                    TaskErrorCode.EXECUTION_STOPPED.value,
                )
        self.token.cancel('stopped')
        logger.info(
            f'Execution {self.execution_id} stopped ({len(self.in_flight)} task(s) cancelling)'
        )

    def _abort(self) -> None:
        """Fail the execution after an internal error; in-flight tasks are cancelled."""
        self.token.cancel('aborted')
        for task in self.in_flight.values():
            task.cancel()
        self.in_flight.clear()
        for state in self.execution.tasks.values():
            if not state.status.is_terminal:
                state.status = TaskRunStatus.FAILED
                state.message = 'coordinator error'
                state.end_time = _now()
        self.execution.status = ExecutionStatus.FAILED

    def _close(self) -> None:
        """Refuse further signals and answer the ones still queued."""
        self.closed = True
        while not self.queue.empty():
            event = self.queue.get_nowait()
            if isinstance(event, Control) and not event.ack.done():
                event.ack.set_result(False)

    # --- retirement ---

    def build_result(self) -> ExecutionResult:
        execution = self.execution
        end = execution.end_time or _now()
        start = execution.start_time or end
        states = list(execution.tasks.values())
        counts = {
            status: sum(1 for s in states if s.status == status)
            for status in (TaskRunStatus.SUCCEEDED, TaskRunStatus.FAILED, TaskRunStatus.SKIPPED)
        }
        summary = (
            f'{execution.status.value}: {counts[TaskRunStatus.SUCCEEDED]} succeeded, '
            f'{counts[TaskRunStatus.FAILED]} failed, {counts[TaskRunStatus.SKIPPED]} skipped '
            f'of {len(states)} task(s)'
        )
        return ExecutionResult(
            execution_id=execution.execution_id,
            workflow_name=execution.workflow_name,
            workflow_version=execution.definition.version,
            overall_result=execution.status,
            task_results=tuple(s.to_result() for s in states),
            start_time=start,
            end_time=end,
            total_duration=(end - start).total_seconds(),
            summary=summary,
            user_data=_json_safe(execution.user_data),
        )

    async def _finalize(self) -> None:
        self.execution.end_time = _now()
        result = self.build_result()
        logger.info(f'Execution {self.execution_id} finished: {result.summary}')
        try:
            await self.scheduler.retire(self, result)
        finally:
            if not self.done.done():
                self.done.set_result(result)


class ExecutionScheduler:
    """
    Launches coordinators and hands finished executions to history.

    All methods run on the engine's event loop.
    """

    def __init__(
        self,
        store: DefinitionStore,
        runner: TaskRunner,
        history: HistoryWriter,
        *,
        max_concurrent_tasks: int = 4,
        resources: Any = None,
        on_retired: Optional[Callable[[str], Awaitable[None] | None]] = None,
    ) -> None:
        self.store = store
        self.runner = runner
        self.history = history
        self.max_concurrent_tasks = max_concurrent_tasks
        self.resources = resources
        self.on_retired = on_retired
        self.coordinators: dict[str, Coordinator] = {}
        # Results whose history write failed, still served by get_result.
        self.unrecorded: dict[str, ExecutionResult] = {}

    def launch(self, execution: Execution) -> Coordinator:
        """Start a coordinator for a pinned execution. Returns immediately."""
        coordinator = Coordinator(self, execution)
        self.coordinators[execution.execution_id] = coordinator
        coordinator.start()
        return coordinator

    def get(self, execution_id: str) -> Coordinator | None:
        return self.coordinators.get(execution_id)

    async def control(self, execution_id: str, kind: ControlKind) -> bool | None:
        """None when the execution is not live."""
        coordinator = self.coordinators.get(execution_id)
        if coordinator is None:
            return None
        return await coordinator.send(kind)

    async def retire(self, coordinator: Coordinator, result: ExecutionResult) -> None:
        execution_id = coordinator.execution_id
        try:
            recorded = await self.history.record(result)
            if is_err(recorded):
                logger.error(
                    f'Could not record execution {execution_id} in history: '
                    f'{recorded.err_value.message}'
                )
                self.unrecorded[execution_id] = result
        except Exception:
            logger.exception(f'History write for execution {execution_id} raised')
            self.unrecorded[execution_id] = result
        finally:
            self.store.unpin(coordinator.execution.workflow_name)
            self.coordinators.pop(execution_id, None)
        if self.on_retired is not None:
            maybe = self.on_retired(execution_id)
            if maybe is not None:
                await maybe

    async def shutdown(self) -> None:
        """Stop every live execution and wait for their coordinators."""
        coordinators = list(self.coordinators.values())
        for coordinator in coordinators:
            await coordinator.send('stop')
        if coordinators:
            await asyncio.gather(*(c.done for c in coordinators))
