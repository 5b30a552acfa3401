"""Runtime and result models for workflow executions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from taskweave.core.models.definition import WorkflowDefinition
from taskweave.core.types.status import ExecutionStatus, SkipReason, TaskRunStatus


class TaskErrorCode(str, Enum):
    """
    Engine-defined error codes carried by failed or skipped tasks.

    Executors may report their own codes as plain strings
    (e.g. ``TaskOutcome.failure('disk full', error_code='DISK_FULL')``).
    """

    TASK_FAILED = 'TASK_FAILED'  # executor returned a failure outcome
    TASK_EXCEPTION = 'TASK_EXCEPTION'  # executor raised
    TIMEOUT = 'TIMEOUT'  # attempt exceeded timeout_seconds
    CANCELLED = 'CANCELLED'  # cancel token fired (stop)
    EXECUTOR_NOT_FOUND = 'EXECUTOR_NOT_FOUND'
    UPSTREAM_FAILED = 'UPSTREAM_FAILED'
    UPSTREAM_SKIPPED = 'UPSTREAM_SKIPPED'
    EXECUTION_STOPPED = 'EXECUTION_STOPPED'


class OutcomeKind(str, Enum):
    SUCCESS = 'SUCCESS'
    FAILURE = 'FAILURE'
    SKIP = 'SKIP'


class AttemptRecord(BaseModel):
    """One try of one task."""

    model_config = ConfigDict(frozen=True)

    attempt: int
    started_at: datetime
    ended_at: datetime
    succeeded: bool
    error_code: Optional[str] = None
    message: str = ''


@dataclass(frozen=True)
class TaskOutcome:
    """
    What an executor (or the runner on its behalf) reports.

    Executors may return one of these to fail or skip without raising;
    any other return value counts as success.
    """

    kind: OutcomeKind
    message: str = ''
    error_code: str | None = None
    attempts: tuple[AttemptRecord, ...] = ()

    @classmethod
    def success(cls, message: str = '') -> TaskOutcome:
        return cls(OutcomeKind.SUCCESS, message)

    @classmethod
    def failure(
        cls, reason: str, error_code: str | TaskErrorCode = TaskErrorCode.TASK_FAILED,
    ) -> TaskOutcome:
        code = error_code.value if isinstance(error_code, TaskErrorCode) else error_code
        return cls(OutcomeKind.FAILURE, reason, code)

    @classmethod
    def skip(cls, reason: str = '') -> TaskOutcome:
        """Skip by design: dependents are skipped too, the execution can still complete."""
        return cls(OutcomeKind.SKIP, reason)

    @property
    def is_success(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    def with_attempts(self, attempts: list[AttemptRecord]) -> TaskOutcome:
        return TaskOutcome(self.kind, self.message, self.error_code, tuple(attempts))


@dataclass
class TaskRunState:
    """Live state of one task in one execution. Mutated only by the coordinator."""

    name: str
    status: TaskRunStatus = TaskRunStatus.PENDING
    attempt_count: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    message: str = ''
    error_code: str | None = None
    skip_reason: SkipReason | None = None
    attempts: list[AttemptRecord] = field(default_factory=lambda: [])

    def to_result(self) -> TaskResult:
        return TaskResult(
            task_name=self.name,
            status=self.status,
            message=self.message,
            error_code=self.error_code,
            skip_reason=self.skip_reason,
            start_time=self.start_time,
            end_time=self.end_time,
            attempt_count=self.attempt_count,
            attempts=tuple(self.attempts),
        )


@dataclass
class Execution:
    """
    One run of a workflow definition snapshot.

    Created by the controller, mutated by the scheduler's coordinator,
    retired to the history store once terminal.
    """

    execution_id: str
    definition: WorkflowDefinition
    status: ExecutionStatus = ExecutionStatus.PENDING
    start_time: datetime | None = None
    end_time: datetime | None = None
    current_task: str | None = None
    user_data: Any = None
    tasks: dict[str, TaskRunState] = field(default_factory=lambda: {})

    def __post_init__(self) -> None:
        if not self.tasks:
            self.tasks = {name: TaskRunState(name) for name in self.definition.task_names()}

    @property
    def workflow_name(self) -> str:
        return self.definition.name

    def snapshot(self) -> ExecutionInfo:
        """Immutable copy for readers outside the coordinator."""
        return ExecutionInfo(
            execution_id=self.execution_id,
            workflow_name=self.workflow_name,
            workflow_version=self.definition.version,
            status=self.status,
            start_time=self.start_time,
            end_time=self.end_time,
            current_task=self.current_task,
            tasks=tuple(state.to_result() for state in self.tasks.values()),
        )


class TaskResult(BaseModel):
    """Terminal record of one task, folded from its TaskRunState."""

    model_config = ConfigDict(frozen=True)

    task_name: str
    status: TaskRunStatus
    message: str = ''
    error_code: Optional[str] = None
    skip_reason: Optional[SkipReason] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    attempt_count: int = 0
    attempts: tuple[AttemptRecord, ...] = ()


class ExecutionResult(BaseModel):
    """Immutable outcome of a finished execution, as stored in history."""

    model_config = ConfigDict(frozen=True)

    execution_id: str
    workflow_name: str
    workflow_version: str
    overall_result: ExecutionStatus
    task_results: tuple[TaskResult, ...]
    start_time: datetime
    end_time: datetime
    total_duration: float
    summary: str
    # JSON-compatible user_data only; anything else is dropped when the result is built.
    user_data: Any = None

    def task(self, task_name: str) -> TaskResult | None:
        for result in self.task_results:
            if result.task_name == task_name:
                return result
        return None


class ExecutionInfo(BaseModel):
    """Point-in-time status of an execution (live or historical)."""

    model_config = ConfigDict(frozen=True)

    execution_id: str
    workflow_name: str
    workflow_version: str
    status: ExecutionStatus
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    current_task: Optional[str] = None
    tasks: tuple[TaskResult, ...] = ()

    @classmethod
    def from_result(cls, result: ExecutionResult) -> ExecutionInfo:
        last = [t for t in result.task_results if t.start_time is not None]
        last.sort(key=lambda t: t.start_time)  # type: ignore[arg-type, return-value]
        return cls(
            execution_id=result.execution_id,
            workflow_name=result.workflow_name,
            workflow_version=result.workflow_version,
            status=result.overall_result,
            start_time=result.start_time,
            end_time=result.end_time,
            current_task=last[-1].task_name if last else None,
            tasks=result.task_results,
        )
