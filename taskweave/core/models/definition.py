"""Workflow definition models: TaskSpec and WorkflowDefinition."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing_extensions import Self

from taskweave.core.errors import (
    ErrorCode,
    InvalidParamError,
    ValidationReport,
    raise_collected,
)


class TaskSpec(BaseModel):
    """
    One node of a workflow DAG.

    Fields:
        - name: unique within its workflow
        - dependencies: names of tasks that must finish first (declaration order kept)
        - executor: name of a registered executor; a callable decorated with
          ``@app.executor()`` is accepted and stored by its registered name
        - context: opaque JSON-able data handed to the executor
        - timeout_seconds: per-attempt deadline (None = engine default)
        - retry_count: additional attempts after the first failure
        - retry_delay_seconds: pause between attempts
        - allow_failed_deps: run even when a dependency failed
        - description: free text
    """

    model_config = ConfigDict(frozen=True, extra='forbid')

    name: str
    dependencies: tuple[str, ...] = ()
    executor: str
    context: dict[str, Any] = Field(default_factory=dict)
    timeout_seconds: Optional[float] = None
    retry_count: int = 0
    retry_delay_seconds: float = 0.0
    allow_failed_deps: bool = False
    description: str = ''

    @field_validator('executor', mode='before')
    @classmethod
    def _executor_to_name(cls, value: Any) -> Any:
        registered = getattr(value, 'executor_name', None)
        if callable(value) and isinstance(registered, str):
            return registered
        return value

    @model_validator(mode='after')
    def validate_task(self) -> Self:
        """Collect every field problem and raise them together."""
        report = ValidationReport('task')
        if not self.name.strip():
            report.add(
                InvalidParamError(
                    message='task name must not be empty',
                    code=ErrorCode.TASK_INVALID_SPEC,
                    help_text='give every task a unique, non-blank name',
                )
            )
        if not self.executor.strip():
            report.add(
                InvalidParamError(
                    message=f"task '{self.name}' has no executor",
                    code=ErrorCode.TASK_INVALID_SPEC,
                    help_text='set executor to the name of a registered executor',
                )
            )
        if self.name in self.dependencies:
            report.add(
                InvalidParamError(
                    message=f"task '{self.name}' depends on itself",
                    code=ErrorCode.TASK_INVALID_SPEC,
                    notes=[f'dependencies: {list(self.dependencies)}'],
                )
            )
        if len(self.dependencies) != len(set(self.dependencies)):
            report.add(
                InvalidParamError(
                    message=f"task '{self.name}' lists a dependency twice",
                    code=ErrorCode.TASK_INVALID_SPEC,
                    notes=[f'dependencies: {list(self.dependencies)}'],
                )
            )
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            report.add(
                InvalidParamError(
                    message='timeout_seconds must be positive',
                    code=ErrorCode.TASK_INVALID_SPEC,
                    notes=[f"task '{self.name}': timeout_seconds={self.timeout_seconds}"],
                    help_text='use None to fall back to the engine default',
                )
            )
        if self.retry_count < 0:
            report.add(
                InvalidParamError(
                    message='retry_count must be non-negative',
                    code=ErrorCode.TASK_INVALID_SPEC,
                    notes=[f"task '{self.name}': retry_count={self.retry_count}"],
                )
            )
        if self.retry_delay_seconds < 0:
            report.add(
                InvalidParamError(
                    message='retry_delay_seconds must be non-negative',
                    code=ErrorCode.TASK_INVALID_SPEC,
                    notes=[f"task '{self.name}': retry_delay_seconds={self.retry_delay_seconds}"],
                )
            )
        raise_collected(report)
        return self


class WorkflowDefinition(BaseModel):
    """
    A named task graph. Frozen: every store mutation builds a new snapshot,
    so executions keep the exact graph they started with.
    """

    model_config = ConfigDict(frozen=True, extra='forbid')

    name: str
    tasks: tuple[TaskSpec, ...] = ()
    version: str = '1.0'
    enabled: bool = True
    description: str = ''

    @model_validator(mode='after')
    def validate_definition(self) -> Self:
        report = ValidationReport('workflow')
        if not self.name.strip():
            report.add(
                InvalidParamError(
                    message='workflow name must not be empty',
                    code=ErrorCode.WORKFLOW_INVALID_NAME,
                )
            )
        names = [t.name for t in self.tasks]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            report.add(
                InvalidParamError(
                    message=f"duplicate task names in workflow '{self.name}'",
                    code=ErrorCode.TASK_ALREADY_EXISTS,
                    notes=[f'duplicates: {duplicates}'],
                    help_text='task names must be unique within a workflow',
                )
            )
        raise_collected(report)
        return self

    def task_names(self) -> list[str]:
        """Task names in declaration order."""
        return [t.name for t in self.tasks]

    def get_task(self, task_name: str) -> TaskSpec | None:
        for task in self.tasks:
            if task.name == task_name:
                return task
        return None

    def dependents_of(self, task_name: str) -> list[str]:
        """Tasks that list ``task_name`` as a dependency, in declaration order."""
        return [t.name for t in self.tasks if task_name in t.dependencies]
