# taskweave/core/runner/context.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any
from taskweave.core.runner.cancellation import CancellationToken


@dataclass(frozen=True)
class TaskContext:
    """
    What an executor receives for one attempt.

    Attributes:
        execution_id: id of the running execution
        workflow_name: name of the workflow
        task_name: name of the task being run
        attempt: 1-based attempt number
        context: the task's context mapping (a copy, safe to mutate)
        user_data: opaque value passed to ``start``
        resources: the resource-layer collaborator given to the engine
        cancel_token: fires on stop or attempt timeout; long-running
            executors should check it
    """

    execution_id: str
    workflow_name: str
    task_name: str
    attempt: int
    context: dict[str, Any] = field(default_factory=lambda: {})
    user_data: Any = None
    resources: Any = None
    cancel_token: CancellationToken = field(default_factory=CancellationToken)

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.cancelled
