# taskweave/core/types/status.py
"""
Status enums shared by the scheduler, controller and history store.
This module should not import from other taskweave modules.
"""

from enum import Enum


class ExecutionStatus(str, Enum):
    """
    Status of one workflow execution.

    State machine:
        PENDING → RUNNING → COMPLETED
                          → FAILED   (a task failed or was skipped by failure propagation)
                          → PAUSED   (pause(); resume() returns to RUNNING)
                          → STOPPED  (stop(); also reachable from PAUSED)
    """

    PENDING = 'PENDING'
    RUNNING = 'RUNNING'
    PAUSED = 'PAUSED'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'
    STOPPED = 'STOPPED'

    @property
    def is_terminal(self) -> bool:
        """Whether this status represents a final state (no further transitions)."""
        return self in EXECUTION_TERMINAL_STATES


EXECUTION_TERMINAL_STATES: frozenset[ExecutionStatus] = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.STOPPED,
})


class TaskRunStatus(str, Enum):
    """
    Status of one task inside one execution.

    State machine:
        PENDING → READY → RUNNING → SUCCEEDED
                                  → FAILED
        PENDING/READY → SKIPPED (upstream failure, skip by design, or stop)
    """

    PENDING = 'PENDING'  # waiting for dependencies
    READY = 'READY'  # dependencies satisfied, waiting for a dispatch slot
    RUNNING = 'RUNNING'
    SUCCEEDED = 'SUCCEEDED'
    FAILED = 'FAILED'  # retries exhausted
    SKIPPED = 'SKIPPED'

    @property
    def is_terminal(self) -> bool:
        """Whether this status represents a final state (no further transitions)."""
        return self in TASK_RUN_TERMINAL_STATES


TASK_RUN_TERMINAL_STATES: frozenset[TaskRunStatus] = frozenset({
    TaskRunStatus.SUCCEEDED,
    TaskRunStatus.FAILED,
    TaskRunStatus.SKIPPED,
})


class SkipReason(str, Enum):
    """Why a task ended SKIPPED. Only FAILURE counts against the execution."""

    FAILURE = 'failure'  # a dependency failed (or was itself failure-skipped)
    DESIGN = 'design'  # the executor or an upstream task chose to skip
    STOPPED = 'stopped'  # the execution was stopped before the task finished
