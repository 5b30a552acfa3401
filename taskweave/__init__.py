"""taskweave - workflow orchestration engine for DAGs of tasks"""

# Install Rust-style error handler on import
from .core.errors import install_error_handler as _install_error_handler

_install_error_handler()

from .core.app import Taskweave
from .core.models.app import EngineConfig, HistoryConfig, TriggerConfig
from .core.models.definition import TaskSpec, WorkflowDefinition
from .core.models.execution import (
    AttemptRecord,
    ExecutionInfo,
    ExecutionResult,
    OutcomeKind,
    TaskErrorCode,
    TaskOutcome,
    TaskResult,
)
from .core.models.schedule import (
    Weekday,
    IntervalSchedule,
    HourlySchedule,
    DailySchedule,
    WeeklySchedule,
    MonthlySchedule,
    SchedulePattern,
    ImmediatePolicy,
    ScheduledPolicy,
    ConditionalPolicy,
    TriggerPolicy,
)
from .core.runner.cancellation import CancellationToken, TaskCancelledError
from .core.runner.context import TaskContext
from .core.collaborators import ResourceLayer, RuleEvaluator
from .core.triggers.manager import parse_schedule
from .core.types.status import (
    ExecutionStatus,
    TaskRunStatus,
    SkipReason,
    EXECUTION_TERMINAL_STATES,
    TASK_RUN_TERMINAL_STATES,
)
from .core.types.results import (
    StartError,
    StartErrorCode,
    StartResult,
    LifecycleErrorCode,
    LifecycleOperationError,
    LifecycleResult,
    QueryError,
    QueryErrorCode,
    QueryResult,
)
from .core.errors import (
    ErrorCode,
    TaskweaveError,
    NotFoundError,
    AlreadyExistsError,
    InvalidParamError,
    DefinitionInUseError,
    WorkflowValidationError,
    CyclicDependencyError,
    UnresolvedDependencyError,
    ConfigurationError,
    RegistryError,
    SerializationError,
    ValidationReport,
    MultipleValidationErrors,
    install_error_handler,
    uninstall_error_handler,
)
from result import Result, Ok, Err, is_ok, is_err

__all__ = [
    # Core
    'Taskweave',
    'EngineConfig',
    'HistoryConfig',
    'TriggerConfig',
    # Definitions
    'TaskSpec',
    'WorkflowDefinition',
    # Executions
    'AttemptRecord',
    'ExecutionInfo',
    'ExecutionResult',
    'OutcomeKind',
    'TaskErrorCode',
    'TaskOutcome',
    'TaskResult',
    'TaskContext',
    'CancellationToken',
    'TaskCancelledError',
    'ExecutionStatus',
    'TaskRunStatus',
    'SkipReason',
    'EXECUTION_TERMINAL_STATES',
    'TASK_RUN_TERMINAL_STATES',
    # Scheduling
    'Weekday',
    'IntervalSchedule',
    'HourlySchedule',
    'DailySchedule',
    'WeeklySchedule',
    'MonthlySchedule',
    'SchedulePattern',
    'ImmediatePolicy',
    'ScheduledPolicy',
    'ConditionalPolicy',
    'TriggerPolicy',
    'parse_schedule',
    # Collaborators
    'ResourceLayer',
    'RuleEvaluator',
    # Result payloads
    'StartError',
    'StartErrorCode',
    'StartResult',
    'LifecycleErrorCode',
    'LifecycleOperationError',
    'LifecycleResult',
    'QueryError',
    'QueryErrorCode',
    'QueryResult',
    # Errors
    'ErrorCode',
    'TaskweaveError',
    'NotFoundError',
    'AlreadyExistsError',
    'InvalidParamError',
    'DefinitionInUseError',
    'WorkflowValidationError',
    'CyclicDependencyError',
    'UnresolvedDependencyError',
    'ConfigurationError',
    'RegistryError',
    'SerializationError',
    'ValidationReport',
    'MultipleValidationErrors',
    'install_error_handler',
    'uninstall_error_handler',
    # Result type
    'Result',
    'Ok',
    'Err',
    'is_ok',
    'is_err',
]
