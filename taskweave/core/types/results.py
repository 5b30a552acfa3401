"""Typed error payloads for runtime operations.

Where Result stops and exceptions take over:

* Definition, template and schedule mutations raise ``TaskweaveError``
  subclasses (``NotFoundError``, ``AlreadyExistsError``, ...). They are
  programming or input errors the caller fixes before retrying.

* Execution start, lifecycle control, queries and history writes return
  ``Result`` values. ``Ok`` carries the value; ``Err`` carries one of the
  frozen payloads below with a category ``code``, a message, whether a
  retry can help, and the original exception when there was one.

* Lifecycle operations return ``LifecycleResult[bool]``: ``Ok(True)`` the
  transition applied, ``Ok(False)`` the execution exists but was not in a
  state that allows it (no-op), ``Err(EXECUTION_NOT_FOUND)`` otherwise.

* Sync wrappers add ``LOOP_RUNNER_FAILED`` when the sync-to-async bridge
  itself fails.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeAlias, TypeVar

from result import Result


class StartErrorCode(str, Enum):
    """Categorized execution start failure codes."""

    WORKFLOW_NOT_FOUND = 'WORKFLOW_NOT_FOUND'
    WORKFLOW_DISABLED = 'WORKFLOW_DISABLED'
    VALIDATION_FAILED = 'VALIDATION_FAILED'
    LOOP_RUNNER_FAILED = 'LOOP_RUNNER_FAILED'


@dataclass(slots=True, frozen=True)
class StartError:
    """Error payload carried inside ``Err(...)`` for ``start``.

    Fields:
        code: which failure category
        message: human-readable description
        retryable: whether the caller can safely retry
        workflow_name: the workflow that was asked to start
        exception: the original cause (if any)
        details: optional structured metadata (e.g. missing executors)
    """

    code: StartErrorCode
    message: str
    retryable: bool
    workflow_name: str
    exception: BaseException | None = None
    details: dict[str, Any] | None = None


class LifecycleErrorCode(str, Enum):
    """Categorized stop/pause/resume failure codes."""

    EXECUTION_NOT_FOUND = 'EXECUTION_NOT_FOUND'
    LOOP_RUNNER_FAILED = 'LOOP_RUNNER_FAILED'


@dataclass(slots=True, frozen=True)
class LifecycleOperationError:
    """Error payload carried inside ``Err(...)`` for lifecycle operations.

    Fields:
        code: which failure category
        message: human-readable description
        retryable: whether the caller can safely retry
        operation: 'stop', 'pause' or 'resume'
        execution_id: the execution this operation targeted
        exception: the original cause (if any)
    """

    code: LifecycleErrorCode
    message: str
    retryable: bool
    operation: str
    execution_id: str
    exception: BaseException | None = None


class QueryErrorCode(str, Enum):
    """Categorized read failure codes."""

    NOT_FOUND = 'NOT_FOUND'
    RESULT_NOT_READY = 'RESULT_NOT_READY'
    WAIT_TIMEOUT = 'WAIT_TIMEOUT'
    QUERY_FAILED = 'QUERY_FAILED'
    LOOP_RUNNER_FAILED = 'LOOP_RUNNER_FAILED'


@dataclass(slots=True, frozen=True)
class QueryError:
    """Error payload carried inside ``Err(...)`` for queries and listings."""

    code: QueryErrorCode
    message: str
    retryable: bool
    exception: BaseException | None = None


class HistoryErrorCode(str, Enum):
    """Categorized history write failure codes."""

    DUPLICATE_EXECUTION = 'DUPLICATE_EXECUTION'
    SCHEMA_INIT_FAILED = 'SCHEMA_INIT_FAILED'
    QUERY_FAILED = 'QUERY_FAILED'


@dataclass(slots=True, frozen=True)
class HistoryError:
    """Error payload carried inside ``Err(...)`` for history writes."""

    code: HistoryErrorCode
    message: str
    retryable: bool
    execution_id: str
    exception: BaseException | None = None


T = TypeVar("T")

StartResult: TypeAlias = Result[T, StartError]
LifecycleResult: TypeAlias = Result[T, LifecycleOperationError]
QueryResult: TypeAlias = Result[T, QueryError]
HistoryResult: TypeAlias = Result[T, HistoryError]
