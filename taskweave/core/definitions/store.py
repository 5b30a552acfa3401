# taskweave/core/definitions/store.py
from __future__ import annotations
from typing import Any, Optional
from result import Ok
from taskweave.core.definitions.graph import validate_graph
from taskweave.core.errors import (
    AlreadyExistsError,
    DefinitionInUseError,
    ErrorCode,
    NotFoundError,
    UnresolvedDependencyError,
)
from taskweave.core.logging import get_logger
from taskweave.core.models.definition import TaskSpec, WorkflowDefinition
from taskweave.core.types.results import QueryResult
from taskweave.core.utils.rwlock import ReadWriteLock

logger = get_logger('definitions')


def _workflow_not_found(name: str) -> NotFoundError:
    return NotFoundError(
        message=f"workflow '{name}' not found",
        code=ErrorCode.WORKFLOW_NOT_FOUND,
        help_text='create it with create() or register() first',
    )


def _task_not_found(name: str, task_name: str) -> NotFoundError:
    return NotFoundError(
        message=f"task '{task_name}' not found in workflow '{name}'",
        code=ErrorCode.TASK_NOT_FOUND,
    )


class DefinitionStore:
    """
    Catalog of workflow definitions keyed by name.

    Definitions are immutable snapshots: each mutation validates a candidate
    copy and swaps it in only if every check passes, so a rejected call
    leaves the stored definition untouched. Live executions pin the
    snapshot they started from; a pinned name cannot be deleted.
    """

    def __init__(self, max_task_dependencies: Optional[int] = None) -> None:
        self._definitions: dict[str, WorkflowDefinition] = {}
        self._pins: dict[str, int] = {}
        self._lock = ReadWriteLock()
        self.max_task_dependencies = max_task_dependencies

    # --- internal ---

    def _get(self, name: str) -> WorkflowDefinition:
        try:
            return self._definitions[name]
        except KeyError:
            raise _workflow_not_found(name) from None

    def _rebuild(self, current: WorkflowDefinition, **changes: Any) -> WorkflowDefinition:
        """Validated copy of ``current`` with ``changes`` applied."""
        fields: dict[str, Any] = {
            'name': current.name,
            'tasks': current.tasks,
            'version': current.version,
            'enabled': current.enabled,
            'description': current.description,
        }
        fields.update(changes)
        candidate = WorkflowDefinition(**fields)
        validate_graph(candidate, self.max_task_dependencies)
        return candidate

    # --- catalog ---

    def create(
        self,
        name: str,
        *,
        description: str = '',
        version: str = '1.0',
        enabled: bool = True,
    ) -> WorkflowDefinition:
        """Create an empty definition. Raises AlreadyExistsError or InvalidParamError."""
        definition = WorkflowDefinition(
            name=name, description=description, version=version, enabled=enabled,
        )
        with self._lock.write():
            if name in self._definitions:
                raise AlreadyExistsError(
                    message=f"workflow '{name}' already exists",
                    code=ErrorCode.WORKFLOW_ALREADY_EXISTS,
                    help_text='pick another name or delete the existing workflow',
                )
            self._definitions[name] = definition
        logger.info(f"Created workflow '{name}'")
        return definition

    def register(self, definition: WorkflowDefinition, *, replace: bool = False) -> None:
        """
        Insert a whole definition (import, template instantiation).

        With ``replace=True`` an existing unpinned definition of the same
        name is overwritten.
        """
        validate_graph(definition, self.max_task_dependencies)
        with self._lock.write():
            if definition.name in self._definitions:
                if not replace:
                    raise AlreadyExistsError(
                        message=f"workflow '{definition.name}' already exists",
                        code=ErrorCode.WORKFLOW_ALREADY_EXISTS,
                        help_text='pass replace=True to overwrite it',
                    )
                if self._pins.get(definition.name, 0) > 0:
                    raise self._in_use(definition.name)
            self._definitions[definition.name] = definition
        logger.info(
            f"Registered workflow '{definition.name}' ({len(definition.tasks)} tasks)"
        )

    def delete(self, name: str) -> None:
        with self._lock.write():
            self._get(name)
            if self._pins.get(name, 0) > 0:
                raise self._in_use(name)
            del self._definitions[name]
            self._pins.pop(name, None)
        logger.info(f"Deleted workflow '{name}'")

    def get_info(self, name: str) -> WorkflowDefinition:
        with self._lock.read():
            return self._get(name)

    def exists(self, name: str) -> bool:
        with self._lock.read():
            return name in self._definitions

    def list(self) -> QueryResult[list[str]]:
        """Workflow names in creation order."""
        with self._lock.read():
            return Ok(list(self._definitions))

    def set_enabled(self, name: str, enabled: bool) -> WorkflowDefinition:
        with self._lock.write():
            updated = self._rebuild(self._get(name), enabled=enabled)
            self._definitions[name] = updated
        logger.info(f"Workflow '{name}' {'enabled' if enabled else 'disabled'}")
        return updated

    def update_info(
        self,
        name: str,
        *,
        description: Optional[str] = None,
        version: Optional[str] = None,
    ) -> WorkflowDefinition:
        changes: dict[str, Any] = {}
        if description is not None:
            changes['description'] = description
        if version is not None:
            changes['version'] = version
        with self._lock.write():
            updated = self._rebuild(self._get(name), **changes)
            self._definitions[name] = updated
        return updated

    # --- tasks ---

    def add_task(self, name: str, task: TaskSpec) -> WorkflowDefinition:
        with self._lock.write():
            current = self._get(name)
            if current.get_task(task.name) is not None:
                raise AlreadyExistsError(
                    message=f"task '{task.name}' already exists in workflow '{name}'",
                    code=ErrorCode.TASK_ALREADY_EXISTS,
                    help_text='use update_task() to change an existing task',
                )
            updated = self._rebuild(current, tasks=current.tasks + (task,))
            self._definitions[name] = updated
        logger.debug(f"Added task '{task.name}' to workflow '{name}'")
        return updated

    def remove_task(self, name: str, task_name: str) -> WorkflowDefinition:
        with self._lock.write():
            current = self._get(name)
            if current.get_task(task_name) is None:
                raise _task_not_found(name, task_name)
            dependents = current.dependents_of(task_name)
            if dependents:
                raise UnresolvedDependencyError(name, dependents[0], task_name)
            updated = self._rebuild(
                current, tasks=tuple(t for t in current.tasks if t.name != task_name),
            )
            self._definitions[name] = updated
        logger.debug(f"Removed task '{task_name}' from workflow '{name}'")
        return updated

    def update_task(self, name: str, task_name: str, task: TaskSpec) -> WorkflowDefinition:
        """Replace ``task_name`` in place; ``task`` may carry a new name."""
        with self._lock.write():
            current = self._get(name)
            if current.get_task(task_name) is None:
                raise _task_not_found(name, task_name)
            if task.name != task_name and current.get_task(task.name) is not None:
                raise AlreadyExistsError(
                    message=f"task '{task.name}' already exists in workflow '{name}'",
                    code=ErrorCode.TASK_ALREADY_EXISTS,
                    notes=[f"while renaming '{task_name}'"],
                )
            tasks = tuple(task if t.name == task_name else t for t in current.tasks)
            updated = self._rebuild(current, tasks=tasks)
            self._definitions[name] = updated
        logger.debug(f"Updated task '{task_name}' in workflow '{name}'")
        return updated

    # --- graph ---

    def validate_dependencies(self, name: str) -> list[str]:
        """
        Check the stored graph; returns its topological order.

        Raises CyclicDependencyError or UnresolvedDependencyError.
        """
        definition = self.get_info(name)
        return validate_graph(definition, self.max_task_dependencies)

    # --- live references ---

    def pin(self, name: str) -> WorkflowDefinition:
        """Take a live reference; returns the snapshot it refers to."""
        with self._lock.write():
            definition = self._get(name)
            self._pins[name] = self._pins.get(name, 0) + 1
            return definition

    def unpin(self, name: str) -> None:
        with self._lock.write():
            count = self._pins.get(name, 0)
            if count <= 1:
                self._pins.pop(name, None)
            else:
                self._pins[name] = count - 1

    def pin_count(self, name: str) -> int:
        with self._lock.read():
            return self._pins.get(name, 0)

    @staticmethod
    def _in_use(name: str) -> DefinitionInUseError:
        return DefinitionInUseError(
            message=f"workflow '{name}' is in use by a live execution",
            code=ErrorCode.WORKFLOW_IN_USE,
            help_text='stop or wait for its executions before deleting it',
        )
