# taskweave/core/templates/manager.py
from __future__ import annotations
import re
import threading
from typing import Any, Mapping
from taskweave.core.codec.serde import loads_json
from taskweave.core.definitions.store import DefinitionStore
from taskweave.core.errors import (
    AlreadyExistsError,
    ErrorCode,
    InvalidParamError,
    NotFoundError,
    SerializationError,
)
from taskweave.core.logging import get_logger
from taskweave.core.models.definition import TaskSpec, WorkflowDefinition

logger = get_logger('templates')

_PLACEHOLDER = re.compile(r'\$\{([_a-zA-Z][_a-zA-Z0-9]*)\}')
# A string that is exactly one placeholder keeps the parameter's JSON type.
_WHOLE_PLACEHOLDER = re.compile(r'^\$\{([_a-zA-Z][_a-zA-Z0-9]*)\}$')


class TemplateManager:
    """
    Named definition snapshots that can be stamped out as new workflows.

    A template is frozen at creation; later edits of the source workflow do
    not reach it, and instances share nothing with the template or each
    other. Placeholders use ``${name}`` syntax; any other ``$`` is literal text.
    """

    def __init__(self, store: DefinitionStore) -> None:
        self.store = store
        self._templates: dict[str, WorkflowDefinition] = {}
        self._lock = threading.Lock()

    def create_template(self, template_name: str, workflow_name: str) -> WorkflowDefinition:
        """Snapshot ``workflow_name`` under ``template_name``."""
        if not template_name.strip():
            raise InvalidParamError(
                message='template name must not be empty',
                code=ErrorCode.TEMPLATE_INVALID_PARAMETERS,
            )
        snapshot = self.store.get_info(workflow_name)
        with self._lock:
            if template_name in self._templates:
                raise AlreadyExistsError(
                    message=f"template '{template_name}' already exists",
                    code=ErrorCode.TEMPLATE_ALREADY_EXISTS,
                    help_text='delete it first or choose another name',
                )
            self._templates[template_name] = snapshot
        logger.info(f"Created template '{template_name}' from workflow '{workflow_name}'")
        return snapshot

    def instantiate_template(
        self,
        template_name: str,
        new_workflow_name: str,
        parameters: Mapping[str, Any] | str | None = None,
    ) -> WorkflowDefinition:
        """
        Register a fresh workflow built from a template.

        Args:
            template_name: existing template
            new_workflow_name: name of the workflow to create
            parameters: mapping or JSON object string of placeholder values

        Raises:
            NotFoundError: unknown template
            AlreadyExistsError: ``new_workflow_name`` is taken
            InvalidParamError: malformed parameters or a missing placeholder value
        """
        template = self.get_template(template_name)
        params = self._parse_parameters(parameters)

        try:
            tasks = tuple(self._substitute_task(task, params) for task in template.tasks)
            definition = WorkflowDefinition(
                name=new_workflow_name,
                tasks=tasks,
                version=_substitute_text(template.version, params),
                enabled=template.enabled,
                description=_substitute_text(template.description, params),
            )
        except KeyError as exc:
            raise InvalidParamError(
                message=f'missing template parameter {exc.args[0]!r}',
                code=ErrorCode.TEMPLATE_INVALID_PARAMETERS,
                notes=[
                    f"template '{template_name}'",
                    f'given parameters: {sorted(params)}',
                ],
                help_text='supply a value for every ${placeholder} used by the template',
            ) from None

        self.store.register(definition)
        logger.info(
            f"Instantiated template '{template_name}' as workflow '{new_workflow_name}'"
        )
        return definition

    def list_templates(self) -> list[str]:
        with self._lock:
            return list(self._templates)

    def get_template(self, template_name: str) -> WorkflowDefinition:
        with self._lock:
            template = self._templates.get(template_name)
        if template is None:
            raise NotFoundError(
                message=f"template '{template_name}' not found",
                code=ErrorCode.TEMPLATE_NOT_FOUND,
            )
        return template

    def delete_template(self, template_name: str) -> None:
        with self._lock:
            if self._templates.pop(template_name, None) is None:
                raise NotFoundError(
                    message=f"template '{template_name}' not found",
                    code=ErrorCode.TEMPLATE_NOT_FOUND,
                )
        logger.info(f"Deleted template '{template_name}'")

    # --- substitution ---

    @staticmethod
    def _parse_parameters(parameters: Mapping[str, Any] | str | None) -> dict[str, Any]:
        if parameters is None:
            return {}
        if isinstance(parameters, Mapping):
            return dict(parameters)
        try:
            loaded = loads_json(parameters) if parameters.strip() else {}
        except SerializationError as exc:
            raise InvalidParamError(
                message='template parameters are not valid JSON',
                code=ErrorCode.TEMPLATE_INVALID_PARAMETERS,
                notes=exc.notes,
            ) from exc
        if not isinstance(loaded, dict):
            raise InvalidParamError(
                message='template parameters must be a JSON object',
                code=ErrorCode.TEMPLATE_INVALID_PARAMETERS,
                notes=[f'got JSON {type(loaded).__name__}'],
            )
        return loaded

    @staticmethod
    def _substitute_task(task: TaskSpec, params: Mapping[str, Any]) -> TaskSpec:
        return TaskSpec(
            name=task.name,
            dependencies=task.dependencies,
            executor=_substitute_text(task.executor, params),
            context=_substitute_value(task.context, params),
            timeout_seconds=task.timeout_seconds,
            retry_count=task.retry_count,
            retry_delay_seconds=task.retry_delay_seconds,
            allow_failed_deps=task.allow_failed_deps,
            description=_substitute_text(task.description, params),
        )


def _substitute_text(text: str, params: Mapping[str, Any]) -> str:
    return _PLACEHOLDER.sub(lambda m: str(params[m.group(1)]), text)


def _substitute_value(value: Any, params: Mapping[str, Any]) -> Any:
    """Substitute inside strings of nested dicts and lists; other values pass through."""
    if isinstance(value, str):
        whole = _WHOLE_PLACEHOLDER.match(value)
        if whole is not None:
            return params[whole.group(1)]
        return _substitute_text(value, params)
    if isinstance(value, dict):
        return {k: _substitute_value(v, params) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute_value(v, params) for v in value]
    return value
