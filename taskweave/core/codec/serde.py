# taskweave/core/codec/serde.py
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, List, Union
import json
from pydantic import BaseModel, ValidationError
from taskweave.core.errors import (
    ErrorCode,
    SerializationError,
    TaskweaveError,
)
from taskweave.core.logging import get_logger
from taskweave.core.models.definition import WorkflowDefinition
from taskweave.core.models.execution import ExecutionResult

logger = get_logger('serde')


Json = Union[None, bool, int, float, str, List['Json'], Dict[str, 'Json']]
"""
Union type for JSON-serializable values.
"""

WORKFLOW_FORMAT = 'taskweave.workflow'
RESULT_FORMAT = 'taskweave.execution_result'
FORMAT_VERSION = 1


def _serialization_error(message: str, *notes: str) -> SerializationError:
    return SerializationError(
        message=message,
        code=ErrorCode.SERIALIZATION_FAILED,
        notes=list(notes),
    )


def dumps_json(value: Any) -> str:
    """Compact JSON for storage; raises SerializationError for non-JSON values."""
    try:
        return json.dumps(value, ensure_ascii=False, separators=(',', ':'), allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise _serialization_error(
            f'cannot serialize value of type {type(value).__name__}', str(exc),
        ) from exc


def loads_json(s: str | bytes) -> Json:
    try:
        return json.loads(s)  # type: ignore[no-any-return]
    except json.JSONDecodeError as exc:
        raise _serialization_error(
            'invalid JSON', f'line {exc.lineno}, column {exc.colno}: {exc.msg}',
        ) from exc


def _envelope(kind: str, key: str, model: BaseModel, indent: int | None) -> str:
    body = model.model_dump(mode='json')
    return json.dumps(
        {'format': kind, 'format_version': FORMAT_VERSION, key: body},
        ensure_ascii=False,
        indent=indent,
    )


def _unwrap(data: Json, kind: str, key: str) -> Dict[str, Json]:
    """Accept both the enveloped form and a bare model object."""
    if not isinstance(data, dict):
        raise _serialization_error(f'expected a JSON object for {key}')
    if 'format' not in data:
        return data
    if data.get('format') != kind:
        raise _serialization_error(
            f'unexpected document format {data.get("format")!r}', f'expected {kind!r}',
        )
    version = data.get('format_version')
    if version != FORMAT_VERSION:
        raise _serialization_error(
            f'unsupported format_version {version!r}', f'supported: {FORMAT_VERSION}',
        )
    body = data.get(key)
    if not isinstance(body, dict):
        raise _serialization_error(f'document has no {key!r} object')
    return body


def _validation_notes(exc: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
        for err in exc.errors()
    ]


# --- workflow definitions ---


def definition_to_json(definition: WorkflowDefinition, *, indent: int | None = 2) -> str:
    return _envelope(WORKFLOW_FORMAT, 'workflow', definition, indent)


def definition_from_json(s: str | bytes) -> WorkflowDefinition:
    """
    Parse a workflow document.

    Raises:
        SerializationError: malformed JSON, wrong format, or invalid fields.
            Graph checks are left to DefinitionStore.register.
    """
    body = _unwrap(loads_json(s), WORKFLOW_FORMAT, 'workflow')
    try:
        return WorkflowDefinition.model_validate(body)
    except ValidationError as exc:
        raise _serialization_error(
            'invalid workflow definition', *_validation_notes(exc),
        ) from exc
    except TaskweaveError as exc:
        raise _serialization_error(
            'invalid workflow definition', exc.message, *exc.notes,
        ) from exc


def save_definition(definition: WorkflowDefinition, path: str | Path) -> None:
    target = Path(path)
    try:
        target.write_text(definition_to_json(definition), encoding='utf-8')
    except OSError as exc:
        raise _serialization_error(f'cannot write {target}', str(exc)) from exc
    logger.debug(f"Saved workflow '{definition.name}' to {target}")


def load_definition(path: str | Path) -> WorkflowDefinition:
    source = Path(path)
    try:
        text = source.read_text(encoding='utf-8')
    except OSError as exc:
        raise _serialization_error(f'cannot read {source}', str(exc)) from exc
    return definition_from_json(text)


# --- execution results ---


def execution_result_to_json(result: ExecutionResult, *, indent: int | None = None) -> str:
    return _envelope(RESULT_FORMAT, 'result', result, indent)


def execution_result_from_json(s: str | bytes) -> ExecutionResult:
    body = _unwrap(loads_json(s), RESULT_FORMAT, 'result')
    try:
        return ExecutionResult.model_validate(body)
    except ValidationError as exc:
        raise _serialization_error(
            'invalid execution result', *_validation_notes(exc),
        ) from exc
