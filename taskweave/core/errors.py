"""Rust-style error display for taskweave definition/validation errors."""

from __future__ import annotations

import inspect
import linecache
import os
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

# Absolute path to the taskweave package directory.
# Used by _find_user_frame to tell library frames apart from user code.
_TASKWEAVE_PKG_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class ErrorCode(str, Enum):
    """Error codes for definition, configuration and registry errors.

    Organized by category:
    - E001-E099: Workflow definition errors
    - E100-E199: Template errors
    - E200-E299: Config/schedule errors
    - E300-E399: Executor registry errors
    - E400-E499: Serialization errors
    """

    # Workflow definition (E001-E099)
    WORKFLOW_NOT_FOUND = 'E001'
    WORKFLOW_ALREADY_EXISTS = 'E002'
    WORKFLOW_INVALID_NAME = 'E003'
    WORKFLOW_IN_USE = 'E004'
    WORKFLOW_DISABLED = 'E005'
    WORKFLOW_NO_TASKS = 'E006'
    WORKFLOW_CYCLE_DETECTED = 'E007'
    WORKFLOW_UNRESOLVED_DEPENDENCY = 'E008'
    TASK_NOT_FOUND = 'E010'
    TASK_ALREADY_EXISTS = 'E011'
    TASK_INVALID_SPEC = 'E012'
    TASK_TOO_MANY_DEPENDENCIES = 'E013'
    EXECUTION_NOT_FOUND = 'E020'

    # Templates (E100-E199)
    TEMPLATE_NOT_FOUND = 'E100'
    TEMPLATE_ALREADY_EXISTS = 'E101'
    TEMPLATE_INVALID_PARAMETERS = 'E102'

    # Config/schedule (E200-E299)
    CONFIG_INVALID_CONCURRENCY = 'E200'
    CONFIG_INVALID_TIMEOUT = 'E201'
    CONFIG_INVALID_HISTORY = 'E202'
    CONFIG_INVALID_SCHEDULE = 'E203'

    # Registry (E300-E399)
    EXECUTOR_NOT_REGISTERED = 'E300'
    EXECUTOR_DUPLICATE_NAME = 'E301'

    # Serialization (E400-E499)
    SERIALIZATION_FAILED = 'E400'


class _Colors:
    """ANSI escape codes for terminal colors."""

    RESET = '\033[0m'
    BOLD = '\033[1m'
    RED = '\033[91m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    DIM = '\033[2m'


class _NoColors:
    """No-op color codes for non-TTY output."""

    RESET = ''
    BOLD = ''
    RED = ''
    BLUE = ''
    CYAN = ''
    GREEN = ''
    DIM = ''


def _env_flag(name: str) -> bool:
    return os.environ.get(name, '').lower() in ('1', 'true', 'yes')


def _should_use_colors() -> bool:
    """Colors on a TTY unless NO_COLOR is set; TASKWEAVE_FORCE_COLOR wins."""
    if _env_flag('TASKWEAVE_FORCE_COLOR'):
        return True
    if os.environ.get('NO_COLOR') is not None:
        return False
    return hasattr(sys.stderr, 'isatty') and sys.stderr.isatty()


@dataclass
class SourceLocation:
    """Source code location information."""

    file: str
    line: int

    @classmethod
    def from_frame(cls, frame: Any) -> SourceLocation:
        return cls(file=frame.f_code.co_filename, line=frame.f_lineno)

    @classmethod
    def from_function(cls, fn: Callable[..., Any]) -> SourceLocation | None:
        """Location of a function's definition; None for callables without code."""
        code = getattr(fn, '__code__', None)
        if code is None:
            return None
        return cls(file=code.co_filename, line=code.co_firstlineno)

    def get_source_line(self) -> str | None:
        line = linecache.getline(self.file, self.line)
        return line.rstrip('\n') if line else None

    def format_short(self) -> str:
        return f'{self.file}:{self.line}'


@dataclass
class TaskweaveError(Exception):
    """Base exception for taskweave definition and validation errors.

    Renders like a compiler diagnostic:
    - error code and message
    - the user call site with a code snippet
    - notes and help text
    """

    message: str
    code: ErrorCode | None = None
    location: SourceLocation | None = None
    notes: list[str] = field(default_factory=lambda: [])
    help_text: str | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.location is None:
            user_frame = _find_user_frame()
            if user_frame is not None:
                self.location = SourceLocation.from_frame(user_frame)

    def with_note(self, note: str) -> TaskweaveError:
        """Add a note to the error (fluent API)."""
        self.notes.append(note)
        return self

    def with_help(self, help_text: str) -> TaskweaveError:
        """Set help text (fluent API)."""
        self.help_text = help_text
        return self

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        if use_colors is None:
            use_colors = _should_use_colors()
        c = _Colors if use_colors else _NoColors
        code_part = f'[{self.code.value}]' if self.code else ''
        lines: list[str] = ['', f'{c.BOLD}{c.RED}error{code_part}:{c.RESET} {self.message}']

        if self.location:
            lines.append(
                f'  {c.BLUE}-->{c.RESET} {c.CYAN}{self.location.format_short()}{c.RESET}'
            )
            source_line = self.location.get_source_line()
            if source_line:
                line_num = str(self.location.line)
                padding = ' ' * len(line_num)
                stripped = source_line.lstrip()
                underline = ' ' * (len(source_line) - len(stripped)) + '^' * len(stripped)
                lines.append(f'   {c.BLUE}{padding}|{c.RESET}')
                lines.append(f'   {c.BLUE}{line_num}|{c.RESET} {source_line}')
                lines.append(f'   {c.BLUE}{padding}|{c.RESET} {c.RED}{underline}{c.RESET}')

        for note in self.notes:
            first, *rest = note.split('\n')
            lines.append(f'   {c.BLUE}={c.RESET} {c.BOLD}{c.BLUE}note{c.RESET}: {first}')
            lines.extend(f'          {extra}' for extra in rest)

        if self.help_text:
            lines.append('')
            lines.append(f'   {c.BLUE}={c.RESET} {c.BOLD}{c.GREEN}help{c.RESET}:')
            lines.extend(f'        {h}' for h in self.help_text.split('\n'))

        return '\n'.join(lines)

    def __str__(self) -> str:
        # Plain text so the message is safe for logs and JSON.
        return self.format_rust_style(use_colors=False)


_original_excepthook = sys.excepthook


def _taskweave_excepthook(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: Any,
) -> None:
    """Print TaskweaveError diagnostics; defer everything else."""
    if _env_flag('TASKWEAVE_PLAIN_ERRORS') or not isinstance(exc_value, TaskweaveError):
        _original_excepthook(exc_type, exc_value, exc_tb)
        return

    print(exc_value.format_rust_style(), file=sys.stderr)
    if _env_flag('TASKWEAVE_VERBOSE'):
        c = _Colors if _should_use_colors() else _NoColors
        print(f'\n{c.DIM}Full traceback (TASKWEAVE_VERBOSE=1):{c.RESET}', file=sys.stderr)
        traceback.print_exception(exc_type, exc_value, exc_tb, file=sys.stderr)


def install_error_handler() -> None:
    """Install the custom exception hook for rust-style error display."""
    sys.excepthook = _taskweave_excepthook


def uninstall_error_handler() -> None:
    """Restore the original exception hook."""
    sys.excepthook = _original_excepthook


# =============================================================================
# Specific Error Classes
# =============================================================================


@dataclass
class NotFoundError(TaskweaveError):
    """Unknown workflow, task, execution or template."""

    pass


@dataclass
class AlreadyExistsError(TaskweaveError):
    """Duplicate workflow, task or template name."""

    pass


@dataclass
class InvalidParamError(TaskweaveError):
    """Malformed task spec, disabled workflow, bad schedule or template data."""

    pass


@dataclass
class DefinitionInUseError(InvalidParamError):
    """Definition is pinned by a live execution and cannot be deleted."""

    pass


@dataclass
class WorkflowValidationError(TaskweaveError):
    """Dependency graph of a workflow definition is invalid."""

    pass


@dataclass
class ConfigurationError(TaskweaveError):
    """Engine configuration is invalid."""

    pass


@dataclass
class RegistryError(TaskweaveError):
    """Executor registry operation failed."""

    pass


@dataclass
class SerializationError(TaskweaveError):
    """A definition or execution result could not be (de)serialized."""

    pass


class CyclicDependencyError(WorkflowValidationError):
    """A back edge ``task_a -> task_b`` closes a dependency cycle."""

    def __init__(self, workflow_name: str, task_a: str, task_b: str, cycle: list[str]) -> None:
        super().__init__(
            message=f"dependency cycle in workflow '{workflow_name}'",
            code=ErrorCode.WORKFLOW_CYCLE_DETECTED,
            notes=[
                f"'{task_a}' depends on '{task_b}', which leads back to '{task_a}'",
                'cycle: ' + ' -> '.join(cycle),
            ],
            help_text='remove one of the dependencies on the cycle',
        )
        self.workflow_name = workflow_name
        self.task_a = task_a
        self.task_b = task_b
        self.cycle = cycle


class UnresolvedDependencyError(WorkflowValidationError):
    """A task depends on a name that is not a task of the same workflow."""

    def __init__(self, workflow_name: str, task: str, missing: str) -> None:
        super().__init__(
            message=f"unresolved dependency '{missing}' in workflow '{workflow_name}'",
            code=ErrorCode.WORKFLOW_UNRESOLVED_DEPENDENCY,
            notes=[f"task '{task}' depends on '{missing}', which is not defined"],
            help_text='add the missing task first or drop the dependency',
        )
        self.workflow_name = workflow_name
        self.task = task
        self.missing = missing


# =============================================================================
# Phase-Gated Error Collection
# =============================================================================


class ValidationReport:
    """Collects several TaskweaveError instances from one validation phase."""

    def __init__(self, phase_name: str) -> None:
        self.phase_name: str = phase_name
        self.errors: list[TaskweaveError] = []

    def add(self, error: TaskweaveError) -> None:
        self.errors.append(error)

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        if use_colors is None:
            use_colors = _should_use_colors()
        c = _Colors if use_colors else _NoColors
        parts = [error.format_rust_style(use_colors=use_colors) for error in self.errors]
        parts.append(
            f'\n{c.BOLD}{c.RED}error{c.RESET}: aborting due to {len(self.errors)} previous errors'
        )
        return '\n'.join(parts)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


@dataclass
class MultipleValidationErrors(TaskweaveError):
    """Wraps a ValidationReport holding two or more errors."""

    report: ValidationReport = field(default_factory=lambda: ValidationReport(''))

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f'aborting due to {len(self.report.errors)} previous errors'
        # Location is per-error in the report.
        Exception.__init__(self, self.message)

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        return self.report.format_rust_style(use_colors=use_colors)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


def raise_collected(report: ValidationReport) -> None:
    """Raise what a report collected.

    - 0 errors: returns normally
    - 1 error: raises it unchanged, so ``except`` clauses keep matching
    - 2+ errors: raises MultipleValidationErrors
    """
    count = len(report.errors)
    if count == 0:
        return
    if count == 1:
        raise report.errors[0]
    raise MultipleValidationErrors(
        message=f'aborting due to {count} previous errors',
        report=report,
    )


def _find_user_frame() -> Any | None:
    """Return the first stack frame outside taskweave internals."""
    frame = inspect.currentframe()
    while frame is not None:
        filename = frame.f_code.co_filename
        if (
            not filename.startswith('<')
            and not filename.startswith(_TASKWEAVE_PKG_DIR)
            and '/site-packages/' not in filename
        ):
            return frame
        frame = frame.f_back
    return None
