# taskweave/core/registry/executors.py
from __future__ import annotations
import inspect
from typing import Any, Callable, Dict, Iterator, MutableMapping
from taskweave.core.errors import ErrorCode, RegistryError

Executor = Callable[..., Any]


class NotRegistered(RegistryError, KeyError):
    """Raised when an executor name is not present in the registry.

    Inherits from KeyError so MutableMapping.__contains__ works correctly
    (it catches KeyError to implement the ``in`` operator).
    """

    def __init__(self, executor_name: str) -> None:
        RegistryError.__init__(
            self,
            message=f"executor '{executor_name}' not registered",
            code=ErrorCode.EXECUTOR_NOT_REGISTERED,
            notes=[f"requested executor: '{executor_name}'"],
            help_text='define the executor with @app.executor() or app.register_executor() before use',
        )
        self.executor_name = executor_name


class DuplicateExecutorNameError(RegistryError):
    """Raised when an executor name is registered twice from different places."""

    def __init__(self, executor_name: str, context: str = '') -> None:
        super().__init__(
            message=f"duplicate executor name '{executor_name}'",
            code=ErrorCode.EXECUTOR_DUPLICATE_NAME,
            notes=[context] if context else [],
            help_text='each executor name must be unique within a taskweave instance',
        )
        self.executor_name = executor_name


def is_async_executor(executor: Executor) -> bool:
    """True for ``async def`` functions and objects whose ``run`` is one."""
    if inspect.iscoroutinefunction(executor):
        return True
    run = getattr(executor, 'run', None)
    if run is not None and inspect.iscoroutinefunction(run):
        return True
    call = getattr(executor, '__call__', None)
    return call is not None and inspect.iscoroutinefunction(call)


def resolve_callable(executor: Any) -> Executor:
    """The callable to invoke: the executor itself or its ``run`` method."""
    run = getattr(executor, 'run', None)
    if not inspect.isfunction(executor) and callable(run):
        return run  # type: ignore[no-any-return]
    return executor  # type: ignore[no-any-return]


class ExecutorRegistry(MutableMapping[str, Executor]):
    """Registry mapping executor name -> callable.

    Tracks source locations to detect duplicate registrations:
    - Same name + same source: silently skip (re-import scenario)
    - Same name + different source: raise DuplicateExecutorNameError
    """

    def __init__(self, initial: Dict[str, Executor] | None = None) -> None:
        self._data: Dict[str, Executor] = dict(initial or {})
        self._sources: Dict[str, str] = {}  # executor_name -> "file:lineno"

    def __getitem__(self, key: str) -> Executor:
        try:
            return self._data[key]
        except KeyError:
            raise NotRegistered(key)

    def __setitem__(self, key: str, value: Executor) -> None:
        """Discourage direct assignment; enforce uniqueness like register()."""
        if key in self._data:
            raise DuplicateExecutorNameError(key, 'detected via direct assignment')
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]
        self._sources.pop(key, None)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def register(
        self, executor: Executor, *, name: str, source: str | None = None,
    ) -> Executor:
        """Insert an executor under `name`.

        Args:
            executor: A sync or async callable taking a TaskContext, or an
                object with such a ``run`` method.
            name: The unique name tasks refer to.
            source: Optional "file.py:42" location, used to tell a
                re-import apart from a true duplicate.

        Raises:
            DuplicateExecutorNameError: If same name registered from different source.
        """
        if name in self._data:
            existing_source = self._sources.get(name)
            if existing_source and source and existing_source == source:
                return self._data[name]
            raise DuplicateExecutorNameError(name, 'executor with this name already exists')
        self._data[name] = executor
        if source:
            self._sources[name] = source
        return executor

    def unregister(self, name: str) -> None:
        self._data.pop(name, None)
        self._sources.pop(name, None)

    def missing(self, names: list[str]) -> list[str]:
        """Names from ``names`` with no registered executor, order kept."""
        return [n for n in names if n not in self._data]

    def keys_list(self) -> list[str]:
        return list(self._data.keys())
