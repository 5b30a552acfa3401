"""Unit tests for DefinitionStore catalog and task editing."""

from __future__ import annotations

import pytest

from taskweave.core.definitions.store import DefinitionStore
from taskweave.core.errors import (
    AlreadyExistsError,
    CyclicDependencyError,
    DefinitionInUseError,
    ErrorCode,
    InvalidParamError,
    NotFoundError,
    UnresolvedDependencyError,
)
from taskweave.core.models.definition import TaskSpec, WorkflowDefinition

pytestmark = pytest.mark.unit


def _task(name: str, *deps: str) -> TaskSpec:
    return TaskSpec(name=name, executor='noop', dependencies=deps)


@pytest.fixture
def store() -> DefinitionStore:
    s = DefinitionStore()
    s.create('etl', description='nightly load')
    s.add_task('etl', _task('extract'))
    s.add_task('etl', _task('transform', 'extract'))
    s.add_task('etl', _task('load', 'transform'))
    return s


class TestCatalog:
    def test_create_and_info(self) -> None:
        s = DefinitionStore()
        created = s.create('reports', version='2.1', enabled=False)

        info = s.get_info('reports')
        assert info == created
        assert info.version == '2.1'
        assert info.enabled is False
        assert info.tasks == ()

    def test_create_duplicate(self, store: DefinitionStore) -> None:
        with pytest.raises(AlreadyExistsError) as exc_info:
            store.create('etl')
        assert exc_info.value.code == ErrorCode.WORKFLOW_ALREADY_EXISTS

    def test_list_keeps_creation_order(self) -> None:
        s = DefinitionStore()
        for name in ('b', 'a', 'c'):
            s.create(name)
        assert s.list().ok_value == ['b', 'a', 'c']

    def test_delete(self, store: DefinitionStore) -> None:
        store.delete('etl')
        assert not store.exists('etl')
        with pytest.raises(NotFoundError) as exc_info:
            store.get_info('etl')
        assert exc_info.value.code == ErrorCode.WORKFLOW_NOT_FOUND

    def test_delete_unknown(self, store: DefinitionStore) -> None:
        with pytest.raises(NotFoundError):
            store.delete('missing')

    def test_set_enabled_and_update_info(self, store: DefinitionStore) -> None:
        store.set_enabled('etl', False)
        store.update_info('etl', version='3.0')

        info = store.get_info('etl')
        assert info.enabled is False
        assert info.version == '3.0'
        assert info.description == 'nightly load'
        assert len(info.tasks) == 3

    def test_register_replace(self, store: DefinitionStore) -> None:
        replacement = WorkflowDefinition(name='etl', tasks=(_task('only'),))
        with pytest.raises(AlreadyExistsError):
            store.register(replacement)

        store.register(replacement, replace=True)
        assert store.get_info('etl').task_names() == ['only']

    def test_register_validates_graph(self) -> None:
        s = DefinitionStore()
        cyclic = WorkflowDefinition(name='loop', tasks=(_task('a', 'b'), _task('b', 'a')))
        with pytest.raises(CyclicDependencyError):
            s.register(cyclic)
        assert not s.exists('loop')


class TestTaskEditing:
    def test_add_task_duplicate(self, store: DefinitionStore) -> None:
        with pytest.raises(AlreadyExistsError) as exc_info:
            store.add_task('etl', _task('load'))
        assert exc_info.value.code == ErrorCode.TASK_ALREADY_EXISTS

    def test_add_task_unknown_dependency_leaves_definition(self, store: DefinitionStore) -> None:
        before = store.get_info('etl')
        with pytest.raises(UnresolvedDependencyError):
            store.add_task('etl', _task('publish', 'archive'))
        assert store.get_info('etl') == before

    def test_cycle_rejected_and_definition_unchanged(self, store: DefinitionStore) -> None:
        before = store.get_info('etl')
        with pytest.raises(CyclicDependencyError):
            store.update_task('etl', 'extract', _task('extract', 'load'))
        assert store.get_info('etl') == before

    def test_remove_task_with_dependents(self, store: DefinitionStore) -> None:
        with pytest.raises(UnresolvedDependencyError) as exc_info:
            store.remove_task('etl', 'transform')
        assert exc_info.value.task == 'load'
        assert exc_info.value.missing == 'transform'
        assert 'transform' in store.get_info('etl').task_names()

    def test_remove_leaf_task(self, store: DefinitionStore) -> None:
        store.remove_task('etl', 'load')
        assert store.get_info('etl').task_names() == ['extract', 'transform']

    def test_remove_unknown_task(self, store: DefinitionStore) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            store.remove_task('etl', 'ghost')
        assert exc_info.value.code == ErrorCode.TASK_NOT_FOUND

    def test_update_task_keeps_position(self, store: DefinitionStore) -> None:
        store.update_task(
            'etl', 'transform',
            TaskSpec(name='transform', executor='clean', dependencies=('extract',), retry_count=2),
        )
        info = store.get_info('etl')
        assert info.task_names() == ['extract', 'transform', 'load']
        task = info.get_task('transform')
        assert task is not None and task.retry_count == 2

    def test_rename_onto_existing_task(self, store: DefinitionStore) -> None:
        with pytest.raises(AlreadyExistsError):
            store.update_task('etl', 'load', _task('extract'))

    def test_validate_dependencies_returns_order(self, store: DefinitionStore) -> None:
        assert store.validate_dependencies('etl') == ['extract', 'transform', 'load']

    def test_dependency_cap_enforced(self) -> None:
        s = DefinitionStore(max_task_dependencies=1)
        s.create('wide')
        s.add_task('wide', _task('a'))
        s.add_task('wide', _task('b'))
        with pytest.raises(InvalidParamError) as exc_info:
            s.add_task('wide', _task('c', 'a', 'b'))
        assert exc_info.value.code == ErrorCode.TASK_TOO_MANY_DEPENDENCIES


class TestPins:
    def test_pinned_definition_cannot_be_deleted(self, store: DefinitionStore) -> None:
        store.pin('etl')
        with pytest.raises(DefinitionInUseError) as exc_info:
            store.delete('etl')
        assert exc_info.value.code == ErrorCode.WORKFLOW_IN_USE

        store.unpin('etl')
        store.delete('etl')
        assert not store.exists('etl')

    def test_pin_returns_snapshot(self, store: DefinitionStore) -> None:
        snapshot = store.pin('etl')
        store.add_task('etl', _task('notify', 'load'))

        assert 'notify' not in snapshot.task_names()
        assert 'notify' in store.get_info('etl').task_names()
        store.unpin('etl')

    def test_pin_counts(self, store: DefinitionStore) -> None:
        store.pin('etl')
        store.pin('etl')
        assert store.pin_count('etl') == 2
        store.unpin('etl')
        assert store.pin_count('etl') == 1
        store.unpin('etl')
        assert store.pin_count('etl') == 0

    def test_replace_pinned_rejected(self, store: DefinitionStore) -> None:
        store.pin('etl')
        with pytest.raises(DefinitionInUseError):
            store.register(WorkflowDefinition(name='etl'), replace=True)
