# taskweave/core/definitions/graph.py
"""Dependency graph checks and ordering for workflow definitions."""

from __future__ import annotations

import heapq
from typing import Iterator, Optional

from taskweave.core.errors import (
    CyclicDependencyError,
    ErrorCode,
    InvalidParamError,
    UnresolvedDependencyError,
)
from taskweave.core.models.definition import WorkflowDefinition


def check_resolved(definition: WorkflowDefinition) -> None:
    """Raise UnresolvedDependencyError for the first dangling dependency name."""
    names = set(definition.task_names())
    for task in definition.tasks:
        for dep in task.dependencies:
            if dep not in names:
                raise UnresolvedDependencyError(definition.name, task.name, dep)


def check_dependency_cap(definition: WorkflowDefinition, max_dependencies: Optional[int]) -> None:
    if max_dependencies is None:
        return
    for task in definition.tasks:
        if len(task.dependencies) > max_dependencies:
            raise InvalidParamError(
                message=f"task '{task.name}' has too many dependencies",
                code=ErrorCode.TASK_TOO_MANY_DEPENDENCIES,
                notes=[
                    f'{len(task.dependencies)} dependencies, limit is {max_dependencies}',
                ],
                help_text='raise max_task_dependencies in EngineConfig or set it to None',
            )


def find_cycle(definition: WorkflowDefinition) -> Optional[tuple[str, str, list[str]]]:
    """
    Depth-first search for a back edge over resolved dependencies.

    Returns ``(task_a, task_b, cycle)`` where ``task_a`` depends on ``task_b``
    and ``cycle`` walks from ``task_b`` back to itself, or None for a DAG.
    Iterative, so deep chains do not hit the recursion limit.
    """
    deps: dict[str, tuple[str, ...]] = {t.name: t.dependencies for t in definition.tasks}
    done: set[str] = set()

    for root in deps:
        if root in done:
            continue
        path: list[str] = [root]
        on_path: set[str] = {root}
        iters: list[Iterator[str]] = [iter(deps[root])]
        while iters:
            node = path[-1]
            nxt = next(iters[-1], None)
            if nxt is None:
                iters.pop()
                path.pop()
                on_path.discard(node)
                done.add(node)
                continue
            if nxt not in deps or nxt in done:
                continue
            if nxt in on_path:
                start = path.index(nxt)
                return node, nxt, path[start:] + [nxt]
            path.append(nxt)
            on_path.add(nxt)
            iters.append(iter(deps[nxt]))
    return None


def topological_order(definition: WorkflowDefinition) -> list[str]:
    """
    Kahn's algorithm with declaration order as the tie-break, so the same
    definition always yields the same order. Assumes an acyclic graph.
    """
    index = {name: i for i, name in enumerate(definition.task_names())}
    in_degree: dict[str, int] = {t.name: 0 for t in definition.tasks}
    dependents: dict[str, list[str]] = {t.name: [] for t in definition.tasks}
    for task in definition.tasks:
        for dep in task.dependencies:
            if dep in index:
                in_degree[task.name] += 1
                dependents[dep].append(task.name)

    heap = [index[name] for name, degree in in_degree.items() if degree == 0]
    heapq.heapify(heap)
    names = definition.task_names()
    order: list[str] = []
    while heap:
        name = names[heapq.heappop(heap)]
        order.append(name)
        for child in dependents[name]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                heapq.heappush(heap, index[child])
    return order


def validate_graph(
    definition: WorkflowDefinition, max_dependencies: Optional[int] = None,
) -> list[str]:
    """
    Full graph check; returns the topological order.

    Raises:
        UnresolvedDependencyError: a dependency names no task of the workflow
        InvalidParamError: a task exceeds ``max_dependencies``
        CyclicDependencyError: the dependencies form a cycle
    """
    check_resolved(definition)
    check_dependency_cap(definition, max_dependencies)
    cycle = find_cycle(definition)
    if cycle is not None:
        task_a, task_b, path = cycle
        raise CyclicDependencyError(definition.name, task_a, task_b, path)
    return topological_order(definition)
