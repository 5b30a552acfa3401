# taskweave/core/collaborators.py
"""Contracts for the external systems the engine calls into."""

from __future__ import annotations

from typing import Any, Awaitable, Mapping, Protocol, runtime_checkable


@runtime_checkable
class RuleEvaluator(Protocol):
    """
    Decides conditional trigger predicates.

    ``condition`` is the opaque string stored in a ConditionalPolicy;
    ``context`` carries the workflow name, the evaluation time and the
    resource layer. May be sync or async.
    """

    def evaluate(self, condition: str, context: Mapping[str, Any]) -> bool | Awaitable[bool]: ...


class ResourceLayer(Protocol):
    """
    Marker for the resource-access collaborator.

    The engine never calls it; it is handed to executors unchanged as
    ``TaskContext.resources``.
    """
