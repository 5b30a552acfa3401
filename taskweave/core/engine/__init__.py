"""Execution engine: per-execution coordinators and the controller in front of them."""

from taskweave.core.engine.controller import ExecutionController
from taskweave.core.engine.scheduler import Coordinator, ExecutionScheduler

__all__ = [
    'ExecutionController',
    'ExecutionScheduler',
    'Coordinator',
]
