"""Integration test fixtures: a full engine on the test loop with a real history database."""

from __future__ import annotations

import asyncio
import os
from typing import AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio

from taskweave.core.app import Taskweave
from taskweave.core.models.app import EngineConfig, HistoryConfig
from taskweave.core.types.status import ExecutionStatus

DEFAULT_HISTORY_URL = 'sqlite+aiosqlite:///:memory:'

StatusWaiter = Callable[..., Awaitable[None]]


@pytest.fixture
def history_url() -> str:
    """History database URL; an in-memory SQLite unless the environment names another."""
    return os.environ.get('TASKWEAVE_TEST_HISTORY_URL', DEFAULT_HISTORY_URL)


@pytest.fixture
def engine_config(history_url: str) -> EngineConfig:
    return EngineConfig(
        max_concurrent_tasks=4,
        worker_threads=4,
        history=HistoryConfig(database_url=history_url),
    )


@pytest_asyncio.fixture
async def app(engine_config: EngineConfig) -> AsyncGenerator[Taskweave, None]:
    """Engine driven through its *_async methods on the test's event loop."""
    tw = Taskweave(engine_config)
    yield tw
    await tw.shutdown_async()


async def wait_for_status(
    app: Taskweave,
    execution_id: str,
    status: ExecutionStatus,
    timeout: float = 3.0,
) -> None:
    """Poll until the execution reports ``status``; fails the test on timeout."""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        info = await app.get_status_async(execution_id)
        if info.is_ok() and info.ok_value.status == status:
            return
        if asyncio.get_running_loop().time() > deadline:
            pytest.fail(f'execution {execution_id} never reached {status.value}: {info}')
        await asyncio.sleep(0.01)


@pytest.fixture
def until_status() -> StatusWaiter:
    """The status poller, for test modules that do not import conftest."""
    return wait_for_status
