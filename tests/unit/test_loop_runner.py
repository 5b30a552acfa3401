"""Tests for LoopRunner (taskweave/core/utils/loop_runner.py)."""

from __future__ import annotations

import asyncio
import gc
import threading
import warnings
from collections.abc import Iterator
from unittest.mock import patch

import pytest

from taskweave.core.utils.loop_runner import LoopRunner, LoopRunnerError


@pytest.fixture
def runner() -> Iterator[LoopRunner]:
    r = LoopRunner(name='taskweave-test-loop')
    r.start()
    yield r
    r.stop()


@pytest.mark.unit
class TestLoopRunnerCall:
    def test_call_returns_coroutine_result(self, runner: LoopRunner) -> None:
        async def add(a: int, b: int) -> int:
            await asyncio.sleep(0)
            return a + b

        assert runner.call(add, 2, b=3) == 5

    def test_call_runs_on_loop_thread(self, runner: LoopRunner) -> None:
        async def thread_name() -> str:
            return threading.current_thread().name

        assert runner.call(thread_name) == 'taskweave-test-loop'

    def test_exceptions_propagate(self, runner: LoopRunner) -> None:
        async def fail() -> None:
            raise KeyError('missing')

        with pytest.raises(KeyError):
            runner.call(fail)

    def test_call_starts_lazily(self) -> None:
        r = LoopRunner()
        try:
            async def value() -> int:
                return 7

            assert not r.running
            assert r.call(value) == 7
            assert r.running
        finally:
            r.stop()

    def test_call_from_loop_thread_is_rejected(self, runner: LoopRunner) -> None:
        async def nested() -> str:
            async def inner() -> int:
                return 1

            try:
                runner.call(inner)
            except LoopRunnerError as exc:
                return str(exc)
            return 'no error'

        assert 'use the *_async methods' in runner.call(nested)

    def test_scheduling_failure_closes_coroutine(self, runner: LoopRunner) -> None:
        async def sample() -> int:
            return 1

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always', RuntimeWarning)
            with (
                patch('asyncio.run_coroutine_threadsafe', side_effect=RuntimeError('boom')),
                pytest.raises(LoopRunnerError, match='Failed to schedule coroutine'),
            ):
                runner.call(sample)
            gc.collect()

        assert not any('was never awaited' in str(w.message) for w in caught)


@pytest.mark.unit
class TestLoopRunnerLifecycle:
    def test_stop_closes_loop(self) -> None:
        r = LoopRunner()
        r.start()
        loop = r.loop
        r.stop()

        assert loop is not None and loop.is_closed()
        assert r.loop is None
        assert not r.running

    def test_no_restart_after_stop(self) -> None:
        r = LoopRunner()
        r.start()
        r.stop()

        async def value() -> int:
            return 1

        with pytest.raises(LoopRunnerError, match='cannot be restarted'):
            r.call(value)

    def test_start_is_idempotent(self) -> None:
        r = LoopRunner()
        try:
            r.start()
            loop = r.loop
            r.start()
            assert r.loop is loop
        finally:
            r.stop()
