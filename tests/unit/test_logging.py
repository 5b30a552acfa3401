"""Unit tests for taskweave logging helpers."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator

import pytest

from taskweave.core import logging as tw_logging
from taskweave.core.logging import ColoredFormatter, get_logger, set_default_level

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _restore_default_level() -> Iterator[None]:
    original = tw_logging._default_level
    yield
    set_default_level(original)


def _record(name: str, level: int, msg: str) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, msg, None, None)


class TestGetLogger:
    def test_name_is_prefixed(self) -> None:
        logger = get_logger('scheduler')
        assert logger.name == 'taskweave.scheduler'

    def test_does_not_propagate(self) -> None:
        assert get_logger('controller').propagate is False

    def test_handler_added_once(self) -> None:
        name = f'test_{uuid.uuid4().hex[:8]}'
        first = get_logger(name)
        second = get_logger(name)
        assert first is second
        assert len(first.handlers) == 1


class TestSetDefaultLevel:
    def test_new_loggers_use_default(self) -> None:
        set_default_level(logging.WARNING)
        logger = get_logger(f'test_{uuid.uuid4().hex[:8]}')
        assert logger.level == logging.WARNING
        assert all(h.level == logging.WARNING for h in logger.handlers)

    def test_existing_loggers_follow(self) -> None:
        logger = get_logger(f'test_{uuid.uuid4().hex[:8]}')
        set_default_level(logging.ERROR)
        assert logger.level == logging.ERROR
        assert all(h.level == logging.ERROR for h in logger.handlers)


class TestLevelFromEnv:
    def test_reads_level_name(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv('TASKWEAVE_LOG_LEVEL', 'debug')
        assert tw_logging._level_from_env() == logging.DEBUG

    def test_unknown_name_falls_back_to_info(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv('TASKWEAVE_LOG_LEVEL', 'chatty')
        assert tw_logging._level_from_env() == logging.INFO


class TestColoredFormatter:
    def test_plain_layout(self) -> None:
        formatter = ColoredFormatter(use_colors=False)
        text = formatter.format(_record('taskweave.history', logging.WARNING, 'disk slow'))

        assert '[history]' in text
        assert '[WARNING]' in text
        assert text.endswith('disk slow')
        assert '\033[' not in text

    def test_colored_layout(self) -> None:
        formatter = ColoredFormatter(use_colors=True)
        text = formatter.format(_record('taskweave.runner', logging.ERROR, 'boom'))
        assert ColoredFormatter.COLORS['RED'] in text
        assert 'boom' in text
