# taskweave/core/logging.py
import logging
import os
import sys
from datetime import datetime

LOG_LEVEL_ENV = 'TASKWEAVE_LOG_LEVEL'


def _level_from_env() -> int:
    name = os.environ.get(LOG_LEVEL_ENV, '').strip().upper()
    level = logging.getLevelName(name) if name else logging.INFO
    return level if isinstance(level, int) else logging.INFO


_default_level: int = _level_from_env()
_loggers: dict[str, logging.Logger] = {}


class ColoredFormatter(logging.Formatter):
    """
    One line per record: ``[time] [component] [LEVEL] message``.

    Colors are dropped when the stream is not a terminal or NO_COLOR is set.
    """

    COLORS = {
        'RESET': '\033[0m',
        'LIGHT_BLUE': '\033[94m',
        'WHITE': '\033[97m',
        'GRAY': '\033[90m',
        'GREEN': '\033[92m',
        'YELLOW': '\033[93m',
        'RED': '\033[91m',
        'BRIGHT_RED': '\033[1;91m',
    }

    LEVEL_COLORS = {
        'DEBUG': 'GRAY',
        'INFO': 'GREEN',
        'WARNING': 'YELLOW',
        'ERROR': 'RED',
        'CRITICAL': 'BRIGHT_RED',
    }

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors

    def _paint(self, color: str, text: str) -> str:
        if not self.use_colors:
            return text
        return f"{self.COLORS[color]}{text}{self.COLORS['RESET']}"

    def format(self, record: logging.LogRecord) -> str:
        time_str = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        # 'taskweave.scheduler' -> 'scheduler'
        component = record.name.rsplit('.', 1)[-1]
        # [definitions] is 13 chars wide
        component_col = f'[{component}]'.ljust(15)
        level_col = f'[{record.levelname}]'.ljust(10)

        formatted = (
            self._paint('LIGHT_BLUE', f'[{time_str}]')
            + ' '
            + self._paint('WHITE', component_col)
            + self._paint(self.LEVEL_COLORS.get(record.levelname, 'WHITE'), level_col)
            + self._paint('WHITE', record.getMessage())
        )
        if record.exc_info:
            formatted += '\n' + self.formatException(record.exc_info)
        return formatted


def _stream_supports_color(stream: object) -> bool:
    if os.environ.get('NO_COLOR') is not None:
        return False
    isatty = getattr(stream, 'isatty', None)
    return bool(isatty and isatty())


def set_default_level(level: int) -> None:
    """Set the level of every taskweave logger, existing and future."""
    global _default_level
    _default_level = level
    for logger in _loggers.values():
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)


def get_logger(component_name: str) -> logging.Logger:
    """Logger named ``taskweave.<component_name>`` with the tabular formatter."""
    logger = logging.getLogger(f'taskweave.{component_name}')

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(ColoredFormatter(use_colors=_stream_supports_color(sys.stdout)))
        handler.setLevel(_default_level)
        logger.addHandler(handler)
        logger.setLevel(_default_level)
        # Records stop here; the root logger would print them again.
        logger.propagate = False

    _loggers[component_name] = logger
    return logger
