# flovyn/core/logging.py
"""
Loggers for the runtime. Each component gets ``flovyn.<component>`` with
its own colored stdout handler:

    [14:02:11] [task_worker]      [INFO]    Task worker started on queue 'default'
"""

import logging
import sys
from datetime import datetime
from typing import Any, MutableMapping

_RESET = '\033[0m'
_TIME = '\033[94m'
_TEXT = '\033[97m'

_LEVEL_COLORS = {
    logging.DEBUG: '\033[90m',
    logging.INFO: '\033[92m',
    logging.WARNING: '\033[93m',
    logging.ERROR: '\033[91m',
    logging.CRITICAL: '\033[1;91m',
}

# Fits the longest component name, [workflow_worker].
_COMPONENT_WIDTH = 19
_LEVEL_WIDTH = 10

# Applies to loggers created after the call.
_default_level: int = logging.INFO


def _component(logger_name: str) -> str:
    return logger_name.rsplit('.', 1)[-1]


class ColoredFormatter(logging.Formatter):
    """``[time] [component] [LEVEL] message`` with ANSI colors."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        component = f'[{_component(record.name)}]'.ljust(_COMPONENT_WIDTH)
        level = f'[{record.levelname}]'.ljust(_LEVEL_WIDTH)
        level_color = _LEVEL_COLORS.get(record.levelno, _TEXT)

        line = (
            f'{_TIME}[{stamp}]{_RESET} '
            f'{_TEXT}{component}{_RESET}'
            f'{level_color}{level}{_RESET}'
            f'{_TEXT}{record.getMessage()}{_RESET}'
        )
        if record.exc_info:
            line = f'{line}\n{self.formatException(record.exc_info)}'
        return line


class ExecutionLoggerAdapter(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Prefixes every message with ``[kind:name:id8]`` for one execution."""

    def __init__(self, logger: logging.Logger, prefix: str) -> None:
        super().__init__(logger, {'execution_prefix': prefix})
        self.prefix = prefix

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        return f'{self.prefix} {msg}', kwargs


def set_default_level(level: int) -> None:
    global _default_level
    _default_level = level


def get_logger(component_name: str) -> logging.Logger:
    """Return ``flovyn.<component_name>``, configuring it on first use only."""
    logger = logging.getLogger(f'flovyn.{component_name}')
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColoredFormatter())
    handler.setLevel(_default_level)
    logger.addHandler(handler)
    logger.setLevel(_default_level)
    logger.propagate = False
    return logger


def execution_logger(
    kind: str, name: str, execution_id: str
) -> ExecutionLoggerAdapter:
    """Logger for a single task or workflow execution.

    Messages are prefixed with the execution kind, the handler name and the
    first eight characters of the execution id, e.g. ``[task:add:3f2a9c1d]``.
    """
    return ExecutionLoggerAdapter(
        get_logger(kind), f'[{kind}:{name}:{execution_id[:8]}]'
    )
