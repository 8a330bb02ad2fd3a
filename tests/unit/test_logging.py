"""Unit tests for flovyn logging module."""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator

import pytest

from flovyn.core.logging import (
    ColoredFormatter,
    ExecutionLoggerAdapter,
    execution_logger,
    get_logger,
    set_default_level,
)

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _restore_default_level() -> Iterator[None]:
    """Save and restore the module-level _default_level after each test."""
    from flovyn.core import logging as flovyn_logging

    original = flovyn_logging._default_level
    yield
    set_default_level(original)


def _unique(prefix: str = 'test') -> str:
    return f'{prefix}_{uuid.uuid4().hex[:8]}'


class TestSetDefaultLevel:
    """Tests for set_default_level()."""

    def test_changes_module_variable(self) -> None:
        from flovyn.core import logging as flovyn_logging

        set_default_level(logging.DEBUG)
        assert flovyn_logging._default_level == logging.DEBUG

    def test_new_logger_uses_default_level(self) -> None:
        set_default_level(logging.WARNING)
        logger = get_logger(_unique())
        assert logger.level == logging.WARNING
        for handler in logger.handlers:
            assert handler.level == logging.WARNING

    def test_existing_logger_is_not_reconfigured(self) -> None:
        name = _unique()
        set_default_level(logging.INFO)
        first = get_logger(name)
        set_default_level(logging.ERROR)
        second = get_logger(name)
        assert first is second
        assert second.level == logging.INFO
        assert len(second.handlers) == 1


class TestGetLogger:
    def test_namespaced_under_flovyn(self) -> None:
        name = _unique()
        assert get_logger(name).name == f'flovyn.{name}'

    def test_does_not_propagate(self) -> None:
        assert get_logger(_unique()).propagate is False


class TestColoredFormatter:
    def _record(self, name: str, level: int, msg: str) -> logging.LogRecord:
        return logging.LogRecord(name, level, __file__, 1, msg, None, None)

    def test_includes_component_level_and_message(self) -> None:
        out = ColoredFormatter().format(
            self._record('flovyn.task_worker', logging.WARNING, 'poll failed')
        )
        assert '[task_worker]' in out
        assert '[WARNING]' in out
        assert 'poll failed' in out

    def test_appends_exception(self) -> None:
        try:
            raise RuntimeError('kaput')
        except RuntimeError:
            record = logging.LogRecord(
                'flovyn.client', logging.ERROR, __file__, 1, 'oops', None, sys.exc_info()
            )
        out = ColoredFormatter().format(record)
        assert 'RuntimeError: kaput' in out


class TestExecutionLogger:
    """Per-execution prefix ``[kind:name:id8]``."""

    def test_prefix_truncates_execution_id(self) -> None:
        adapter = execution_logger('task', 'add', '3f2a9c1d-aaaa-bbbb')
        assert isinstance(adapter, ExecutionLoggerAdapter)
        assert adapter.prefix == '[task:add:3f2a9c1d]'

    def test_process_prefixes_message(self) -> None:
        adapter = execution_logger('workflow', 'order', 'abc')
        msg, kwargs = adapter.process('hello', {})
        assert msg == '[workflow:order:abc] hello'
        assert kwargs == {}

    def test_uses_kind_logger(self) -> None:
        adapter = execution_logger('task', 'add', 'x')
        assert adapter.logger.name == 'flovyn.task'
