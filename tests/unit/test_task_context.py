"""Unit tests for TaskContext and MockTaskContext."""

from __future__ import annotations

import math
from unittest.mock import MagicMock

import pytest

from flovyn.core.context.task_context import TaskContext
from flovyn.core.exceptions import InvalidArgumentError, TaskCancelled
from flovyn.core.models.activation import StreamEvent, StreamEventType
from flovyn.testing import MockTaskContext

pytestmark = pytest.mark.unit


class TestIdentity:
    def test_fields(self) -> None:
        ctx = TaskContext(task_execution_id='te-1', task_kind='add', attempt=3)
        assert ctx.task_execution_id == 'te-1'
        assert ctx.task_kind == 'add'
        assert ctx.attempt == 3
        assert ctx.logger.prefix == '[task:add:te-1]'


class TestProgress:
    """report_progress bounds and forwarding."""

    @pytest.mark.parametrize('value', [0, 0.0, 0.25, 1, 1.0])
    def test_accepts_closed_unit_interval(self, value: float) -> None:
        on_progress = MagicMock()
        ctx = TaskContext(task_execution_id='t', task_kind='k', on_progress=on_progress)
        ctx.report_progress(value, 'step')
        assert ctx.progress == float(value)
        on_progress.assert_called_once_with(float(value), 'step')

    @pytest.mark.parametrize('value', [-0.01, 1.01, math.nan, math.inf])
    def test_rejects_out_of_range(self, value: float) -> None:
        on_progress = MagicMock()
        ctx = TaskContext(task_execution_id='t', task_kind='k', on_progress=on_progress)
        with pytest.raises(InvalidArgumentError):
            ctx.report_progress(value)
        on_progress.assert_not_called()
        assert ctx.progress == 0.0

    @pytest.mark.parametrize('value', [True, '0.5', None])
    def test_rejects_non_numbers(self, value: object) -> None:
        ctx = TaskContext(task_execution_id='t', task_kind='k')
        with pytest.raises(InvalidArgumentError, match='must be a number'):
            ctx.report_progress(value)  # type: ignore[arg-type]

    def test_invalid_argument_is_value_error(self) -> None:
        ctx = TaskContext(task_execution_id='t', task_kind='k')
        with pytest.raises(ValueError):
            ctx.report_progress(2)


class TestHeartbeat:
    def test_records_time_and_forwards(self) -> None:
        on_heartbeat = MagicMock()
        ctx = TaskContext(task_execution_id='t', task_kind='k', on_heartbeat=on_heartbeat)
        assert ctx.last_heartbeat is None
        ctx.heartbeat()
        assert ctx.last_heartbeat is not None
        on_heartbeat.assert_called_once_with()


class TestCancellation:
    def test_check_is_noop_when_not_cancelled(self) -> None:
        ctx = TaskContext(task_execution_id='t', task_kind='k')
        ctx.check_cancellation()
        assert ctx.is_cancelled is False

    def test_check_raises_after_mark(self) -> None:
        ctx = TaskContext(task_execution_id='t', task_kind='k')
        ctx.mark_cancelled()
        with pytest.raises(TaskCancelled):
            ctx.check_cancellation()

    def test_initially_cancelled(self) -> None:
        ctx = TaskContext(task_execution_id='t', task_kind='k', cancelled=True)
        assert ctx.is_cancelled
        with pytest.raises(TaskCancelled):
            ctx.check_cancellation()


class TestStreaming:
    def test_events_forwarded_in_order(self) -> None:
        seen: list[StreamEvent] = []
        ctx = TaskContext(task_execution_id='t', task_kind='k', on_stream=seen.append)
        ctx.stream_token('Hel')
        ctx.stream_token('lo')
        ctx.stream_progress(0.5, 'half')
        ctx.stream_data({'rows': 3})
        ctx.stream_error('bad row', code='E1')

        assert [e.type for e in seen] == [
            StreamEventType.TOKEN,
            StreamEventType.TOKEN,
            StreamEventType.PROGRESS,
            StreamEventType.DATA,
            StreamEventType.ERROR,
        ]
        assert [e.data for e in seen[:2]] == [{'text': 'Hel'}, {'text': 'lo'}]
        assert seen[2].data == {'progress': 0.5, 'details': 'half'}
        assert seen[4].data == {'message': 'bad row', 'code': 'E1'}
        assert ctx.stream_events == seen

    def test_stream_events_returns_copy(self) -> None:
        ctx = TaskContext(task_execution_id='t', task_kind='k')
        ctx.stream_data(1)
        ctx.stream_events.clear()
        assert len(ctx.stream_events) == 1

    def test_to_json(self) -> None:
        event = StreamEvent(StreamEventType.DATA, {'a': 1}, 123)
        assert event.to_json() == {'type': 'data', 'data': {'a': 1}, 'timestamp_ms': 123}


class TestMockTaskContext:
    """The test double records what a handler did."""

    def test_records_progress_and_heartbeats(self) -> None:
        ctx = MockTaskContext()
        ctx.report_progress(0.5, 'half')
        ctx.report_progress(1.0)
        ctx.heartbeat()
        ctx.heartbeat()
        assert ctx.progress_updates == [(0.5, 'half'), (1.0, None)]
        assert ctx.heartbeat_count == 2

    def test_event_filters(self) -> None:
        ctx = MockTaskContext()
        ctx.stream_token('a')
        ctx.stream_data(1)
        ctx.stream_token('b')
        ctx.stream_error('x')
        ctx.stream_progress(0.1)
        assert [e.data['text'] for e in ctx.token_events] == ['a', 'b']
        assert len(ctx.data_events) == 1
        assert len(ctx.error_events) == 1
        assert len(ctx.progress_events) == 1

    def test_cancelled_flag(self) -> None:
        ctx = MockTaskContext(cancelled=True, attempt=2)
        assert ctx.attempt == 2
        with pytest.raises(TaskCancelled):
            ctx.check_cancellation()
