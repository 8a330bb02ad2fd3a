# flovyn/core/context/task_context.py
from __future__ import annotations

import math
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from flovyn.core.exceptions import InvalidArgumentError, TaskCancelled
from flovyn.core.logging import ExecutionLoggerAdapter, execution_logger
from flovyn.core.models.activation import StreamEvent, StreamEventType

ProgressCallback = Callable[[float, Optional[str]], None]
HeartbeatCallback = Callable[[], None]
StreamCallback = Callable[[StreamEvent], None]


def _now_ms() -> int:
    return int(time.time() * 1000)


class TaskContext:
    """
    Per-execution handle given to a task handler.

    Exposes progress reporting, heartbeating, cooperative cancellation and a
    streaming side channel. Side effects leave the context only through the
    injected callbacks; the worker wires those to the engine, tests can wire
    them to lists.
    """

    def __init__(
        self,
        *,
        task_execution_id: str,
        task_kind: str,
        attempt: int = 1,
        cancelled: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        on_heartbeat: Optional[HeartbeatCallback] = None,
        on_stream: Optional[StreamCallback] = None,
        logger: Optional[ExecutionLoggerAdapter] = None,
    ) -> None:
        self._task_execution_id = task_execution_id
        self._task_kind = task_kind
        self._attempt = attempt
        self._cancelled = cancelled
        self._on_progress = on_progress
        self._on_heartbeat = on_heartbeat
        self._on_stream = on_stream
        self._logger = logger or execution_logger('task', task_kind, task_execution_id)
        self._progress = 0.0
        self._last_heartbeat: Optional[datetime] = None
        self._stream_events: list[StreamEvent] = []

    # --- identity ---
    @property
    def task_execution_id(self) -> str:
        return self._task_execution_id

    @property
    def task_kind(self) -> str:
        return self._task_kind

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def logger(self) -> ExecutionLoggerAdapter:
        return self._logger

    # --- progress / heartbeat ---
    @property
    def progress(self) -> float:
        return self._progress

    @property
    def last_heartbeat(self) -> Optional[datetime]:
        return self._last_heartbeat

    def report_progress(self, progress: float, message: Optional[str] = None) -> None:
        """Report completion fraction in [0, 1].

        Raises:
            InvalidArgumentError: If progress is outside [0, 1] or NaN.
        """
        if isinstance(progress, bool) or not isinstance(progress, (int, float)):
            raise InvalidArgumentError(
                f'Progress must be a number, got {type(progress).__name__}'
            )
        if math.isnan(progress) or progress < 0 or progress > 1:
            raise InvalidArgumentError(f'Progress must be between 0 and 1, got {progress}')

        self._progress = float(progress)
        self._logger.debug(
            f'Progress: {self._progress * 100:.0f}%' + (f' - {message}' if message else '')
        )
        if self._on_progress is not None:
            self._on_progress(self._progress, message)

    def heartbeat(self) -> None:
        self._last_heartbeat = datetime.now(timezone.utc)
        if self._on_heartbeat is not None:
            self._on_heartbeat()

    # --- cancellation ---
    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def mark_cancelled(self) -> None:
        self._cancelled = True

    def check_cancellation(self) -> None:
        """Raise TaskCancelled if cancellation was requested; otherwise no-op."""
        if self._cancelled:
            raise TaskCancelled(self._task_execution_id)

    # --- streaming ---
    @property
    def stream_events(self) -> list[StreamEvent]:
        return list(self._stream_events)

    def stream(self, event: StreamEvent) -> None:
        self._stream_events.append(event)
        if self._on_stream is not None:
            self._on_stream(event)

    def stream_token(self, text: str) -> None:
        self.stream(StreamEvent(StreamEventType.TOKEN, {'text': text}, _now_ms()))

    def stream_progress(self, progress: float, details: Optional[str] = None) -> None:
        self.stream(
            StreamEvent(
                StreamEventType.PROGRESS,
                {'progress': progress, 'details': details},
                _now_ms(),
            )
        )

    def stream_data(self, data: Any) -> None:
        self.stream(StreamEvent(StreamEventType.DATA, data, _now_ms()))

    def stream_error(self, message: str, code: Optional[str] = None) -> None:
        self.stream(
            StreamEvent(
                StreamEventType.ERROR,
                {'message': message, 'code': code},
                _now_ms(),
            )
        )
