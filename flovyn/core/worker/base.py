# flovyn/core/worker/base.py
"""Poll loop shared by the workflow and task workers.

A worker owns one background poll loop. Each activation it receives is
dispatched as its own asyncio task; the loop stops polling while the
number of in-flight dispatches is at ``max_concurrent``.
"""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from flovyn.core.engine import WorkerBackend
from flovyn.core.logging import get_logger
from flovyn.core.models.config import WorkerOptions
from flovyn.core.types.status import WorkerState
from flovyn.core.utils.retryable import is_transient_error

A = TypeVar('A')


@dataclass
class _RetryBackoff:
    """Jittered exponential backoff for a failing poll. Never gives up."""

    initial_ms: int
    max_ms: int
    attempts: int = 0

    def reset(self) -> None:
        self.attempts = 0

    def next_delay_seconds(self) -> float:
        self.attempts += 1
        exponent = max(0, self.attempts - 1)
        base_ms = min(self.max_ms, int(self.initial_ms * (2**exponent)))
        jitter_range = base_ms * 0.25
        delay_ms = base_ms + random.uniform(-jitter_range, jitter_range)
        return max(0.01, delay_ms / 1000.0)


class ActivationWorker(ABC, Generic[A]):
    """
    Base class for workers that poll the engine for activations.

    Subclasses supply ``_poll`` (fetch one activation or None),
    ``_dispatch`` (handle it and report the completion) and
    ``_describe`` (a short label for logs and task names).
    """

    component = 'worker'

    def __init__(
        self,
        backend: WorkerBackend,
        options: WorkerOptions,
        *,
        queue: str = 'default',
    ) -> None:
        self._backend = backend
        self._options = options
        self.queue = queue
        self._logger = get_logger(self.component)
        self._stop = asyncio.Event()
        self._state = WorkerState.STOPPED
        self._active = 0
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._dispatch_tasks: set[asyncio.Task[Any]] = set()
        self._service_tasks: set[asyncio.Task[Any]] = set()

    # --- subclass hooks ---
    @abstractmethod
    async def _poll(self) -> Optional[A]: ...

    @abstractmethod
    async def _dispatch(self, activation: A) -> None: ...

    @abstractmethod
    def _describe(self, activation: A) -> str: ...

    # --- accessors ---
    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is WorkerState.RUNNING

    @property
    def active_count(self) -> int:
        """Number of activations currently being handled."""
        return self._active

    @property
    def max_concurrent(self) -> int:
        return self._options.max_concurrent

    # --- lifecycle ---
    async def start(self) -> None:
        if self._state is WorkerState.RUNNING:
            return
        self._stop.clear()
        self._state = WorkerState.RUNNING
        self._loop_task = self._spawn_background(
            self._poll_loop(), name=f'{self.component}-poll-loop'
        )
        self._logger.info(
            f'Started on queue {self.queue!r} '
            f'(max_concurrent={self._options.max_concurrent}, '
            f'poll_interval={self._options.poll_interval_ms}ms)'
        )

    async def stop(self) -> None:
        """Stop polling. In-flight dispatches keep running to completion."""
        if self._state is WorkerState.STOPPED:
            return
        self._stop.set()
        loop_task = self._loop_task
        self._loop_task = None
        if loop_task is not None:
            await asyncio.gather(loop_task, return_exceptions=True)
        self._state = WorkerState.STOPPED
        self._logger.info(f'Stopped ({self._active} activation(s) still in flight)')

    # --- internals ---
    def _spawn_background(
        self,
        coro: Any,
        *,
        name: str,
        dispatch: bool = False,
    ) -> asyncio.Task[Any]:
        """Create a tracked background task with automatic cleanup."""
        task_group = self._dispatch_tasks if dispatch else self._service_tasks
        task = asyncio.create_task(coro, name=name)
        task_group.add(task)

        def _on_done(t: asyncio.Task[Any]) -> None:
            task_group.discard(t)
            if dispatch:
                self._active -= 1
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                self._logger.error(
                    f'Background task {t.get_name()!r} failed: {exc}', exc_info=exc
                )

        task.add_done_callback(_on_done)
        return task

    async def _sleep_with_stop(self, delay_seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay_seconds)
        except asyncio.TimeoutError:
            return

    async def _poll_loop(self) -> None:
        backoff = _RetryBackoff(
            initial_ms=self._options.poll_retry_initial_ms,
            max_ms=self._options.poll_retry_max_ms,
        )
        idle_seconds = self._options.poll_interval_ms / 1000.0

        while not self._stop.is_set():
            if self._active >= self._options.max_concurrent:
                await self._sleep_with_stop(idle_seconds)
                continue

            try:
                activation = await self._poll()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                delay = backoff.next_delay_seconds()
                level = logging.WARNING if is_transient_error(exc) else logging.ERROR
                self._logger.log(
                    level,
                    f'Poll failed: {exc}. Retrying in {delay:.2f}s '
                    f'(attempt {backoff.attempts})',
                )
                await self._sleep_with_stop(delay)
                continue

            backoff.reset()
            if activation is None:
                await self._sleep_with_stop(idle_seconds)
                continue

            self._active += 1
            self._spawn_background(
                self._dispatch(activation),
                name=f'{self.component}-{self._describe(activation)}',
                dispatch=True,
            )
