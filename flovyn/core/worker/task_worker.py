# flovyn/core/worker/task_worker.py
from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Optional

from flovyn.core.codec.serde import SerializationError, rehydrate_value, to_jsonable
from flovyn.core.context.task_context import TaskContext
from flovyn.core.definitions import TaskDefinition
from flovyn.core.engine import WorkerBackend
from flovyn.core.exceptions import TaskCancelled, TaskTimeout
from flovyn.core.logging import ExecutionLoggerAdapter, execution_logger
from flovyn.core.models.activation import StreamEvent, TaskActivation, TaskCompletion
from flovyn.core.models.config import WorkerOptions
from flovyn.core.registry.definitions import HandlerRegistry, NotRegistered
from flovyn.core.utils.retryable import is_retryable_error
from flovyn.core.worker.base import ActivationWorker

_SIDE_CHANNEL_FLUSH_S = 1.0


class _SideChannel:
    """Ordered, fire-and-forget forwarding of progress, heartbeats and stream events.

    Every send is chained after the previous one so the engine sees events
    in emission order. Callers never wait on a send; failures are logged and
    dropped.
    """

    def __init__(self, logger: ExecutionLoggerAdapter) -> None:
        self._logger = logger
        self._tail: Optional[asyncio.Task[None]] = None
        self.sent = 0
        self.dropped = 0

    def send(self, label: str, factory: Callable[[], Awaitable[None]]) -> None:
        previous = self._tail

        async def _forward() -> None:
            if previous is not None:
                await asyncio.wait([previous])
            try:
                await factory()
                self.sent += 1
            except Exception as exc:
                self.dropped += 1
                self._logger.warning(f'Failed to forward {label}: {exc}')

        self._tail = asyncio.create_task(_forward())

    async def flush(self, timeout_s: float) -> None:
        tail = self._tail
        if tail is None:
            return
        done, _ = await asyncio.wait([tail], timeout=timeout_s)
        if not done:
            self._logger.warning(
                f'Side channel not drained after {timeout_s:.1f}s; reporting completion anyway'
            )


class TaskWorker(ActivationWorker[TaskActivation]):
    """
    Polls task activations and runs the registered task handler.

    Lifecycle hooks run around the handler (``on_start``, then ``on_success``
    or ``on_failure``). A hook that raises is logged and never changes the
    completion. Uncaught handler errors are classified into retryable and
    non-retryable failures; ``TaskCancelled`` reports a cancellation.
    """

    component = 'task_worker'

    def __init__(
        self,
        backend: WorkerBackend,
        registry: HandlerRegistry[TaskDefinition[Any, Any]],
        options: WorkerOptions,
        *,
        queue: str = 'default',
    ) -> None:
        super().__init__(backend, options, queue=queue)
        self._registry = registry

    async def _poll(self) -> Optional[TaskActivation]:
        return await self._backend.poll_task_activation(self.queue)

    def _describe(self, activation: TaskActivation) -> str:
        return f'{activation.task_kind}:{activation.task_execution_id[:8]}'

    async def _dispatch(self, activation: TaskActivation) -> None:
        completion = await self.execute(activation)
        await self._backend.complete_task(completion)

    async def execute(self, activation: TaskActivation) -> TaskCompletion:
        """Run the handler for one activation and return its completion."""
        task_id = activation.task_execution_id
        try:
            definition = self._registry[activation.task_kind]
        except NotRegistered as exc:
            self._logger.error(
                f'No task registered for kind {activation.task_kind!r} (execution {task_id})'
            )
            return TaskCompletion.failed(task_id, exc.message, retryable=False)

        ctx, channel = self._build_context(activation)
        try:
            return await self._run(definition, ctx, rehydrate_value(activation.input))
        finally:
            await channel.flush(_SIDE_CHANNEL_FLUSH_S)

    def _build_context(
        self, activation: TaskActivation
    ) -> tuple[TaskContext, _SideChannel]:
        task_id = activation.task_execution_id
        backend = self._backend
        logger = execution_logger('task', activation.task_kind, task_id)
        channel = _SideChannel(logger)

        def on_progress(progress: float, message: Optional[str]) -> None:
            channel.send(
                'progress', lambda: backend.report_task_progress(task_id, progress, message)
            )

        def on_heartbeat() -> None:
            channel.send('heartbeat', lambda: backend.heartbeat_task(task_id))

        def on_stream(event: StreamEvent) -> None:
            channel.send(
                f'{event.type.value} event', lambda: backend.stream_task_event(task_id, event)
            )

        ctx = TaskContext(
            task_execution_id=task_id,
            task_kind=activation.task_kind,
            attempt=activation.attempt,
            cancelled=activation.cancellation_requested,
            on_progress=on_progress,
            on_heartbeat=on_heartbeat,
            on_stream=on_stream,
            logger=logger,
        )
        return ctx, channel

    async def _run(
        self,
        definition: TaskDefinition[Any, Any],
        ctx: TaskContext,
        input_value: Any,
    ) -> TaskCompletion:
        hooks = definition.hooks
        log = ctx.logger
        started = time.monotonic()

        await self._run_hook('on_start', hooks.on_start, ctx, input_value)
        try:
            output = await self._invoke(definition, ctx, input_value)
            payload = to_jsonable(output)
        except Exception as exc:
            await self._run_hook('on_failure', hooks.on_failure, ctx, input_value, exc)
            return self._classify(ctx, exc)

        await self._run_hook('on_success', hooks.on_success, ctx, input_value, output)
        elapsed_ms = (time.monotonic() - started) * 1000
        log.info(f'Completed in {elapsed_ms:.0f}ms (attempt {ctx.attempt})')
        return TaskCompletion.completed(ctx.task_execution_id, payload)

    async def _invoke(
        self, definition: TaskDefinition[Any, Any], ctx: TaskContext, input_value: Any
    ) -> Any:
        if definition.timeout is None:
            return await definition.run(ctx, input_value)
        try:
            return await asyncio.wait_for(
                definition.run(ctx, input_value), definition.timeout.to_seconds()
            )
        except asyncio.TimeoutError:
            raise TaskTimeout(ctx.task_execution_id, definition.timeout) from None

    def _classify(self, ctx: TaskContext, exc: Exception) -> TaskCompletion:
        log = ctx.logger
        match exc:
            case TaskCancelled():
                log.info(f'Cancelled: {exc}')
                return TaskCompletion.cancelled(ctx.task_execution_id, str(exc))
            case SerializationError():
                log.error(f'Output could not be serialized: {exc}')
                return TaskCompletion.failed(
                    ctx.task_execution_id,
                    f'Output could not be serialized: {exc}',
                    retryable=False,
                )
            case _:
                retryable = is_retryable_error(exc)
                message = str(exc) or type(exc).__name__
                log.error(
                    f'Failed (retryable={retryable}, attempt {ctx.attempt}): '
                    f'{type(exc).__name__}: {message}'
                )
                return TaskCompletion.failed(
                    ctx.task_execution_id, message, retryable=retryable
                )

    async def _run_hook(
        self,
        hook_name: str,
        hook: Optional[Callable[..., Any]],
        ctx: TaskContext,
        *args: Any,
    ) -> None:
        if hook is None:
            return
        try:
            result = hook(ctx, *args)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            ctx.logger.error(f'{hook_name} hook raised {type(exc).__name__}: {exc}', exc_info=exc)
