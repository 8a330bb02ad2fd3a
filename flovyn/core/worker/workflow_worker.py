# flovyn/core/worker/workflow_worker.py
from __future__ import annotations

import asyncio
from typing import Any, Optional

from flovyn.core.codec.serde import SerializationError, rehydrate_value, to_jsonable
from flovyn.core.context.workflow_context import WorkflowContext
from flovyn.core.definitions import WorkflowDefinition
from flovyn.core.engine import WorkerBackend
from flovyn.core.exceptions import (
    DeterminismViolation,
    UnsupportedOperationError,
    WorkflowCancelled,
    WorkflowSuspended,
)
from flovyn.core.models.activation import WorkflowActivation, WorkflowCompletion
from flovyn.core.models.config import WorkerOptions
from flovyn.core.registry.definitions import HandlerRegistry, NotRegistered
from flovyn.core.worker.base import ActivationWorker


class WorkflowWorker(ActivationWorker[WorkflowActivation]):
    """
    Polls workflow activations and replays the workflow handler against them.

    Each activation re-runs the handler from the top with a fresh
    ``WorkflowContext``; the handler either finishes or raises
    ``WorkflowSuspended`` at the first unresolved operation. Activations of
    the same execution are serialized with a per-execution lock.
    """

    component = 'workflow_worker'

    def __init__(
        self,
        backend: WorkerBackend,
        registry: HandlerRegistry[WorkflowDefinition[Any, Any]],
        options: WorkerOptions,
        *,
        queue: str = 'default',
    ) -> None:
        super().__init__(backend, options, queue=queue)
        self._registry = registry
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    async def _poll(self) -> Optional[WorkflowActivation]:
        return await self._backend.poll_workflow_activation(self.queue)

    def _describe(self, activation: WorkflowActivation) -> str:
        return f'{activation.workflow_kind}:{activation.workflow_execution_id[:8]}'

    async def _dispatch(self, activation: WorkflowActivation) -> None:
        execution_id = activation.workflow_execution_id
        lock = self._locks.setdefault(execution_id, asyncio.Lock())
        self._lock_users[execution_id] = self._lock_users.get(execution_id, 0) + 1
        try:
            async with lock:
                completion = await self.execute(activation)
                await self._backend.complete_workflow_activation(execution_id, completion)
        finally:
            remaining = self._lock_users[execution_id] - 1
            if remaining:
                self._lock_users[execution_id] = remaining
            else:
                del self._lock_users[execution_id]
                self._locks.pop(execution_id, None)

    async def execute(self, activation: WorkflowActivation) -> WorkflowCompletion:
        """Run the handler for one activation and translate its outcome."""
        try:
            definition = self._registry[activation.workflow_kind]
        except NotRegistered as exc:
            self._logger.error(
                f'No workflow registered for kind {activation.workflow_kind!r} '
                f'(execution {activation.workflow_execution_id})'
            )
            return WorkflowCompletion.failed(exc.message, retryable=False)

        ctx = WorkflowContext(
            activation, self._backend.create_replay_context(activation)
        )
        log = ctx.logger

        try:
            await ctx.deliver_signals(definition.handlers.signals)
            output = await definition.run(ctx, rehydrate_value(activation.input))
            payload = to_jsonable(output)
        except WorkflowSuspended as suspended:
            commands = tuple(suspended.commands + ctx.take_commands())
            log.debug(f'Suspended with {len(commands)} command(s)')
            return WorkflowCompletion.suspended(commands)
        except WorkflowCancelled as exc:
            log.info(f'Cancelled: {exc}')
            return WorkflowCompletion.cancelled(
                exc.reason or exc.message, tuple(ctx.take_commands())
            )
        except DeterminismViolation as exc:
            log.error(str(exc))
            return WorkflowCompletion.failed(str(exc), retryable=False)
        except UnsupportedOperationError as exc:
            log.error(f'Unsupported operation: {exc}')
            return WorkflowCompletion.failed(
                f'UnsupportedOperationError: {exc}', retryable=False
            )
        except SerializationError as exc:
            log.error(f'Output could not be serialized: {exc}')
            return WorkflowCompletion.failed(
                f'Output could not be serialized: {exc}', retryable=False
            )
        except Exception as exc:
            log.error(f'Failed: {type(exc).__name__}: {exc}', exc_info=exc)
            return WorkflowCompletion.failed(
                f'{type(exc).__name__}: {exc}', retryable=True
            )

        log.info('Completed')
        return WorkflowCompletion.completed(payload, tuple(ctx.take_commands()))
