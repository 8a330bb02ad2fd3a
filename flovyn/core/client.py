# flovyn/core/client.py
"""
FlovynClient: registers handlers, runs the workers and talks to the engine.

Usage:

    client = FlovynClient(backend, ClientConfig.from_env())
    client.register_task(add)
    client.register_workflow(order_processing)

    async with client:
        handle = await client.start_workflow(order_processing, {'id': 1})
        print(await handle.result())
"""

from __future__ import annotations

import asyncio
import time
from types import TracebackType
from typing import Any, Mapping, Optional, TypeVar, Union, cast

from flovyn.core.codec.serde import to_jsonable
from flovyn.core.definitions import TaskDefinition, WorkflowDefinition
from flovyn.core.duration import Duration
from flovyn.core.engine import (
    ClientBackend,
    HandlerMetadata,
    StartWorkflowRequest,
    WorkerBackend,
    WorkerRegistration,
)
from flovyn.core.errors import ErrorCode, WorkerLifecycleError
from flovyn.core.handles import WorkflowHandle
from flovyn.core.logging import get_logger
from flovyn.core.models.config import ClientConfig
from flovyn.core.models.options import StartWorkflowOptions
from flovyn.core.registry.definitions import HandlerRegistry
from flovyn.core.worker.task_worker import TaskWorker
from flovyn.core.worker.workflow_worker import WorkflowWorker

logger = get_logger('client')

T = TypeVar('T')

WorkflowRef = Union[WorkflowDefinition[Any, T], str]

_DRAIN_POLL_S = 0.05


def _task_metadata(definition: TaskDefinition[Any, Any]) -> HandlerMetadata:
    return HandlerMetadata(
        kind='task',
        name=definition.name,
        description=definition.description,
        version=definition.version,
        tags=tuple(definition.tags),
        cancellable=definition.cancellable,
        timeout_ms=definition.timeout.to_milliseconds() if definition.timeout else None,
        retry=definition.retry.model_dump() if definition.retry is not None else None,
    )


def _workflow_metadata(definition: WorkflowDefinition[Any, Any]) -> HandlerMetadata:
    return HandlerMetadata(
        kind='workflow',
        name=definition.name,
        description=definition.description,
        version=definition.version,
        tags=tuple(definition.tags),
        cancellable=definition.cancellable,
        timeout_ms=definition.timeout.to_milliseconds() if definition.timeout else None,
        signals=tuple(definition.handlers.signals),
        queries=tuple(definition.handlers.queries),
    )


class FlovynClient:
    """
    Entry point for application code.

    Owns one workflow registry, one task registry and one worker of each
    kind. Registration is only possible before ``start()``; the registries
    are frozen when the workers start.
    """

    def __init__(
        self,
        backend: WorkerBackend,
        config: Optional[ClientConfig] = None,
        *,
        client_backend: Optional[ClientBackend] = None,
    ) -> None:
        self.config = config or ClientConfig()
        self._backend = backend
        self._client_backend = client_backend or cast(ClientBackend, backend)
        self._workflows: HandlerRegistry[WorkflowDefinition[Any, Any]] = HandlerRegistry(
            'workflow'
        )
        self._tasks: HandlerRegistry[TaskDefinition[Any, Any]] = HandlerRegistry('task')
        self._workflow_worker = WorkflowWorker(
            backend, self._workflows, self.config.workflow_worker, queue=self.config.queue
        )
        self._task_worker = TaskWorker(
            backend, self._tasks, self.config.task_worker, queue=self.config.queue
        )
        self._started = False

    # --- registration ---
    def register_workflow(self, definition: WorkflowDefinition[Any, T]) -> WorkflowDefinition[Any, T]:
        """Register a workflow definition. Returns it unchanged for chaining."""
        return self._workflows.register(definition, name=definition.name)

    def register_task(self, definition: TaskDefinition[Any, T]) -> TaskDefinition[Any, T]:
        """Register a task definition. Returns it unchanged for chaining."""
        return self._tasks.register(definition, name=definition.name)

    @property
    def workflow_registry(self) -> Mapping[str, WorkflowDefinition[Any, Any]]:
        return self._workflows.snapshot()

    @property
    def task_registry(self) -> Mapping[str, TaskDefinition[Any, Any]]:
        return self._tasks.snapshot()

    # --- lifecycle ---
    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def active_workflow_executions(self) -> int:
        return self._workflow_worker.active_count

    @property
    def active_task_executions(self) -> int:
        return self._task_worker.active_count

    async def start(self) -> None:
        """Register with the engine and start both workers.

        Raises:
            WorkerLifecycleError: If the client is already started.
        """
        if self._started:
            raise WorkerLifecycleError(
                message='client is already started',
                code=ErrorCode.CLIENT_ALREADY_STARTED,
                help_text='call stop() before starting the client again',
            )

        self._workflows.freeze()
        self._tasks.freeze()

        registration = WorkerRegistration(
            queue=self.config.queue,
            org_id=self.config.org_id,
            workflows=tuple(_workflow_metadata(d) for d in self._workflows.values()),
            tasks=tuple(_task_metadata(d) for d in self._tasks.values()),
        )
        await self._backend.register_worker(registration)

        await self._workflow_worker.start()
        await self._task_worker.start()
        self._started = True
        logger.info(
            f'Client started on queue {self.config.queue!r} with '
            f'{len(self._workflows)} workflow(s) and {len(self._tasks)} task(s)'
        )

    async def stop(self) -> None:
        """Stop polling and wait for in-flight executions to drain.

        Waits at most ``shutdown_timeout_ms``; executions still running after
        that are left to finish on their own.
        """
        if not self._started:
            return
        await self._workflow_worker.stop()
        await self._task_worker.stop()

        deadline = time.monotonic() + self.config.shutdown_timeout_ms / 1000.0
        while self.active_workflow_executions or self.active_task_executions:
            if time.monotonic() >= deadline:
                logger.warning(
                    f'Shutdown timeout after {self.config.shutdown_timeout_ms}ms: '
                    f'{self.active_workflow_executions} workflow(s) and '
                    f'{self.active_task_executions} task(s) still running'
                )
                break
            await asyncio.sleep(_DRAIN_POLL_S)

        self._started = False
        logger.info('Client stopped')

    async def __aenter__(self) -> FlovynClient:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.stop()

    # --- execution API ---
    def _start_request(
        self,
        workflow: WorkflowRef[Any],
        input: Any,
        options: Optional[StartWorkflowOptions],
    ) -> StartWorkflowRequest:
        kind = workflow if isinstance(workflow, str) else workflow.name
        opts = options or StartWorkflowOptions()
        version = opts.workflow_version
        if version is None and not isinstance(workflow, str):
            version = workflow.version
        return StartWorkflowRequest(
            workflow_kind=kind,
            input=to_jsonable(input),
            queue=opts.queue or self.config.queue,
            workflow_version=version,
            idempotency_key=opts.idempotency_key,
        )

    def get_workflow_handle(
        self, workflow_execution_id: str, workflow_kind: Optional[str] = None
    ) -> WorkflowHandle[Any]:
        return WorkflowHandle(
            self._client_backend,
            workflow_execution_id,
            workflow_kind,
            poll_interval=Duration.milliseconds(self.config.workflow_worker.poll_interval_ms),
        )

    async def start_workflow(
        self,
        workflow: WorkflowRef[T],
        input: Any = None,
        options: Optional[StartWorkflowOptions] = None,
    ) -> WorkflowHandle[T]:
        request = self._start_request(workflow, input, options)
        result = await self._client_backend.start_workflow(request)
        logger.debug(
            f'Started workflow {request.workflow_kind} -> {result.workflow_execution_id} '
            f'(created={result.created})'
        )
        return self.get_workflow_handle(result.workflow_execution_id, request.workflow_kind)

    async def execute_workflow(
        self,
        workflow: WorkflowRef[T],
        input: Any = None,
        options: Optional[StartWorkflowOptions] = None,
        *,
        timeout: Duration | None = None,
    ) -> T:
        """Start a workflow and wait for its output."""
        handle = await self.start_workflow(workflow, input, options)
        return await handle.result(timeout)

    async def signal_workflow(
        self, workflow_execution_id: str, signal_name: str, value: Any = None
    ) -> int:
        return await self._client_backend.signal_workflow(
            workflow_execution_id, signal_name, to_jsonable(value)
        )

    async def signal_with_start_workflow(
        self,
        workflow: WorkflowRef[T],
        input: Any,
        signal_name: str,
        value: Any = None,
        options: Optional[StartWorkflowOptions] = None,
    ) -> tuple[WorkflowHandle[T], bool]:
        """Signal a workflow, starting it first if it does not exist yet.

        Returns the handle and whether a new execution was created.
        """
        request = self._start_request(workflow, input, options)
        result = await self._client_backend.signal_with_start_workflow(
            request, signal_name, to_jsonable(value)
        )
        handle = self.get_workflow_handle(result.workflow_execution_id, request.workflow_kind)
        return handle, result.workflow_created

    async def resolve_promise(self, promise_id: str, value: Any = None) -> None:
        await self._client_backend.resolve_promise(promise_id, to_jsonable(value))

    async def reject_promise(self, promise_id: str, error: str) -> None:
        await self._client_backend.reject_promise(promise_id, error)

    async def query_workflow(
        self, workflow_execution_id: str, query_name: str, args: Any = None
    ) -> Any:
        return await self.get_workflow_handle(workflow_execution_id).query(query_name, args)

    async def cancel_workflow(
        self, workflow_execution_id: str, reason: Optional[str] = None
    ) -> None:
        await self._client_backend.cancel_workflow(workflow_execution_id, reason)
