# flovyn/core/handles.py
"""Single-resolution handles for tasks and workflows.

``TaskHandle`` and ``ChildWorkflowHandle`` are created by the workflow
context when an operation is scheduled. They do not suspend at schedule
time; ``result()`` decides at the await point, which lets a workflow issue
several operations before waiting on any of them. Once settled, a handle
returns its cached value (or re-raises its cached error) forever.

``WorkflowHandle`` is the client-side handle for a running top-level
workflow; it talks to the engine through the client backend.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Generic,
    Optional,
    TypeVar,
    cast,
)

from flovyn.core.codec.serde import rehydrate_value, to_jsonable
from flovyn.core.duration import Duration
from flovyn.core.engine import OperationResult, WorkflowOutcome
from flovyn.core.exceptions import (
    ChildWorkflowFailed,
    FlovynError,
    TaskCancelled,
    TaskFailed,
    TaskTimeout,
    UnsupportedOperationError,
    WorkflowCancelled,
    WorkflowFailed,
    WorkflowSuspended,
)
from flovyn.core.types.status import HandleStatus, OperationStatus, WorkflowStatus

if TYPE_CHECKING:
    from flovyn.core.engine import ClientBackend

T = TypeVar('T')

Resolver = Callable[[], OperationResult]
SuspendFactory = Callable[[], WorkflowSuspended]


class _SingleResolution(ABC, Generic[T]):
    """Shared caching logic: resolve once, then replay the cached outcome."""

    def __init__(self, resolver: Resolver, suspend: SuspendFactory) -> None:
        self._resolver = resolver
        self._suspend = suspend
        self._settled = False
        self._value: Optional[T] = None
        self._error: Optional[BaseException] = None

    @property
    def is_settled(self) -> bool:
        return self._settled

    def poll(self) -> HandleStatus:
        """Current status without suspending or raising."""
        if self._settled:
            return HandleStatus.FAILED if self._error is not None else HandleStatus.COMPLETED
        match self._resolver().status:
            case OperationStatus.PENDING:
                return HandleStatus.PENDING
            case OperationStatus.COMPLETED:
                return HandleStatus.COMPLETED
            case _:
                return HandleStatus.FAILED

    async def result(self) -> T:
        """Return the resolved value, raise the typed failure, or suspend.

        Raises:
            WorkflowSuspended: If the engine has not resolved the operation yet.
        """
        if not self._settled:
            outcome = self._resolver()
            if outcome.status is OperationStatus.PENDING:
                raise self._suspend()
            if outcome.status is OperationStatus.COMPLETED:
                self._value = cast(T, rehydrate_value(outcome.value))
            else:
                self._error = self._error_for(outcome)
            self._settled = True

        if self._error is not None:
            raise self._error
        return cast(T, self._value)

    @abstractmethod
    def _error_for(self, outcome: OperationResult) -> FlovynError:
        """Typed error for a FAILED, CANCELLED or TIMED_OUT outcome."""


class TaskHandle(_SingleResolution[T]):
    """Handle for a task scheduled from a workflow."""

    def __init__(
        self,
        task_execution_id: Optional[str],
        task_kind: str,
        resolver: Resolver,
        suspend: SuspendFactory,
    ) -> None:
        super().__init__(resolver, suspend)
        self.task_execution_id = task_execution_id
        self.task_kind = task_kind

    def _error_for(self, outcome: OperationResult) -> FlovynError:
        task_id = outcome.execution_id or self.task_execution_id
        match outcome.status:
            case OperationStatus.CANCELLED:
                return TaskCancelled(task_id)
            case OperationStatus.TIMED_OUT:
                return TaskTimeout(task_id or self.task_kind)
            case _:
                return TaskFailed(
                    outcome.error or f"Task '{self.task_kind}' failed",
                    task_id,
                    retryable=outcome.retryable,
                )

    def __repr__(self) -> str:
        return f'TaskHandle(kind={self.task_kind!r}, id={self.task_execution_id!r})'


class ChildWorkflowHandle(_SingleResolution[T]):
    """Handle for a child workflow scheduled from a workflow.

    Query, signal and cancel are not available from inside a workflow; use
    the client's WorkflowHandle for those.
    """

    def __init__(
        self,
        workflow_execution_id: Optional[str],
        name: str,
        workflow_kind: str,
        resolver: Resolver,
        suspend: SuspendFactory,
    ) -> None:
        super().__init__(resolver, suspend)
        self.workflow_execution_id = workflow_execution_id
        self.name = name
        self.workflow_kind = workflow_kind

    def _error_for(self, outcome: OperationResult) -> FlovynError:
        child_id = outcome.execution_id or self.workflow_execution_id or self.name
        match outcome.status:
            case OperationStatus.CANCELLED:
                message = f'cancelled: {outcome.error}' if outcome.error else 'cancelled'
            case OperationStatus.TIMED_OUT:
                message = 'timed out'
            case _:
                message = outcome.error or 'unknown error'
        return ChildWorkflowFailed(child_id, message)

    async def query(self, query_name: str, args: Any = None) -> Any:
        raise UnsupportedOperationError(
            'Querying a child workflow from inside a workflow is not supported'
        )

    async def signal(self, signal_name: str, value: Any = None) -> int:
        raise UnsupportedOperationError(
            'Signalling a child workflow from inside a workflow is not supported'
        )

    async def cancel(self, reason: Optional[str] = None) -> None:
        raise UnsupportedOperationError(
            'Cancelling a child workflow from inside a workflow is not supported'
        )

    def __repr__(self) -> str:
        return (
            f'ChildWorkflowHandle(kind={self.workflow_kind!r}, name={self.name!r}, '
            f'id={self.workflow_execution_id!r})'
        )


class WorkflowHandle(Generic[T]):
    """Client-side handle for a top-level workflow execution."""

    def __init__(
        self,
        backend: ClientBackend,
        workflow_execution_id: str,
        workflow_kind: Optional[str] = None,
        *,
        poll_interval: Duration = Duration.milliseconds(100),
    ) -> None:
        self._backend = backend
        self.workflow_execution_id = workflow_execution_id
        self.workflow_kind = workflow_kind
        self._poll_interval = poll_interval
        self._settled: Optional[WorkflowOutcome] = None

    async def describe(self) -> WorkflowOutcome:
        outcome = await self._backend.describe_workflow(self.workflow_execution_id)
        if self.workflow_kind is None:
            self.workflow_kind = outcome.workflow_kind
        return outcome

    async def result(self, timeout: Duration | timedelta | None = None) -> T:
        """Wait for the workflow to finish and return its output.

        Raises:
            WorkflowFailed: The workflow failed.
            WorkflowCancelled: The workflow was cancelled.
            TimeoutError: ``timeout`` elapsed first.
        """
        seconds = Duration.coerce(timeout).to_seconds() if timeout is not None else None
        async with asyncio.timeout(seconds):
            outcome = await self._wait_terminal()

        match outcome.status:
            case WorkflowStatus.COMPLETED:
                return cast(T, rehydrate_value(outcome.output))
            case WorkflowStatus.CANCELLED:
                raise WorkflowCancelled(outcome.reason)
            case _:
                raise WorkflowFailed(
                    self.workflow_execution_id, outcome.error or 'unknown error'
                )

    async def _wait_terminal(self) -> WorkflowOutcome:
        if self._settled is not None:
            return self._settled
        while True:
            outcome = await self.describe()
            if outcome.status.is_terminal:
                self._settled = outcome
                return outcome
            await asyncio.sleep(self._poll_interval.to_seconds())

    async def query(self, query_name: str, args: Any = None) -> Any:
        value = await self._backend.query_workflow(
            self.workflow_execution_id, query_name, to_jsonable(args)
        )
        return rehydrate_value(value)

    async def signal(self, signal_name: str, value: Any = None) -> int:
        return await self._backend.signal_workflow(
            self.workflow_execution_id, signal_name, to_jsonable(value)
        )

    async def cancel(self, reason: Optional[str] = None) -> None:
        await self._backend.cancel_workflow(self.workflow_execution_id, reason)

    def __repr__(self) -> str:
        return f'WorkflowHandle(kind={self.workflow_kind!r}, id={self.workflow_execution_id!r})'
