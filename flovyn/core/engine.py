# flovyn/core/engine.py
"""Contract between the worker runtime and the orchestration engine.

The engine owns durability and replay. The runtime talks to it through three
narrow protocols:

- ``ReplayContext``: one per workflow activation. Every call is synchronous
  and answers immediately with an ``OperationResult``; commands produced by
  newly issued operations are buffered until ``take_commands()``.
- ``WorkerBackend``: async polling and completion reporting for workers.
- ``ClientBackend``: async starting, signalling and inspection of executions.

A network transport and ``flovyn.testing.InMemoryEngine`` both implement these.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence, runtime_checkable

from flovyn.core.codec.serde import Json
from flovyn.core.models.activation import (
    Command,
    StreamEvent,
    TaskActivation,
    TaskCompletion,
    WorkflowActivation,
    WorkflowCompletion,
)
from flovyn.core.models.options import ChildWorkflowOptions, TaskOptions
from flovyn.core.types.status import OperationStatus, WorkflowStatus


@dataclass(frozen=True, slots=True)
class OperationResult:
    """Answer to one replay-context call.

    ``execution_id`` identifies the scheduled task, child workflow or promise
    whenever the engine knows it, even while the operation is pending.
    """

    status: OperationStatus
    value: Json = None
    error: Optional[str] = None
    execution_id: Optional[str] = None
    retryable: bool = True

    @classmethod
    def completed(cls, value: Json = None, execution_id: Optional[str] = None) -> OperationResult:
        return cls(OperationStatus.COMPLETED, value=value, execution_id=execution_id)

    @classmethod
    def pending(cls, execution_id: Optional[str] = None) -> OperationResult:
        return cls(OperationStatus.PENDING, execution_id=execution_id)

    @classmethod
    def failed(
        cls, error: str, execution_id: Optional[str] = None, *, retryable: bool = True
    ) -> OperationResult:
        return cls(
            OperationStatus.FAILED, error=error, execution_id=execution_id, retryable=retryable
        )


class ReplayContext(Protocol):
    """Synchronous, per-activation view of one workflow execution's history."""

    def schedule_task(
        self, seq: int, kind: str, input: Json, options: Optional[TaskOptions]
    ) -> OperationResult: ...

    def schedule_child_workflow(
        self,
        seq: int,
        name: str,
        kind: str,
        input: Json,
        options: Optional[ChildWorkflowOptions],
    ) -> OperationResult: ...

    def start_timer(self, seq: int, duration_ms: int) -> OperationResult: ...

    def create_promise(
        self, seq: int, name: str, timeout_ms: Optional[int]
    ) -> OperationResult: ...

    def wait_for_signal(self, seq: int, name: str) -> OperationResult: ...

    def has_signal(self, name: str) -> bool: ...

    def pending_signal_count(self, name: str) -> int: ...

    def drain_signals(self, name: str) -> list[Json]: ...

    def run_operation(self, seq: int, name: str) -> OperationResult: ...

    def record_operation_result(self, seq: int, name: str, value: Json) -> None: ...

    def get_state(self, key: str) -> Optional[Json]: ...

    def set_state(self, key: str, value: Json) -> None: ...

    def clear_state(self, key: str) -> None: ...

    def clear_all_state(self) -> None: ...

    def state_keys(self) -> list[str]: ...

    def current_time_millis(self) -> int: ...

    def random_uuid(self) -> str: ...

    def random(self) -> float: ...

    def is_cancellation_requested(self) -> bool: ...

    def request_cancellation(self, reason: Optional[str] = None) -> None: ...

    def take_commands(self) -> list[Command]: ...


@dataclass(frozen=True, slots=True)
class HandlerMetadata:
    """What a worker advertises about one registered handler."""

    kind: str
    name: str
    description: Optional[str] = None
    version: Optional[str] = None
    tags: tuple[str, ...] = ()
    cancellable: bool = True
    timeout_ms: Optional[int] = None
    retry: Optional[dict[str, Json]] = None
    signals: tuple[str, ...] = ()
    queries: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class WorkerRegistration:
    queue: str
    org_id: Optional[str] = None
    workflows: tuple[HandlerMetadata, ...] = ()
    tasks: tuple[HandlerMetadata, ...] = ()


@runtime_checkable
class WorkerBackend(Protocol):
    async def register_worker(self, registration: WorkerRegistration) -> None: ...

    async def poll_workflow_activation(self, queue: str) -> Optional[WorkflowActivation]: ...

    async def poll_task_activation(self, queue: str) -> Optional[TaskActivation]: ...

    def create_replay_context(self, activation: WorkflowActivation) -> ReplayContext: ...

    async def complete_workflow_activation(
        self, workflow_execution_id: str, completion: WorkflowCompletion
    ) -> None: ...

    async def complete_task(self, completion: TaskCompletion) -> None: ...

    async def report_task_progress(
        self, task_execution_id: str, progress: float, message: Optional[str]
    ) -> None: ...

    async def heartbeat_task(self, task_execution_id: str) -> None: ...

    async def stream_task_event(self, task_execution_id: str, event: StreamEvent) -> None: ...


@dataclass(frozen=True, slots=True)
class StartWorkflowRequest:
    workflow_kind: str
    input: Json
    queue: str
    workflow_version: Optional[str] = None
    idempotency_key: Optional[str] = None


@dataclass(frozen=True, slots=True)
class StartWorkflowResult:
    workflow_execution_id: str
    created: bool = True


@dataclass(frozen=True, slots=True)
class SignalWithStartResult:
    workflow_execution_id: str
    workflow_created: bool
    signal_sequence: int


@dataclass(frozen=True, slots=True)
class WorkflowOutcome:
    """Client-visible status of one workflow execution."""

    workflow_execution_id: str
    workflow_kind: str
    status: WorkflowStatus
    output: Json = None
    error: Optional[str] = None
    reason: Optional[str] = None
    events: Sequence[Json] = field(default_factory=tuple)


@runtime_checkable
class ClientBackend(Protocol):
    async def start_workflow(self, request: StartWorkflowRequest) -> StartWorkflowResult: ...

    async def signal_workflow(
        self, workflow_execution_id: str, signal_name: str, value: Json
    ) -> int: ...

    async def signal_with_start_workflow(
        self, request: StartWorkflowRequest, signal_name: str, value: Json
    ) -> SignalWithStartResult: ...

    async def resolve_promise(self, promise_id: str, value: Json) -> None: ...

    async def reject_promise(self, promise_id: str, error: str) -> None: ...

    async def describe_workflow(self, workflow_execution_id: str) -> WorkflowOutcome: ...

    async def query_workflow(
        self, workflow_execution_id: str, query_name: str, args: Json
    ) -> Json: ...

    async def cancel_workflow(
        self, workflow_execution_id: str, reason: Optional[str]
    ) -> None: ...
