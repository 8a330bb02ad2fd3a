# flovyn/core/context/workflow_context.py
"""The suspend/resume bridge between async workflow code and the replay engine.

Every asynchronous primitive follows the same pattern:

1. take the next sequence number for its kind,
2. ask the replay context synchronously,
3. return the value if resolved, raise the typed failure if it failed,
   or raise ``WorkflowSuspended`` with the buffered commands if pending.

The workflow function is re-run from the start on every activation. Calls
that already resolved in history answer instantly, so each activation
advances the workflow by at least one suspend point. Sequence numbers are
per kind, which keeps the Nth task scheduled in a loop matched to the Nth
task in history.
"""

from __future__ import annotations

import inspect
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import (
    Any,
    Awaitable,
    Callable,
    Mapping,
    Optional,
    TypeVar,
    Union,
    cast,
)

from flovyn.core.codec.serde import rehydrate_value, to_jsonable
from flovyn.core.definitions import TaskDefinition, WorkflowDefinition
from flovyn.core.duration import Duration
from flovyn.core.engine import ReplayContext
from flovyn.core.exceptions import (
    DeterminismViolation,
    PromiseRejected,
    PromiseTimeout,
    UnsupportedOperationError,
    WorkflowCancelled,
    WorkflowSuspended,
)
from flovyn.core.handles import ChildWorkflowHandle, TaskHandle
from flovyn.core.logging import ExecutionLoggerAdapter, execution_logger
from flovyn.core.models.activation import Command, WorkflowActivation
from flovyn.core.models.options import ChildWorkflowOptions, TaskOptions
from flovyn.core.types.status import OperationStatus

T = TypeVar('T')

TaskRef = Union[TaskDefinition[Any, T], str]
WorkflowRef = Union[WorkflowDefinition[Any, T], str]

_TASK = 'task'
_CHILD = 'child'
_TIMER = 'timer'
_PROMISE = 'promise'
_SIGNAL = 'signal'
_OPERATION = 'operation'


class WorkflowContext:
    """
    Per-activation facade over the engine's replay context.

    Owns the per-kind sequence counters for one activation. Handles created
    here belong to this context and must not outlive the activation.
    """

    def __init__(
        self,
        activation: WorkflowActivation,
        replay: ReplayContext,
        *,
        logger: Optional[ExecutionLoggerAdapter] = None,
    ) -> None:
        self._activation = activation
        self._replay = replay
        self._sequences: dict[str, int] = defaultdict(int)
        self._cancellation_requested = False
        self._cancellation_reason: Optional[str] = None
        # Name of the signal whose handler is running, if any.
        self._handling_signal: Optional[str] = None
        self._logger = logger or execution_logger(
            'workflow', activation.workflow_kind, activation.workflow_execution_id
        )

    # --- identity ---
    @property
    def workflow_execution_id(self) -> str:
        return self._activation.workflow_execution_id

    @property
    def workflow_kind(self) -> str:
        return self._activation.workflow_kind

    @property
    def attempt(self) -> int:
        return self._activation.attempt

    @property
    def logger(self) -> ExecutionLoggerAdapter:
        return self._logger

    # --- suspend/resume plumbing ---
    def _reject_in_signal_handler(self, operation: str) -> None:
        if self._handling_signal is not None:
            raise UnsupportedOperationError(
                f"signal handler for '{self._handling_signal}' called {operation}; "
                'signal handlers may only read and write workflow state'
            )

    def _next_sequence(self, kind: str) -> int:
        self._reject_in_signal_handler(f'a {kind} operation')
        self._sequences[kind] += 1
        return self._sequences[kind]

    def take_commands(self) -> list[Command]:
        """Drain the commands buffered in this activation."""
        return self._replay.take_commands()

    def _suspend(self) -> WorkflowSuspended:
        return WorkflowSuspended(self.take_commands())

    # --- tasks ---
    def schedule(
        self,
        task: TaskRef[T],
        input: Any = None,
        options: Optional[TaskOptions] = None,
    ) -> TaskHandle[T]:
        """Schedule a task and return its handle without waiting for it."""
        kind = task if isinstance(task, str) else task.name
        return self.schedule_by_name(kind, input, options)

    def schedule_by_name(
        self,
        kind: str,
        input: Any = None,
        options: Optional[TaskOptions] = None,
    ) -> TaskHandle[Any]:
        seq = self._next_sequence(_TASK)
        outcome = self._replay.schedule_task(seq, kind, to_jsonable(input), options)
        self._logger.debug(f'schedule task {kind} seq={seq} -> {outcome.status.value}')
        return TaskHandle(outcome.execution_id, kind, lambda: outcome, self._suspend)

    async def execute_task(
        self,
        task: TaskRef[T],
        input: Any = None,
        options: Optional[TaskOptions] = None,
    ) -> T:
        """Schedule a task and wait for its result."""
        return await self.schedule(task, input, options).result()

    # --- child workflows ---
    def schedule_workflow(
        self,
        workflow: WorkflowRef[T],
        input: Any = None,
        options: Optional[ChildWorkflowOptions] = None,
    ) -> ChildWorkflowHandle[T]:
        kind = workflow if isinstance(workflow, str) else workflow.name
        seq = self._next_sequence(_CHILD)
        name = options.name if options is not None and options.name else f'{kind}-{seq}'
        outcome = self._replay.schedule_child_workflow(
            seq, name, kind, to_jsonable(input), options
        )
        self._logger.debug(
            f'schedule child workflow {kind} ({name}) seq={seq} -> {outcome.status.value}'
        )
        return ChildWorkflowHandle(
            outcome.execution_id, name, kind, lambda: outcome, self._suspend
        )

    async def execute_workflow(
        self,
        workflow: WorkflowRef[T],
        input: Any = None,
        options: Optional[ChildWorkflowOptions] = None,
    ) -> T:
        """Start a child workflow and wait for its result."""
        return await self.schedule_workflow(workflow, input, options).result()

    # --- timers ---
    async def sleep(self, duration: Duration | timedelta | int) -> None:
        """Durable sleep. Suspends the workflow until the engine fires the timer."""
        ms = max(0, Duration.coerce(duration).to_milliseconds())
        seq = self._next_sequence(_TIMER)
        outcome = self._replay.start_timer(seq, ms)
        match outcome.status:
            case OperationStatus.COMPLETED:
                return
            case OperationStatus.PENDING:
                raise self._suspend()
            case _:
                raise WorkflowCancelled('Timer was cancelled')

    async def sleep_until(self, when: datetime | int) -> None:
        """Sleep until an absolute time (aware datetime or epoch milliseconds)."""
        target_ms = (
            int(when.timestamp() * 1000) if isinstance(when, datetime) else int(when)
        )
        await self.sleep(Duration(max(0, target_ms - self.current_time_millis())))

    # --- external promises ---
    async def wait_for_promise(
        self,
        name: str,
        *,
        timeout: Duration | timedelta | int | None = None,
    ) -> Any:
        """Create a named promise and wait until it is resolved from outside.

        Raises:
            PromiseRejected: The promise was rejected.
            PromiseTimeout: ``timeout`` elapsed on the engine side.
        """
        timeout_duration = Duration.coerce(timeout) if timeout is not None else None
        seq = self._next_sequence(_PROMISE)
        outcome = self._replay.create_promise(
            seq,
            name,
            timeout_duration.to_milliseconds() if timeout_duration is not None else None,
        )
        match outcome.status:
            case OperationStatus.COMPLETED:
                return rehydrate_value(outcome.value)
            case OperationStatus.PENDING:
                raise self._suspend()
            case OperationStatus.TIMED_OUT:
                raise PromiseTimeout(name, timeout_duration)
            case _:
                raise PromiseRejected(name, outcome.error or 'rejected')

    # --- signals ---
    async def wait_for_signal(self, name: str) -> Any:
        """Return the next signal named ``name``, suspending until one arrives."""
        seq = self._next_sequence(_SIGNAL)
        outcome = self._replay.wait_for_signal(seq, name)
        if outcome.status is OperationStatus.COMPLETED:
            return rehydrate_value(outcome.value)
        if outcome.status is OperationStatus.PENDING:
            raise self._suspend()
        raise DeterminismViolation(
            f"unexpected status {outcome.status.value} waiting for signal '{name}'"
        )

    def has_signal(self, name: str) -> bool:
        return self._replay.has_signal(name)

    def pending_signal_count(self, name: str) -> int:
        return self._replay.pending_signal_count(name)

    def drain_signals(self, name: str) -> list[Any]:
        return [rehydrate_value(value) for value in self._replay.drain_signals(name)]

    # --- memoized side effects ---
    async def run(self, name: str, fn: Callable[[], Union[T, Awaitable[T]]]) -> T:
        """Run a side effect once and replay its recorded result afterwards.

        ``fn`` may be a plain function or return an awaitable. Its result is
        recorded by the engine; on replay the recorded value is returned and
        ``fn`` is not called.
        """
        seq = self._next_sequence(_OPERATION)
        outcome = self._replay.run_operation(seq, name)
        match outcome.status:
            case OperationStatus.COMPLETED:
                return cast(T, rehydrate_value(outcome.value))
            case OperationStatus.EXECUTE:
                result = fn()
                if inspect.isawaitable(result):
                    result = await result
                self._replay.record_operation_result(seq, name, to_jsonable(result))
                return cast(T, result)
            case _:
                raise DeterminismViolation(
                    f"operation '{name}' (seq {seq}) returned unexpected status "
                    f'{outcome.status.value}'
                )

    # --- state ---
    def get(self, key: str, default: Any = None) -> Any:
        value = self._replay.get_state(key)
        return default if value is None else rehydrate_value(value)

    def set(self, key: str, value: Any) -> None:
        self._replay.set_state(key, to_jsonable(value))

    def clear(self, key: str) -> None:
        self._replay.clear_state(key)

    def clear_all(self) -> None:
        self._replay.clear_all_state()

    def state_keys(self) -> list[str]:
        return self._replay.state_keys()

    # --- deterministic values ---
    def current_time_millis(self) -> int:
        return self._replay.current_time_millis()

    def current_time(self) -> datetime:
        return datetime.fromtimestamp(self.current_time_millis() / 1000, tz=timezone.utc)

    def random_uuid(self) -> uuid.UUID:
        self._reject_in_signal_handler('random_uuid()')
        return uuid.UUID(self._replay.random_uuid())

    def random(self) -> float:
        """Deterministic float in [0, 1)."""
        self._reject_in_signal_handler('random()')
        return self._replay.random()

    # --- cancellation ---
    @property
    def is_cancellation_requested(self) -> bool:
        return self._cancellation_requested or self._replay.is_cancellation_requested()

    def check_cancellation(self) -> None:
        if self.is_cancellation_requested:
            raise WorkflowCancelled(self._cancellation_reason or 'Cancellation requested')

    def request_cancellation(self, reason: Optional[str] = None) -> None:
        """Ask the engine to cancel this workflow.

        Takes effect immediately for this activation: ``is_cancellation_requested``
        turns true and the next ``check_cancellation()`` raises.
        """
        self._cancellation_requested = True
        self._cancellation_reason = reason
        self._logger.info(f'Cancellation requested (reason={reason!r})')
        self._replay.request_cancellation(reason)

    # --- signal handler delivery ---
    async def deliver_signals(
        self, handlers: Mapping[str, Callable[[WorkflowContext, Any], Any]]
    ) -> int:
        """Drain signals that have a registered handler and invoke it per payload.

        Delivered signals are consumed once the activation commits and are not
        replayed, so handlers may only touch workflow state (``get``, ``set``,
        ``clear``), inspect signals, read the current time, log and request
        cancellation. Sequenced operations and random values raise
        ``UnsupportedOperationError``.

        Returns the number of signals delivered.
        """
        delivered = 0
        for name, handler in handlers.items():
            for payload in self.drain_signals(name):
                self._handling_signal = name
                try:
                    result = handler(self, payload)
                    if inspect.isawaitable(result):
                        await result
                finally:
                    self._handling_signal = None
                delivered += 1
        return delivered
