# flovyn/core/exceptions.py
"""Runtime outcome taxonomy shared by workers, contexts, handles and the client.

Startup problems (bad definitions, duplicate registration, invalid config)
live in ``flovyn.core.errors`` and are displayed Rust-style; everything here
is raised while executions are running.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from flovyn.core.duration import Duration
    from flovyn.core.models.activation import Command


class FlovynError(Exception):
    """Base class for all flovyn runtime errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class WorkflowSuspended(BaseException):
    """Control signal: the workflow reached an engine operation that is still pending.

    Carries every command buffered so far in the current activation. Derives
    from BaseException so ``except Exception`` in handler code cannot swallow
    it; only the workflow dispatcher catches it.
    """

    def __init__(
        self,
        commands: Sequence[Command] = (),
        message: str = 'Workflow suspended',
    ) -> None:
        super().__init__(message)
        self.commands: list[Command] = list(commands)


class WorkflowCancelled(FlovynError):
    def __init__(
        self, reason: str | None = None, message: str = 'Workflow was cancelled'
    ) -> None:
        super().__init__(f'{message}: {reason}' if reason else message)
        self.reason = reason


class WorkflowFailed(FlovynError):
    def __init__(self, workflow_execution_id: str, message: str) -> None:
        super().__init__(f'Workflow {workflow_execution_id} failed: {message}')
        self.workflow_execution_id = workflow_execution_id
        self.error = message


class DeterminismViolation(FlovynError):
    """The handler's call sequence diverged from recorded history. Never retried."""

    def __init__(self, details: str) -> None:
        super().__init__(f'Determinism violation: {details}')
        self.details = details


class TaskFailed(FlovynError):
    """A task failed.

    Raised by task handlers to control the retry decision, and by task
    handles when the engine reports a terminal failure.
    """

    def __init__(
        self,
        message: str,
        task_execution_id: str | None = None,
        *,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.task_execution_id = task_execution_id
        self.retryable = retryable


class TaskCancelled(FlovynError):
    def __init__(
        self, task_execution_id: str | None = None, message: str = 'Task cancelled'
    ) -> None:
        super().__init__(message)
        self.task_execution_id = task_execution_id


class TaskTimeout(FlovynError):
    def __init__(self, task_execution_id: str, timeout: Duration | None = None) -> None:
        suffix = f' after {timeout}' if timeout is not None else ''
        super().__init__(f'Task {task_execution_id} timed out{suffix}')
        self.task_execution_id = task_execution_id
        self.timeout = timeout


class PromiseTimeout(FlovynError):
    def __init__(self, promise_name: str, timeout: Duration | None = None) -> None:
        suffix = f' after {timeout}' if timeout is not None else ''
        super().__init__(f'Promise {promise_name} timed out{suffix}')
        self.promise_name = promise_name
        self.timeout = timeout


class PromiseRejected(FlovynError):
    def __init__(self, promise_name: str, reason: str) -> None:
        super().__init__(f'Promise {promise_name} rejected: {reason}')
        self.promise_name = promise_name
        self.reason = reason


class ChildWorkflowFailed(FlovynError):
    def __init__(self, child_execution_id: str, message: str) -> None:
        super().__init__(f'Child workflow {child_execution_id} failed: {message}')
        self.child_execution_id = child_execution_id
        self.error = message


class EngineConnectionError(FlovynError):
    """The orchestration server could not be reached."""

    def __init__(self, message: str, server_url: str | None = None) -> None:
        super().__init__(message)
        self.server_url = server_url


class AuthenticationError(FlovynError):
    """The server rejected the worker token or API key."""


class NotFoundError(FlovynError):
    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(f'{resource_type} not found: {resource_id}')
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidArgumentError(FlovynError, ValueError):
    """An argument passed to a context operation is out of range."""


class UnsupportedOperationError(FlovynError):
    """The operation is not available on this kind of handle."""
