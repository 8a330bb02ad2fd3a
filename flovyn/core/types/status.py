# flovyn/core/types/status.py
"""
Status enums shared by the engine protocols, workers and handles.
This module should not import from other flovyn modules.
"""

from enum import Enum


class OperationStatus(str, Enum):
    """Outcome of a synchronous replay-context operation."""

    COMPLETED = 'completed'  # Resolved; the value is available now.
    FAILED = 'failed'  # Resolved with an error (task failure, promise rejection).
    PENDING = 'pending'  # Not resolved yet; the workflow must suspend.
    TIMED_OUT = 'timed_out'
    CANCELLED = 'cancelled'
    EXECUTE = 'execute'  # Memoized operation not in history; run it now.

    @property
    def is_resolved(self) -> bool:
        return self not in (OperationStatus.PENDING, OperationStatus.EXECUTE)


class CompletionStatus(str, Enum):
    """Kind of report sent back to the engine for one activation."""

    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'
    SUSPENDED = 'suspended'  # Workflows only.


class HandleStatus(str, Enum):
    """Observable state of a task or child-workflow handle."""

    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'


class WorkflowStatus(str, Enum):
    """Execution status as reported to the client."""

    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'

    @property
    def is_terminal(self) -> bool:
        """Whether this status represents a final state (no further transitions)."""
        return self in WORKFLOW_TERMINAL_STATES


WORKFLOW_TERMINAL_STATES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.COMPLETED,
    WorkflowStatus.FAILED,
    WorkflowStatus.CANCELLED,
})


class WorkerState(str, Enum):
    STOPPED = 'stopped'
    RUNNING = 'running'
