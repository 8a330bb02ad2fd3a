"""flovyn - Python worker runtime for a durable workflow engine"""

# Install Rust-style error handler on import
from .core.errors import install_error_handler as _install_error_handler

_install_error_handler()

from .core.client import FlovynClient
from .core.models.config import ClientConfig, WorkerOptions
from .core.models.options import (
    RetryPolicy,
    TaskOptions,
    ChildWorkflowOptions,
    PromiseOptions,
    StartWorkflowOptions,
)
from .core.definitions import (
    task,
    workflow,
    TaskDefinition,
    WorkflowDefinition,
    TaskHooks,
    WorkflowHandlers,
)
from .core.context.task_context import TaskContext
from .core.context.workflow_context import WorkflowContext
from .core.handles import TaskHandle, ChildWorkflowHandle, WorkflowHandle
from .core.duration import Duration
from .core.engine import (
    ReplayContext,
    WorkerBackend,
    ClientBackend,
    OperationResult,
    WorkflowOutcome,
)
from .core.models.activation import (
    WorkflowActivation,
    TaskActivation,
    WorkflowCompletion,
    TaskCompletion,
    Command,
    CommandType,
    StreamEvent,
    StreamEventType,
)
from .core.types.status import (
    OperationStatus,
    CompletionStatus,
    HandleStatus,
    WorkflowStatus,
    WORKFLOW_TERMINAL_STATES,
)
from .core.exceptions import (
    FlovynError,
    WorkflowSuspended,
    WorkflowCancelled,
    WorkflowFailed,
    DeterminismViolation,
    TaskFailed,
    TaskCancelled,
    TaskTimeout,
    PromiseTimeout,
    PromiseRejected,
    ChildWorkflowFailed,
    EngineConnectionError,
    AuthenticationError,
    NotFoundError,
    InvalidArgumentError,
    UnsupportedOperationError,
)
from .core.errors import (
    ErrorCode,
    FlovynStartupError,
    ValidationReport,
    MultipleValidationErrors,
)
from .core.registry.definitions import (
    DuplicateRegistrationError,
    RegistrationClosedError,
    NotRegistered,
)
from .core.logging import get_logger, set_default_level

__all__ = [
    # Client
    'FlovynClient',
    'ClientConfig',
    'WorkerOptions',
    # Definitions
    'task',
    'workflow',
    'TaskDefinition',
    'WorkflowDefinition',
    'TaskHooks',
    'WorkflowHandlers',
    'RetryPolicy',
    'TaskOptions',
    'ChildWorkflowOptions',
    'PromiseOptions',
    'StartWorkflowOptions',
    # Contexts and handles
    'TaskContext',
    'WorkflowContext',
    'TaskHandle',
    'ChildWorkflowHandle',
    'WorkflowHandle',
    'Duration',
    # Engine contract
    'ReplayContext',
    'WorkerBackend',
    'ClientBackend',
    'OperationResult',
    'WorkflowOutcome',
    'WorkflowActivation',
    'TaskActivation',
    'WorkflowCompletion',
    'TaskCompletion',
    'Command',
    'CommandType',
    'StreamEvent',
    'StreamEventType',
    'OperationStatus',
    'CompletionStatus',
    'HandleStatus',
    'WorkflowStatus',
    'WORKFLOW_TERMINAL_STATES',
    # Runtime errors
    'FlovynError',
    'WorkflowSuspended',
    'WorkflowCancelled',
    'WorkflowFailed',
    'DeterminismViolation',
    'TaskFailed',
    'TaskCancelled',
    'TaskTimeout',
    'PromiseTimeout',
    'PromiseRejected',
    'ChildWorkflowFailed',
    'EngineConnectionError',
    'AuthenticationError',
    'NotFoundError',
    'InvalidArgumentError',
    'UnsupportedOperationError',
    # Startup errors
    'ErrorCode',
    'FlovynStartupError',
    'ValidationReport',
    'MultipleValidationErrors',
    'DuplicateRegistrationError',
    'RegistrationClosedError',
    'NotRegistered',
    # Logging
    'get_logger',
    'set_default_level',
]
