"""Test doubles for flovyn: mock contexts, an in-memory engine and a test environment."""

from flovyn.testing.engine import InMemoryEngine
from flovyn.testing.environment import TestEnvironment
from flovyn.testing.mock_task_context import MockTaskContext
from flovyn.testing.mock_workflow_context import (
    CreatedPromise,
    ExecutedOperation,
    MockWorkflowContext,
    ScheduledTask,
    ScheduledWorkflow,
    StartedTimer,
)

__all__ = [
    'InMemoryEngine',
    'TestEnvironment',
    'MockTaskContext',
    'MockWorkflowContext',
    'ScheduledTask',
    'ScheduledWorkflow',
    'StartedTimer',
    'CreatedPromise',
    'ExecutedOperation',
]
