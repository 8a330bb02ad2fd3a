# flovyn/core/models/activation.py
"""Data exchanged with the engine: activations in, commands and completions out."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from flovyn.core.codec.serde import Json, to_jsonable
from flovyn.core.types.status import CompletionStatus


def _empty_state() -> Mapping[str, Json]:
    return {}


@dataclass(frozen=True, slots=True)
class WorkflowActivation:
    """One dispatch-ready unit of workflow work.

    ``events`` is the replay log and ``state`` the persisted key/value
    snapshot; both are read by the engine's replay context, never mutated.
    """

    workflow_execution_id: str
    workflow_kind: str
    input: Json = None
    attempt: int = 1
    cancellation_requested: bool = False
    current_time_millis: int = 0
    random_seed: int = 0
    events: tuple[Json, ...] = ()
    state: Mapping[str, Json] = field(default_factory=_empty_state)
    queue: str = 'default'


@dataclass(frozen=True, slots=True)
class TaskActivation:
    task_execution_id: str
    task_kind: str
    input: Json = None
    attempt: int = 1
    cancellation_requested: bool = False
    workflow_execution_id: Optional[str] = None
    queue: str = 'default'


class CommandType(str, Enum):
    SCHEDULE_TASK = 'schedule_task'
    SCHEDULE_CHILD_WORKFLOW = 'schedule_child_workflow'
    START_TIMER = 'start_timer'
    CREATE_PROMISE = 'create_promise'
    RECORD_OPERATION = 'record_operation'
    SET_STATE = 'set_state'
    CLEAR_STATE = 'clear_state'
    CLEAR_ALL_STATE = 'clear_all_state'
    REQUEST_CANCELLATION = 'request_cancellation'


@dataclass(frozen=True, slots=True)
class Command:
    """A buffered intent produced while handling one workflow activation."""

    type: CommandType
    sequence: int = 0
    payload: Mapping[str, Json] = field(default_factory=_empty_state)

    def to_json(self) -> dict[str, Json]:
        return {'type': self.type.value, 'sequence': self.sequence, 'payload': dict(self.payload)}


@dataclass(frozen=True, slots=True)
class WorkflowCompletion:
    """Report for one workflow activation. Exactly one per activation."""

    status: CompletionStatus
    output: Json = None
    error: Optional[str] = None
    retryable: bool = False
    reason: Optional[str] = None
    commands: tuple[Command, ...] = ()

    @classmethod
    def completed(cls, output: Json, commands: tuple[Command, ...] = ()) -> WorkflowCompletion:
        return cls(status=CompletionStatus.COMPLETED, output=output, commands=commands)

    @classmethod
    def failed(
        cls, error: str, *, retryable: bool, commands: tuple[Command, ...] = ()
    ) -> WorkflowCompletion:
        return cls(
            status=CompletionStatus.FAILED,
            error=error,
            retryable=retryable,
            commands=commands,
        )

    @classmethod
    def cancelled(
        cls, reason: Optional[str] = None, commands: tuple[Command, ...] = ()
    ) -> WorkflowCompletion:
        return cls(status=CompletionStatus.CANCELLED, reason=reason, commands=commands)

    @classmethod
    def suspended(cls, commands: tuple[Command, ...]) -> WorkflowCompletion:
        return cls(status=CompletionStatus.SUSPENDED, commands=commands)


@dataclass(frozen=True, slots=True)
class TaskCompletion:
    task_execution_id: str
    status: CompletionStatus
    output: Json = None
    error: Optional[str] = None
    retryable: bool = False
    reason: Optional[str] = None

    def __post_init__(self) -> None:
        if self.status is CompletionStatus.SUSPENDED:
            raise ValueError('Tasks cannot be suspended')

    @classmethod
    def completed(cls, task_execution_id: str, output: Json) -> TaskCompletion:
        return cls(task_execution_id, CompletionStatus.COMPLETED, output=output)

    @classmethod
    def failed(cls, task_execution_id: str, error: str, *, retryable: bool) -> TaskCompletion:
        return cls(task_execution_id, CompletionStatus.FAILED, error=error, retryable=retryable)

    @classmethod
    def cancelled(cls, task_execution_id: str, reason: Optional[str] = None) -> TaskCompletion:
        return cls(task_execution_id, CompletionStatus.CANCELLED, reason=reason)


class StreamEventType(str, Enum):
    TOKEN = 'token'
    PROGRESS = 'progress'
    DATA = 'data'
    ERROR = 'error'


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """One-way side-channel event emitted by a task; not part of its result."""

    type: StreamEventType
    data: Any
    timestamp_ms: int

    def to_json(self) -> dict[str, Json]:
        return {
            'type': self.type.value,
            'data': to_jsonable(self.data),
            'timestamp_ms': self.timestamp_ms,
        }
