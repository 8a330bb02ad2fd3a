# flovyn/core/models/options.py
"""Value objects describing retry policy and per-call scheduling options."""

from __future__ import annotations

from datetime import timedelta
from typing import Annotated, Any, Optional, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from flovyn.core.duration import Duration


def _coerce_duration(value: Any) -> Any:
    if value is None or isinstance(value, Duration):
        return value
    if isinstance(value, (timedelta, int, float)) and not isinstance(value, bool):
        return Duration.coerce(value)
    return value


class _OptionsModel(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True, arbitrary_types_allowed=True)


class RetryPolicy(_OptionsModel):
    """
    Retry policy advertised to the engine for a task.

    The engine schedules retries; locally the policy is only metadata.

    Fields:
        max_retries: retry attempts after the first one (0 disables retries)
        initial_delay: delay before the first retry
        max_delay: upper bound for any single delay
        backoff_multiplier: growth factor applied per attempt
    """

    max_retries: Annotated[int, Field(ge=0, le=100)] = 3
    initial_delay: Duration = Duration.seconds(1)
    max_delay: Duration = Duration.minutes(1)
    backoff_multiplier: Annotated[float, Field(ge=1.0, le=10.0)] = 2.0

    @field_validator('initial_delay', 'max_delay', mode='before')
    @classmethod
    def coerce_delays(cls, value: Any) -> Any:
        return _coerce_duration(value)

    @field_serializer('initial_delay', 'max_delay')
    def serialize_delay(self, value: Duration) -> int:
        return value.to_milliseconds()

    @model_validator(mode='after')
    def validate_delays(self) -> Self:
        if self.initial_delay.is_negative():
            raise ValueError('initial_delay must not be negative')
        if self.max_delay < self.initial_delay:
            raise ValueError(
                f'max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})'
            )
        return self

    @classmethod
    def none(cls) -> RetryPolicy:
        """A policy that never retries."""
        return cls(max_retries=0)

    def delay_for_attempt(self, attempt: int) -> Duration:
        """Delay before retry number ``attempt`` (1-based), capped at max_delay."""
        if attempt < 1:
            return Duration.ZERO
        delay = self.initial_delay * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_delay)


class TaskOptions(_OptionsModel):
    """
    Options for scheduling one task from a workflow.

    Fields:
        queue: target queue; the workflow's queue when None
        timeout: engine-side execution timeout
        retry: overrides the task definition's retry policy
    """

    queue: Optional[str] = None
    timeout: Optional[Duration] = None
    retry: Optional[RetryPolicy] = None

    @field_validator('timeout', mode='before')
    @classmethod
    def coerce_timeout(cls, value: Any) -> Any:
        return _coerce_duration(value)

    @field_serializer('timeout')
    def serialize_timeout(self, value: Optional[Duration]) -> Optional[int]:
        return value.to_milliseconds() if value is not None else None


class ChildWorkflowOptions(_OptionsModel):
    """
    Options for scheduling a child workflow.

    Fields:
        name: stable child name; defaults to ``{kind}-{sequence}``
        queue: target queue
        priority_seconds: scheduling priority hint
    """

    name: Optional[str] = None
    queue: Optional[str] = None
    priority_seconds: Optional[int] = None


class PromiseOptions(_OptionsModel):
    timeout: Optional[Duration] = None
    idempotency_key: Optional[str] = None

    @field_validator('timeout', mode='before')
    @classmethod
    def coerce_timeout(cls, value: Any) -> Any:
        return _coerce_duration(value)

    @field_serializer('timeout')
    def serialize_timeout(self, value: Optional[Duration]) -> Optional[int]:
        return value.to_milliseconds() if value is not None else None


class StartWorkflowOptions(_OptionsModel):
    """
    Options for starting a top-level workflow from the client.

    Fields:
        queue: target queue; the client's queue when None
        workflow_version: version pin sent to the engine
        idempotency_key: repeated starts with the same key return the same execution
    """

    queue: Optional[str] = None
    workflow_version: Optional[str] = None
    idempotency_key: Optional[str] = None
