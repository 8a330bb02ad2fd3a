# flovyn/core/definitions.py
"""Task and workflow handler definitions and the factories that build them.

Definitions are immutable and carry everything the worker needs to route an
activation: the unique name, the handler coroutine, advisory metadata
(description, version, timeout, retry policy) and optional lifecycle hooks
(tasks) or signal/query handlers (workflows).

Both factories work as plain calls and as decorators::

    add = task('add', run=add_impl)

    @workflow('order-processing', version='2')
    async def order_processing(ctx, order): ...
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from datetime import timedelta
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Generic,
    Mapping,
    Optional,
    TypeVar,
    Union,
    overload,
)

from flovyn.core.duration import Duration
from flovyn.core.errors import (
    ErrorCode,
    task_definition_error,
    workflow_definition_error,
)
from flovyn.core.models.options import RetryPolicy

if TYPE_CHECKING:
    from flovyn.core.context.task_context import TaskContext
    from flovyn.core.context.workflow_context import WorkflowContext

I = TypeVar('I')
O = TypeVar('O')

TaskRun = Callable[['TaskContext', Any], Awaitable[Any]]
WorkflowRun = Callable[['WorkflowContext', Any], Awaitable[Any]]
HookResult = Union[None, Awaitable[None]]


def _empty_handlers() -> Mapping[str, Callable[..., Any]]:
    return {}


@dataclass(frozen=True)
class TaskHooks:
    """Optional lifecycle hooks around a task handler.

    Each hook may be a plain function or a coroutine function. A hook that
    raises is logged and never changes the task's completion.
    """

    on_start: Optional[Callable[[TaskContext, Any], HookResult]] = None
    on_success: Optional[Callable[[TaskContext, Any, Any], HookResult]] = None
    on_failure: Optional[Callable[[TaskContext, Any, BaseException], HookResult]] = None


@dataclass(frozen=True)
class WorkflowHandlers:
    """Signal and query handlers for a workflow.

    Signal handlers receive ``(ctx, payload)`` for every signal of that name
    delivered to the activation, before ``run`` is invoked. They may only
    read and write state, inspect signals, read the current time and request
    cancellation; anything that takes a sequence number (tasks, timers,
    promises, child workflows, ``run``) or draws random values raises
    ``UnsupportedOperationError``.

    Query handlers receive ``(state, args)`` where ``state`` is the
    execution's key/value state, and must not have side effects.
    """

    signals: Mapping[str, Callable[[WorkflowContext, Any], Any]] = field(
        default_factory=_empty_handlers
    )
    queries: Mapping[str, Callable[[Mapping[str, Any], Any], Any]] = field(
        default_factory=_empty_handlers
    )


@dataclass(frozen=True)
class TaskDefinition(Generic[I, O]):
    name: str
    run: Callable[[TaskContext, I], Awaitable[O]]
    description: Optional[str] = None
    version: Optional[str] = None
    tags: tuple[str, ...] = ()
    timeout: Optional[Duration] = None
    retry: Optional[RetryPolicy] = None
    cancellable: bool = True
    hooks: TaskHooks = field(default_factory=TaskHooks)


@dataclass(frozen=True)
class WorkflowDefinition(Generic[I, O]):
    name: str
    run: Callable[[WorkflowContext, I], Awaitable[O]]
    description: Optional[str] = None
    version: Optional[str] = None
    tags: tuple[str, ...] = ()
    timeout: Optional[Duration] = None
    cancellable: bool = True
    handlers: WorkflowHandlers = field(default_factory=WorkflowHandlers)


def _to_duration(value: Duration | timedelta | int | None) -> Optional[Duration]:
    return None if value is None else Duration.coerce(value)


@overload
def task(
    name: str,
    run: None = None,
    **kwargs: Any,
) -> Callable[[Callable[[TaskContext, I], Awaitable[O]]], TaskDefinition[I, O]]: ...


@overload
def task(
    name: str,
    run: Callable[[TaskContext, I], Awaitable[O]],
    **kwargs: Any,
) -> TaskDefinition[I, O]: ...


def task(
    name: str,
    run: Optional[Callable[[TaskContext, Any], Awaitable[Any]]] = None,
    *,
    description: Optional[str] = None,
    version: Optional[str] = None,
    tags: tuple[str, ...] | list[str] = (),
    timeout: Duration | timedelta | int | None = None,
    retry: Optional[RetryPolicy] = None,
    cancellable: bool = True,
    hooks: Optional[TaskHooks] = None,
) -> Any:
    """Define a task handler. Usable as a call or as a decorator."""

    def build(fn: Callable[[TaskContext, Any], Awaitable[Any]]) -> TaskDefinition[Any, Any]:
        if not name or not name.strip():
            raise task_definition_error(
                'task name must be a non-empty string',
                code=ErrorCode.TASK_NO_NAME,
                fn=fn,
                help_text="pass a unique name, e.g. task('send-email', run=send_email)",
            )
        if not inspect.iscoroutinefunction(fn):
            raise task_definition_error(
                f"task '{name}' run must be an async function",
                code=ErrorCode.TASK_RUN_NOT_ASYNC,
                fn=fn,
                notes=[f'got {type(fn).__name__}: {fn!r}'],
                help_text='declare the handler with `async def run(ctx, input): ...`',
            )
        if retry is not None and not isinstance(retry, RetryPolicy):
            raise task_definition_error(
                f"task '{name}' retry must be a RetryPolicy",
                code=ErrorCode.TASK_INVALID_OPTIONS,
                fn=fn,
                notes=[f'got {type(retry).__name__}: {retry!r}'],
                help_text='pass retry=RetryPolicy(max_retries=3)',
            )
        task_timeout = _to_duration(timeout)
        if task_timeout is not None and task_timeout.to_milliseconds() <= 0:
            raise task_definition_error(
                f"task '{name}' timeout must be positive",
                code=ErrorCode.TASK_INVALID_OPTIONS,
                fn=fn,
                notes=[f'got {task_timeout.to_milliseconds()}ms'],
                help_text='omit timeout to let the task run without a deadline',
            )
        return TaskDefinition(
            name=name,
            run=fn,
            description=description or inspect.getdoc(fn),
            version=version,
            tags=tuple(tags),
            timeout=task_timeout,
            retry=retry,
            cancellable=cancellable,
            hooks=hooks or TaskHooks(),
        )

    if run is None:
        return build
    return build(run)


@overload
def workflow(
    name: str,
    run: None = None,
    **kwargs: Any,
) -> Callable[[Callable[[WorkflowContext, I], Awaitable[O]]], WorkflowDefinition[I, O]]: ...


@overload
def workflow(
    name: str,
    run: Callable[[WorkflowContext, I], Awaitable[O]],
    **kwargs: Any,
) -> WorkflowDefinition[I, O]: ...


def workflow(
    name: str,
    run: Optional[Callable[[WorkflowContext, Any], Awaitable[Any]]] = None,
    *,
    description: Optional[str] = None,
    version: Optional[str] = None,
    tags: tuple[str, ...] | list[str] = (),
    timeout: Duration | timedelta | int | None = None,
    cancellable: bool = True,
    handlers: Optional[WorkflowHandlers] = None,
) -> Any:
    """Define a workflow handler. Usable as a call or as a decorator."""

    def build(
        fn: Callable[[WorkflowContext, Any], Awaitable[Any]],
    ) -> WorkflowDefinition[Any, Any]:
        if not name or not name.strip():
            raise workflow_definition_error(
                'workflow name must be a non-empty string',
                code=ErrorCode.WORKFLOW_NO_NAME,
                fn=fn,
                help_text="pass a unique name, e.g. workflow('order-processing', run=process)",
            )
        if not inspect.iscoroutinefunction(fn):
            raise workflow_definition_error(
                f"workflow '{name}' run must be an async function",
                code=ErrorCode.WORKFLOW_RUN_NOT_ASYNC,
                fn=fn,
                notes=[f'got {type(fn).__name__}: {fn!r}'],
                help_text='declare the handler with `async def run(ctx, input): ...`',
            )
        resolved_handlers = handlers or WorkflowHandlers()
        for kind, mapping in (
            ('signal', resolved_handlers.signals),
            ('query', resolved_handlers.queries),
        ):
            for handler_name, handler in mapping.items():
                if not callable(handler):
                    raise workflow_definition_error(
                        f"workflow '{name}' {kind} handler '{handler_name}' is not callable",
                        code=ErrorCode.WORKFLOW_INVALID_HANDLERS,
                        fn=fn,
                    )
        return WorkflowDefinition(
            name=name,
            run=fn,
            description=description or inspect.getdoc(fn),
            version=version,
            tags=tuple(tags),
            timeout=_to_duration(timeout),
            cancellable=cancellable,
            handlers=resolved_handlers,
        )

    if run is None:
        return build
    return build(run)
