"""Integration tests for durable workflow primitives on the in-memory engine."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from flovyn.core.context.task_context import TaskContext
from flovyn.core.context.workflow_context import WorkflowContext
from flovyn.core.definitions import WorkflowHandlers, task, workflow
from flovyn.core.duration import Duration
from flovyn.core.exceptions import (
    NotFoundError,
    PromiseTimeout,
    TaskFailed,
    WorkflowCancelled,
    WorkflowFailed,
)
from flovyn.core.models.options import RetryPolicy, StartWorkflowOptions
from flovyn.testing import TestEnvironment

pytestmark = pytest.mark.integration

_TIMEOUT = Duration.seconds(10)


# =============================================================================
# Handlers
# =============================================================================


@task('square')
async def square(ctx: TaskContext, n: int) -> int:
    return n * n


@workflow('fan-out')
async def fan_out(ctx: WorkflowContext, count: int) -> list[int]:
    handles = [ctx.schedule(square, i) for i in range(count)]
    return list(await asyncio.gather(*(h.result() for h in handles)))


@workflow('doubler')
async def doubler(ctx: WorkflowContext, n: int) -> int:
    return n * 2


@workflow('calls-doubler')
async def calls_doubler(ctx: WorkflowContext, n: int) -> int:
    first = await ctx.execute_workflow(doubler, n)
    second = await ctx.execute_workflow(doubler, first)
    return second


@workflow('sleeper')
async def sleeper(ctx: WorkflowContext, _: Any) -> int:
    before = await ctx.run('before', ctx.current_time_millis)
    await ctx.sleep(Duration.hours(1))
    return ctx.current_time_millis() - before


@workflow('approval')
async def approval(ctx: WorkflowContext, timeout_ms: int | None) -> Any:
    try:
        return await ctx.wait_for_promise('approval', timeout=timeout_ms)
    except PromiseTimeout:
        return 'timed out'


@workflow('collector')
async def collector(ctx: WorkflowContext, expected: int) -> list[Any]:
    return [await ctx.wait_for_signal('item') for _ in range(expected)]


@workflow('cancellable')
async def cancellable(ctx: WorkflowContext, _: Any) -> None:
    while True:
        ctx.check_cancellation()
        await ctx.wait_for_signal('never')


@workflow('gives-up')
async def gives_up(ctx: WorkflowContext, _: Any) -> str:
    ctx.request_cancellation('no longer needed')
    ctx.check_cancellation()
    return 'kept running'


def _add_to_tally(ctx: WorkflowContext, amount: int) -> None:
    ctx.set('tally', ctx.get('tally', 0) + amount)


@workflow('tally', handlers=WorkflowHandlers(signals={'add': _add_to_tally}))
async def tally(ctx: WorkflowContext, _: Any) -> int:
    await ctx.run('opened', lambda: True)
    await ctx.wait_for_signal('close')
    return ctx.get('tally', 0)


def _status(state: Any, args: Any) -> Any:
    return state.get('status')


@workflow('queryable', handlers=WorkflowHandlers(queries={'status': _status}))
async def queryable(ctx: WorkflowContext, _: Any) -> str:
    ctx.set('status', 'waiting')
    await ctx.wait_for_signal('go')
    ctx.set('status', 'done')
    return 'done'


token_calls: list[int] = []


def _mint_token() -> str:
    token_calls.append(1)
    return f'token-{len(token_calls)}'


@workflow('memoizer')
async def memoizer(ctx: WorkflowContext, _: Any) -> str:
    token = await ctx.run('mint', _mint_token)
    await ctx.sleep(10)
    await ctx.sleep(10)
    return token


@task('flaky', retry=RetryPolicy(max_retries=3))
async def flaky(ctx: TaskContext, fail_until: int) -> int:
    if ctx.attempt < fail_until:
        raise ConnectionError('network blip')
    return ctx.attempt


@task('rejects')
async def rejects(ctx: TaskContext, _: Any) -> None:
    raise TaskFailed('invalid card', retryable=False)


@task('always-broken', retry=RetryPolicy(max_retries=1))
async def always_broken(ctx: TaskContext, _: Any) -> None:
    raise ValueError(f'attempt {ctx.attempt}')


@workflow('runs-task')
async def runs_task(ctx: WorkflowContext, spec: dict[str, Any]) -> Any:
    return await ctx.execute_task(spec['kind'], spec.get('input'))


@workflow('reports-task-failure')
async def reports_task_failure(ctx: WorkflowContext, kind: str) -> dict[str, Any]:
    try:
        await ctx.execute_task(kind)
    except TaskFailed as exc:
        return {'message': exc.message, 'retryable': exc.retryable}
    return {}


# =============================================================================
# Tests
# =============================================================================


class TestComposition:
    @pytest.mark.asyncio
    async def test_fan_out_fan_in(self, env: TestEnvironment) -> None:
        env.register_task(square)
        env.register_workflow(fan_out)
        assert await env.execute_workflow(fan_out, 5) == [0, 1, 4, 9, 16]

    @pytest.mark.asyncio
    async def test_sequential_child_workflows(self, env: TestEnvironment) -> None:
        env.register_workflow(doubler)
        env.register_workflow(calls_doubler)
        assert await env.execute_workflow(calls_doubler, 3) == 12


class TestTimersAndMemoization:
    @pytest.mark.asyncio
    async def test_durable_sleep_advances_workflow_time(self, env: TestEnvironment) -> None:
        env.register_workflow(sleeper)
        assert await env.execute_workflow(sleeper) == Duration.hours(1).to_milliseconds()

    @pytest.mark.asyncio
    async def test_run_executes_side_effect_once(self, env: TestEnvironment) -> None:
        token_calls.clear()
        env.register_workflow(memoizer)
        assert await env.execute_workflow(memoizer) == 'token-1'
        assert token_calls == [1]


class TestPromises:
    async def _start_and_wait_for_promise(
        self, env: TestEnvironment, timeout_ms: int | None = None
    ) -> tuple[Any, str]:
        env.register_workflow(approval)
        handle = await env.start_workflow(approval, timeout_ms)
        promise_id = env.engine.promise_id(handle.workflow_execution_id, 'approval')
        await env.wait_until(lambda: env.engine.has_promise(promise_id))
        return handle, promise_id

    @pytest.mark.asyncio
    async def test_resolve(self, env: TestEnvironment) -> None:
        handle, promise_id = await self._start_and_wait_for_promise(env)
        await env.client.resolve_promise(promise_id, {'approved_by': 'ops'})
        assert await handle.result(_TIMEOUT) == {'approved_by': 'ops'}

    @pytest.mark.asyncio
    async def test_reject_fails_workflow(self, env: TestEnvironment) -> None:
        handle, promise_id = await self._start_and_wait_for_promise(env)
        await env.client.reject_promise(promise_id, 'denied')
        with pytest.raises(WorkflowFailed) as exc_info:
            await handle.result(_TIMEOUT)
        assert 'PromiseRejected' in exc_info.value.error
        assert 'denied' in exc_info.value.error

    @pytest.mark.asyncio
    async def test_timeout(self, env: TestEnvironment) -> None:
        handle, _ = await self._start_and_wait_for_promise(env, timeout_ms=60_000)
        env.engine.advance_time(Duration.minutes(2))
        assert await handle.result(_TIMEOUT) == 'timed out'

    @pytest.mark.asyncio
    async def test_unknown_promise(self, env: TestEnvironment) -> None:
        with pytest.raises(NotFoundError):
            await env.client.resolve_promise('no-such/promise', None)

    @pytest.mark.asyncio
    async def test_second_resolution_ignored(self, env: TestEnvironment) -> None:
        handle, promise_id = await self._start_and_wait_for_promise(env)
        await env.client.resolve_promise(promise_id, 'first')
        await env.client.reject_promise(promise_id, 'too late')
        assert await handle.result(_TIMEOUT) == 'first'


class TestSignals:
    @pytest.mark.asyncio
    async def test_signals_delivered_in_order(self, env: TestEnvironment) -> None:
        env.register_workflow(collector)
        handle = await env.start_workflow(collector, 3)
        sequences = [await handle.signal('item', value) for value in ('a', 'b', 'c')]
        assert sequences == [1, 2, 3]
        assert await handle.result(_TIMEOUT) == ['a', 'b', 'c']

    @pytest.mark.asyncio
    async def test_signal_with_start(self, env: TestEnvironment) -> None:
        env.register_workflow(collector)
        await env.client.start()
        options = StartWorkflowOptions(idempotency_key='cart-42')

        first, created = await env.client.signal_with_start_workflow(
            collector, 2, 'item', 'apple', options
        )
        second, created_again = await env.client.signal_with_start_workflow(
            collector, 2, 'item', 'pear', options
        )

        assert created is True
        assert created_again is False
        assert first.workflow_execution_id == second.workflow_execution_id
        assert await first.result(_TIMEOUT) == ['apple', 'pear']

    @pytest.mark.asyncio
    async def test_handler_state_survives_later_activations(self, env: TestEnvironment) -> None:
        env.register_workflow(tally)
        handle = await env.start_workflow(tally)
        execution_id = handle.workflow_execution_id

        await handle.signal('add', 2)
        await env.wait_until(lambda: env.engine.workflow_state(execution_id).get('tally') == 2)
        await handle.signal('add', 3)
        await env.wait_until(lambda: env.engine.workflow_state(execution_id).get('tally') == 5)
        await handle.signal('close')

        assert await handle.result(_TIMEOUT) == 5


class TestCancellationAndQueries:
    @pytest.mark.asyncio
    async def test_cancel(self, env: TestEnvironment) -> None:
        env.register_workflow(cancellable)
        handle = await env.start_workflow(cancellable)
        await handle.cancel('operator request')
        with pytest.raises(WorkflowCancelled) as exc_info:
            await handle.result(_TIMEOUT)
        assert exc_info.value.reason == 'operator request'

    @pytest.mark.asyncio
    async def test_workflow_cancels_itself(self, env: TestEnvironment) -> None:
        env.register_workflow(gives_up)
        handle = await env.start_workflow(gives_up)
        with pytest.raises(WorkflowCancelled) as exc_info:
            await handle.result(_TIMEOUT)
        assert exc_info.value.reason == 'no longer needed'

    @pytest.mark.asyncio
    async def test_query_reads_state(self, env: TestEnvironment) -> None:
        env.register_workflow(queryable)
        handle = await env.start_workflow(queryable)
        execution_id = handle.workflow_execution_id
        await env.wait_until(
            lambda: env.engine.workflow_state(execution_id).get('status') == 'waiting'
        )

        assert await env.client.query_workflow(execution_id, 'status') == 'waiting'
        with pytest.raises(NotFoundError):
            await handle.query('missing')

        await handle.signal('go')
        assert await handle.result(_TIMEOUT) == 'done'
        assert await handle.query('status') == 'done'


class TestTaskRetries:
    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, env: TestEnvironment) -> None:
        env.register_task(flaky)
        env.register_workflow(runs_task)
        result = await env.execute_workflow(runs_task, {'kind': 'flaky', 'input': 3})
        assert result == 3

    @pytest.mark.asyncio
    async def test_non_retryable_failure_reaches_workflow(self, env: TestEnvironment) -> None:
        env.register_task(rejects)
        env.register_workflow(reports_task_failure)
        result = await env.execute_workflow(reports_task_failure, 'rejects')
        assert result == {'message': 'invalid card', 'retryable': False}
        [execution] = env.engine.task_executions()
        assert execution.attempt == 1

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, env: TestEnvironment) -> None:
        env.register_task(always_broken)
        env.register_workflow(runs_task)
        handle = await env.start_workflow(runs_task, {'kind': 'always-broken'})
        with pytest.raises(WorkflowFailed) as exc_info:
            await handle.result(_TIMEOUT)
        assert 'attempt 2' in exc_info.value.error
        [execution] = env.engine.task_executions(handle.workflow_execution_id)
        assert execution.attempt == 2
