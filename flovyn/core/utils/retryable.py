# flovyn/core/utils/retryable.py
"""Helpers for classifying errors as transient or retryable."""

from __future__ import annotations

from flovyn.core.exceptions import (
    AuthenticationError,
    DeterminismViolation,
    EngineConnectionError,
    TaskCancelled,
    TaskFailed,
    TaskTimeout,
)

_TRANSIENT_PATTERNS = ('network', 'timeout', 'timed out', 'econnrefused', 'econnreset')


def is_transient_error(exc: BaseException) -> bool:
    """Check whether an exception looks like a transient network or timeout error."""
    match exc:
        case AuthenticationError():
            return False
        case EngineConnectionError() | ConnectionError() | TimeoutError() | TaskTimeout():
            return True
        case _:
            message = str(exc).lower()
            return any(pattern in message for pattern in _TRANSIENT_PATTERNS)


def is_retryable_error(exc: BaseException, *, default: bool = True) -> bool:
    """Decide whether a failed task should be retried by the engine.

    Explicit ``TaskFailed`` carries its own flag; cancellation and
    determinism violations never retry; transient errors always retry;
    anything else falls back to ``default``.
    """
    match exc:
        case TaskFailed():
            return exc.retryable
        case TaskCancelled() | DeterminismViolation():
            return False
        case _ if is_transient_error(exc):
            return True
        case _:
            return default
