"""
Startup errors: bad handler definitions, invalid configuration, registry
misuse and client lifecycle mistakes.

They are raised before any workflow runs and are displayed like compiler
diagnostics, pointing at the offending user code:

    error[E101]: task 'add' run must be an async function
      --> app/tasks.py:12
       |
     12| def add(ctx, payload):
       | ^^^^^^^^^^^^^^^^^^^^^^
       = note: got function: <function add at 0x...>

       = help:
            declare the handler with `async def run(ctx, input): ...`

Runtime failures (task failures, cancellations, determinism violations)
live in ``flovyn.core.exceptions`` instead.
"""

from __future__ import annotations

import inspect
import linecache
import os
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, TypeVar

# Frames under this directory are library frames, not user code.
_FLOVYN_PKG_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class ErrorCode(str, Enum):
    """Stable codes, grouped by hundreds: E1xx definitions, E2xx
    configuration, E3xx registry, E4xx lifecycle."""

    TASK_NO_NAME = 'E100'
    TASK_RUN_NOT_ASYNC = 'E101'
    TASK_INVALID_OPTIONS = 'E102'
    WORKFLOW_NO_NAME = 'E110'
    WORKFLOW_RUN_NOT_ASYNC = 'E111'
    WORKFLOW_INVALID_HANDLERS = 'E112'

    CONFIG_INVALID_SERVER_URL = 'E200'
    CONFIG_INVALID_WORKER_OPTIONS = 'E201'
    CONFIG_MISSING_VALUE = 'E202'

    HANDLER_NOT_REGISTERED = 'E300'
    HANDLER_DUPLICATE_NAME = 'E301'
    REGISTRATION_CLOSED = 'E302'

    CLIENT_ALREADY_STARTED = 'E400'


@dataclass(frozen=True)
class _Palette:
    reset: str = ''
    bold: str = ''
    red: str = ''
    blue: str = ''
    cyan: str = ''
    green: str = ''
    dim: str = ''


_COLOR = _Palette(
    reset='\033[0m',
    bold='\033[1m',
    red='\033[91m',
    blue='\033[94m',
    cyan='\033[96m',
    green='\033[92m',
    dim='\033[2m',
)
_PLAIN = _Palette()


def _env_flag(name: str) -> bool:
    return os.environ.get(name, '').lower() in ('1', 'true', 'yes')


def _should_use_colors() -> bool:
    if _env_flag('FLOVYN_FORCE_COLOR'):
        return True
    # https://no-color.org/
    if os.environ.get('NO_COLOR') is not None:
        return False
    return hasattr(sys.stderr, 'isatty') and sys.stderr.isatty()


def _should_show_verbose() -> bool:
    return _env_flag('FLOVYN_VERBOSE')


def _should_use_plain_errors() -> bool:
    return _env_flag('FLOVYN_PLAIN_ERRORS')


def _palette(use_colors: bool | None) -> _Palette:
    if use_colors is None:
        use_colors = _should_use_colors()
    return _COLOR if use_colors else _PLAIN


@dataclass
class SourceLocation:
    file: str
    line: int

    @classmethod
    def from_frame(cls, frame: Any) -> SourceLocation:
        return cls(file=frame.f_code.co_filename, line=frame.f_lineno)

    @classmethod
    def from_function(cls, fn: Callable[..., Any]) -> SourceLocation | None:
        """Location of ``fn``'s ``def`` line, or None when it has no Python code
        object (builtins, C extensions, mocks)."""
        code = getattr(fn, '__code__', None)
        if code is None:
            return None
        return cls(file=code.co_filename, line=code.co_firstlineno)

    def get_source_line(self) -> str | None:
        text = linecache.getline(self.file, self.line)
        return text.rstrip('\n') or None

    def format_short(self) -> str:
        return f'{self.file}:{self.line}'


def _find_user_frame() -> Any | None:
    """First frame on the stack that belongs to neither flovyn nor an installed package."""
    frame = inspect.currentframe()
    while frame is not None:
        filename = frame.f_code.co_filename
        is_library = (
            filename.startswith('<')
            or filename.startswith(_FLOVYN_PKG_DIR)
            or '/site-packages/' in filename
        )
        if not is_library:
            return frame
        frame = frame.f_back
    return None


def _render_snippet(location: SourceLocation, p: _Palette) -> list[str]:
    lines = [f'  {p.blue}-->{p.reset} {p.cyan}{location.format_short()}{p.reset}']
    source = location.get_source_line()
    if source is None:
        return lines

    gutter = str(location.line)
    blank = ' ' * len(gutter)
    code = source.lstrip()
    marker = ' ' * (len(source) - len(code)) + '^' * len(code)
    lines += [
        f'   {p.blue}{blank}|{p.reset}',
        f'   {p.blue}{gutter}|{p.reset} {source}',
        f'   {p.blue}{blank}|{p.reset} {p.red}{marker}{p.reset}',
    ]
    return lines


@dataclass
class FlovynStartupError(Exception):
    """Base class for every startup error.

    When no ``location`` is given, the nearest user frame on the stack is
    used, so errors raised deep inside flovyn still point at the caller.
    """

    message: str
    code: ErrorCode | None = None
    location: SourceLocation | None = None
    notes: list[str] = field(default_factory=lambda: [])
    help_text: str | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.location is None:
            user_frame = _find_user_frame()
            if user_frame is not None:
                self.location = SourceLocation.from_frame(user_frame)

    def with_note(self, note: str) -> FlovynStartupError:
        self.notes.append(note)
        return self

    def with_help(self, help_text: str) -> FlovynStartupError:
        self.help_text = help_text
        return self

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        p = _palette(use_colors)
        code = f'[{self.code.value}]' if self.code else ''
        lines = ['', f'{p.bold}{p.red}error{code}:{p.reset} {self.message}']

        if self.location is not None:
            lines += _render_snippet(self.location, p)

        for note in self.notes:
            first, *rest = note.split('\n')
            lines.append(f'   {p.blue}={p.reset} {p.bold}{p.blue}note{p.reset}: {first}')
            lines += [f'          {extra}' for extra in rest]

        if self.help_text:
            lines += ['', f'   {p.blue}={p.reset} {p.bold}{p.green}help{p.reset}:']
            lines += [f'        {text}' for text in self.help_text.split('\n')]

        return '\n'.join(lines)

    def __str__(self) -> str:
        """Plain text, safe for logging frameworks and JSON payloads."""
        return self.format_rust_style(use_colors=False)


@dataclass
class TaskDefinitionError(FlovynStartupError):
    pass


@dataclass
class WorkflowDefinitionError(FlovynStartupError):
    pass


@dataclass
class ConfigurationError(FlovynStartupError):
    pass


@dataclass
class RegistryError(FlovynStartupError):
    pass


@dataclass
class WorkerLifecycleError(FlovynStartupError):
    """The client was started while already running."""


# --- collecting several errors from one validation pass ---


class ValidationReport:
    """Errors gathered during one validation phase, reported together."""

    def __init__(self, phase_name: str) -> None:
        self.phase_name = phase_name
        self.errors: list[FlovynStartupError] = []

    def add(self, error: FlovynStartupError) -> None:
        self.errors.append(error)

    def has_errors(self) -> bool:
        return bool(self.errors)

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        p = _palette(use_colors)
        rendered = [error.format_rust_style(use_colors=p is _COLOR) for error in self.errors]
        rendered.append(
            f'\n{p.bold}{p.red}error{p.reset}: '
            f'aborting due to {len(self.errors)} previous errors'
        )
        return '\n'.join(rendered)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


@dataclass
class MultipleValidationErrors(FlovynStartupError):
    """Two or more errors from one ValidationReport."""

    report: ValidationReport = field(default_factory=lambda: ValidationReport(''))

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f'aborting due to {len(self.report.errors)} previous errors'
        # Each collected error carries its own location.
        Exception.__init__(self, self.message)

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        return self.report.format_rust_style(use_colors=use_colors)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


def raise_collected(report: ValidationReport) -> None:
    """Raise what ``report`` collected, if anything.

    A single error is raised unchanged so callers can still catch its
    concrete type; two or more are wrapped in ``MultipleValidationErrors``.
    """
    match report.errors:
        case []:
            return
        case [only]:
            raise only
        case _:
            raise MultipleValidationErrors(
                message=f'aborting due to {len(report.errors)} previous errors',
                report=report,
            )


# --- factories locating the error at a handler function ---

E = TypeVar('E', bound=FlovynStartupError)


def _located_at(
    error_cls: type[E],
    message: str,
    code: ErrorCode | None,
    fn: Callable[..., Any] | None,
    notes: list[str] | None,
    help_text: str | None,
) -> E:
    return error_cls(
        message=message,
        code=code,
        location=SourceLocation.from_function(fn) if fn is not None else None,
        notes=notes or [],
        help_text=help_text,
    )


def task_definition_error(
    message: str,
    *,
    code: ErrorCode | None = None,
    fn: Callable[..., Any] | None = None,
    notes: list[str] | None = None,
    help_text: str | None = None,
) -> TaskDefinitionError:
    return _located_at(TaskDefinitionError, message, code, fn, notes, help_text)


def workflow_definition_error(
    message: str,
    *,
    code: ErrorCode | None = None,
    fn: Callable[..., Any] | None = None,
    notes: list[str] | None = None,
    help_text: str | None = None,
) -> WorkflowDefinitionError:
    return _located_at(WorkflowDefinitionError, message, code, fn, notes, help_text)


# --- uncaught-error display ---

_original_excepthook = sys.excepthook


def _flovyn_excepthook(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: Any,
) -> None:
    if _should_use_plain_errors() or not isinstance(exc_value, FlovynStartupError):
        _original_excepthook(exc_type, exc_value, exc_tb)
        return

    sys.stderr.write(exc_value.format_rust_style() + '\n')
    if _should_show_verbose():
        p = _palette(None)
        sys.stderr.write(f'\n{p.dim}Full traceback (FLOVYN_VERBOSE=1):{p.reset}\n')
        traceback.print_exception(exc_type, exc_value, exc_tb, file=sys.stderr)


def install_error_handler() -> None:
    """Display uncaught startup errors Rust-style on stderr."""
    sys.excepthook = _flovyn_excepthook


def uninstall_error_handler() -> None:
    sys.excepthook = _original_excepthook
