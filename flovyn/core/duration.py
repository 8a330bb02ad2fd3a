# flovyn/core/duration.py
"""Millisecond-precision duration value used for timeouts, timers and retry delays."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from functools import total_ordering
from typing import ClassVar

_MS_PER_SECOND = 1_000
_MS_PER_MINUTE = 60_000
_MS_PER_HOUR = 3_600_000
_MS_PER_DAY = 86_400_000


@total_ordering
@dataclass(frozen=True, slots=True)
class Duration:
    """Immutable span of time stored as whole milliseconds."""

    ms: int

    ZERO: ClassVar[Duration]

    @classmethod
    def milliseconds(cls, value: float) -> Duration:
        return cls(round(value))

    @classmethod
    def seconds(cls, value: float) -> Duration:
        return cls(round(value * _MS_PER_SECOND))

    @classmethod
    def minutes(cls, value: float) -> Duration:
        return cls(round(value * _MS_PER_MINUTE))

    @classmethod
    def hours(cls, value: float) -> Duration:
        return cls(round(value * _MS_PER_HOUR))

    @classmethod
    def days(cls, value: float) -> Duration:
        return cls(round(value * _MS_PER_DAY))

    @classmethod
    def from_timedelta(cls, value: timedelta) -> Duration:
        return cls(round(value.total_seconds() * _MS_PER_SECOND))

    @classmethod
    def coerce(cls, value: Duration | timedelta | int | float) -> Duration:
        """Accept a Duration, a timedelta, or a number of milliseconds."""
        match value:
            case Duration():
                return value
            case timedelta():
                return cls.from_timedelta(value)
            case bool():
                raise TypeError('bool is not a valid duration')
            case int() | float():
                return cls.milliseconds(value)
            case _:
                raise TypeError(f'Cannot convert {type(value).__name__} to Duration')

    # --- conversions ---
    def to_milliseconds(self) -> int:
        return self.ms

    def to_seconds(self) -> float:
        return self.ms / _MS_PER_SECOND

    def to_minutes(self) -> float:
        return self.ms / _MS_PER_MINUTE

    def to_hours(self) -> float:
        return self.ms / _MS_PER_HOUR

    def to_days(self) -> float:
        return self.ms / _MS_PER_DAY

    def to_timedelta(self) -> timedelta:
        return timedelta(milliseconds=self.ms)

    # --- arithmetic ---
    def __add__(self, other: Duration) -> Duration:
        if not isinstance(other, Duration):
            return NotImplemented
        return Duration(self.ms + other.ms)

    def __sub__(self, other: Duration) -> Duration:
        if not isinstance(other, Duration):
            return NotImplemented
        return Duration(self.ms - other.ms)

    def __mul__(self, factor: float) -> Duration:
        if isinstance(factor, bool) or not isinstance(factor, (int, float)):
            return NotImplemented
        return Duration(round(self.ms * factor))

    __rmul__ = __mul__

    def __truediv__(self, divisor: float) -> Duration:
        if isinstance(divisor, bool) or not isinstance(divisor, (int, float)):
            return NotImplemented
        if divisor == 0:
            raise ZeroDivisionError('Cannot divide a Duration by zero')
        return Duration(round(self.ms / divisor))

    def __neg__(self) -> Duration:
        return Duration(-self.ms)

    def __abs__(self) -> Duration:
        return Duration(abs(self.ms))

    # --- comparisons ---
    def __lt__(self, other: Duration) -> bool:
        if not isinstance(other, Duration):
            return NotImplemented
        return self.ms < other.ms

    def is_zero(self) -> bool:
        return self.ms == 0

    def is_positive(self) -> bool:
        return self.ms > 0

    def is_negative(self) -> bool:
        return self.ms < 0

    def __str__(self) -> str:
        if self.ms == 0:
            return '0ms'

        sign = '-' if self.ms < 0 else ''
        value = abs(self.ms)

        if value < _MS_PER_SECOND:
            return f'{sign}{value}ms'
        if value < _MS_PER_MINUTE:
            return f'{sign}{_trim(value / _MS_PER_SECOND)}s'
        if value < _MS_PER_HOUR:
            return f'{sign}{_trim(value / _MS_PER_MINUTE)}m'
        if value < _MS_PER_DAY:
            return f'{sign}{_trim(value / _MS_PER_HOUR)}h'
        return f'{sign}{_trim(value / _MS_PER_DAY)}d'


def _trim(value: float) -> str:
    # 1.0 -> '1', 1.5 -> '1.5'
    return str(int(value)) if value.is_integer() else str(value)


Duration.ZERO = Duration(0)
