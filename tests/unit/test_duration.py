"""Unit tests for flovyn.core.duration.Duration."""

from __future__ import annotations

from datetime import timedelta

import pytest

from flovyn.core.duration import Duration

pytestmark = pytest.mark.unit


class TestConstructors:
    """Unit constructors all normalise to whole milliseconds."""

    def test_units(self) -> None:
        assert Duration.milliseconds(250).to_milliseconds() == 250
        assert Duration.seconds(2).to_milliseconds() == 2_000
        assert Duration.minutes(1.5).to_milliseconds() == 90_000
        assert Duration.hours(1).to_milliseconds() == 3_600_000
        assert Duration.days(1).to_milliseconds() == 86_400_000

    def test_from_timedelta(self) -> None:
        assert Duration.from_timedelta(timedelta(seconds=3, milliseconds=5)).ms == 3_005

    def test_zero_constant(self) -> None:
        assert Duration.ZERO.is_zero()
        assert Duration.ZERO == Duration(0)

    def test_coerce_accepts_duration_timedelta_and_number(self) -> None:
        d = Duration.seconds(1)
        assert Duration.coerce(d) is d
        assert Duration.coerce(timedelta(seconds=1)) == d
        assert Duration.coerce(1000) == d

    def test_coerce_rejects_bool(self) -> None:
        with pytest.raises(TypeError):
            Duration.coerce(True)

    def test_coerce_rejects_string(self) -> None:
        with pytest.raises(TypeError):
            Duration.coerce('1s')  # type: ignore[arg-type]


class TestConversions:
    def test_fractional_conversions(self) -> None:
        d = Duration.milliseconds(90_000)
        assert d.to_seconds() == 90.0
        assert d.to_minutes() == 1.5
        assert Duration.hours(12).to_days() == 0.5
        assert Duration.minutes(30).to_hours() == 0.5

    def test_to_timedelta(self) -> None:
        assert Duration.seconds(5).to_timedelta() == timedelta(seconds=5)


class TestArithmetic:
    def test_add_and_subtract(self) -> None:
        assert Duration.seconds(1) + Duration.milliseconds(500) == Duration(1_500)
        assert Duration.seconds(1) - Duration.seconds(3) == Duration(-2_000)

    def test_multiply_both_sides(self) -> None:
        assert Duration.seconds(2) * 3 == Duration.seconds(6)
        assert 3 * Duration.seconds(2) == Duration.seconds(6)

    def test_divide(self) -> None:
        assert Duration.seconds(3) / 2 == Duration(1_500)

    def test_divide_by_zero_raises(self) -> None:
        with pytest.raises(ZeroDivisionError):
            Duration.seconds(1) / 0

    def test_add_non_duration_is_type_error(self) -> None:
        with pytest.raises(TypeError):
            Duration.seconds(1) + 5  # type: ignore[operator]

    def test_negation_and_abs(self) -> None:
        assert -Duration.seconds(1) == Duration(-1_000)
        assert abs(Duration(-1_000)) == Duration.seconds(1)


class TestComparisons:
    def test_ordering(self) -> None:
        assert Duration.seconds(1) < Duration.seconds(2)
        assert Duration.minutes(1) > Duration.seconds(59)
        assert Duration.seconds(60) <= Duration.minutes(1)
        assert max(Duration.seconds(1), Duration.hours(1)) == Duration.hours(1)

    def test_sign_predicates(self) -> None:
        assert Duration(5).is_positive()
        assert Duration(-5).is_negative()
        assert not Duration.ZERO.is_positive()
        assert not Duration.ZERO.is_negative()

    def test_hashable(self) -> None:
        assert len({Duration.seconds(1), Duration.milliseconds(1_000)}) == 1


class TestStr:
    """String form picks the largest unit the value reaches."""

    @pytest.mark.parametrize(
        ('duration', 'expected'),
        [
            (Duration.ZERO, '0ms'),
            (Duration.milliseconds(500), '500ms'),
            (Duration.seconds(1), '1s'),
            (Duration.milliseconds(1_500), '1.5s'),
            (Duration.minutes(2), '2m'),
            (Duration.hours(3), '3h'),
            (Duration.days(2), '2d'),
            (Duration.seconds(-30), '-30s'),
        ],
    )
    def test_format(self, duration: Duration, expected: str) -> None:
        assert str(duration) == expected
