"""Tests for utils.py - time and money helpers."""

from datetime import datetime
from decimal import Decimal, InvalidOperation

import pytest

from utils import (
    calculate_duration_minutes,
    calculate_end_time,
    formatted_to_minutes,
    hours_to_minutes,
    minutes_to_formatted,
    minutes_to_hours,
    new_id,
    quantize_money,
    to_decimal,
)


class TestToDecimal:
    """Tests for to_decimal function."""

    def test_float_has_no_artefacts(self):
        """Floats go through str so 0.1 stays 0.1."""
        assert to_decimal(0.1) == Decimal("0.1")

    def test_blank_is_zero(self):
        """None and empty strings become zero."""
        assert to_decimal(None) == Decimal("0")
        assert to_decimal("") == Decimal("0")

    def test_decimal_passthrough(self):
        value = Decimal("12.34")
        assert to_decimal(value) is value

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-inf", float("nan")])
    def test_non_finite_rejected(self, value):
        with pytest.raises(InvalidOperation):
            to_decimal(value)

    def test_not_a_number(self):
        with pytest.raises(InvalidOperation):
            to_decimal("lots")


class TestQuantizeMoney:
    """Tests for quantize_money function."""

    def test_rounds_half_up(self):
        """Half cents round away from zero."""
        assert quantize_money(Decimal("1.005")) == Decimal("1.01")
        assert quantize_money(Decimal("1.004")) == Decimal("1.00")


class TestHoursAndMinutes:
    """Tests for hour/minute conversions."""

    def test_hours_to_minutes(self):
        assert hours_to_minutes(Decimal("1.5")) == 90
        assert hours_to_minutes("0.25") == 15

    def test_hours_to_minutes_rounds(self):
        """Fractions of a minute round to the nearest minute."""
        assert hours_to_minutes(Decimal("0.0125")) == 1

    def test_minutes_to_hours(self):
        assert minutes_to_hours(90) == Decimal("1.5")

    def test_minutes_to_formatted(self):
        """Minutes format as HH:MM."""
        assert minutes_to_formatted(90) == "01:30"
        assert minutes_to_formatted(5) == "00:05"
        assert minutes_to_formatted(600) == "10:00"

    def test_formatted_to_minutes(self):
        assert formatted_to_minutes("01:30") == 90
        assert formatted_to_minutes(" 2:05 ") == 125

    def test_formatted_to_minutes_invalid(self):
        """Bad text and out-of-range minutes return None."""
        assert formatted_to_minutes("abc") is None
        assert formatted_to_minutes("1:75") is None
        assert formatted_to_minutes("90") is None


class TestDurations:
    """Tests for start/end/minutes calculations."""

    def test_duration_minutes(self):
        start = datetime(2026, 1, 15, 9, 0)
        end = datetime(2026, 1, 15, 10, 45)
        assert calculate_duration_minutes(start, end) == 105

    def test_duration_rounds_half_up(self):
        """30 seconds rounds up to the next minute."""
        start = datetime(2026, 1, 15, 9, 0, 0)
        assert calculate_duration_minutes(start, datetime(2026, 1, 15, 9, 10, 30)) == 11
        assert calculate_duration_minutes(start, datetime(2026, 1, 15, 9, 10, 29)) == 10

    def test_end_time(self):
        start = datetime(2026, 1, 15, 23, 30)
        assert calculate_end_time(start, 60) == datetime(2026, 1, 16, 0, 30)

    def test_round_trip(self):
        """Start plus minutes gives back the same minutes."""
        start = datetime(2026, 1, 15, 9, 17)
        for minutes in (1, 59, 61, 480):
            assert calculate_duration_minutes(start, calculate_end_time(start, minutes)) == minutes


class TestNewId:
    """Tests for new_id function."""

    def test_unique(self):
        assert new_id() != new_id()
