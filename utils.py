"""Utility functions for time entry and money calculations."""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENTS = Decimal("0.01")

_HHMM = re.compile(r"^(\d+):(\d{2})$")


def new_id() -> str:
    return uuid.uuid4().hex


def to_decimal(value) -> Decimal:
    """Convert a number or numeric string to Decimal without float artefacts.

    NaN and infinities raise InvalidOperation like any other non-number.
    """
    if value is None or value == "":
        return Decimal("0")
    result = value if isinstance(value, Decimal) else Decimal(str(value))
    if not result.is_finite():
        raise InvalidOperation(f"{value!r} is not a finite number")
    return result


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def hours_to_minutes(hours) -> int:
    """Decimal hours to whole minutes (rounded to the nearest minute)."""
    return int((to_decimal(hours) * 60).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def minutes_to_hours(minutes: int) -> Decimal:
    return Decimal(minutes) / 60


def minutes_to_formatted(minutes: int) -> str:
    """Minutes to HH:MM."""
    h, m = divmod(minutes, 60)
    return f"{h:02d}:{m:02d}"


def formatted_to_minutes(formatted: str) -> int | None:
    """HH:MM to minutes, or None if the text is not a valid duration."""
    match = _HHMM.match(formatted.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if minutes >= 60:
        return None
    return hours * 60 + minutes


def calculate_duration_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between two datetimes, rounded half up."""
    seconds = Decimal(str((end - start).total_seconds()))
    return int((seconds / 60).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_end_time(start: datetime, minutes: int) -> datetime:
    return start + timedelta(minutes=minutes)
