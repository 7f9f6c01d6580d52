"""Utility functions for the schedule engine.

This module provides helpers for parsing user input into Python data types and
for handling dates, including adding months and normalizing ISO-8601 or
year-month strings to ``datetime.date`` instances.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
import calendar
from typing import Optional, Union

Number = Union[Decimal, int, float, str]


def parse_year_month(ym: str) -> date:
    """Parse a YYYY-MM string into a ``date`` object (first day of month).

    Raises
    ------
    ValueError
        If the string is not a valid year-month.
    """
    try:
        parts = ym.split("-")
        if len(parts) != 2:
            raise ValueError
        year = int(parts[0])
        month = int(parts[1])
        return date(year, month, 1)
    except (ValueError, AttributeError) as exc:
        raise ValueError(f"Invalid year-month string: {ym}") from exc


def parse_date(value: Union[str, date, datetime]) -> date:
    """Normalize ``value`` to a ``date``.

    Accepts ``date``/``datetime`` objects, full ISO-8601 strings (a trailing
    ``Z`` is tolerated) and ``YYYY-MM`` strings.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Invalid date value: {value!r}")
    text = value.strip()
    if len(text) == 7:
        return parse_year_month(text)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).date()
    except ValueError as exc:
        raise ValueError(f"Invalid ISO-8601 date: {value}") from exc


def add_months(dt: date, months: int) -> date:
    """Return a new date a number of months after ``dt``.

    The day of the month is clamped to the last valid day if needed (e.g.,
    adding one month to Jan 31 yields Feb 28 or 29).
    """
    year = dt.year + (dt.month - 1 + months) // 12
    month = (dt.month - 1 + months) % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def advance_date(start: date, intervals: int, interval_days: Optional[int]) -> date:
    """Move ``start`` forward by ``intervals`` payment intervals.

    ``interval_days`` is the fixed length of a day-based interval, or ``None``
    for calendar months. Offsets are always taken from ``start`` so month-end
    dates do not drift (Jan 31, Feb 28, Mar 31, ...).
    """
    if interval_days is None:
        return add_months(start, intervals)
    return start + timedelta(days=interval_days * intervals)


def decimal_from_str(value: str) -> Decimal:
    """Convert a numeric string into a ``Decimal``.

    The function strips any commas and handles both integer and float-like
    strings. It raises ``ValueError`` if conversion fails.
    """
    try:
        cleaned = value.replace(",", "").strip()
        result = Decimal(cleaned)
    except (InvalidOperation, AttributeError) as exc:
        raise ValueError(f"Invalid numeric value: {value}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid numeric value: {value}")
    return result


def to_decimal(value: Number) -> Decimal:
    """Convert ints, floats, strings and Decimals to ``Decimal``.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.1")``.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid numeric value: {value!r}")
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"Invalid numeric value: {value}")
        return value
    if isinstance(value, (int, float)):
        return decimal_from_str(str(value))
    if isinstance(value, str):
        return decimal_from_str(value)
    raise ValueError(f"Invalid numeric value: {value!r}")
