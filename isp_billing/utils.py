"""Utility functions for the billing core.

This module provides helpers for parsing user input into Python data types,
for calendar arithmetic (adding months, last day of a month) and for the
currency rounding and formatting rules shared by the calculator, the
allocator and the presentation code.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP, getcontext
import calendar
from typing import Union

getcontext().prec = 28  # increase decimal precision to avoid rounding errors

CENT = Decimal("0.01")

Number = Union[Decimal, int, float, str]


def parse_date(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` string into a ``date``.

    Raises
    ------
    ValueError
        If the string is not a valid calendar date.
    """
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except Exception as exc:
        raise ValueError(f"Invalid date string: {value}") from exc


def add_months(dt: date, months: int) -> date:
    """Return a new date a number of months after ``dt``.

    The day of the month is clamped to the last valid day if needed (e.g.,
    adding one month to Jan 31 yields Feb 28 or 29).
    """
    year = dt.year + (dt.month - 1 + months) // 12
    month = (dt.month - 1 + months) % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def last_day_of_month(dt: date) -> int:
    return calendar.monthrange(dt.year, dt.month)[1]


def to_decimal(value: Number) -> Decimal:
    """Convert ints, floats and numeric strings into a ``Decimal``.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.1")`` rather
    than its binary expansion. Commas are stripped from strings. NaN and
    infinities are rejected.
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            if isinstance(value, str):
                result = Decimal(value.replace(",", "").strip())
            else:
                result = Decimal(str(value))
        except Exception as exc:
            raise ValueError(f"Invalid numeric value: {value}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid numeric value: {value}")
    return result


def round_currency(value: Decimal) -> Decimal:
    """Round half-up to two decimal places."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_currency(amount: Number) -> str:
    """Format an amount as a peso string, e.g. ``$1,234.5``.

    Up to two fraction digits are shown and trailing zeros are dropped.
    Negative amounts keep the sign in front of the symbol.
    """
    value = round_currency(to_decimal(amount))
    sign = "-" if value < 0 else ""
    text = f"{abs(value):,.2f}".rstrip("0").rstrip(".")
    return f"{sign}${text}"
