"""
dates.py - Calendar-Day Helpers

Business dates are compared and counted as calendar days. A datetime passed
anywhere a business date is expected is reduced to its date first, so a
timestamp late in the evening never shifts a day count.
"""

from __future__ import annotations
from datetime import date, datetime, timedelta
from typing import Optional, Union

DateLike = Union[date, datetime]


def to_date(value: DateLike) -> date:
    """Reduce a datetime to its calendar date; pass dates through."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raise TypeError(f"Expected date or datetime, got {type(value).__name__}")


def parse_date(text: str) -> date:
    """Parse YYYY-MM-DD."""
    return date.fromisoformat(text)


def days_between(start: DateLike, end: DateLike) -> int:
    """Calendar days from start to end. Negative when end precedes start."""
    return (to_date(end) - to_date(start)).days


def is_after(a: DateLike, b: DateLike) -> bool:
    """True if a falls on a later calendar day than b."""
    return to_date(a) > to_date(b)


def add_days(value: DateLike, days: int) -> date:
    return to_date(value) + timedelta(days=days)


def latest(values) -> Optional[date]:
    """Latest calendar date in an iterable, or None when it is empty."""
    dates = [to_date(v) for v in values]
    return max(dates) if dates else None
