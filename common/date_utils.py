"""
common/date_utils.py - Date normalization and calendar utilities

Provides consistent date handling across the adherence engine to avoid type
mismatches between ISO strings (exports, JSON populations) and date objects.

Usage:
    from common.date_utils import normalize_date, days_between, is_final_quarter

    d = normalize_date("2025-01-15")        # Returns date(2025, 1, 15)
    d = normalize_date(date(2025, 1, 15))   # Returns date(2025, 1, 15)

    days_between(date(2025, 1, 1), date(2025, 1, 31))  # 30
    is_final_quarter(date(2025, 10, 1))                # True
"""

from datetime import date, datetime
from typing import Union

DateLike = Union[str, date]


def normalize_date(value: DateLike) -> date:
    """
    Normalize a date-like value to a date object.

    Args:
        value: Either a date object or ISO format string (YYYY-MM-DD).
            Datetimes are truncated to their calendar date.

    Returns:
        date object

    Raises:
        ValueError: If string is not valid ISO format
        TypeError: If value is neither str nor date
    """
    if isinstance(value, datetime):
        return value.date()
    elif isinstance(value, date):
        return value
    elif isinstance(value, str):
        # Exports often carry a time component ("2025-01-15T00:00:00")
        return date.fromisoformat(value.strip()[:10])
    else:
        raise TypeError(f"Expected str or date, got {type(value).__name__}")


def to_date_string(value: DateLike) -> str:
    """
    Convert a date-like value to ISO format string.

    Args:
        value: Either a date object or ISO format string

    Returns:
        ISO format date string (YYYY-MM-DD)
    """
    return normalize_date(value).isoformat()


def validate_as_of_date(value: DateLike) -> date:
    """
    Validate and normalize an as_of_date.

    Does not compare to the current date (to maintain time-invariance).

    Raises:
        ValueError: If date is invalid
    """
    try:
        return normalize_date(value)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid as_of_date: {e}") from e


def days_between(start: date, end: date) -> int:
    """Whole calendar days from start to end (negative if end precedes start)."""
    return (end - start).days


def inclusive_day_count(start: date, end: date) -> int:
    """Number of calendar days in [start, end], both ends included."""
    return (end - start).days + 1


def year_start(year: int) -> date:
    return date(year, 1, 1)


def year_end(year: int) -> date:
    return date(year, 12, 31)


def days_to_year_end(as_of_date: date) -> int:
    """
    Days remaining in the calendar year of as_of_date, counting as_of_date itself.

    December 31 returns 1; there is always at least the current day left.
    """
    return inclusive_day_count(as_of_date, year_end(as_of_date.year))


def is_final_quarter(as_of_date: date, start_month: int = 10) -> bool:
    """True when as_of_date falls in the final calendar quarter (Oct-Dec by default)."""
    return as_of_date.month >= start_month
