"""
Date handling helpers for the ledger engine.

Transactions arrive with dates as ISO strings, SQL timestamps, ``date`` or
``datetime`` objects. Everything here normalizes to a plain calendar
``date`` and does month arithmetic with explicit clamping, so a day-31
anchor in a 30-day month lands on the 30th rather than overflowing.
All functions are pure; the clock is only read by ``today()``.
"""

import calendar
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)

# Formats tried after ISO parsing fails, in order
DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y/%m/%d",
    "%d/%m/%Y",
)


def parse_date(value: Any, formats: Iterable[str] = DATE_FORMATS) -> Optional[date]:
    """
    Parse a heterogeneous date value into a calendar date.

    Args:
        value: ``date``, ``datetime`` (including pandas Timestamps), or string
        formats: strptime formats tried after ISO parsing

    Returns:
        Parsed ``date``, or None when the value is empty or unparseable.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value.date()

    if isinstance(value, date):
        return value

    if not isinstance(value, str):
        return None

    date_str = value.strip()
    if not date_str:
        return None

    try:
        # ``Z`` suffix is accepted by fromisoformat only on 3.11+
        return datetime.fromisoformat(date_str.replace("Z", "+00:00")).date()
    except ValueError:
        pass

    for date_format in formats:
        try:
            return datetime.strptime(date_str, date_format).date()
        except ValueError:
            continue

    logger.debug("Unparseable date value %r", value)
    return None


def to_date_string(value: Any) -> Optional[str]:
    """Return the ISO ``YYYY-MM-DD`` form of ``value``, or None if it cannot be parsed."""
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else None


def today() -> date:
    """Return the current local calendar date."""
    return date.today()


def days_in_month(year: int, month: int) -> int:
    """Return the number of days in the given month."""
    return calendar.monthrange(year, month)[1]


def clamp_day(year: int, month: int, day: int) -> date:
    """
    Build a date, clamping ``day`` into the month.

    ``clamp_day(2024, 2, 31)`` is 2024-02-29; days below 1 become 1.
    """
    last_day = days_in_month(year, month)
    return date(year, month, max(1, min(day, last_day)))


def shift_month(year: int, month: int, months: int) -> tuple:
    """Return ``(year, month)`` moved by ``months`` (may be negative)."""
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)


def subtract_days(value: date, days: int) -> date:
    return value - timedelta(days=days)


def add_months(value: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length."""
    year, month = shift_month(value.year, value.month, months)
    return clamp_day(year, month, value.day)


def start_of_day(value: date) -> datetime:
    """Return midnight at the start of ``value``."""
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.min)


def end_of_day(value: date) -> datetime:
    """Return the last representable instant of ``value``."""
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.max)


def start_of_month(value: date) -> date:
    return value.replace(day=1)


def end_of_month(value: date) -> date:
    return value.replace(day=days_in_month(value.year, value.month))


def start_of_year(value: date) -> date:
    return value.replace(month=1, day=1)


def end_of_year(value: date) -> date:
    return value.replace(month=12, day=31)


def diff_in_days(start: Any, end: Any) -> int:
    """
    Whole days from ``start`` to ``end`` (negative if ``end`` is earlier).

    Unparseable inputs yield 0.
    """
    start_date = parse_date(start)
    end_date = parse_date(end)
    if start_date is None or end_date is None:
        return 0
    return (end_date - start_date).days


def is_in_range(value: Any, start: Any, end: Any = None) -> bool:
    """
    Check whether ``value`` falls within ``[start, end]`` inclusive.

    A missing ``end`` means the range is unbounded above. Unparseable
    ``value`` or ``start`` is never in range.
    """
    value_date = parse_date(value)
    start_date = parse_date(start)
    if value_date is None or start_date is None:
        return False
    if value_date < start_date:
        return False
    end_date = parse_date(end)
    if end_date is None:
        return True
    return value_date <= end_date


def next_occurrence_of_day(due_day: int, reference: Optional[date] = None) -> date:
    """
    Return the next date (on or after ``reference``) falling on ``due_day``.

    The due day is clamped to the month length, so due day 31 in April
    resolves to April 30.
    """
    ref = reference or today()
    this_month = clamp_day(ref.year, ref.month, due_day)
    if ref <= this_month:
        return this_month
    year, month = shift_month(ref.year, ref.month, 1)
    return clamp_day(year, month, due_day)
