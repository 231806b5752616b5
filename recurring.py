"""
Recurring transaction series.

A series describes a repeating income or expense (rent, salary, a yearly
subscription). This module works out when a series next falls due and
what it costs per month, so recurring commitments can be compared with
monthly budgets.

Due-day semantics per frequency:
    weekly / biweekly: ISO weekday (1 = Monday .. 7 = Sunday)
    monthly / yearly: day of month, clamped to the month length
    once: ignored; the start date is used
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

import date_utils
from aggregation import round_currency
from exceptions import RecurringSeriesError
from models import TransactionType, User, coerce_enum

logger = logging.getLogger(__name__)

FREQUENCIES = ("once", "weekly", "biweekly", "monthly", "yearly")

# Monthly equivalents
WEEKS_PER_MONTH = 4.33
BIWEEKS_PER_MONTH = 2.17
MONTHS_PER_YEAR = 12


@dataclass(frozen=True)
class RecurringSeries:
    """
    A repeating transaction template.

    Attributes:
        id: Series identifier
        description: Free text
        amount: Amount per occurrence
        type: income or expense
        frequency: One of ``FREQUENCIES``
        due_day: Weekday (weekly/biweekly) or day of month (monthly/yearly)
        start_date: First occurrence; also fixes the month of yearly series
        user_ids: Members sharing the series
        category: Category of generated transactions
        account_id: Account the occurrences hit
        is_active: Paused series are never due
    """
    id: str
    description: str
    amount: float
    type: TransactionType
    frequency: str
    due_day: int
    start_date: Any
    user_ids: FrozenSet[str] = field(default_factory=frozenset)
    category: str = ""
    account_id: Optional[str] = None
    is_active: bool = True

    def __post_init__(self):
        object.__setattr__(self, "type", coerce_enum(TransactionType, self.type))
        object.__setattr__(self, "user_ids", frozenset(self.user_ids or ()))
        object.__setattr__(self, "amount", float(self.amount))

    def validate(self) -> "RecurringSeries":
        """
        Check frequency, due day and amount.

        Raises:
            RecurringSeriesError: If the series cannot be scheduled
        """
        if self.frequency not in FREQUENCIES:
            raise RecurringSeriesError(
                "Unknown recurring frequency",
                details={"series_id": self.id, "frequency": self.frequency}
            )
        if self.type is TransactionType.TRANSFER:
            raise RecurringSeriesError(
                "Recurring series must be income or expense",
                details={"series_id": self.id}
            )
        if self.amount < 0:
            raise RecurringSeriesError(
                "Recurring amount must be non-negative",
                details={"series_id": self.id, "amount": self.amount}
            )
        if self.frequency in ("weekly", "biweekly") and not 1 <= self.due_day <= 7:
            raise RecurringSeriesError(
                "Weekly series need a weekday between 1 and 7",
                details={"series_id": self.id, "due_day": self.due_day}
            )
        if self.frequency in ("monthly", "yearly") and not 1 <= self.due_day <= 31:
            raise RecurringSeriesError(
                "Monthly series need a day of month between 1 and 31",
                details={"series_id": self.id, "due_day": self.due_day}
            )
        return self


def _next_weekday(today: date, due_day: int, cycle_days: int) -> date:
    days_until = due_day - today.isoweekday()
    if days_until <= 0:
        days_until += cycle_days
    return date_utils.add_days(today, days_until)


def _next_monthly(today: date, due_day: int) -> date:
    if today.day < due_day:
        return date_utils.clamp_day(today.year, today.month, due_day)
    year, month = date_utils.shift_month(today.year, today.month, 1)
    return date_utils.clamp_day(year, month, due_day)


def _next_yearly(today: date, series: RecurringSeries) -> date:
    start = date_utils.parse_date(series.start_date)
    if start is None:
        logger.warning("Recurring series %s has invalid start date %r", series.id, series.start_date)
        return today
    this_year = date_utils.clamp_day(today.year, start.month, series.due_day)
    if this_year > today:
        return this_year
    return date_utils.clamp_day(today.year + 1, start.month, series.due_day)


def _next_once(today: date, series: RecurringSeries) -> date:
    start = date_utils.parse_date(series.start_date)
    if start is None:
        logger.warning("Recurring series %s has invalid start date %r", series.id, series.start_date)
        return today
    return start if start > today else today


def next_execution_date(series: RecurringSeries, today: Optional[date] = None) -> date:
    """
    Next date the series falls due, strictly after ``today`` for repeating
    frequencies.

    Args:
        series: The series
        today: Reference date, defaults to the current date

    Returns:
        Due date
    """
    today = today or date_utils.today()
    frequency = series.frequency
    if frequency == "weekly":
        return _next_weekday(today, series.due_day, 7)
    if frequency == "biweekly":
        return _next_weekday(today, series.due_day, 14)
    if frequency == "monthly":
        return _next_monthly(today, series.due_day)
    if frequency == "yearly":
        return _next_yearly(today, series)
    return _next_once(today, series)


def days_until_due(series: RecurringSeries, today: Optional[date] = None) -> int:
    """Days from ``today`` to the next execution (0 when due today)."""
    today = today or date_utils.today()
    return date_utils.diff_in_days(today, next_execution_date(series, today))


def is_series_due(series: RecurringSeries, today: Optional[date] = None) -> bool:
    """True when an active series' next execution is today or earlier."""
    if not series.is_active:
        return False
    today = today or date_utils.today()
    return next_execution_date(series, today) <= today


def get_due_series(series_list: Iterable[RecurringSeries], today: Optional[date] = None) -> List[RecurringSeries]:
    today = today or date_utils.today()
    return [s for s in series_list if is_series_due(s, today)]


def monthly_amount(series: RecurringSeries) -> float:
    """Monthly equivalent of one series' amount."""
    if series.frequency == "weekly":
        return series.amount * WEEKS_PER_MONTH
    if series.frequency == "biweekly":
        return series.amount * BIWEEKS_PER_MONTH
    if series.frequency == "yearly":
        return series.amount / MONTHS_PER_YEAR
    return series.amount


@dataclass(frozen=True)
class SeriesTotals:
    total_income: float
    total_expenses: float
    net_monthly: float


def calculate_series_totals(series_list: Iterable[RecurringSeries]) -> SeriesTotals:
    """Monthly-equivalent income and expense across active series."""
    income = expenses = 0.0
    for series in series_list:
        if not series.is_active:
            continue
        amount = monthly_amount(series)
        if series.type is TransactionType.INCOME:
            income += amount
        elif series.type is TransactionType.EXPENSE:
            expenses += amount
    return SeriesTotals(
        total_income=round_currency(income),
        total_expenses=round_currency(expenses),
        net_monthly=round_currency(income - expenses)
    )


def has_access(series: RecurringSeries, user_id: str) -> bool:
    return user_id in series.user_ids


def group_series_by_user(
    series_list: Iterable[RecurringSeries],
    users: Iterable[User]
) -> Dict[str, List[RecurringSeries]]:
    """Map user id to the series that user shares; users without series are omitted."""
    series_list = list(series_list)
    grouped = {}
    for user in users:
        owned = [s for s in series_list if user.id in s.user_ids]
        if owned:
            grouped[user.id] = owned
    return grouped
