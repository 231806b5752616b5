"""
Budget period resolution and lifecycle.

A user's budgets accumulate against one window at a time. The window is
either an explicitly recorded period (opened and closed by the user) or,
when none is active, a monthly cycle anchored to the user's budget start
day. Resolution never fails: a missing period simply means the anchored
fallback window is used.

The functions at module level are pure transforms over ``BudgetPeriod``
records. ``BudgetPeriodManager`` persists their results through the
database manager.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import date_utils
from exceptions import BudgetPeriodError
from models import BudgetPeriod, User

logger = logging.getLogger(__name__)

DEFAULT_ANCHOR_DAY = 1


@dataclass(frozen=True)
class PeriodWindow:
    """
    Accounting window a budget accumulates against.

    Attributes:
        start: Start of the first day (inclusive)
        end: End of the last day (inclusive), or None for an open period
        period_id: Id of the recorded period, None for an anchored fallback
    """
    start: datetime
    end: Optional[datetime] = None
    period_id: Optional[str] = None

    @property
    def start_date(self) -> date:
        return self.start.date()

    @property
    def end_date(self) -> Optional[date]:
        return self.end.date() if self.end is not None else None

    @property
    def is_open(self) -> bool:
        return self.end is None

    def contains(self, value: Any) -> bool:
        """True when ``value`` parses to a date inside the window."""
        return date_utils.is_in_range(value, self.start_date, self.end_date)


def normalize_anchor_day(anchor_day: Any, default: int = DEFAULT_ANCHOR_DAY) -> int:
    """Coerce a stored budget start day into 1-31, falling back to ``default``."""
    try:
        day = int(anchor_day)
    except (TypeError, ValueError):
        return default
    if day < 1 or day > 31:
        logger.warning("Budget start day %r out of range; using %s", anchor_day, default)
        return default
    return day


def fallback_window(anchor_day: int, today: date) -> PeriodWindow:
    """
    Build the monthly cycle containing ``today`` for the given anchor day.

    The anchor is clamped separately in the start and end months, so anchor
    31 gives Jan 31 .. Feb 27 (2023) and Feb 28 .. Mar 30.

    Args:
        anchor_day: Day-of-month the cycle starts on (1-31)
        today: Reference date

    Returns:
        Closed window from the anchor up to the day before the next anchor
    """
    anchor_this_month = date_utils.clamp_day(today.year, today.month, anchor_day)
    if today >= anchor_this_month:
        start = anchor_this_month
        next_year, next_month = date_utils.shift_month(today.year, today.month, 1)
        next_anchor = date_utils.clamp_day(next_year, next_month, anchor_day)
    else:
        prev_year, prev_month = date_utils.shift_month(today.year, today.month, -1)
        start = date_utils.clamp_day(prev_year, prev_month, anchor_day)
        next_anchor = anchor_this_month

    end = date_utils.subtract_days(next_anchor, 1)
    return PeriodWindow(
        start=date_utils.start_of_day(start),
        end=date_utils.end_of_day(end)
    )


def find_active_period(periods: Iterable[BudgetPeriod], user_id: Optional[str] = None) -> Optional[BudgetPeriod]:
    """
    Return the user's active period, preferring an open one.

    Args:
        periods: Candidate periods
        user_id: Restrict to this owner; None accepts any owner

    Returns:
        The active period, or None
    """
    active = [
        p for p in periods
        if p.is_active and (user_id is None or p.user_id == user_id)
    ]
    if not active:
        return None
    # Open periods first, then the most recent start
    active.sort(key=lambda p: (p.is_open, p.start_date), reverse=True)
    return active[0]


def resolve_period_window(
    user: User,
    periods: Iterable[BudgetPeriod],
    today: Optional[date] = None,
    default_anchor: int = DEFAULT_ANCHOR_DAY
) -> PeriodWindow:
    """
    Resolve the window the user's budgets currently accumulate against.

    Args:
        user: Budget owner
        periods: Recorded periods (any owner; filtered here)
        today: Reference date, defaults to the current date
        default_anchor: Anchor day used when the user has none

    Returns:
        The active recorded period, or the anchored monthly fallback
    """
    today = today or date_utils.today()
    active = find_active_period(periods, user.id)
    if active is not None:
        end = date_utils.end_of_day(active.end_date) if active.end_date else None
        return PeriodWindow(
            start=date_utils.start_of_day(active.start_date),
            end=end,
            period_id=active.id
        )

    anchor = normalize_anchor_day(user.budget_start_date, default_anchor)
    logger.debug("No active period for user %s; using anchor day %s", user.id, anchor)
    return fallback_window(anchor, today)


def start_period(
    periods: Sequence[BudgetPeriod],
    user_id: str,
    start_date: date,
    period_id: str
) -> Tuple[List[BudgetPeriod], BudgetPeriod]:
    """
    Open a new active period, deactivating the user's other periods.

    Returns:
        (updated periods, the new period)
    """
    new_period = BudgetPeriod(
        id=period_id,
        user_id=user_id,
        start_date=start_date,
        end_date=None,
        is_active=True
    )
    updated = [
        replace(p, is_active=False) if p.user_id == user_id and p.is_active else p
        for p in periods
    ]
    updated.append(new_period)
    return updated, new_period


def close_period(
    periods: Sequence[BudgetPeriod],
    period_id: str,
    end_date: date,
    next_period_id: str
) -> Tuple[List[BudgetPeriod], BudgetPeriod, BudgetPeriod]:
    """
    Close a period and open the next one starting the following day.

    Args:
        periods: Current periods
        period_id: Period to close
        end_date: Last day of the closed period
        next_period_id: Id for the automatically opened successor

    Returns:
        (updated periods, closed period, next period)

    Raises:
        BudgetPeriodError: If the period is unknown or ``end_date`` precedes its start
    """
    target = next((p for p in periods if p.id == period_id), None)
    if target is None:
        raise BudgetPeriodError("Budget period not found", details={"period_id": period_id})
    if end_date < target.start_date:
        raise BudgetPeriodError(
            "End date cannot be before the period start date",
            details={"period_id": period_id, "start_date": target.start_date.isoformat(),
                     "end_date": end_date.isoformat()}
        )

    closed = replace(target, end_date=end_date, is_active=False)
    remaining = [closed if p.id == period_id else p for p in periods]
    updated, next_period = start_period(
        remaining,
        target.user_id,
        date_utils.add_days(end_date, 1),
        next_period_id
    )
    return updated, closed, next_period


def delete_period(periods: Sequence[BudgetPeriod], period_id: str) -> List[BudgetPeriod]:
    """Remove ``period_id``; the owner falls back to the anchored window if it was active."""
    return [p for p in periods if p.id != period_id]


class BudgetPeriodManager:
    """
    Persists budget period lifecycle changes.

    The decisions are made by the module-level functions; this class loads
    the owner's periods, applies the transform and writes the result back.
    """

    def __init__(self, db_manager, default_anchor: int = DEFAULT_ANCHOR_DAY):
        """
        Initialize the period manager.

        Args:
            db_manager: DatabaseManager instance
            default_anchor: Anchor day for users without a budget start day
        """
        self.db_manager = db_manager
        self.default_anchor = default_anchor
        logger.info("Budget period manager initialized")

    def _save_all(self, before: Sequence[BudgetPeriod], after: Sequence[BudgetPeriod]) -> None:
        previous = {p.id: p for p in before}
        for period in after:
            if previous.get(period.id) != period:
                self.db_manager.save_period(period)

    def start_period(self, user_id: str, start_date: date) -> BudgetPeriod:
        """
        Open a new active period for ``user_id``.

        Raises:
            DatabaseError: If the store rejects the write
        """
        periods = self.db_manager.get_periods(user_id=user_id)
        updated, new_period = start_period(periods, user_id, start_date, self.db_manager.new_id())
        self._save_all(periods, updated)
        logger.info("Started budget period %s for user %s on %s", new_period.id, user_id, start_date)
        return new_period

    def close_period(self, period_id: str, end_date: date) -> Tuple[BudgetPeriod, BudgetPeriod]:
        """
        Close ``period_id`` on ``end_date`` and open its successor.

        Returns:
            (closed period, next period)

        Raises:
            BudgetPeriodError: If the period is unknown or the end date is invalid
        """
        existing = self.db_manager.get_period(period_id)
        if existing is None:
            raise BudgetPeriodError("Budget period not found", details={"period_id": period_id})

        periods = self.db_manager.get_periods(user_id=existing.user_id)
        updated, closed, next_period = close_period(
            periods, period_id, end_date, self.db_manager.new_id()
        )
        self._save_all(periods, updated)
        logger.info(
            "Closed budget period %s on %s; opened %s starting %s",
            closed.id, end_date, next_period.id, next_period.start_date
        )
        return closed, next_period

    def delete_period(self, period_id: str) -> bool:
        """Delete a period. Returns False if it did not exist."""
        deleted = self.db_manager.delete_period(period_id)
        if deleted:
            logger.info(f"Deleted budget period {period_id}")
        return deleted

    def get_active_window(self, user: User, today: Optional[date] = None) -> PeriodWindow:
        """Resolve the current window for ``user`` from the stored periods."""
        periods = self.db_manager.get_periods(user_id=user.id)
        return resolve_period_window(user, periods, today, self.default_anchor)
