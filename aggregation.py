"""
Financial aggregation engine.

Turns transactions into the figures the presentation layer shows: budget
spent/remaining/saved, progress status, category breakdowns, account
balances, day groups with running totals, and a cumulative daily series
for charting.

Everything here is a pure function of its arguments. Callers resolve the
period window and apply permission filtering first; nothing in this
module authorizes or reads the clock implicitly.

Sign conventions:
    - Budget spend: expense and transfer add, income subtracts (a refund
      in a tracked category reduces spend).
    - Day totals: income adds, expense and transfer subtract.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import date_utils
from budget_periods import PeriodWindow
from models import Budget, Transaction, TransactionType

logger = logging.getLogger(__name__)

CHART_DAYS = 30
WARNING_THRESHOLD = 80.0
DANGER_THRESHOLD = 100.0

STATUS_SAFE = "safe"
STATUS_WARNING = "warning"
STATUS_DANGER = "danger"

_CENT = Decimal("0.01")


def round_currency(value: float) -> float:
    """Round to 2 places, halves away from zero (2.675 -> 2.68, -2.675 -> -2.68)."""
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def _spend_delta(transaction: Transaction) -> float:
    """Contribution of one transaction to budget spend."""
    if transaction.type is TransactionType.INCOME:
        return -transaction.amount
    return transaction.amount


# ---------------------------------------------------------------------------
# Budget figures
# ---------------------------------------------------------------------------

def select_budget_transactions(
    transactions: Iterable[Transaction],
    budget: Budget,
    window: PeriodWindow
) -> List[Transaction]:
    """
    Pick the transactions that count towards ``budget`` in ``window``.

    A transaction counts when it belongs to the budget owner, its category is
    tracked by the budget and its date falls inside the window (inclusive;
    an open window is unbounded above). Unparseable dates never count.
    """
    return [
        tx for tx in transactions
        if tx.user_id == budget.user_id
        and tx.category in budget.categories
        and window.contains(tx.date)
    ]


def calculate_spent(
    transactions: Iterable[Transaction],
    budget: Budget,
    window: PeriodWindow
) -> float:
    """
    Net spend against ``budget`` within ``window``.

    Args:
        transactions: Candidate transactions (any owner, any category)
        budget: Budget whose categories and owner scope the selection
        window: Accounting window

    Returns:
        Spend rounded to 2 places; negative when income outweighs expenses
    """
    total = sum(_spend_delta(tx) for tx in select_budget_transactions(transactions, budget, window))
    return round_currency(total)


def calculate_remaining(amount: float, spent: float) -> float:
    """Ceiling minus spend; negative when over budget."""
    return round_currency(amount - spent)


def calculate_saved(amount: float, spent: float) -> float:
    """Unspent part of the ceiling, never below zero."""
    return max(0.0, round_currency(amount - spent))


@dataclass(frozen=True)
class BudgetProgress:
    """
    Progress of a budget in its current window.

    Attributes:
        budget_id: Budget identifier
        description: Budget description
        user_id: Budget owner
        amount: Ceiling
        spent: Net spend
        remaining: amount - spent (may be negative)
        saved: max(0, remaining)
        percentage: spent as a percentage of the ceiling (0 when the ceiling is 0)
        is_over_budget: True when spend exceeds the ceiling
        status: safe, warning or danger
    """
    budget_id: str
    description: str
    user_id: str
    amount: float
    spent: float
    remaining: float
    saved: float
    percentage: float
    is_over_budget: bool
    status: str
    window: Optional[PeriodWindow] = None


def classify_status(
    percentage: float,
    warning_threshold: float = WARNING_THRESHOLD,
    danger_threshold: float = DANGER_THRESHOLD
) -> str:
    if percentage >= danger_threshold:
        return STATUS_DANGER
    if percentage >= warning_threshold:
        return STATUS_WARNING
    return STATUS_SAFE


def calculate_budget_progress(
    budget: Budget,
    spent: float,
    window: Optional[PeriodWindow] = None,
    warning_threshold: float = WARNING_THRESHOLD,
    danger_threshold: float = DANGER_THRESHOLD
) -> BudgetProgress:
    """
    Derive progress figures for ``budget`` from an already computed spend.

    Args:
        budget: The budget
        spent: Output of ``calculate_spent``
        window: Window the spend was computed over, carried through for display
        warning_threshold: Percentage at which status becomes ``warning``
        danger_threshold: Percentage at which status becomes ``danger``

    Returns:
        BudgetProgress record
    """
    percentage = round_currency(spent / budget.amount * 100) if budget.amount > 0 else 0.0
    return BudgetProgress(
        budget_id=budget.id,
        description=budget.description,
        user_id=budget.user_id,
        amount=budget.amount,
        spent=spent,
        remaining=calculate_remaining(budget.amount, spent),
        saved=calculate_saved(budget.amount, spent),
        percentage=percentage,
        is_over_budget=spent > budget.amount,
        status=classify_status(percentage, warning_threshold, danger_threshold),
        window=window
    )


# ---------------------------------------------------------------------------
# Category breakdown
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CategoryBreakdown:
    category: str
    spent: float
    received: float
    net: float
    percentage: float
    count: int


def category_breakdown(transactions: Iterable[Transaction]) -> List[CategoryBreakdown]:
    """
    Summarize expenses and income per category.

    ``percentage`` is the category's share of total expense. Transfers move
    money between accounts and are left out. Entries are ordered by spend,
    largest first.
    """
    spent: Dict[str, float] = defaultdict(float)
    received: Dict[str, float] = defaultdict(float)
    counts: Dict[str, int] = defaultdict(int)

    for tx in transactions:
        if tx.type is TransactionType.EXPENSE:
            spent[tx.category] += tx.amount
        elif tx.type is TransactionType.INCOME:
            received[tx.category] += tx.amount
        else:
            continue
        counts[tx.category] += 1

    total_expense = sum(spent.values())
    rows = []
    for category in counts:
        cat_spent = round_currency(spent[category])
        cat_received = round_currency(received[category])
        percentage = (
            round_currency(spent[category] / total_expense * 100) if total_expense > 0 else 0.0
        )
        rows.append(CategoryBreakdown(
            category=category,
            spent=cat_spent,
            received=cat_received,
            net=round_currency(cat_received - cat_spent),
            percentage=percentage,
            count=counts[category]
        ))

    rows.sort(key=lambda row: (-row.spent, row.category))
    return rows


# ---------------------------------------------------------------------------
# Account balances
# ---------------------------------------------------------------------------

def _balance_effect(transaction: Transaction, account_id: str) -> float:
    """Signed effect of one transaction on ``account_id``."""
    if transaction.is_transfer:
        effect = 0.0
        if transaction.account_id == account_id:
            effect -= transaction.amount
        if transaction.to_account_id == account_id:
            effect += transaction.amount
        return effect

    if transaction.to_account_id or transaction.account_id != account_id:
        return 0.0
    if transaction.type is TransactionType.INCOME:
        return transaction.amount
    return -transaction.amount


def account_balance(transactions: Iterable[Transaction], account_id: str) -> float:
    """
    Balance of ``account_id`` implied by the ledger.

    Transfers debit the source and credit the destination. Income and
    expense rows count only on their own account.
    """
    return round_currency(sum(_balance_effect(tx, account_id) for tx in transactions))


def account_balances(transactions: Sequence[Transaction], account_ids: Iterable[str]) -> Dict[str, float]:
    return {account_id: account_balance(transactions, account_id) for account_id in account_ids}


def historical_balance(
    transactions: Iterable[Transaction],
    account_id: str,
    current_balance: float,
    target_date: date
) -> float:
    """
    Balance of ``account_id`` at the start of ``target_date``.

    Works backwards from ``current_balance`` by reversing every transaction
    dated on or after ``target_date``.
    """
    reversed_total = 0.0
    for tx in transactions:
        tx_date = tx.parsed_date
        if tx_date is None or tx_date < target_date:
            continue
        reversed_total += _balance_effect(tx, account_id)
    return round_currency(current_balance - reversed_total)


def calculate_internal_transfers(transactions: Iterable[Transaction], account_ids: Set[str]) -> float:
    """Total moved between accounts that are both inside ``account_ids``."""
    total = sum(
        tx.amount for tx in transactions
        if tx.is_transfer
        and tx.account_id in account_ids
        and tx.to_account_id in account_ids
    )
    return round_currency(total)


# ---------------------------------------------------------------------------
# Time series
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DailyPoint:
    """
    One day of the cumulative spend series.

    Attributes:
        day: 1-based day index within the series
        date: Calendar date of the point
        amount: Cumulative net spend up to and including ``date``
        is_future: True when ``date`` is after the reference day
    """
    day: int
    date: date
    amount: float
    is_future: bool


def cumulative_series(
    transactions: Iterable[Transaction],
    start: date,
    today: date,
    days: int = CHART_DAYS
) -> List[DailyPoint]:
    """
    Fixed-length cumulative spend series starting at ``start``.

    Args:
        transactions: Transactions already selected for the budget
        start: First day of the series
        today: Reference day for ``is_future``
        days: Number of points

    Returns:
        ``days`` points; daily delta is expense + transfer - income
    """
    daily: Dict[date, float] = defaultdict(float)
    for tx in transactions:
        tx_date = tx.parsed_date
        if tx_date is None:
            continue
        daily[tx_date] += _spend_delta(tx)

    points = []
    running = 0.0
    for index in range(days):
        current = date_utils.add_days(start, index)
        running += daily.get(current, 0.0)
        points.append(DailyPoint(
            day=index + 1,
            date=current,
            amount=round_currency(running),
            is_future=current > today
        ))
    return points


@dataclass(frozen=True)
class ChartSeries:
    """
    Chart-ready view of a cumulative series against a ceiling.

    Attributes:
        points: Every point, future ones included
        visible_points: Non-future points, in order; these draw the path
        ceiling: Budget amount
        max_value: Y-axis maximum, never 0
        current_total: Cumulative amount at the last visible point
        percentage: current_total as a percentage of the ceiling, capped at 100
    """
    points: Tuple[DailyPoint, ...]
    visible_points: Tuple[DailyPoint, ...]
    ceiling: float
    max_value: float
    current_total: float
    percentage: float

    def scale(self, value: float) -> float:
        """Fraction of the y-axis occupied by ``value``."""
        return value / self.max_value

    def point_percentage(self, point: DailyPoint) -> float:
        """Cumulative amount at ``point`` as a percentage of the ceiling, capped at 100."""
        if self.ceiling <= 0:
            return 0.0
        return min(100.0, round_currency(point.amount / self.ceiling * 100))


def build_chart_series(points: Sequence[DailyPoint], ceiling: float) -> ChartSeries:
    """
    Derive chart extrema and the drawable path from a cumulative series.

    Future points are kept for the x-axis but do not influence the maximum
    or the current total.
    """
    visible = tuple(point for point in points if not point.is_future)
    peak = max((point.amount for point in visible), default=0.0)
    max_value = max(ceiling, peak)
    if max_value <= 0:
        max_value = 1.0

    current_total = visible[-1].amount if visible else 0.0
    percentage = min(100.0, round_currency(current_total / ceiling * 100)) if ceiling > 0 else 0.0

    return ChartSeries(
        points=tuple(points),
        visible_points=visible,
        ceiling=ceiling,
        max_value=max_value,
        current_total=current_total,
        percentage=percentage
    )


@dataclass(frozen=True)
class DayGroup:
    """Transactions sharing one calendar day with that day's net and the running net."""
    date: date
    transactions: Tuple[Transaction, ...]
    total: float
    running_total: float


def _day_delta(transaction: Transaction) -> float:
    if transaction.type is TransactionType.INCOME:
        return transaction.amount
    return -transaction.amount


def group_transactions_by_day(transactions: Iterable[Transaction]) -> List[DayGroup]:
    """
    Group transactions by calendar day, newest day first.

    ``running_total`` accumulates day totals from the oldest day up to and
    including each group. Transactions with unparseable dates are skipped.
    """
    by_day: Dict[date, List[Transaction]] = defaultdict(list)
    for tx in transactions:
        tx_date = tx.parsed_date
        if tx_date is None:
            logger.warning("Skipping transaction %s with invalid date %r in day grouping", tx.id, tx.date)
            continue
        by_day[tx_date].append(tx)

    groups = []
    running = 0.0
    for day in sorted(by_day):
        day_total = sum(_day_delta(tx) for tx in by_day[day])
        running += day_total
        groups.append(DayGroup(
            date=day,
            transactions=tuple(by_day[day]),
            total=round_currency(day_total),
            running_total=round_currency(running)
        ))
    groups.reverse()
    return groups


# ---------------------------------------------------------------------------
# Period and monthly totals
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PeriodTotals:
    total_budget: float
    total_spent: float
    total_saved: float
    category_spending: Dict[str, float] = field(default_factory=dict)


def calculate_period_totals(
    transactions: Sequence[Transaction],
    window: PeriodWindow,
    user_id: str,
    budgets: Iterable[Budget]
) -> PeriodTotals:
    """
    Totals across all of a user's budgets in one window.

    Each budget's spend is floored at zero before summing so a refund-heavy
    budget cannot offset another budget's overspend.
    """
    user_budgets = [b for b in budgets if b.user_id == user_id]
    total_budget = sum(b.amount for b in user_budgets)
    total_spent = sum(max(0.0, calculate_spent(transactions, b, window)) for b in user_budgets)

    category_spending: Dict[str, float] = defaultdict(float)
    for tx in transactions:
        if tx.user_id != user_id or tx.type is TransactionType.INCOME:
            continue
        if window.contains(tx.date):
            category_spending[tx.category] += tx.amount

    return PeriodTotals(
        total_budget=round_currency(total_budget),
        total_spent=round_currency(total_spent),
        total_saved=max(0.0, round_currency(total_budget - total_spent)),
        category_spending={k: round_currency(v) for k, v in category_spending.items()}
    )


@dataclass(frozen=True)
class MonthlyFinancials:
    income: float
    expenses: float
    transfers: float
    net_income: float
    savings_rate: float
    transaction_count: int


def calculate_monthly_financials(transactions: Iterable[Transaction]) -> MonthlyFinancials:
    """Income, expense and transfer totals with the resulting savings rate."""
    income = expenses = transfers = 0.0
    count = 0
    for tx in transactions:
        count += 1
        if tx.type is TransactionType.INCOME:
            income += tx.amount
        elif tx.type is TransactionType.EXPENSE:
            expenses += tx.amount
        else:
            transfers += tx.amount

    net_income = income - expenses
    savings_rate = round_currency(net_income / income * 100) if income > 0 else 0.0
    return MonthlyFinancials(
        income=round_currency(income),
        expenses=round_currency(expenses),
        transfers=round_currency(transfers),
        net_income=round_currency(net_income),
        savings_rate=savings_rate,
        transaction_count=count
    )
