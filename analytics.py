"""
Analytics module for ledger reporting.

This module turns transaction records into pandas DataFrames for
month-by-month trends, per-account balances and the history of recorded
budget periods. The module-level functions are pure; AnalyticsEngine
loads records from the store and applies permission scoping first.
"""

import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from aggregation import (
    account_balance,
    calculate_internal_transfers,
    category_breakdown,
    round_currency,
)
from database_ops import DatabaseManager
from date_utils import is_in_range, today as current_date
from exceptions import DatabaseError, ReportError
from models import Account, BudgetPeriod, Transaction, TransactionType, User
from permissions import ALL_USERS, filter_by_user_permissions, get_effective_user_id

logger = logging.getLogger(__name__)

UNKNOWN_USER = "Unknown User"

TRANSACTION_COLUMNS = [
    'id', 'date', 'amount', 'type', 'category', 'user_id',
    'account_id', 'to_account_id', 'description',
]
TREND_COLUMNS = ['year', 'month', 'income', 'expenses', 'net', 'period']
BALANCE_COLUMNS = ['account_id', 'name', 'balance']
PERIOD_COLUMNS = [
    'period_id', 'user_id', 'user_name', 'start_date', 'end_date', 'is_active',
    'total_earned', 'total_spent', 'net', 'internal_transfers',
    'transaction_count', 'category_breakdown',
]


def transactions_to_frame(transactions: Iterable[Transaction]) -> pd.DataFrame:
    """
    Convert records to a DataFrame.

    The ``date`` column is datetime64; unparseable dates become NaT.
    """
    rows = [
        {
            'id': tx.id,
            'date': tx.parsed_date,
            'amount': tx.amount,
            'type': tx.type.value,
            'category': tx.category,
            'user_id': tx.user_id,
            'account_id': tx.account_id,
            'to_account_id': tx.to_account_id,
            'description': tx.description,
        }
        for tx in transactions
    ]
    if not rows:
        return pd.DataFrame(columns=TRANSACTION_COLUMNS)

    df = pd.DataFrame(rows, columns=TRANSACTION_COLUMNS)
    df['date'] = pd.to_datetime(df['date'], errors='coerce')
    return df


def get_monthly_trends(transactions: Iterable[Transaction]) -> pd.DataFrame:
    """
    Monthly income and expense trends.

    Transfers are internal movements and are excluded.

    Returns:
        DataFrame with columns: year, month, income, expenses, net, period
    """
    df = transactions_to_frame(transactions)
    if df.empty:
        return pd.DataFrame(columns=TREND_COLUMNS)

    invalid = df['date'].isna()
    if invalid.any():
        logger.warning(f"Ignoring {int(invalid.sum())} transactions with invalid dates in monthly trends")
    df = df[~invalid & (df['type'] != TransactionType.TRANSFER.value)]
    if df.empty:
        return pd.DataFrame(columns=TREND_COLUMNS)

    df = df.assign(year=df['date'].dt.year, month=df['date'].dt.month)
    grouped = df.groupby(['year', 'month'])

    monthly_data = []
    for (year, month), group in grouped:
        income = group.loc[group['type'] == TransactionType.INCOME.value, 'amount'].sum()
        expenses = group.loc[group['type'] == TransactionType.EXPENSE.value, 'amount'].sum()
        monthly_data.append({
            'year': int(year),
            'month': int(month),
            'income': round_currency(income),
            'expenses': round_currency(expenses),
            'net': round_currency(income - expenses),
            'period': f"{int(year)}-{int(month):02d}"
        })

    result_df = pd.DataFrame(monthly_data, columns=TREND_COLUMNS)
    result_df = result_df.sort_values(['year', 'month']).reset_index(drop=True)
    logger.info(f"Generated monthly trends with {len(result_df)} months")
    return result_df


def get_account_balances(transactions: List[Transaction], accounts: Iterable[Account]) -> pd.DataFrame:
    """Ledger-implied balance of each account, ordered by name."""
    data = [
        {'account_id': account.id, 'name': account.name, 'balance': account_balance(transactions, account.id)}
        for account in accounts
    ]
    if not data:
        return pd.DataFrame(columns=BALANCE_COLUMNS)
    return pd.DataFrame(data, columns=BALANCE_COLUMNS).sort_values('name').reset_index(drop=True)


def enrich_budget_periods(
    periods: Iterable[BudgetPeriod],
    users: Iterable[User],
    transactions: List[Transaction],
    accounts: Iterable[Account],
    today: Optional[date] = None
) -> pd.DataFrame:
    """
    Summarize each recorded budget period.

    Open periods run through ``today``. Internal transfers count money moved
    between accounts the owner shares. Owners missing from ``users`` are
    reported as "Unknown User".

    Returns:
        DataFrame with one row per period, most recent start first
    """
    today = today or current_date()
    users_by_id = {user.id: user for user in users}
    accounts = list(accounts)

    data: List[Dict[str, Any]] = []
    for period in periods:
        owner = users_by_id.get(period.user_id)
        if owner is None:
            logger.warning(f"Budget period {period.id} belongs to unknown user {period.user_id}")
        end = period.end_date or today
        in_period = [
            tx for tx in transactions
            if tx.user_id == period.user_id and is_in_range(tx.date, period.start_date, end)
        ]
        earned = sum(tx.amount for tx in in_period if tx.type is TransactionType.INCOME)
        spent = sum(tx.amount for tx in in_period if tx.type is TransactionType.EXPENSE)
        owner_accounts = {a.id for a in accounts if period.user_id in a.user_ids}

        data.append({
            'period_id': period.id,
            'user_id': period.user_id,
            'user_name': owner.name if owner else UNKNOWN_USER,
            'start_date': period.start_date,
            'end_date': period.end_date,
            'is_active': period.is_active,
            'total_earned': round_currency(earned),
            'total_spent': round_currency(spent),
            'net': round_currency(earned - spent),
            'internal_transfers': calculate_internal_transfers(in_period, owner_accounts),
            'transaction_count': len(in_period),
            'category_breakdown': category_breakdown(in_period),
        })

    if not data:
        return pd.DataFrame(columns=PERIOD_COLUMNS)
    df = pd.DataFrame(data, columns=PERIOD_COLUMNS)
    return df.sort_values('start_date', ascending=False).reset_index(drop=True)


class AnalyticsEngine:
    """
    Report engine over the store.

    Every report is scoped through the permission filter before any
    figures are computed.
    """

    def __init__(self, db_manager: DatabaseManager, all_sentinel: str = ALL_USERS):
        """
        Initialize the analytics engine.

        Args:
            db_manager: Database manager instance
            all_sentinel: Selector value meaning "every household member"
        """
        self.db_manager = db_manager
        self.all_sentinel = all_sentinel
        logger.info("Analytics engine initialized")

    def _visible_transactions(self, actor: User, selected_user_id: Optional[str]) -> List[Transaction]:
        effective = get_effective_user_id(actor, selected_user_id, self.all_sentinel)
        if effective is not None:
            return self.db_manager.get_transactions(user_id=effective)
        return self.db_manager.get_transactions(group_id=actor.group_id)

    def get_monthly_trends(self, actor: User, selected_user_id: Optional[str] = None) -> pd.DataFrame:
        """
        Monthly trends for the actor's scope.

        Raises:
            ReportError: If the store cannot be read
        """
        try:
            return get_monthly_trends(self._visible_transactions(actor, selected_user_id))
        except DatabaseError as e:
            raise ReportError("Failed to build monthly trends", original_error=e) from e

    def get_account_balances(self, actor: User) -> pd.DataFrame:
        """
        Balances of the accounts visible to ``actor``.

        Members see the accounts they share; admins see the household's.
        """
        try:
            if actor.role.can_view_all():
                accounts = self.db_manager.get_accounts(group_id=actor.group_id)
            else:
                accounts = self.db_manager.get_accounts(user_id=actor.id)
            transactions = self.db_manager.get_transactions(group_id=actor.group_id)
        except DatabaseError as e:
            raise ReportError("Failed to build account balances", original_error=e) from e
        return get_account_balances(transactions, accounts)

    def get_period_history(
        self,
        actor: User,
        selected_user_id: Optional[str] = None,
        today: Optional[date] = None
    ) -> pd.DataFrame:
        """Enriched budget periods for the actor's scope."""
        try:
            periods = filter_by_user_permissions(
                self.db_manager.get_periods(), actor, selected_user_id, self.all_sentinel
            )
            users = self.db_manager.get_users()
            transactions = self._visible_transactions(actor, selected_user_id)
            accounts = self.db_manager.get_accounts()
        except DatabaseError as e:
            raise ReportError("Failed to build budget period history", original_error=e) from e
        return enrich_budget_periods(periods, users, transactions, accounts, today)
