"""
Unit tests for the analytics module.

Covers the pure DataFrame builders and the permission-scoped engine
running against the seeded in-memory store.
"""

from datetime import date
from unittest.mock import Mock

import pandas as pd
import pytest

from analytics import (
    PERIOD_COLUMNS,
    TREND_COLUMNS,
    AnalyticsEngine,
    enrich_budget_periods,
    get_account_balances,
    get_monthly_trends,
    transactions_to_frame,
)
from database_ops import DatabaseManager
from exceptions import DatabaseError, ReportError
from models import Account, BudgetPeriod, User


class TestTransactionsToFrame:
    """Tests for DataFrame conversion."""

    def test_empty(self):
        df = transactions_to_frame([])
        assert df.empty
        assert "amount" in df.columns

    def test_invalid_dates_become_nat(self, tx_factory):
        df = transactions_to_frame([tx_factory("a", "2024-06-01"), tx_factory("b", "garbage")])
        assert df.loc[0, "date"] == pd.Timestamp("2024-06-01")
        assert pd.isna(df.loc[1, "date"])


class TestMonthlyTrends:
    """Tests for get_monthly_trends."""

    def test_trends_exclude_transfers(self, tx_factory):
        df = get_monthly_trends([
            tx_factory("t1", "2024-05-20", 80.0),
            tx_factory("t2", "2024-06-05", 120.0),
            tx_factory("t3", "2024-06-12", 1000.0, tx_type="income"),
            tx_factory("t4", "2024-06-15", 200.0, tx_type="transfer", to_account_id="acc-2"),
        ])
        assert list(df.columns) == TREND_COLUMNS
        assert list(df["period"]) == ["2024-05", "2024-06"]
        june = df.iloc[1]
        assert june["income"] == 1000.0
        assert june["expenses"] == 120.0
        assert june["net"] == 880.0
        assert df.iloc[0]["net"] == -80.0

    def test_trends_skip_invalid_dates(self, tx_factory, caplog):
        df = get_monthly_trends([tx_factory("ok", "2024-06-05"), tx_factory("bad", "not-a-date")])
        assert len(df) == 1
        assert "invalid dates" in caplog.text

    def test_trends_empty(self):
        df = get_monthly_trends([])
        assert df.empty
        assert list(df.columns) == TREND_COLUMNS

    def test_only_transfers(self, tx_factory):
        df = get_monthly_trends([tx_factory("t", "2024-06-01", tx_type="transfer", to_account_id="acc-2")])
        assert df.empty


class TestAccountBalances:
    """Tests for get_account_balances."""

    def test_balances_sorted_by_name(self, tx_factory):
        accounts = [Account(id="acc-2", name="Savings"), Account(id="acc-1", name="Checking")]
        df = get_account_balances([
            tx_factory("t1", "2024-06-01", 500.0, tx_type="income"),
            tx_factory("t2", "2024-06-02", 150.0, tx_type="transfer", to_account_id="acc-2"),
        ], accounts)
        assert list(df["name"]) == ["Checking", "Savings"]
        assert list(df["balance"]) == [350.0, 150.0]

    def test_no_accounts(self):
        assert get_account_balances([], []).empty


class TestEnrichBudgetPeriods:
    """Tests for budget period history rows."""

    def test_open_period_runs_through_today(self, seeded_db):
        df = enrich_budget_periods(
            seeded_db.get_periods(),
            seeded_db.get_users(),
            seeded_db.get_transactions(),
            seeded_db.get_accounts(),
            today=date(2024, 6, 20),
        )
        assert list(df.columns) == PERIOD_COLUMNS
        row = df.iloc[0]
        assert row["user_name"] == "Alice"
        assert row["total_earned"] == 1020.0
        assert row["total_spent"] == 120.0
        assert row["net"] == 900.0
        assert row["internal_transfers"] == 200.0
        assert row["transaction_count"] == 4
        assert row["category_breakdown"][0].category == "groceries"

    def test_closed_period_uses_end_date(self, tx_factory):
        period = BudgetPeriod(id="p", user_id="u1", start_date=date(2024, 6, 1), end_date=date(2024, 6, 10))
        df = enrich_budget_periods(
            [period],
            [User(id="u1", name="Alice")],
            [tx_factory("in", "2024-06-10", 5.0), tx_factory("out", "2024-06-11", 7.0)],
            [],
        )
        assert df.iloc[0]["total_spent"] == 5.0

    def test_unknown_owner(self, caplog):
        period = BudgetPeriod(id="p", user_id="ghost", start_date=date(2024, 6, 1))
        df = enrich_budget_periods([period], [], [], [], today=date(2024, 6, 5))
        assert df.iloc[0]["user_name"] == "Unknown User"
        assert "ghost" in caplog.text

    def test_most_recent_first(self):
        periods = [
            BudgetPeriod(id="old", user_id="u1", start_date=date(2024, 1, 1), end_date=date(2024, 1, 31)),
            BudgetPeriod(id="new", user_id="u1", start_date=date(2024, 2, 1)),
        ]
        df = enrich_budget_periods(periods, [], [], [], today=date(2024, 2, 5))
        assert list(df["period_id"]) == ["new", "old"]

    def test_no_periods(self):
        df = enrich_budget_periods([], [], [], [])
        assert df.empty
        assert list(df.columns) == PERIOD_COLUMNS


class TestAnalyticsEngine:
    """Tests for the permission-scoped engine."""

    def test_member_trends_are_own_only(self, seeded_db, member):
        engine = AnalyticsEngine(seeded_db)
        df = engine.get_monthly_trends(member, "u2")
        assert list(df["expenses"]) == [80.0, 120.0]

    def test_admin_trends_cover_household(self, seeded_db, admin):
        engine = AnalyticsEngine(seeded_db)
        df = engine.get_monthly_trends(admin, "all")
        assert list(df["expenses"]) == [80.0, 180.0]

    def test_admin_trends_for_selected_user(self, seeded_db, admin):
        df = AnalyticsEngine(seeded_db).get_monthly_trends(admin, "u2")
        assert list(df["period"]) == ["2024-06"]
        assert df.iloc[0]["expenses"] == 60.0

    def test_member_sees_shared_accounts(self, seeded_db, member):
        df = AnalyticsEngine(seeded_db).get_account_balances(member)
        assert list(df["name"]) == ["Checking", "Savings"]
        assert list(df["balance"]) == [620.0, 200.0]

    def test_admin_sees_household_accounts(self, seeded_db, admin):
        df = AnalyticsEngine(seeded_db).get_account_balances(admin)
        assert list(df["name"]) == ["Bob Cash", "Checking", "Savings"]
        assert df.iloc[0]["balance"] == -60.0

    def test_period_history_scoped(self, seeded_db, other_member):
        df = AnalyticsEngine(seeded_db).get_period_history(other_member, today=date(2024, 6, 20))
        assert df.empty

    def test_store_failure_becomes_report_error(self, member):
        db_manager = Mock(spec=DatabaseManager)
        db_manager.get_transactions.side_effect = DatabaseError("down")
        with pytest.raises(ReportError) as exc_info:
            AnalyticsEngine(db_manager).get_monthly_trends(member)
        assert isinstance(exc_info.value.original_error, DatabaseError)
