"""
Unit tests for budgeting business logic.

Validates budget CRUD, permission-scoped overviews, summary totals and
chart construction against an in-memory store.
"""

from datetime import date
from unittest.mock import Mock

import pytest

from budgeting import BudgetManager
from database_ops import DatabaseManager
from exceptions import BudgetError
from models import Budget, User


@pytest.fixture
def budget_manager(seeded_db):
    """Return a BudgetManager wired to the seeded database."""
    return BudgetManager(seeded_db)


class TestBudgetCrud:
    """Tests for creating, updating and deleting budgets."""

    def test_create_budget_normalizes_categories(self, budget_manager, seeded_db, member):
        budget = budget_manager.create_budget("u1", "  Dining ", 150.0, [" restaurants ", "", "takeaway"],
                                              actor=member)
        stored = seeded_db.get_budget(budget.id)
        assert stored.description == "Dining"
        assert stored.categories == frozenset({"restaurants", "takeaway"})

    def test_create_budget_rejects_invalid(self, budget_manager):
        with pytest.raises(BudgetError):
            budget_manager.create_budget("u1", "Nothing", 100.0, [])
        with pytest.raises(BudgetError):
            budget_manager.create_budget("u1", "Negative", -1.0, ["x"])

    def test_member_cannot_create_for_others(self, budget_manager, member):
        with pytest.raises(BudgetError):
            budget_manager.create_budget("u2", "Theirs", 10.0, ["x"], actor=member)

    def test_admin_can_create_for_others(self, budget_manager, admin):
        budget = budget_manager.create_budget("u2", "Theirs", 10.0, ["x"], actor=admin)
        assert budget.user_id == "u2"

    def test_update_budget(self, budget_manager, seeded_db, member):
        updated = Budget(id="b1", description="Food", amount=650.0, categories={"groceries"}, user_id="u1")
        budget_manager.update_budget(updated, actor=member)
        assert seeded_db.get_budget("b1").amount == 650.0

    def test_update_missing_budget(self, budget_manager):
        with pytest.raises(BudgetError):
            budget_manager.update_budget(Budget(id="nope", description="x", amount=1, categories={"a"},
                                                user_id="u1"))

    def test_member_cannot_update_others(self, budget_manager, member):
        with pytest.raises(BudgetError):
            budget_manager.update_budget(Budget(id="b2", description="Fuel", amount=1, categories={"fuel"},
                                                user_id="u2"), actor=member)

    def test_delete_budget(self, budget_manager):
        assert budget_manager.delete_budget("b2")
        assert not budget_manager.delete_budget("b2")

    def test_member_cannot_delete_others(self, budget_manager, seeded_db, member):
        with pytest.raises(BudgetError):
            budget_manager.delete_budget("b2", actor=member)
        assert seeded_db.get_budget("b2") is not None

    def test_owner_and_admin_can_delete(self, budget_manager, seeded_db, member, admin):
        assert budget_manager.delete_budget("b1", actor=member)
        assert budget_manager.delete_budget("b2", actor=admin)
        assert seeded_db.get_budgets() == []


class TestBudgetOverview:
    """Tests for the permission-scoped overview."""

    def test_member_overview_uses_active_period(self, budget_manager, member):
        overview = budget_manager.get_budget_overview(member, "u2", today=date(2024, 6, 20))
        assert [p.budget_id for p in overview] == ["b1"]
        progress = overview[0]
        # May expense falls before the active period starting 2024-06-01
        assert progress.spent == 100.0
        assert progress.saved == 400.0
        assert progress.window.period_id == "p1"

    def test_admin_sees_all(self, budget_manager, admin):
        overview = budget_manager.get_budget_overview(admin, "all", today=date(2024, 6, 20))
        by_id = {p.budget_id: p for p in overview}
        assert set(by_id) == {"b1", "b2"}
        # Bob has no period; anchor 15 gives 2024-06-15 .. 2024-07-14
        assert by_id["b2"].window.start_date == date(2024, 6, 15)
        assert by_id["b2"].spent == 60.0

    def test_admin_selects_one_user(self, budget_manager, admin):
        overview = budget_manager.get_budget_overview(admin, "u2", today=date(2024, 6, 20))
        assert [p.budget_id for p in overview] == ["b2"]

    def test_orphaned_budget_skipped(self, budget_manager, seeded_db, admin, caplog):
        seeded_db.save_budget(Budget(id="orphan", description="Ghost", amount=10, categories={"x"},
                                     user_id="deleted-user"))
        overview = budget_manager.get_budget_overview(admin, today=date(2024, 6, 20))
        assert "orphan" not in {p.budget_id for p in overview}
        assert "deleted-user" in caplog.text

    def test_empty_overview(self):
        db_manager = Mock(spec=DatabaseManager)
        db_manager.get_budgets.return_value = []
        manager = BudgetManager(db_manager)
        assert manager.get_budget_overview(User(id="u9", name="Nobody"), today=date(2024, 6, 1)) == []
        db_manager.get_transactions.assert_not_called()

    def test_thresholds_from_config(self, seeded_db, member):
        config = {"budget": {"warning_threshold": 10, "danger_threshold": 50}}
        manager = BudgetManager(seeded_db, config)
        overview = manager.get_budget_overview(member, today=date(2024, 6, 20))
        assert overview[0].status == "warning"


class TestSummaries:
    """Tests for aggregate summaries and chart data."""

    def test_calculate_budget_summary(self, budget_manager, admin):
        overview = budget_manager.get_budget_overview(admin, today=date(2024, 6, 20))
        summary = budget_manager.calculate_budget_summary(overview)
        assert summary["total_allocated"] == 600.0
        assert summary["total_spent"] == 160.0
        assert summary["total_remaining"] == 440.0
        assert summary["over_budget_count"] == 0
        assert summary["budgets_by_status"] == {"safe": 2}

    def test_summary_of_nothing(self):
        summary = BudgetManager.calculate_budget_summary([])
        assert summary["percentage_used"] == 0.0
        assert summary["total_allocated"] == 0.0

    def test_user_financial_totals(self, budget_manager, member):
        totals = budget_manager.get_user_financial_totals(member, today=date(2024, 6, 20))
        assert totals.total_budget == 500.0
        assert totals.total_spent == 100.0
        assert totals.total_saved == 400.0
        assert totals.category_spending == {"groceries": 120.0, "savings": 200.0}

    def test_budget_chart(self, budget_manager):
        chart = budget_manager.get_budget_chart("b1", today=date(2024, 6, 20))
        assert len(chart.points) == 30
        assert chart.points[0].date == date(2024, 6, 1)
        assert chart.current_total == 100.0
        assert len(chart.visible_points) == 20

    def test_budget_chart_unknown_budget(self, budget_manager):
        with pytest.raises(BudgetError):
            budget_manager.get_budget_chart("missing", today=date(2024, 6, 20))
