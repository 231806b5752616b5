"""
Budgeting module for household budget management.

This module wires the pure period resolver and aggregation engine to the
store: it loads budgets, periods and transactions, narrows them to what
the acting user may see, and returns progress figures per budget.
"""

import logging
from collections import defaultdict
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from aggregation import (
    CHART_DAYS,
    DANGER_THRESHOLD,
    WARNING_THRESHOLD,
    BudgetProgress,
    ChartSeries,
    PeriodTotals,
    build_chart_series,
    calculate_budget_progress,
    calculate_period_totals,
    calculate_spent,
    cumulative_series,
    round_currency,
    select_budget_transactions,
)
from budget_periods import DEFAULT_ANCHOR_DAY, resolve_period_window
from config_manager import get_setting
from database_ops import DatabaseManager
from date_utils import today as current_date
from exceptions import BudgetError, ValidationError
from models import Budget, User
from permissions import ALL_USERS, can_access_user_data, filter_by_user_permissions

# Configure logging
logger = logging.getLogger(__name__)


class BudgetManager:
    """
    Manages budgets and reports their progress.

    Budgets are category ceilings owned by one user; progress is measured
    against the owner's current budget period.
    """

    def __init__(self, db_manager: DatabaseManager, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the budget manager.

        Args:
            db_manager: DatabaseManager instance
            config: Loaded configuration; thresholds and defaults fall back to built-ins
        """
        self.db_manager = db_manager
        config = config or {}
        self.warning_threshold = float(get_setting('budget', 'warning_threshold', WARNING_THRESHOLD, config))
        self.danger_threshold = float(get_setting('budget', 'danger_threshold', DANGER_THRESHOLD, config))
        self.default_anchor = int(get_setting('ledger', 'default_budget_start_day', DEFAULT_ANCHOR_DAY, config))
        self.all_sentinel = get_setting('ledger', 'all_users_sentinel', ALL_USERS, config)
        self.chart_days = int(get_setting('ledger', 'chart_days', CHART_DAYS, config))
        logger.info("Budget manager initialized")

    @staticmethod
    def _normalize_categories(categories: Iterable[str]) -> frozenset:
        """Strip whitespace and drop empty category names."""
        return frozenset(c.strip() for c in categories if c and c.strip())

    def create_budget(
        self,
        user_id: str,
        description: str,
        amount: float,
        categories: Iterable[str],
        actor: Optional[User] = None
    ) -> Budget:
        """
        Create a budget for ``user_id``.

        Args:
            user_id: Budget owner
            description: Display name
            amount: Ceiling for each period
            categories: Categories the budget tracks
            actor: User performing the change; members may only create their own

        Returns:
            The stored Budget

        Raises:
            BudgetError: If the actor may not manage the owner's budgets or input is invalid
        """
        if actor is not None and not can_access_user_data(actor, user_id):
            raise BudgetError(
                "Not allowed to create budgets for another user",
                details={"actor_id": actor.id, "user_id": user_id}
            )

        budget = Budget(
            id=self.db_manager.new_id(),
            description=description.strip(),
            amount=amount,
            categories=self._normalize_categories(categories),
            user_id=user_id
        )
        try:
            budget.validate()
        except ValidationError as e:
            raise BudgetError(e.message, details=e.details, original_error=e) from e

        self.db_manager.save_budget(budget)
        logger.info(f"Created budget '{budget.description}' ({budget.id}) for user {user_id}: {budget.amount:.2f}")
        return budget

    def update_budget(self, budget: Budget, actor: Optional[User] = None) -> Budget:
        """
        Replace an existing budget.

        Raises:
            BudgetError: If the budget does not exist, the actor lacks access or the record is invalid
        """
        existing = self.db_manager.get_budget(budget.id)
        if existing is None:
            raise BudgetError("Budget not found", details={"budget_id": budget.id})
        if actor is not None and not can_access_user_data(actor, existing.user_id):
            raise BudgetError(
                "Not allowed to edit another user's budget",
                details={"actor_id": actor.id, "budget_id": budget.id}
            )
        try:
            budget.validate()
        except ValidationError as e:
            raise BudgetError(e.message, details=e.details, original_error=e) from e

        self.db_manager.save_budget(budget)
        logger.info(f"Updated budget {budget.id}")
        return budget

    def delete_budget(self, budget_id: str, actor: Optional[User] = None) -> bool:
        """
        Delete a budget.

        Returns:
            True if deleted, False if it did not exist

        Raises:
            BudgetError: If the actor lacks access to the budget's owner
        """
        if actor is not None:
            existing = self.db_manager.get_budget(budget_id)
            if existing is not None and not can_access_user_data(actor, existing.user_id):
                raise BudgetError(
                    "Not allowed to delete another user's budget",
                    details={"actor_id": actor.id, "budget_id": budget_id}
                )
        deleted = self.db_manager.delete_budget(budget_id)
        if deleted:
            logger.info(f"Deleted budget {budget_id}")
        else:
            logger.warning(f"Budget {budget_id} not found for deletion")
        return deleted

    def get_budget_overview(
        self,
        actor: User,
        selected_user_id: Optional[str] = None,
        today: Optional[date] = None
    ) -> List[BudgetProgress]:
        """
        Progress of every budget the actor may see.

        Args:
            actor: User viewing the overview
            selected_user_id: Owner chosen by an admin, or "all"
            today: Reference date for period resolution

        Returns:
            One BudgetProgress per visible budget whose owner is known
        """
        today = today or current_date()
        budgets = filter_by_user_permissions(
            self.db_manager.get_budgets(), actor, selected_user_id, self.all_sentinel
        )
        if not budgets:
            return []

        users = {user.id: user for user in self.db_manager.get_users()}
        periods = self.db_manager.get_periods()
        owner_ids = {budget.user_id for budget in budgets}
        transactions = self.db_manager.get_transactions(user_ids=owner_ids)

        overview = []
        for budget in budgets:
            owner = users.get(budget.user_id)
            if owner is None:
                logger.warning(f"Skipping budget {budget.id}: owner {budget.user_id} not found")
                continue
            window = resolve_period_window(owner, periods, today, self.default_anchor)
            spent = calculate_spent(transactions, budget, window)
            overview.append(calculate_budget_progress(
                budget, spent, window, self.warning_threshold, self.danger_threshold
            ))

        logger.debug(f"Built budget overview with {len(overview)} budgets for actor {actor.id}")
        return overview

    @staticmethod
    def calculate_budget_summary(overview: Iterable[BudgetProgress]) -> Dict[str, Any]:
        """
        Aggregate an overview into household totals.

        Returns:
            Dictionary with total_allocated, total_spent, total_remaining,
            total_saved, percentage_used, over_budget_count and budgets_by_status
        """
        overview = list(overview)
        total_allocated = sum(p.amount for p in overview)
        total_spent = sum(p.spent for p in overview)
        by_status: Dict[str, int] = defaultdict(int)
        for progress in overview:
            by_status[progress.status] += 1

        percentage_used = round_currency(total_spent / total_allocated * 100) if total_allocated > 0 else 0.0
        return {
            'total_allocated': round_currency(total_allocated),
            'total_spent': round_currency(total_spent),
            'total_remaining': round_currency(total_allocated - total_spent),
            'total_saved': round_currency(sum(p.saved for p in overview)),
            'percentage_used': percentage_used,
            'over_budget_count': sum(1 for p in overview if p.is_over_budget),
            'budgets_by_status': dict(by_status),
        }

    def get_user_financial_totals(self, user: User, today: Optional[date] = None) -> PeriodTotals:
        """Budget, spend and savings totals for ``user`` in their current period."""
        window = resolve_period_window(user, self.db_manager.get_periods(user_id=user.id), today, self.default_anchor)
        return calculate_period_totals(
            self.db_manager.get_transactions(user_id=user.id),
            window,
            user.id,
            self.db_manager.get_budgets(user_id=user.id)
        )

    def get_budget_chart(self, budget_id: str, today: Optional[date] = None) -> ChartSeries:
        """
        Cumulative spend series for one budget's current period.

        Raises:
            BudgetError: If the budget or its owner does not exist
        """
        today = today or current_date()
        budget = self.db_manager.get_budget(budget_id)
        if budget is None:
            raise BudgetError("Budget not found", details={"budget_id": budget_id})
        owner = self.db_manager.get_user(budget.user_id)
        if owner is None:
            raise BudgetError("Budget owner not found", details={"budget_id": budget_id, "user_id": budget.user_id})

        window = resolve_period_window(owner, self.db_manager.get_periods(user_id=owner.id), today, self.default_anchor)
        selected = select_budget_transactions(
            self.db_manager.get_transactions(user_id=owner.id), budget, window
        )
        points = cumulative_series(selected, window.start_date, today, self.chart_days)
        return build_chart_series(points, budget.amount)
