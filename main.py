"""
Main module for the household ledger command line.

This module wires configuration, logging and the database to the budget,
period, recurring and analytics services:
1. Loads config.yaml over the built-in defaults
2. Configures logging
3. Opens the database
4. Dispatches the requested command
"""

import argparse
import logging
import sys
from datetime import date
from typing import Optional

from analytics import AnalyticsEngine
from budget_periods import BudgetPeriodManager
from budgeting import BudgetManager
from config_manager import get_setting, load_config
from database_ops import DatabaseManager
from date_utils import parse_date
from exceptions import ConfigError, LedgerAppError, ValidationError
from models import User
from recurring import calculate_series_totals, days_until_due, next_execution_date
from utils import ensure_data_dir, resolve_connection_string, resolve_log_path

# Configure module-level logger
logger = logging.getLogger(__name__)


def setup_logging(config: dict) -> None:
    """
    Configure logging based on config settings.

    Args:
        config: Configuration dictionary with logging settings

    Raises:
        ConfigError: If the configured log file cannot be created
    """
    log_config = config.get("logging", {}) or {}
    level_name = str(log_config.get("level", "INFO")).upper()
    log_level = getattr(logging, level_name, None)
    invalid_level = not isinstance(log_level, int)
    if invalid_level:
        log_level = logging.INFO
    log_format = log_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = log_config.get("file")

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        try:
            log_path = resolve_log_path(log_file)
        except OSError as exc:
            raise ConfigError(
                "Unable to prepare log file path",
                details={"file": log_file},
                original_error=exc
            ) from exc
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers,
        force=True
    )
    if invalid_level:
        logger.warning(f"Unknown log level '{level_name}'; using INFO")


def _parse_date_arg(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError("Invalid date argument", details={"value": value})
    return parsed


def _require_user(db_manager: DatabaseManager, user_id: str) -> User:
    user = db_manager.get_user(user_id)
    if user is None:
        raise ValidationError("Unknown user", details={"user_id": user_id})
    return user


def handle_budgets_command(args: argparse.Namespace, db_manager: DatabaseManager, config: dict) -> None:
    """Print budget progress for the actor's scope."""
    actor = _require_user(db_manager, args.actor)
    budget_manager = BudgetManager(db_manager, config)
    overview = budget_manager.get_budget_overview(actor, args.user, _parse_date_arg(args.today))

    if not overview:
        print("No budgets found.")
        return

    print("\n" + "=" * 100)
    print("BUDGET STATUS")
    print("=" * 100)
    print(f"{'Budget':<25} {'Amount':>12} {'Spent':>12} {'Remaining':>12} {'Used %':>8} {'Status':<8} Period")
    print("-" * 100)
    for progress in overview:
        window = progress.window
        end = window.end_date.isoformat() if window.end_date else "open"
        print(
            f"{progress.description[:25]:<25} {progress.amount:>12,.2f} {progress.spent:>12,.2f} "
            f"{progress.remaining:>12,.2f} {progress.percentage:>7.1f}% {progress.status:<8} "
            f"{window.start_date.isoformat()} to {end}"
        )
    print("=" * 100)

    summary = budget_manager.calculate_budget_summary(overview)
    print(f"Total allocated: {summary['total_allocated']:,.2f}")
    print(f"Total spent: {summary['total_spent']:,.2f}")
    print(f"Total saved: {summary['total_saved']:,.2f}")
    print(f"Over budget: {summary['over_budget_count']}")


def handle_period_command(args: argparse.Namespace, db_manager: DatabaseManager, config: dict) -> None:
    """Show, start or close a user's budget period."""
    user = _require_user(db_manager, args.user)
    period_manager = BudgetPeriodManager(
        db_manager, int(get_setting("ledger", "default_budget_start_day", 1, config))
    )

    if args.start:
        period = period_manager.start_period(user.id, _parse_date_arg(args.start))
        print(f"Started period {period.id} on {period.start_date.isoformat()}")
        return

    if args.close:
        window = period_manager.get_active_window(user)
        if window.period_id is None:
            raise ValidationError("No recorded period to close", details={"user_id": user.id})
        closed, next_period = period_manager.close_period(window.period_id, _parse_date_arg(args.close))
        print(f"Closed period {closed.id}: {closed.start_date.isoformat()} to {closed.end_date.isoformat()}")
        print(f"Opened period {next_period.id} starting {next_period.start_date.isoformat()}")
        return

    window = period_manager.get_active_window(user, _parse_date_arg(args.today))
    end = window.end_date.isoformat() if window.end_date else "open"
    source = f"period {window.period_id}" if window.period_id else "monthly cycle"
    print(f"{user.name}: {window.start_date.isoformat()} to {end} ({source})")


def handle_balances_command(args: argparse.Namespace, db_manager: DatabaseManager, config: dict) -> None:
    """Print ledger-implied account balances."""
    actor = _require_user(db_manager, args.actor)
    engine = AnalyticsEngine(db_manager, get_setting("ledger", "all_users_sentinel", "all", config))
    df = engine.get_account_balances(actor)
    if df.empty:
        print("No accounts found.")
        return
    print(f"{'Account':<30} {'Balance':>15}")
    print("-" * 46)
    for _, row in df.iterrows():
        print(f"{row['name'][:30]:<30} {row['balance']:>15,.2f}")


def handle_chart_command(args: argparse.Namespace, db_manager: DatabaseManager, config: dict) -> None:
    """Print the cumulative spend series of one budget."""
    budget_manager = BudgetManager(db_manager, config)
    series = budget_manager.get_budget_chart(args.budget, _parse_date_arg(args.today))

    print(f"Spent {series.current_total:,.2f} of {series.ceiling:,.2f} ({series.percentage:.1f}%)")
    for point in series.points:
        marker = "" if point.is_future else "#" * int(round(series.scale(max(point.amount, 0.0)) * 40))
        print(f"{point.date.isoformat()} {point.amount:>12,.2f} {marker}")


def handle_trends_command(args: argparse.Namespace, db_manager: DatabaseManager, config: dict) -> None:
    """Print monthly income/expense trends."""
    actor = _require_user(db_manager, args.actor)
    engine = AnalyticsEngine(db_manager, get_setting("ledger", "all_users_sentinel", "all", config))
    df = engine.get_monthly_trends(actor, args.user)
    if df.empty:
        print("No transactions found.")
        return
    print(f"{'Period':<10} {'Income':>14} {'Expenses':>14} {'Net':>14}")
    print("-" * 55)
    for _, row in df.iterrows():
        print(f"{row['period']:<10} {row['income']:>14,.2f} {row['expenses']:>14,.2f} {row['net']:>14,.2f}")


def handle_recurring_command(args: argparse.Namespace, db_manager: DatabaseManager, config: dict) -> None:
    """List a user's recurring series with their next due dates."""
    user = _require_user(db_manager, args.user)
    today = _parse_date_arg(args.today)
    series_list = db_manager.get_series(user_id=user.id)
    if not series_list:
        print("No recurring series found.")
        return
    for series in series_list:
        status = "active" if series.is_active else "paused"
        print(
            f"{series.description[:25]:<25} {series.frequency:<9} {series.amount:>10,.2f} "
            f"next {next_execution_date(series, today).isoformat()} "
            f"(in {days_until_due(series, today)} days, {status})"
        )
    totals = calculate_series_totals(series_list)
    print(f"Monthly income {totals.total_income:,.2f}, expenses {totals.total_expenses:,.2f}, "
          f"net {totals.net_monthly:,.2f}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Household ledger and budget tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create database tables")

    budgets_parser = subparsers.add_parser("budgets", help="Show budget progress")
    budgets_parser.add_argument("--actor", required=True, help="Id of the user viewing budgets")
    budgets_parser.add_argument("--user", default=None, help="Owner to show (admins only), or 'all'")
    budgets_parser.add_argument("--today", default=None, help="Reference date (YYYY-MM-DD)")

    period_parser = subparsers.add_parser("period", help="Show or change the active budget period")
    period_parser.add_argument("--user", required=True, help="Period owner")
    period_action = period_parser.add_mutually_exclusive_group()
    period_action.add_argument("--start", default=None, help="Open a new period on this date")
    period_action.add_argument("--close", default=None, help="Close the active period on this date")
    period_parser.add_argument("--today", default=None, help="Reference date (YYYY-MM-DD)")

    balances_parser = subparsers.add_parser("balances", help="Show account balances")
    balances_parser.add_argument("--actor", required=True, help="Id of the user viewing balances")

    chart_parser = subparsers.add_parser("chart", help="Show a budget's cumulative spend")
    chart_parser.add_argument("--budget", required=True, help="Budget id")
    chart_parser.add_argument("--today", default=None, help="Reference date (YYYY-MM-DD)")

    trends_parser = subparsers.add_parser("trends", help="Show monthly income and expense trends")
    trends_parser.add_argument("--actor", required=True, help="Id of the user viewing trends")
    trends_parser.add_argument("--user", default=None, help="Owner to show (admins only), or 'all'")

    recurring_parser = subparsers.add_parser("recurring", help="List recurring series")
    recurring_parser.add_argument("--user", required=True, help="Member sharing the series")
    recurring_parser.add_argument("--today", default=None, help="Reference date (YYYY-MM-DD)")

    return parser


COMMAND_HANDLERS = {
    "budgets": handle_budgets_command,
    "period": handle_period_command,
    "balances": handle_balances_command,
    "chart": handle_chart_command,
    "trends": handle_trends_command,
    "recurring": handle_recurring_command,
}


def main(argv=None) -> int:
    """Main entry point for the application."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    config = load_config(args.config)

    try:
        ensure_data_dir(config)
    except OSError as exc:
        print(f"Failed to prepare data directory: {exc}", file=sys.stderr)
        return 1

    try:
        setup_logging(config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    db_manager = None
    try:
        db_manager = DatabaseManager(resolve_connection_string(config))
        db_manager.create_tables()
        if args.command == "init-db":
            print("Database initialized.")
            return 0
        COMMAND_HANDLERS[args.command](args, db_manager, config)
        return 0
    except LedgerAppError as e:
        logger.error(f"Command '{args.command}' failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        if db_manager is not None:
            db_manager.close()


if __name__ == "__main__":
    sys.exit(main())
