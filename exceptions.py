"""
Unified exception hierarchy for the household ledger.

LedgerAppError is the base for every error raised by the ledger services,
so callers can catch one type at the CLI or request boundary. The pure
engine modules (ledger, budget_periods, aggregation, permissions) recover
locally and do not raise these for bad data.
"""

from typing import Optional


class LedgerAppError(Exception):
    """
    Base exception class for all household ledger errors.

    Attributes:
        message: Human-readable error message
        details: Optional dictionary with additional error context
        original_error: Optional original exception that caused this error
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ) -> None:
        """
        Initialize LedgerAppError.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
            original_error: Optional original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        msg = self.message
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            msg = f"{msg} ({detail_str})"
        return msg


class ConfigError(LedgerAppError):
    """Raised when configuration loading or validation fails."""
    pass


class DatabaseError(LedgerAppError):
    """Raised when store operations fail."""
    pass


class ValidationError(LedgerAppError):
    """Raised when a record fails domain validation before a write."""
    pass


class TransactionError(ValidationError):
    """Raised when a transaction violates the transfer/amount invariants."""
    pass


class BudgetError(LedgerAppError):
    """Raised when budget management operations fail."""
    pass


class BudgetPeriodError(LedgerAppError):
    """Raised when a budget period cannot be opened, closed or deleted."""
    pass


class RecurringSeriesError(LedgerAppError):
    """Raised when a recurring series is malformed."""
    pass


class ReportError(LedgerAppError):
    """Raised when report generation fails."""
    pass
