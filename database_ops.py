"""
Database operations module for the household ledger.

This module defines the SQLAlchemy schema for users, accounts,
transactions, budgets, budget periods and recurring series, and a
DatabaseManager offering CRUD by id plus bulk reads by owner or household.
Rows are converted to the immutable records in ``models`` at this
boundary; nothing above the store handles ORM objects.

Supports SQLite by default; any SQLAlchemy URL works.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    create_engine,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

import date_utils
from exceptions import DatabaseError
from ledger import sort_transactions
from models import (
    Account,
    Budget,
    BudgetPeriod,
    BudgetType,
    Role,
    Transaction,
    TransactionType,
    User,
)
from recurring import RecurringSeries

# Configure logging
logger = logging.getLogger(__name__)

Base = declarative_base()


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone awareness.

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(UTC)


def new_record_id() -> str:
    """Return a fresh store-assigned identifier."""
    return uuid.uuid4().hex


class UserRow(Base):
    """
    SQLAlchemy model representing a household member.

    Attributes:
        id: Primary key
        name: Display name
        role: member, admin or superadmin
        group_id: Household identifier
        budget_start_date: Anchor day-of-month for fallback budget periods
    """

    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    role = Column(Enum(Role), nullable=False, default=Role.MEMBER)
    group_id = Column(String(64), nullable=True, index=True)
    budget_start_date = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name='{self.name}', role={self.role.value})>"


class AccountRow(Base):
    """SQLAlchemy model representing a shared money container."""

    __tablename__ = "accounts"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    group_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, name='{self.name}')>"


class AccountUserRow(Base):
    """Association between accounts and the members sharing them."""

    __tablename__ = "account_users"

    account_id = Column(String(64), ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(64), primary_key=True)


class TransactionRow(Base):
    """
    SQLAlchemy model representing a ledger entry.

    ``date`` holds the value as received (ISO text when parseable) so a
    corrupt date can still be stored and later surfaced with a warning.
    """

    __tablename__ = "transactions"

    id = Column(String(64), primary_key=True)
    description = Column(String(500), nullable=False, default="")
    amount = Column(Float, nullable=False)
    type = Column(Enum(TransactionType), nullable=False, index=True)
    category = Column(String(100), nullable=False, default="")
    date = Column(String(40), nullable=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    account_id = Column(String(64), nullable=False, index=True)
    to_account_id = Column(String(64), nullable=True)
    group_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        Index('idx_user_date', 'user_id', 'date'),
        Index('idx_category_date', 'category', 'date'),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, date={self.date}, type={self.type.value}, "
            f"amount={self.amount})>"
        )


class BudgetRow(Base):
    """SQLAlchemy model representing a category budget; categories are a JSON list."""

    __tablename__ = "budgets"

    id = Column(String(64), primary_key=True)
    description = Column(String(200), nullable=False, default="")
    amount = Column(Float, nullable=False, default=0.0)
    categories = Column(JSON, nullable=False, default=list)
    user_id = Column(String(64), nullable=False, index=True)
    type = Column(Enum(BudgetType), nullable=False, default=BudgetType.MONTHLY)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<Budget(id={self.id}, description='{self.description}', amount={self.amount})>"


class BudgetPeriodRow(Base):
    """SQLAlchemy model representing an explicitly recorded budget period."""

    __tablename__ = "budget_periods"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return (
            f"<BudgetPeriod(id={self.id}, user_id={self.user_id}, "
            f"start={self.start_date}, end={self.end_date}, active={self.is_active})>"
        )


class RecurringSeriesRow(Base):
    """SQLAlchemy model representing a recurring transaction series."""

    __tablename__ = "recurring_series"

    id = Column(String(64), primary_key=True)
    description = Column(String(200), nullable=False, default="")
    amount = Column(Float, nullable=False)
    type = Column(Enum(TransactionType), nullable=False)
    frequency = Column(String(16), nullable=False)
    due_day = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=True)
    user_ids = Column(JSON, nullable=False, default=list)
    category = Column(String(100), nullable=False, default="")
    account_id = Column(String(64), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


def _transaction_from_row(row: TransactionRow) -> Transaction:
    return Transaction(
        id=row.id,
        amount=row.amount,
        type=row.type,
        category=row.category,
        date=row.date,
        user_id=row.user_id,
        account_id=row.account_id,
        description=row.description or "",
        to_account_id=row.to_account_id,
        group_id=row.group_id
    )


def _budget_from_row(row: BudgetRow) -> Budget:
    return Budget(
        id=row.id,
        description=row.description,
        amount=row.amount,
        categories=frozenset(row.categories or ()),
        user_id=row.user_id,
        type=row.type
    )


def _period_from_row(row: BudgetPeriodRow) -> BudgetPeriod:
    return BudgetPeriod(
        id=row.id,
        user_id=row.user_id,
        start_date=row.start_date,
        end_date=row.end_date,
        is_active=bool(row.is_active)
    )


def _user_from_row(row: UserRow) -> User:
    return User(
        id=row.id,
        name=row.name,
        role=row.role,
        group_id=row.group_id,
        budget_start_date=row.budget_start_date
    )


def _series_from_row(row: RecurringSeriesRow) -> RecurringSeries:
    return RecurringSeries(
        id=row.id,
        description=row.description,
        amount=row.amount,
        type=row.type,
        frequency=row.frequency,
        due_day=row.due_day,
        start_date=row.start_date,
        user_ids=frozenset(row.user_ids or ()),
        category=row.category,
        account_id=row.account_id,
        is_active=bool(row.is_active)
    )


def _stored_date(value) -> Optional[str]:
    """ISO text for parseable dates; other values are kept verbatim."""
    if value is None:
        return None
    return date_utils.to_date_string(value) or str(value)


class DatabaseManager:
    """
    Manages database connections and operations.

    This class handles database initialization, session management, and
    provides CRUD and bulk-read methods returning domain records.
    """

    def __init__(self, connection_string: str):
        """
        Initialize the database manager.

        Args:
            connection_string: SQLAlchemy connection string (e.g., 'sqlite:///data/ledger.db')

        Raises:
            DatabaseError: If the engine cannot be created
        """
        try:
            engine_kwargs = {"echo": False}
            url = make_url(connection_string)
            if url.drivername.startswith("sqlite") and url.database in (None, "", ":memory:"):
                # One shared connection, otherwise every session sees an empty database
                engine_kwargs.update(
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False}
                )
            self.engine = create_engine(connection_string, **engine_kwargs)
            self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
            logger.info(f"Database manager initialized with connection: {url.render_as_string(hide_password=True)}")
        except (SQLAlchemyError, ValueError) as e:
            logger.error(f"Failed to initialize database: {e}")
            raise DatabaseError("Failed to initialize database", original_error=e) from e

    def create_tables(self) -> None:
        """
        Create all database tables if they don't exist.

        Raises:
            DatabaseError: If table creation fails
        """
        try:
            Base.metadata.create_all(self.engine)
            logger.info("Database tables created/verified successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create database tables: {e}")
            raise DatabaseError("Failed to create database tables", original_error=e) from e

    def get_session(self) -> Session:
        """
        Get a new database session.

        Returns:
            SQLAlchemy session object

        Note:
            Caller is responsible for closing the session.
        """
        return self.SessionLocal()

    @contextmanager
    def session_scope(self, operation: str) -> Iterator[Session]:
        """
        Session that commits on success and rolls back on failure.

        Args:
            operation: Short description used in error logs

        Raises:
            DatabaseError: Wrapping any SQLAlchemyError
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to {operation}: {e}")
            raise DatabaseError(f"Failed to {operation}", original_error=e) from e
        finally:
            session.close()

    @staticmethod
    def new_id() -> str:
        return new_record_id()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def save_user(self, user: User) -> User:
        """Insert or replace a user."""
        with self.session_scope("save user") as session:
            session.merge(UserRow(
                id=user.id,
                name=user.name,
                role=user.role,
                group_id=user.group_id,
                budget_start_date=user.budget_start_date
            ))
        logger.debug(f"Saved user {user.id}")
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self.session_scope("get user") as session:
            row = session.get(UserRow, user_id)
            return _user_from_row(row) if row else None

    def get_users(self, group_id: Optional[str] = None) -> List[User]:
        """All users, optionally restricted to one household."""
        with self.session_scope("get users") as session:
            query = session.query(UserRow)
            if group_id is not None:
                query = query.filter(UserRow.group_id == group_id)
            return [_user_from_row(row) for row in query.order_by(UserRow.name).all()]

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def save_account(self, account: Account) -> Account:
        """Insert or replace an account together with its member links."""
        with self.session_scope("save account") as session:
            session.merge(AccountRow(id=account.id, name=account.name, group_id=account.group_id))
            session.query(AccountUserRow).filter(AccountUserRow.account_id == account.id).delete()
            for user_id in sorted(account.user_ids):
                session.add(AccountUserRow(account_id=account.id, user_id=user_id))
        logger.debug(f"Saved account {account.id}")
        return account

    def _account_from_row(self, session: Session, row: AccountRow) -> Account:
        links = session.query(AccountUserRow.user_id).filter(AccountUserRow.account_id == row.id).all()
        return Account(
            id=row.id,
            name=row.name,
            user_ids=frozenset(link[0] for link in links),
            group_id=row.group_id
        )

    def get_account(self, account_id: str) -> Optional[Account]:
        with self.session_scope("get account") as session:
            row = session.get(AccountRow, account_id)
            return self._account_from_row(session, row) if row else None

    def get_accounts(self, user_id: Optional[str] = None, group_id: Optional[str] = None) -> List[Account]:
        """
        Accounts shared with ``user_id`` and/or belonging to ``group_id``.

        Args:
            user_id: Restrict to accounts this member shares
            group_id: Restrict to one household

        Returns:
            List of Account records ordered by name
        """
        with self.session_scope("get accounts") as session:
            query = session.query(AccountRow)
            if group_id is not None:
                query = query.filter(AccountRow.group_id == group_id)
            if user_id is not None:
                query = query.join(AccountUserRow, AccountUserRow.account_id == AccountRow.id).filter(
                    AccountUserRow.user_id == user_id
                )
            rows = query.order_by(AccountRow.name).all()
            return [self._account_from_row(session, row) for row in rows]

    def delete_account(self, account_id: str) -> bool:
        with self.session_scope("delete account") as session:
            session.query(AccountUserRow).filter(AccountUserRow.account_id == account_id).delete()
            deleted = session.query(AccountRow).filter(AccountRow.id == account_id).delete()
        return bool(deleted)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def add_transaction(self, transaction: Transaction) -> Transaction:
        """
        Insert a transaction under a store-assigned id.

        Args:
            transaction: Record to insert (its provisional id is discarded)

        Returns:
            The stored record carrying its permanent id
        """
        stored = transaction.with_changes(id=self.new_id())
        with self.session_scope("insert transaction") as session:
            session.add(self._transaction_row(stored))
        logger.debug(f"Inserted transaction {stored.id} (was {transaction.id})")
        return stored

    def insert_transactions(self, transactions: Iterable[Transaction]) -> int:
        """
        Bulk insert records keeping their ids (imports and fixtures).

        Args:
            transactions: Records with permanent ids

        Returns:
            Number of rows inserted
        """
        rows = [self._transaction_row(tx) for tx in transactions]
        with self.session_scope("insert transactions") as session:
            session.add_all(rows)
        logger.info(f"Inserted {len(rows)} transactions")
        return len(rows)

    def save_transaction(self, transaction: Transaction) -> Transaction:
        """
        Replace an existing transaction.

        Raises:
            DatabaseError: If no transaction with that id exists
        """
        with self.session_scope("update transaction") as session:
            if session.get(TransactionRow, transaction.id) is None:
                raise DatabaseError("Transaction not found", details={"transaction_id": transaction.id})
            session.merge(self._transaction_row(transaction))
        logger.debug(f"Updated transaction {transaction.id}")
        return transaction

    @staticmethod
    def _transaction_row(transaction: Transaction) -> TransactionRow:
        return TransactionRow(
            id=transaction.id,
            description=transaction.description,
            amount=transaction.amount,
            type=transaction.type,
            category=transaction.category,
            date=_stored_date(transaction.date),
            user_id=transaction.user_id,
            account_id=transaction.account_id,
            to_account_id=transaction.to_account_id,
            group_id=transaction.group_id
        )

    def delete_transaction(self, transaction_id: str) -> bool:
        """Delete by id. Returns False if nothing was deleted."""
        with self.session_scope("delete transaction") as session:
            deleted = session.query(TransactionRow).filter(TransactionRow.id == transaction_id).delete()
        return bool(deleted)

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        with self.session_scope("get transaction") as session:
            row = session.get(TransactionRow, transaction_id)
            return _transaction_from_row(row) if row else None

    def get_transactions(
        self,
        user_id: Optional[str] = None,
        group_id: Optional[str] = None,
        user_ids: Optional[Iterable[str]] = None
    ) -> List[Transaction]:
        """
        Bulk read, newest first.

        Args:
            user_id: Restrict to one owner
            group_id: Restrict to one household
            user_ids: Restrict to several owners

        Returns:
            List of Transaction records in descending date order
        """
        with self.session_scope("get transactions") as session:
            query = session.query(TransactionRow)
            if user_id is not None:
                query = query.filter(TransactionRow.user_id == user_id)
            if group_id is not None:
                query = query.filter(TransactionRow.group_id == group_id)
            if user_ids is not None:
                query = query.filter(TransactionRow.user_id.in_(list(user_ids)))
            rows = query.order_by(TransactionRow.date.desc()).all()
            transactions = [_transaction_from_row(row) for row in rows]
        # Stored text may mix formats; enforce the ledger ordering
        return sort_transactions(transactions)

    def get_transaction_count(self) -> int:
        with self.session_scope("count transactions") as session:
            return session.query(TransactionRow).count()

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    def save_budget(self, budget: Budget) -> Budget:
        """Insert or replace a budget."""
        with self.session_scope("save budget") as session:
            session.merge(BudgetRow(
                id=budget.id,
                description=budget.description,
                amount=budget.amount,
                categories=sorted(budget.categories),
                user_id=budget.user_id,
                type=budget.type
            ))
        logger.debug(f"Saved budget {budget.id}")
        return budget

    def get_budget(self, budget_id: str) -> Optional[Budget]:
        with self.session_scope("get budget") as session:
            row = session.get(BudgetRow, budget_id)
            return _budget_from_row(row) if row else None

    def get_budgets(self, user_id: Optional[str] = None, user_ids: Optional[Iterable[str]] = None) -> List[Budget]:
        with self.session_scope("get budgets") as session:
            query = session.query(BudgetRow)
            if user_id is not None:
                query = query.filter(BudgetRow.user_id == user_id)
            if user_ids is not None:
                query = query.filter(BudgetRow.user_id.in_(list(user_ids)))
            return [_budget_from_row(row) for row in query.order_by(BudgetRow.description).all()]

    def delete_budget(self, budget_id: str) -> bool:
        with self.session_scope("delete budget") as session:
            deleted = session.query(BudgetRow).filter(BudgetRow.id == budget_id).delete()
        return bool(deleted)

    # ------------------------------------------------------------------
    # Budget periods
    # ------------------------------------------------------------------

    def save_period(self, period: BudgetPeriod) -> BudgetPeriod:
        """Insert or replace a budget period."""
        with self.session_scope("save budget period") as session:
            session.merge(BudgetPeriodRow(
                id=period.id,
                user_id=period.user_id,
                start_date=period.start_date,
                end_date=period.end_date,
                is_active=period.is_active
            ))
        logger.debug(f"Saved budget period {period.id}")
        return period

    def get_period(self, period_id: str) -> Optional[BudgetPeriod]:
        with self.session_scope("get budget period") as session:
            row = session.get(BudgetPeriodRow, period_id)
            return _period_from_row(row) if row else None

    def get_periods(self, user_id: Optional[str] = None) -> List[BudgetPeriod]:
        """Budget periods, most recent start first."""
        with self.session_scope("get budget periods") as session:
            query = session.query(BudgetPeriodRow)
            if user_id is not None:
                query = query.filter(BudgetPeriodRow.user_id == user_id)
            rows = query.order_by(BudgetPeriodRow.start_date.desc()).all()
            return [_period_from_row(row) for row in rows]

    def delete_period(self, period_id: str) -> bool:
        with self.session_scope("delete budget period") as session:
            deleted = session.query(BudgetPeriodRow).filter(BudgetPeriodRow.id == period_id).delete()
        return bool(deleted)

    # ------------------------------------------------------------------
    # Recurring series
    # ------------------------------------------------------------------

    def save_series(self, series: RecurringSeries) -> RecurringSeries:
        with self.session_scope("save recurring series") as session:
            session.merge(RecurringSeriesRow(
                id=series.id,
                description=series.description,
                amount=series.amount,
                type=series.type,
                frequency=series.frequency,
                due_day=series.due_day,
                start_date=date_utils.parse_date(series.start_date),
                user_ids=sorted(series.user_ids),
                category=series.category,
                account_id=series.account_id,
                is_active=series.is_active
            ))
        logger.debug(f"Saved recurring series {series.id}")
        return series

    def get_series(self, user_id: Optional[str] = None) -> List[RecurringSeries]:
        """Recurring series, optionally only those shared with ``user_id``."""
        with self.session_scope("get recurring series") as session:
            rows = session.query(RecurringSeriesRow).order_by(RecurringSeriesRow.due_day).all()
            series = [_series_from_row(row) for row in rows]
        if user_id is not None:
            series = [s for s in series if user_id in s.user_ids]
        return series

    def delete_series(self, series_id: str) -> bool:
        with self.session_scope("delete recurring series") as session:
            deleted = session.query(RecurringSeriesRow).filter(RecurringSeriesRow.id == series_id).delete()
        return bool(deleted)

    def close(self) -> None:
        """Close the database engine connection."""
        if hasattr(self, 'engine'):
            self.engine.dispose()
            logger.info("Database connection closed")
