"""
Domain records shared by the ledger engine, the services and the store.

Records are frozen dataclasses: a change is expressed by building a new
record (``dataclasses.replace``) and handing it to the ledger, never by
patching fields in place. The store converts its rows to these types at
the boundary, so the engine never sees SQLAlchemy objects.
"""

import enum
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, FrozenSet, Optional

from date_utils import parse_date
from exceptions import TransactionError, ValidationError


class TransactionType(enum.Enum):
    """Enumeration of transaction types."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class BudgetType(enum.Enum):
    """Enumeration of budget renewal types."""
    MONTHLY = "monthly"


class Role(enum.Enum):
    """
    Closed set of user roles.

    Capability checks go through the predicates below instead of comparing
    role strings at call sites.
    """
    MEMBER = "member"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"

    def can_view_all(self) -> bool:
        """True when the role may see every household member's records."""
        return self in (Role.ADMIN, Role.SUPERADMIN)

    def can_manage_others(self) -> bool:
        """True when the role may create or edit records owned by others."""
        return self in (Role.ADMIN, Role.SUPERADMIN)


def coerce_enum(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    return enum_cls(str(value).strip().lower())


@dataclass(frozen=True)
class Transaction:
    """
    A single ledger entry.

    Attributes:
        id: Unique identifier (a provisional ``temp-N`` id before the store confirms)
        amount: Non-negative magnitude; the direction comes from ``type``
        type: income, expense or transfer
        category: Category key
        date: Raw date value as received; may be unparseable
        user_id: Owner
        account_id: Source account
        description: Free text
        to_account_id: Destination account, transfers only
        group_id: Household scope
    """
    id: str
    amount: float
    type: TransactionType
    category: str
    date: Any
    user_id: str
    account_id: str
    description: str = ""
    to_account_id: Optional[str] = None
    group_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "type", coerce_enum(TransactionType, self.type))
        object.__setattr__(self, "amount", float(self.amount))

    @property
    def parsed_date(self) -> Optional[date]:
        """Calendar date of the transaction, or None if the stored value is corrupt."""
        return parse_date(self.date)

    @property
    def is_transfer(self) -> bool:
        return self.type is TransactionType.TRANSFER

    def validate(self) -> "Transaction":
        """
        Check the amount and transfer invariants.

        Returns:
            The transaction itself, so the call can be chained.

        Raises:
            TransactionError: If the record would corrupt balances
        """
        if self.amount < 0:
            raise TransactionError(
                "Transaction amount must be non-negative",
                details={"transaction_id": self.id, "amount": self.amount}
            )
        if self.is_transfer:
            if not self.to_account_id or self.to_account_id == self.account_id:
                raise TransactionError(
                    "Transfer requires a destination account distinct from the source",
                    details={"transaction_id": self.id, "account_id": self.account_id,
                             "to_account_id": self.to_account_id}
                )
        elif self.to_account_id:
            raise TransactionError(
                "Only transfers may set a destination account",
                details={"transaction_id": self.id, "type": self.type.value}
            )
        return self

    def with_changes(self, **changes) -> "Transaction":
        """Return a replacement record with ``changes`` applied."""
        return replace(self, **changes)


@dataclass(frozen=True)
class Budget:
    """A spending ceiling over a set of categories for one user."""
    id: str
    description: str
    amount: float
    categories: FrozenSet[str]
    user_id: str
    type: BudgetType = BudgetType.MONTHLY

    def __post_init__(self):
        object.__setattr__(self, "categories", frozenset(self.categories or ()))
        object.__setattr__(self, "type", coerce_enum(BudgetType, self.type))
        object.__setattr__(self, "amount", float(self.amount))

    def validate(self) -> "Budget":
        if self.amount < 0:
            raise ValidationError(
                "Budget amount must be non-negative",
                details={"budget_id": self.id, "amount": self.amount}
            )
        if not self.categories:
            raise ValidationError(
                "Budget must track at least one category",
                details={"budget_id": self.id}
            )
        return self


@dataclass(frozen=True)
class BudgetPeriod:
    """An explicitly recorded accounting window. ``end_date`` of None means still open."""
    id: str
    user_id: str
    start_date: date
    end_date: Optional[date] = None
    is_active: bool = False

    @property
    def is_open(self) -> bool:
        return self.end_date is None


@dataclass(frozen=True)
class Account:
    """A money container shared by one or more household members."""
    id: str
    name: str
    user_ids: FrozenSet[str] = field(default_factory=frozenset)
    group_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "user_ids", frozenset(self.user_ids or ()))


@dataclass(frozen=True)
class User:
    """
    A household member.

    ``budget_start_date`` is the anchor day-of-month (1-31) used when no
    explicit period is recorded; None falls back to the first of the month.
    """
    id: str
    name: str
    role: Role = Role.MEMBER
    group_id: Optional[str] = None
    budget_start_date: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "role", coerce_enum(Role, self.role))
