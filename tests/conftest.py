from datetime import date

import pytest

from database_ops import DatabaseManager
from models import Account, Budget, BudgetPeriod, Role, Transaction, User


def make_tx(
    tx_id,
    tx_date,
    amount=10.0,
    tx_type="expense",
    category="groceries",
    user_id="u1",
    account_id="acc-1",
    to_account_id=None,
    group_id="g1",
    description="",
):
    """Build a Transaction with sensible defaults for tests."""
    return Transaction(
        id=tx_id,
        amount=amount,
        type=tx_type,
        category=category,
        date=tx_date,
        user_id=user_id,
        account_id=account_id,
        description=description,
        to_account_id=to_account_id,
        group_id=group_id,
    )


@pytest.fixture
def tx_factory():
    return make_tx


@pytest.fixture
def member():
    return User(id="u1", name="Alice", role=Role.MEMBER, group_id="g1", budget_start_date=1)


@pytest.fixture
def other_member():
    return User(id="u2", name="Bob", role=Role.MEMBER, group_id="g1", budget_start_date=15)


@pytest.fixture
def admin():
    return User(id="admin", name="Carol", role=Role.ADMIN, group_id="g1")


@pytest.fixture
def groceries_budget():
    return Budget(id="b1", description="Groceries", amount=500.0,
                  categories={"groceries"}, user_id="u1")


@pytest.fixture
def db_manager():
    """In-memory database with tables created."""
    manager = DatabaseManager("sqlite:///:memory:")
    manager.create_tables()
    yield manager
    manager.close()


@pytest.fixture
def seeded_db(db_manager, member, other_member, admin, groceries_budget):
    """Database with a small household: two members, an admin, accounts and June 2024 activity."""
    for user in (member, other_member, admin):
        db_manager.save_user(user)

    db_manager.save_account(Account(id="acc-1", name="Checking", user_ids={"u1"}, group_id="g1"))
    db_manager.save_account(Account(id="acc-2", name="Savings", user_ids={"u1", "u2"}, group_id="g1"))
    db_manager.save_account(Account(id="acc-3", name="Bob Cash", user_ids={"u2"}, group_id="g1"))

    db_manager.save_budget(groceries_budget)
    db_manager.save_budget(Budget(id="b2", description="Fuel", amount=100.0,
                                  categories={"fuel"}, user_id="u2"))

    db_manager.save_period(BudgetPeriod(id="p1", user_id="u1", start_date=date(2024, 6, 1),
                                        end_date=None, is_active=True))

    db_manager.insert_transactions([
        make_tx("t1", "2024-06-05", 120.0),
        make_tx("t2", "2024-06-10", 20.0, tx_type="income"),
        make_tx("t3", "2024-06-12", 1000.0, tx_type="income", category="salary"),
        make_tx("t4", "2024-06-15", 200.0, tx_type="transfer", category="savings",
                to_account_id="acc-2"),
        make_tx("t5", "2024-06-16", 60.0, category="fuel", user_id="u2", account_id="acc-3"),
        make_tx("t6", "2024-05-20", 80.0),
    ])
    return db_manager
