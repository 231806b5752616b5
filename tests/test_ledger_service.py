"""
Unit tests for optimistic transaction mutations.

Store failures are simulated with a mocked database manager so the
compensation path can be checked without a broken database.
"""

from unittest.mock import Mock

import pytest

from database_ops import DatabaseManager
from exceptions import DatabaseError, TransactionError
from ledger import TempIdSequence, is_sorted_descending
from ledger_service import LedgerService


@pytest.fixture
def service(seeded_db):
    return LedgerService(seeded_db, TempIdSequence())


@pytest.fixture
def collection(seeded_db):
    return seeded_db.get_transactions(user_id="u1")


@pytest.fixture
def failing_db():
    db_manager = Mock(spec=DatabaseManager)
    error = DatabaseError("Failed to write")
    db_manager.add_transaction.side_effect = error
    db_manager.save_transaction.side_effect = error
    db_manager.delete_transaction.side_effect = error
    db_manager.get_budgets.return_value = []
    return db_manager


class TestCreateTransaction:
    """Tests for optimistic inserts."""

    def test_create_confirms_store_id(self, service, collection, seeded_db, tx_factory):
        result = service.create_transaction(collection, tx_factory("draft", "2024-06-11", 15.0))
        assert result.succeeded
        ids = [tx.id for tx in result.transactions]
        assert result.transaction.id in ids
        assert not any(i.startswith("temp-") for i in ids)
        assert is_sorted_descending(result.transactions)
        assert seeded_db.get_transaction(result.transaction.id) is not None

    def test_create_returns_invalidation_tags(self, service, collection, tx_factory):
        result = service.create_transaction(collection, tx_factory("draft", "2024-06-11"))
        assert "user:u1:transactions" in result.invalidation_tags
        assert "budget:b1" in result.invalidation_tags

    def test_invalid_transfer_rejected_before_apply(self, service, collection, tx_factory):
        with pytest.raises(TransactionError):
            service.create_transaction(collection, tx_factory("draft", "2024-06-11", tx_type="transfer"))

    def test_member_cannot_create_for_others(self, service, collection, member, tx_factory):
        with pytest.raises(TransactionError):
            service.create_transaction(collection, tx_factory("draft", "2024-06-11", user_id="u2"), actor=member)

    def test_store_failure_compensates(self, failing_db, collection, tx_factory):
        service = LedgerService(failing_db, TempIdSequence())
        result = service.create_transaction(collection, tx_factory("draft", "2024-06-11"))
        assert not result.succeeded
        assert result.transactions == collection
        assert result.invalidation_tags == []
        assert isinstance(result.error, DatabaseError)

    def test_provisional_ids_come_from_sequence(self, failing_db, collection, tx_factory):
        sequence = TempIdSequence(prefix="pending-")
        service = LedgerService(failing_db, sequence)
        service.create_transaction(collection, tx_factory("draft", "2024-06-11"))
        provisional = failing_db.add_transaction.call_args[0][0]
        assert provisional.id == "pending-1"
        assert sequence.next_id() == "pending-2"


class TestUpdateAndDelete:
    """Tests for optimistic updates and deletes."""

    def test_update_rehomes_entry(self, service, collection, seeded_db):
        moved = seeded_db.get_transaction("t6").with_changes(date="2024-06-30")
        result = service.update_transaction(collection, moved)
        assert result.succeeded
        assert result.transactions[0].id == "t6"
        assert seeded_db.get_transaction("t6").parsed_date.isoformat() == "2024-06-30"

    def test_update_failure_restores_previous(self, failing_db, collection):
        service = LedgerService(failing_db, TempIdSequence())
        moved = collection[-1].with_changes(date="2024-06-30")
        result = service.update_transaction(collection, moved)
        assert not result.succeeded
        assert result.transactions == collection

    def test_update_tags_cover_old_and_new_category(self, service, collection):
        original = next(tx for tx in collection if tx.id == "t1")
        result = service.update_transaction(collection, original.with_changes(category="fuel"))
        assert "user:u1:category:groceries" in result.invalidation_tags
        assert "user:u1:category:fuel" in result.invalidation_tags
        assert "budget:b1" in result.invalidation_tags

    def test_delete(self, service, collection, seeded_db):
        result = service.delete_transaction(collection, "t2")
        assert result.succeeded
        assert "t2" not in [tx.id for tx in result.transactions]
        assert seeded_db.get_transaction("t2") is None

    def test_delete_failure_restores(self, failing_db, collection):
        service = LedgerService(failing_db, TempIdSequence())
        result = service.delete_transaction(collection, "t2")
        assert result.transactions == collection

    def test_member_cannot_delete_others(self, seeded_db, member):
        service = LedgerService(seeded_db)
        everyone = seeded_db.get_transactions()
        with pytest.raises(TransactionError):
            service.delete_transaction(everyone, "t5", actor=member)

    def test_member_cannot_delete_others_outside_own_view(self, service, collection, seeded_db, member):
        with pytest.raises(TransactionError):
            service.delete_transaction(collection, "t5", actor=member)
        assert seeded_db.get_transaction("t5") is not None

    def test_member_cannot_take_over_others_outside_own_view(self, service, collection, seeded_db, member):
        forged = seeded_db.get_transaction("t5").with_changes(user_id="u1", account_id="acc-1")
        with pytest.raises(TransactionError):
            service.update_transaction(collection, forged, actor=member)
        assert seeded_db.get_transaction("t5").user_id == "u2"

    def test_admin_can_update_outside_own_view(self, service, collection, seeded_db, admin):
        changed = seeded_db.get_transaction("t5").with_changes(amount=75.0)
        result = service.update_transaction(collection, changed, actor=admin)
        assert result.succeeded
        assert seeded_db.get_transaction("t5").amount == 75.0


def test_from_config_uses_prefix(seeded_db):
    service = LedgerService.from_config(seeded_db, {"ledger": {"temp_id_prefix": "tmp_"}})
    assert service.sequence.next_id() == "tmp_1"
