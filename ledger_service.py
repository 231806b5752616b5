"""
Optimistic transaction mutations against the durable store.

The caller holds a sorted transaction collection. Each mutation is
applied to that collection immediately through a ``LedgerCommand``, then
written to the store. If the write fails the command is compensated and
the caller gets back the collection as it was, together with the error.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from config_manager import get_ledger_setting
from database_ops import DatabaseManager
from exceptions import DatabaseError, TransactionError
from ledger import (
    InsertTransaction,
    LedgerCommand,
    TempIdSequence,
    build_remove_command,
    build_update_command,
    confirm_insert,
)
from models import Transaction, User
from permissions import can_access_user_data

logger = logging.getLogger(__name__)


@dataclass
class LedgerResult:
    """
    Outcome of one mutation.

    Attributes:
        transactions: Collection to use from now on
        transaction: Stored record (insert/update), None on delete or failure
        invalidation_tags: Cache tags to invalidate; empty on failure
        error: Store error when the mutation was compensated
    """
    transactions: List[Transaction]
    transaction: Optional[Transaction] = None
    invalidation_tags: List[str] = field(default_factory=list)
    error: Optional[DatabaseError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class LedgerService:
    """Applies transaction changes locally first and persists them second."""

    def __init__(self, db_manager: DatabaseManager, sequence: Optional[TempIdSequence] = None):
        """
        Initialize the ledger service.

        Args:
            db_manager: DatabaseManager instance
            sequence: Source of provisional ids for unconfirmed inserts
        """
        self.db_manager = db_manager
        self.sequence = sequence or TempIdSequence()
        logger.info("Ledger service initialized")

    @classmethod
    def from_config(cls, db_manager: DatabaseManager, config: Optional[Dict[str, Any]] = None) -> "LedgerService":
        """Build a service whose provisional ids use the configured prefix."""
        prefix = get_ledger_setting('temp_id_prefix', config=config or {})
        return cls(db_manager, TempIdSequence(prefix))

    @staticmethod
    def _check_access(actor: Optional[User], transaction: Transaction) -> None:
        if actor is not None and not can_access_user_data(actor, transaction.user_id):
            raise TransactionError(
                "Not allowed to change another user's transactions",
                details={"actor_id": actor.id, "user_id": transaction.user_id}
            )

    def _check_stored_access(self, actor: Optional[User], transaction_id: str) -> None:
        """Check the actor against the stored owner, which the caller's collection may not hold."""
        if actor is None:
            return
        stored = self.db_manager.get_transaction(transaction_id)
        if stored is not None:
            self._check_access(actor, stored)

    def _budget_tags(self, *transactions: Optional[Transaction]) -> List[str]:
        tags = set()
        for tx in transactions:
            if tx is None:
                continue
            for budget in self.db_manager.get_budgets(user_id=tx.user_id):
                if tx.category in budget.categories:
                    tags.add(f"budget:{budget.id}")
        return sorted(tags)

    def _tags(self, command: LedgerCommand, *transactions: Optional[Transaction]) -> List[str]:
        return sorted(set(command.invalidation_tags()) | set(self._budget_tags(*transactions)))

    def create_transaction(
        self,
        transactions: Sequence[Transaction],
        draft: Transaction,
        actor: Optional[User] = None
    ) -> LedgerResult:
        """
        Insert ``draft`` under a provisional id, then persist it.

        Args:
            transactions: Current collection, newest first
            draft: New transaction; its id is replaced by a provisional one
            actor: User performing the change

        Returns:
            LedgerResult with the confirmed record, or the compensated collection

        Raises:
            TransactionError: If the record is invalid or the actor lacks access
        """
        provisional = draft.with_changes(id=self.sequence.next_id()).validate()
        self._check_access(actor, provisional)

        command = InsertTransaction(provisional)
        optimistic = command.apply(transactions)
        try:
            stored = self.db_manager.add_transaction(provisional)
        except DatabaseError as e:
            logger.error(f"Insert of {provisional.id} failed; reverting local ledger: {e}")
            return LedgerResult(transactions=command.compensate(optimistic), error=e)

        logger.info(f"Created transaction {stored.id} ({stored.type.value} {stored.amount:.2f})")
        return LedgerResult(
            transactions=confirm_insert(optimistic, provisional.id, stored),
            transaction=stored,
            invalidation_tags=self._tags(InsertTransaction(stored), stored)
        )

    def update_transaction(
        self,
        transactions: Sequence[Transaction],
        transaction: Transaction,
        actor: Optional[User] = None
    ) -> LedgerResult:
        """
        Replace a transaction, moving it if its date changed.

        Raises:
            TransactionError: If the record is invalid or the actor lacks access
        """
        transaction.validate()
        self._check_access(actor, transaction)

        command = build_update_command(transactions, transaction)
        if command.previous is not None:
            self._check_access(actor, command.previous)
        self._check_stored_access(actor, transaction.id)
        optimistic = command.apply(transactions)
        try:
            stored = self.db_manager.save_transaction(transaction)
        except DatabaseError as e:
            logger.error(f"Update of {transaction.id} failed; reverting local ledger: {e}")
            return LedgerResult(transactions=command.compensate(optimistic), error=e)

        logger.info(f"Updated transaction {stored.id}")
        return LedgerResult(
            transactions=optimistic,
            transaction=stored,
            invalidation_tags=self._tags(command, command.previous, stored)
        )

    def delete_transaction(
        self,
        transactions: Sequence[Transaction],
        transaction_id: str,
        actor: Optional[User] = None
    ) -> LedgerResult:
        """
        Remove a transaction; removing an unknown id is a no-op.

        Raises:
            TransactionError: If the actor lacks access to the transaction
        """
        command = build_remove_command(transactions, transaction_id)
        if command.previous is not None:
            self._check_access(actor, command.previous)
        self._check_stored_access(actor, transaction_id)
        optimistic = command.apply(transactions)
        try:
            self.db_manager.delete_transaction(transaction_id)
        except DatabaseError as e:
            logger.error(f"Delete of {transaction_id} failed; reverting local ledger: {e}")
            return LedgerResult(transactions=command.compensate(optimistic), error=e)

        logger.info(f"Deleted transaction {transaction_id}")
        return LedgerResult(
            transactions=optimistic,
            invalidation_tags=self._tags(command, command.previous)
        )
