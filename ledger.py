"""
Sorted ledger maintenance.

Keeps a list of transactions ordered newest-first by date and applies
insert/update/remove without re-sorting the whole list: a binary search
finds the splice point, so each mutation costs O(log n) comparisons plus
the O(n) list copy.

Corrupt dates never block ingestion. A new transaction with an
unparseable date is appended at the end with a warning, and an existing
entry with an unparseable date compares as ``DATE_SENTINEL_MIN`` (older
than every real date) so the search still terminates.

Optimistic mutations are expressed as command objects: the caller
``apply``s a command to its local collection straight away and, if the
durable write later fails, ``compensate``s it to get the prior state
back.
"""

import itertools
import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Sequence

from models import Transaction

logger = logging.getLogger(__name__)

# Comparison value for entries whose date cannot be parsed
DATE_SENTINEL_MIN = date.min


def sort_key(transaction: Transaction) -> date:
    """Date used for ordering; unparseable dates sort as the oldest possible."""
    parsed = transaction.parsed_date
    return parsed if parsed is not None else DATE_SENTINEL_MIN


def sort_transactions(transactions: Iterable[Transaction]) -> List[Transaction]:
    """Full stable sort, newest first. Used for initial loads, not per mutation."""
    return sorted(transactions, key=sort_key, reverse=True)


def is_sorted_descending(transactions: Sequence[Transaction]) -> bool:
    """True when every entry is dated no later than the one before it."""
    return all(
        sort_key(transactions[i]) >= sort_key(transactions[i + 1])
        for i in range(len(transactions) - 1)
    )


def find_insert_index(transactions: Sequence[Transaction], target: date) -> int:
    """
    Return the left-most index whose entry is not newer than ``target``.

    Args:
        transactions: Collection ordered newest first
        target: Date of the entry being inserted

    Returns:
        Index in ``[0, len(transactions)]``
    """
    low, high = 0, len(transactions)
    while low < high:
        mid = (low + high) // 2
        if sort_key(transactions[mid]) > target:
            low = mid + 1
        else:
            high = mid
    return low


def insert_sorted(transactions: Sequence[Transaction], transaction: Transaction) -> List[Transaction]:
    """
    Insert ``transaction`` keeping newest-first order.

    Args:
        transactions: Collection ordered newest first (not modified)
        transaction: Entry to insert

    Returns:
        New list containing the entry
    """
    result = list(transactions)
    new_date = transaction.parsed_date
    if new_date is None:
        logger.warning(
            "Invalid date %r for transaction %s; appending to end of ledger",
            transaction.date,
            transaction.id
        )
        result.append(transaction)
        return result

    result.insert(find_insert_index(result, new_date), transaction)
    return result


def remove_transaction(transactions: Sequence[Transaction], transaction_id: str) -> List[Transaction]:
    """Return the collection without the entry ``transaction_id``; absent ids are a no-op."""
    return [tx for tx in transactions if tx.id != transaction_id]


def update_sorted(transactions: Sequence[Transaction], transaction: Transaction) -> List[Transaction]:
    """
    Replace the entry with the same id, re-homing it if its date changed.

    An id that is not present yet is simply inserted.
    """
    return insert_sorted(remove_transaction(transactions, transaction.id), transaction)


def find_transaction(transactions: Iterable[Transaction], transaction_id: str) -> Optional[Transaction]:
    return next((tx for tx in transactions if tx.id == transaction_id), None)


class TempIdSequence:
    """
    Generator of provisional ids for records not yet confirmed by the store.

    Each service or session owns its own instance; there is no module-level
    counter.
    """

    def __init__(self, prefix: str = "temp-", start: int = 1):
        self.prefix = prefix
        self._counter = itertools.count(start)

    def next_id(self) -> str:
        return f"{self.prefix}{next(self._counter)}"

    def is_temporary(self, record_id: str) -> bool:
        return str(record_id).startswith(self.prefix)


def invalidation_tags(*transactions: Optional[Transaction]) -> List[str]:
    """
    Cache tags a caller must invalidate after the given transactions change.

    Tags cover the owner, household, touched accounts and categories. Pass
    both the old and the new version of an updated transaction.
    """
    tags = {"transactions"}
    for tx in transactions:
        if tx is None:
            continue
        tags.add(f"user:{tx.user_id}:transactions")
        tags.add(f"user:{tx.user_id}:category:{tx.category}")
        tags.add(f"account:{tx.account_id}:balance")
        if tx.to_account_id:
            tags.add(f"account:{tx.to_account_id}:balance")
        if tx.group_id:
            tags.add(f"group:{tx.group_id}:transactions")
    return sorted(tags)


class LedgerCommand:
    """An optimistic mutation that can be undone deterministically."""

    def apply(self, transactions: Sequence[Transaction]) -> List[Transaction]:
        raise NotImplementedError

    def compensate(self, transactions: Sequence[Transaction]) -> List[Transaction]:
        raise NotImplementedError

    def invalidation_tags(self) -> List[str]:
        raise NotImplementedError


@dataclass(frozen=True)
class InsertTransaction(LedgerCommand):
    transaction: Transaction

    def apply(self, transactions):
        return insert_sorted(transactions, self.transaction)

    def compensate(self, transactions):
        return remove_transaction(transactions, self.transaction.id)

    def invalidation_tags(self):
        return invalidation_tags(self.transaction)


@dataclass(frozen=True)
class UpdateTransaction(LedgerCommand):
    """Replace ``previous`` with ``transaction``; ``previous`` is None if the id was unknown locally."""
    previous: Optional[Transaction]
    transaction: Transaction

    def apply(self, transactions):
        return update_sorted(transactions, self.transaction)

    def compensate(self, transactions):
        if self.previous is None:
            return remove_transaction(transactions, self.transaction.id)
        return update_sorted(transactions, self.previous)

    def invalidation_tags(self):
        return invalidation_tags(self.previous, self.transaction)


@dataclass(frozen=True)
class RemoveTransaction(LedgerCommand):
    """Remove ``transaction_id``; ``previous`` holds the entry so it can be restored."""
    transaction_id: str
    previous: Optional[Transaction] = None

    def apply(self, transactions):
        return remove_transaction(transactions, self.transaction_id)

    def compensate(self, transactions):
        if self.previous is None:
            return list(transactions)
        return insert_sorted(transactions, self.previous)

    def invalidation_tags(self):
        return invalidation_tags(self.previous)


def build_update_command(transactions: Sequence[Transaction], transaction: Transaction) -> UpdateTransaction:
    """Capture the current version of ``transaction.id`` so the update can be compensated."""
    return UpdateTransaction(find_transaction(transactions, transaction.id), transaction)


def build_remove_command(transactions: Sequence[Transaction], transaction_id: str) -> RemoveTransaction:
    return RemoveTransaction(transaction_id, find_transaction(transactions, transaction_id))


def confirm_insert(
    transactions: Sequence[Transaction],
    temp_id: str,
    stored: Transaction
) -> List[Transaction]:
    """Swap the provisional entry ``temp_id`` for the record returned by the store."""
    return insert_sorted(remove_transaction(transactions, temp_id), stored)
