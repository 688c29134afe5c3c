"""
Reconciliation between accepted receipts and statement transactions.

Automatic matching is a greedy, first-fit, single pass over transactions in
statement order. A receipt matches a transaction when the amounts differ by
less than one currency unit and the dates are at most one day apart. Each
receipt can be claimed by at most one transaction per pass; ties go to the
earlier transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .dates import days_between
from .errors import ItemStateError, MatchConflictError
from .models import ProcessedTransaction, ReceiptItem
from .stores import ItemStore, TransactionStore

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = 1.0
DATE_TOLERANCE_DAYS = 1


@dataclass(slots=True)
class MatchReport:
    """Pairs linked by one automatic matching pass as (transaction_id, receipt_id)."""

    pairs: list[tuple[str, str]] = field(default_factory=list)

    @property
    def matched_count(self) -> int:
        return len(self.pairs)


def is_match(transaction: ProcessedTransaction, receipt: ReceiptItem) -> bool:
    """Amount within one unit (exclusive) and date within one day (inclusive)."""

    if receipt.fields is None:
        return False
    if abs(receipt.fields.amount - transaction.amount) >= AMOUNT_TOLERANCE:
        return False
    gap = days_between(transaction.date, receipt.fields.date)
    # Unreadable dates never satisfy the date window.
    return gap is not None and gap <= DATE_TOLERANCE_DAYS


def auto_match(items: ItemStore, transactions: TransactionStore) -> MatchReport:
    """
    Link unmatched transactions to unmatched accepted receipts.

    Running it again without an intervening mutation changes nothing: both
    candidate sets exclude anything already linked.
    """

    report = MatchReport()
    candidates_tx = transactions.unmatched()
    available = items.unmatched_accepted()
    if not candidates_tx or not available:
        return report

    for transaction in candidates_tx:
        for index, receipt in enumerate(available):
            if not is_match(transaction, receipt):
                continue
            transactions.link(transaction.id, receipt.id, "matched")
            items.link(receipt.id, transaction.id)
            report.pairs.append((transaction.id, receipt.id))
            del available[index]
            break
        if not available:
            break

    logger.info(
        {
            "event": "auto_match_completed",
            "candidate_transactions": len(candidates_tx),
            "matched_count": report.matched_count,
        }
    )
    return report


def manual_match(
    items: ItemStore,
    transactions: TransactionStore,
    transaction_id: str,
    receipt_id: str,
) -> ProcessedTransaction:
    """
    Link a transaction to a receipt regardless of amount/date tolerance.

    Policy:
    - the receipt must be accepted;
    - a receipt already linked to a different transaction is rejected with
      MatchConflictError;
    - linking the same pair again upgrades the status to "manual";
    - a receipt previously linked to this transaction is released first.
    """

    transaction = transactions.get(transaction_id)
    receipt = items.get(receipt_id)

    if receipt.status != "accepted":
        raise ItemStateError(f"Receipt '{receipt_id}' is {receipt.status}; only accepted receipts can be matched")
    if receipt.matched_transaction_id not in (None, transaction_id):
        raise MatchConflictError(
            f"Receipt '{receipt_id}' is already matched to transaction '{receipt.matched_transaction_id}'"
        )

    previous = items.find(transaction.matched_receipt_id)
    if previous is not None and previous.id != receipt_id:
        previous.matched_transaction_id = None

    items.link(receipt_id, transaction_id)
    transactions.link(transaction_id, receipt_id, "manual")
    logger.info({"event": "manual_match_applied", "transaction_id": transaction_id, "receipt_id": receipt_id})
    return transaction


def release_receipt(transactions: TransactionStore, receipt_id: str) -> list[str]:
    """Revert every transaction linked to `receipt_id` back to unmatched; returns their ids."""

    released = [tx.id for tx in transactions.linked_to(receipt_id)]
    for transaction_id in released:
        transactions.unlink(transaction_id)
    return released


def similarity_token(description: str) -> str:
    parts = description.split()
    return parts[0].lower() if parts else ""


def find_similar_transactions(
    transactions: TransactionStore,
    transaction_id: str,
) -> list[ProcessedTransaction]:
    """
    Unmatched transactions whose description contains the first word of the
    given transaction's description (case-insensitive substring match).

    The source transaction is part of the result when it is itself unmatched.
    An empty description yields no suggestions.
    """

    source = transactions.get(transaction_id)
    token = similarity_token(source.description)
    if not token:
        return []
    return [tx for tx in transactions.unmatched() if token in tx.description.lower()]


def recategorize(
    transactions: TransactionStore,
    transaction_id: str,
    category: str,
    *,
    apply_to_similar: bool = False,
) -> list[ProcessedTransaction]:
    """Set the category on one transaction, or on it plus its similar transactions."""

    targets = [transactions.get(transaction_id)]
    if apply_to_similar:
        targets.extend(tx for tx in find_similar_transactions(transactions, transaction_id) if tx.id != transaction_id)

    for transaction in targets:
        transactions.set_category(transaction.id, category)

    logger.info(
        {
            "event": "transactions_recategorized",
            "transaction_id": transaction_id,
            "updated_count": len(targets),
            "bulk": apply_to_similar,
        }
    )
    return targets
