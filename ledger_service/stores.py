"""
In-memory stores for receipt items and bank transactions.

Both stores keep insertion order (reconciliation iterates in that order) and
offer O(1) lookup by id. Cross references between the stores are plain ids;
neither store owns the other's records.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import replace
from typing import Any
from uuid import uuid4

from .errors import ItemStateError, UnknownItemError, UnknownTransactionError
from .models import (
    DEFAULT_CATEGORY,
    MANUAL_LANGUAGE,
    MANUAL_MERCHANT_NAME,
    BankTransaction,
    MatchStatus,
    ProcessedTransaction,
    ReceiptFields,
    ReceiptItem,
)

logger = logging.getLogger(__name__)

ACCEPTABLE_FROM = frozenset({"success", "accepted"})


def receipt_item_id(name: str, last_modified: int, size: int) -> str:
    """Identity for an uploaded file; re-uploading the same file yields the same id."""

    return f"{name}-{last_modified}-{size}"


class ItemStore:
    """Receipt items keyed by id, in upload order."""

    def __init__(self, confidence_threshold: float = 0.5) -> None:
        self._items: dict[str, ReceiptItem] = {}
        self._confidence_threshold = confidence_threshold

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ReceiptItem]:
        return iter(list(self._items.values()))

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    @property
    def confidence_threshold(self) -> float:
        return self._confidence_threshold

    def get(self, item_id: str) -> ReceiptItem:
        try:
            return self._items[item_id]
        except KeyError:
            raise UnknownItemError(item_id) from None

    def find(self, item_id: str | None) -> ReceiptItem | None:
        if item_id is None:
            return None
        return self._items.get(item_id)

    def add_upload(self, name: str, content_type: str, content: bytes, last_modified: int = 0) -> ReceiptItem | None:
        """Queue an uploaded document; returns None when the same file is already present."""

        item_id = receipt_item_id(name, last_modified, len(content))
        if item_id in self._items:
            logger.warning({"event": "receipt_duplicate_skipped", "item_id": item_id})
            return None

        item = ReceiptItem(id=item_id, name=name, status="queued", content_type=content_type, content=content)
        self._items[item_id] = item
        return item

    def add_manual(
        self,
        *,
        amount: float,
        date: str,
        description: str,
        category: str,
        payment_method: str | None = None,
    ) -> ReceiptItem:
        """Record a hand-typed expense; it skips extraction and is accepted immediately."""

        fields = ReceiptFields(
            merchant_name=MANUAL_MERCHANT_NAME,
            amount=amount,
            date=date,
            items=[description],
            # The payment method rides in `location`, as the entry form has no address.
            location=payment_method,
            category=category or DEFAULT_CATEGORY,
            confidence_score=1.0,
            detected_language=MANUAL_LANGUAGE,
            is_manual=True,
        )
        item = ReceiptItem(
            id=f"manual-{uuid4().hex[:12]}",
            name="manual.txt",
            status="accepted",
            content_type="text/plain",
            fields=fields,
        )
        self._items[item.id] = item
        return item

    def queued(self) -> list[ReceiptItem]:
        return [item for item in self._items.values() if item.status == "queued"]

    def accepted(self) -> list[ReceiptItem]:
        return [item for item in self._items.values() if item.status == "accepted"]

    def unmatched_accepted(self) -> list[ReceiptItem]:
        return [item for item in self.accepted() if item.matched_transaction_id is None]

    def mark_processing(self, item_id: str) -> ReceiptItem:
        item = self.get(item_id)
        if item.status != "queued":
            raise ItemStateError(f"Receipt '{item_id}' is {item.status}; only queued receipts can be processed")
        item.status = "processing"
        return item

    def complete_extraction(self, item_id: str, fields: ReceiptFields) -> ReceiptItem:
        """
        Store extraction output. Confidence at or above the threshold is accepted
        outright; anything lower lands in "success" and waits for human review.
        """

        item = self.get(item_id)
        if item.status != "processing":
            raise ItemStateError(f"Receipt '{item_id}' is {item.status}, not processing")
        item.fields = fields
        item.error_message = None
        item.status = "accepted" if fields.confidence_score >= self._confidence_threshold else "success"
        return item

    def fail_extraction(self, item_id: str, message: str) -> ReceiptItem:
        item = self.get(item_id)
        if item.status != "processing":
            raise ItemStateError(f"Receipt '{item_id}' is {item.status}, not processing")
        item.status = "error"
        item.fields = None
        item.error_message = message
        return item

    def accept(self, item_id: str, overrides: Mapping[str, Any] | None = None) -> ReceiptItem:
        """
        Finalize a reviewed receipt, applying any field corrections first.

        Accepted receipts may be re-edited; their match (if any) is kept.
        """

        item = self.get(item_id)
        if item.status not in ACCEPTABLE_FROM or item.fields is None:
            raise ItemStateError(f"Receipt '{item_id}' is {item.status}; only extracted receipts can be accepted")
        if overrides:
            unknown = set(overrides) - set(ReceiptFields.__slots__)
            if unknown:
                raise ItemStateError(f"Unknown receipt fields: {', '.join(sorted(unknown))}")
            item.fields = replace(item.fields, **dict(overrides))
        item.status = "accepted"
        return item

    def remove(self, item_id: str) -> ReceiptItem:
        try:
            return self._items.pop(item_id)
        except KeyError:
            raise UnknownItemError(item_id) from None

    def link(self, item_id: str, transaction_id: str | None) -> None:
        self.get(item_id).matched_transaction_id = transaction_id

    def release_links_to(self, live_transaction_ids: Iterable[str]) -> list[str]:
        """Clear back-references to transactions that no longer exist; returns affected item ids."""

        live = set(live_transaction_ids)
        released: list[str] = []
        for item in self._items.values():
            if item.matched_transaction_id is not None and item.matched_transaction_id not in live:
                item.matched_transaction_id = None
                released.append(item.id)
        return released


class TransactionStore:
    """Statement transactions for the current import, in statement order."""

    def __init__(self) -> None:
        self._transactions: dict[str, ProcessedTransaction] = {}
        self._import_count = 0

    def __len__(self) -> int:
        return len(self._transactions)

    def __iter__(self) -> Iterator[ProcessedTransaction]:
        return iter(list(self._transactions.values()))

    def __contains__(self, transaction_id: object) -> bool:
        return transaction_id in self._transactions

    def get(self, transaction_id: str) -> ProcessedTransaction:
        try:
            return self._transactions[transaction_id]
        except KeyError:
            raise UnknownTransactionError(transaction_id) from None

    def find(self, transaction_id: str | None) -> ProcessedTransaction | None:
        if transaction_id is None:
            return None
        return self._transactions.get(transaction_id)

    def replace_all(self, extracted: Iterable[BankTransaction]) -> list[ProcessedTransaction]:
        """Swap in a freshly imported statement; every line starts unmatched."""

        self._import_count += 1
        batch = f"{self._import_count}{uuid4().hex[:6]}"
        processed = [
            ProcessedTransaction(
                id=f"tx-{batch}-{index}",
                date=tx.date,
                description=tx.description,
                debit=tx.debit,
                credit=tx.credit,
                balance=tx.balance,
                category=tx.category,
            )
            for index, tx in enumerate(extracted)
        ]
        self._transactions = {tx.id: tx for tx in processed}
        return processed

    def unmatched(self) -> list[ProcessedTransaction]:
        return [tx for tx in self._transactions.values() if tx.match_status == "unmatched"]

    def set_category(self, transaction_id: str, category: str) -> ProcessedTransaction:
        transaction = self.get(transaction_id)
        transaction.category = category
        return transaction

    def link(self, transaction_id: str, receipt_id: str, status: MatchStatus) -> ProcessedTransaction:
        transaction = self.get(transaction_id)
        transaction.match_status = status
        transaction.matched_receipt_id = receipt_id
        return transaction

    def unlink(self, transaction_id: str) -> ProcessedTransaction:
        transaction = self.get(transaction_id)
        transaction.match_status = "unmatched"
        transaction.matched_receipt_id = None
        return transaction

    def linked_to(self, receipt_id: str) -> list[ProcessedTransaction]:
        return [tx for tx in self._transactions.values() if tx.matched_receipt_id == receipt_id]
