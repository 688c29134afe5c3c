from __future__ import annotations

from collections.abc import Iterable

from .models import DEFAULT_CATEGORY, ProcessedTransaction, ReceiptItem, UnifiedExpense

BANK_LOCATION = "Bank Transaction"
BANK_LANGUAGE = "N/A"


def build_unified_expenses(
    items: Iterable[ReceiptItem],
    transactions: Iterable[ProcessedTransaction],
) -> list[UnifiedExpense]:
    """
    Merge accepted receipts with unmatched bank debits into one expense list.

    Args:
        items: Receipt items in store order; only accepted ones contribute.
        transactions: Statement transactions in statement order.

    Returns:
        Receipt/manual rows first, then bank rows.

    Assumptions:
        - Matched and manually linked transactions are already represented by
          their receipt, so they never produce a bank row.
        - Credits are income and are left to cash-flow reporting.
    """

    expenses: list[UnifiedExpense] = []

    for item in items:
        if item.status != "accepted" or item.fields is None:
            continue
        fields = item.fields
        expenses.append(
            UnifiedExpense(
                id=item.id,
                source="manual" if fields.is_manual else "receipt",
                merchant_name=fields.merchant_name,
                amount=fields.amount,
                date=fields.date,
                category=fields.category or DEFAULT_CATEGORY,
                items=list(fields.items),
                location=fields.location,
                confidence_score=fields.confidence_score,
                detected_language=fields.detected_language,
                is_manual=fields.is_manual,
            )
        )

    for transaction in transactions:
        if transaction.match_status != "unmatched":
            continue
        if transaction.debit is None or transaction.debit <= 0:
            continue
        expenses.append(
            UnifiedExpense(
                id=transaction.id,
                source="bank",
                merchant_name=transaction.description,
                amount=transaction.debit,
                date=transaction.date,
                category=transaction.category or DEFAULT_CATEGORY,
                items=[transaction.description],
                location=BANK_LOCATION,
                confidence_score=1.0,
                detected_language=BANK_LANGUAGE,
            )
        )

    return expenses
