"""Tests for unification.py - the deduplicated expense projection."""

from ledger_service.models import BankTransaction, ReceiptFields
from ledger_service.reconciliation import auto_match, manual_match
from ledger_service.stores import ItemStore, TransactionStore
from ledger_service.unification import build_unified_expenses


def make_session_stores():
    items = ItemStore()
    transactions = TransactionStore()
    return items, transactions


def test_accepted_receipts_and_unmatched_debits_are_included():
    items, transactions = make_session_stores()
    manual = items.add_manual(amount=750.0, date="2024-02-01", description="Rickshaw", category="Fuel & Transportation")
    (tx,) = transactions.replace_all([BankTransaction(date="2024-02-03", description="PTCL BILL", debit=2200.0)])

    expenses = build_unified_expenses(items, transactions)

    assert [(expense.id, expense.source) for expense in expenses] == [(manual.id, "manual"), (tx.id, "bank")]
    bank = expenses[1]
    assert bank.merchant_name == "PTCL BILL"
    assert bank.amount == 2200.0
    assert bank.category == "Other"
    assert bank.items == ["PTCL BILL"]
    assert bank.location == "Bank Transaction"
    assert bank.confidence_score == 1.0
    assert bank.detected_language == "N/A"


def test_receipt_source_for_extracted_items():
    items, transactions = make_session_stores()
    item = items.add_upload("r.jpg", "image/jpeg", b"x")
    items.mark_processing(item.id)

    items.complete_extraction(
        item.id,
        ReceiptFields(merchant_name="Shifa Pharmacy", amount=900.0, date="2024-01-02", category="Medical", confidence_score=0.8),
    )

    (expense,) = build_unified_expenses(items, transactions)

    assert expense.source == "receipt"
    assert expense.merchant_name == "Shifa Pharmacy"
    assert not expense.is_manual


def test_non_accepted_items_are_excluded():
    items, transactions = make_session_stores()
    items.add_upload("queued.jpg", "image/jpeg", b"x")

    assert build_unified_expenses(items, transactions) == []


def test_credits_and_zero_debits_are_excluded():
    items, transactions = make_session_stores()
    transactions.replace_all(
        [
            BankTransaction(date="2024-01-25", description="SALARY", credit=150000.0),
            BankTransaction(date="2024-01-26", description="INFO LINE"),
            BankTransaction(date="2024-01-27", description="ZERO", debit=0.0),
        ]
    )

    assert build_unified_expenses(items, transactions) == []


def test_matched_and_manual_transactions_never_appear_as_bank_rows():
    items, transactions = make_session_stores()
    auto_receipt = items.add_manual(amount=500.0, date="2024-01-10", description="groceries", category="Food & Groceries")
    manual_receipt = items.add_manual(amount=99.0, date="2023-01-01", description="misc", category="Other")
    auto_tx, manual_tx, open_tx = transactions.replace_all(
        [
            BankTransaction(date="2024-01-11", description="POS A", debit=500.0),
            BankTransaction(date="2024-01-20", description="POS B", debit=1200.0),
            BankTransaction(date="2024-01-12", description="POS C", debit=300.0),
        ]
    )
    auto_match(items, transactions)
    manual_match(items, transactions, manual_tx.id, manual_receipt.id)

    expenses = build_unified_expenses(items, transactions)
    bank_ids = {expense.id for expense in expenses if expense.source == "bank"}

    assert auto_tx.match_status == "matched"
    assert bank_ids == {open_tx.id}
    assert {expense.id for expense in expenses if expense.source == "manual"} == {auto_receipt.id, manual_receipt.id}
