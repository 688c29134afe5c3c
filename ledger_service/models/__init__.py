from .ledger import (
    DEDUCTIBLE_CATEGORIES,
    DEFAULT_CATEGORY,
    EXPENSE_CATEGORIES,
    MANUAL_LANGUAGE,
    MANUAL_MERCHANT_NAME,
    BankTransaction,
    ExpenseSource,
    FileStatus,
    MatchStatus,
    ProcessedTransaction,
    ReceiptFields,
    ReceiptItem,
    UnifiedExpense,
)

__all__ = [
    "DEDUCTIBLE_CATEGORIES",
    "DEFAULT_CATEGORY",
    "EXPENSE_CATEGORIES",
    "MANUAL_LANGUAGE",
    "MANUAL_MERCHANT_NAME",
    "BankTransaction",
    "ExpenseSource",
    "FileStatus",
    "MatchStatus",
    "ProcessedTransaction",
    "ReceiptFields",
    "ReceiptItem",
    "UnifiedExpense",
]
