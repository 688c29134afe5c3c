from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

# Receipt lifecycle: queued -> processing -> success|accepted|error
FileStatus = Literal["queued", "processing", "success", "error", "accepted"]

# Transaction lifecycle: unmatched -> matched|manual
MatchStatus = Literal["unmatched", "matched", "manual"]

ExpenseSource = Literal["receipt", "manual", "bank"]

EXPENSE_CATEGORIES: tuple[str, ...] = (
    "Medical",
    "Education",
    "Fuel & Transportation",
    "Food & Groceries",
    "Utilities",
    "Rent & Housing",
    "Business Expenses",
    "Personal Care",
    "Entertainment",
    "Charitable Donations",
    "Other",
)
DEFAULT_CATEGORY = "Other"
DEDUCTIBLE_CATEGORIES = frozenset({"Medical", "Education", "Charitable Donations"})

MANUAL_MERCHANT_NAME = "Manual Entry"
MANUAL_LANGUAGE = "manual"


@dataclass(slots=True)
class ReceiptFields:
    """Structured data for one expense, either extracted from a document or typed in."""

    merchant_name: str
    amount: float
    date: str
    items: list[str] = field(default_factory=list)
    location: str | None = None
    category: str = DEFAULT_CATEGORY
    confidence_score: float = 0.0
    detected_language: str = "Unknown"
    is_manual: bool = False


@dataclass(slots=True)
class ReceiptItem:
    """
    One uploaded document (or manual entry) and its lifecycle state.

    `fields` is populated iff status is "success" or "accepted".
    `matched_transaction_id` is a lookup-only reference into the transaction store.
    """

    id: str
    name: str
    status: FileStatus
    content_type: str = ""
    content: bytes = b""
    fields: ReceiptFields | None = None
    matched_transaction_id: str | None = None
    error_message: str | None = None

    @property
    def is_manual(self) -> bool:
        return bool(self.fields and self.fields.is_manual)


@dataclass(slots=True)
class BankTransaction:
    """A statement line exactly as the extraction gateway returns it."""

    date: str
    description: str
    debit: float | None = None
    credit: float | None = None
    balance: float | None = None
    category: str | None = None


@dataclass(slots=True)
class ProcessedTransaction:
    """A statement line plus reconciliation state; ids are assigned per import."""

    id: str
    date: str
    description: str
    debit: float | None = None
    credit: float | None = None
    balance: float | None = None
    category: str | None = None
    match_status: MatchStatus = "unmatched"
    matched_receipt_id: str | None = None

    @property
    def amount(self) -> float:
        if self.debit is not None:
            return self.debit
        if self.credit is not None:
            return self.credit
        return 0.0


@dataclass(slots=True)
class UnifiedExpense:
    """Read-only projection row consumed by reports and exports."""

    id: str
    source: ExpenseSource
    merchant_name: str
    amount: float
    date: str
    category: str
    items: list[str] = field(default_factory=list)
    location: str | None = None
    confidence_score: float = 1.0
    detected_language: str = "N/A"
    is_manual: bool = False
