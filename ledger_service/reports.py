from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from .dates import month_key
from .models import DEDUCTIBLE_CATEGORIES, MANUAL_MERCHANT_NAME, ProcessedTransaction, UnifiedExpense

MEDICAL_DEDUCTION_RATE = 0.10
EDUCATION_DEDUCTION_INCOME_LIMIT = 1_500_000


@dataclass(slots=True)
class CategoryTotal:
    name: str
    total: float = 0.0
    count: int = 0
    with_receipt: int = 0


@dataclass(slots=True)
class ExpenseSummary:
    total_expenses: float
    categories: List[CategoryTotal] = field(default_factory=list)
    deductible_expenses: float = 0.0


@dataclass(slots=True)
class VendorTotal:
    name: str
    total: float = 0.0
    count: int = 0


@dataclass(slots=True)
class ProfitAndLoss:
    month: Optional[str]
    income: float
    expenses_by_category: Dict[str, float]
    total_expenses: float
    net_profit: float
    available_months: List[str] = field(default_factory=list)


@dataclass(slots=True)
class CashFlowMonth:
    month: str
    inflow: float = 0.0
    outflow: float = 0.0
    net: float = 0.0


@dataclass(slots=True)
class DeductibleExpense:
    expense: UnifiedExpense
    deductible: bool


@dataclass(slots=True)
class FbrComplianceReport:
    annual_income: float
    medical_expenses: float
    education_expenses: float
    charitable_donations: float
    medical_deduction_limit: float
    education_deduction_eligible: bool
    expenses: List[DeductibleExpense] = field(default_factory=list)


def expense_summary(expenses: Sequence[UnifiedExpense]) -> ExpenseSummary:
    """
    Totals per category plus the tax-deductible subtotal.

    Args:
        expenses: Unified expense rows (receipts, manual entries, unmatched bank debits).
    Returns:
        ExpenseSummary with categories sorted by total, largest first.
    Assumptions:
        Only receipt-sourced rows count towards `with_receipt`; manual entries have no document.
    """
    categories: Dict[str, CategoryTotal] = {}
    for expense in expenses:
        bucket = categories.setdefault(expense.category, CategoryTotal(name=expense.category))
        bucket.total += expense.amount
        bucket.count += 1
        if expense.source == "receipt":
            bucket.with_receipt += 1

    return ExpenseSummary(
        total_expenses=float(sum(expense.amount for expense in expenses)),
        categories=sorted(categories.values(), key=lambda bucket: bucket.total, reverse=True),
        deductible_expenses=float(
            sum(expense.amount for expense in expenses if expense.category in DEDUCTIBLE_CATEGORIES)
        ),
    )


def vendor_analysis(expenses: Iterable[UnifiedExpense]) -> List[VendorTotal]:
    """Spend per merchant for receipt and manual rows; bank descriptions are too noisy to group."""

    vendors: Dict[str, VendorTotal] = {}
    for expense in expenses:
        if expense.source == "bank":
            continue
        name = ", ".join(expense.items) if expense.merchant_name == MANUAL_MERCHANT_NAME else expense.merchant_name
        bucket = vendors.setdefault(name, VendorTotal(name=name))
        bucket.total += expense.amount
        bucket.count += 1
    return sorted(vendors.values(), key=lambda bucket: bucket.total, reverse=True)


def available_months(
    expenses: Iterable[UnifiedExpense],
    transactions: Iterable[ProcessedTransaction],
) -> List[str]:
    months = {month_key(expense.date) for expense in expenses} | {month_key(tx.date) for tx in transactions}
    return sorted((month for month in months if month), reverse=True)


def profit_and_loss(
    expenses: Sequence[UnifiedExpense],
    transactions: Sequence[ProcessedTransaction],
    month: Optional[str] = None,
) -> ProfitAndLoss:
    """
    Income (statement credits) against categorised expenses.

    Args:
        expenses: Unified expense rows.
        transactions: Statement transactions; only credits contribute to income.
        month: Optional "YYYY-MM" filter; None covers every month.
    Returns:
        ProfitAndLoss with net = income - total expenses and the months available for filtering, newest first.
    """
    if month:
        filtered_expenses = [expense for expense in expenses if month_key(expense.date) == month]
        filtered_transactions = [tx for tx in transactions if month_key(tx.date) == month]
    else:
        filtered_expenses = list(expenses)
        filtered_transactions = list(transactions)

    income = float(sum(tx.credit or 0.0 for tx in filtered_transactions))
    by_category: Dict[str, float] = {}
    for expense in filtered_expenses:
        by_category[expense.category] = by_category.get(expense.category, 0.0) + expense.amount
    ordered = dict(sorted(by_category.items(), key=lambda item: item[1], reverse=True))
    total_expenses = float(sum(ordered.values()))

    return ProfitAndLoss(
        month=month or None,
        income=income,
        expenses_by_category=ordered,
        total_expenses=total_expenses,
        net_profit=income - total_expenses,
        available_months=available_months(expenses, transactions),
    )


def cash_flow(transactions: Iterable[ProcessedTransaction]) -> List[CashFlowMonth]:
    """Monthly inflow/outflow from the statement, oldest month first; undated rows are skipped."""

    months: Dict[str, CashFlowMonth] = {}
    for tx in transactions:
        key = month_key(tx.date)
        if key is None:
            continue
        bucket = months.setdefault(key, CashFlowMonth(month=key))
        bucket.inflow += tx.credit or 0.0
        bucket.outflow += tx.debit or 0.0

    for bucket in months.values():
        bucket.net = bucket.inflow - bucket.outflow
    return [months[key] for key in sorted(months)]


def is_deductible(expense: UnifiedExpense, medical_limit: float, education_eligible: bool) -> bool:
    if expense.category == "Medical":
        return expense.amount <= medical_limit
    if expense.category == "Education":
        return education_eligible
    return expense.category == "Charitable Donations"


def fbr_compliance(expenses: Sequence[UnifiedExpense], annual_income: float) -> FbrComplianceReport:
    """
    Deduction view for an FBR income tax return.

    Args:
        expenses: Unified expense rows.
        annual_income: Estimated annual income in PKR.
    Returns:
        FbrComplianceReport with category totals, limits, and a deductibility flag per expense.
    Assumptions:
        Medical deductions are capped at 10% of income and judged per expense; education
        deductions need 0 < income <= 1,500,000 PKR; charitable donations always qualify.
    """
    medical_limit = annual_income * MEDICAL_DEDUCTION_RATE if annual_income > 0 else 0.0
    education_eligible = 0 < annual_income <= EDUCATION_DEDUCTION_INCOME_LIMIT

    def _total(category: str) -> float:
        return float(sum(expense.amount for expense in expenses if expense.category == category))

    return FbrComplianceReport(
        annual_income=annual_income,
        medical_expenses=_total("Medical"),
        education_expenses=_total("Education"),
        charitable_donations=_total("Charitable Donations"),
        medical_deduction_limit=medical_limit,
        education_deduction_eligible=education_eligible,
        expenses=[
            DeductibleExpense(expense=expense, deductible=is_deductible(expense, medical_limit, education_eligible))
            for expense in expenses
        ],
    )
