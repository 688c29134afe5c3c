from __future__ import annotations

"""
Rule-based reader for statements supplied as text.

Handles CSV exports and HTML exports (the `<table>` banks hand out as ".xls").
Rows are located by header names, so column order does not matter. Output is
the raw `{"transactions": [...]}` payload shape the extraction gateway
validates.
"""

import csv
from io import StringIO
from typing import Any, Dict, Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup

from ..categories import categorize_description, is_cash_withdrawal
from ..dates import parse_date
from ..errors import ExtractionError
from ..models import DEFAULT_CATEGORY

DateHeaders = ("date", "transaction date", "posted date", "posting date", "value date", "txn date")
DescriptionHeaders = ("description", "narration", "details", "particulars", "memo", "transaction details")
LedgerDebitHeaders = ("debit", "withdrawal", "withdrawals", "withdraw", "dr", "debit amount")
LedgerCreditHeaders = ("credit", "deposit", "deposits", "cr", "credit amount")
LedgerBalanceHeaders = ("balance", "running balance", "closing balance")


def parse_statement_text(text: str) -> Dict[str, Any]:
    """Parse CSV or HTML statement text into a transactions payload."""

    rows = _html_rows(text) if _looks_like_html(text) else _csv_rows(text)
    if not rows:
        raise ExtractionError("Statement text contains no rows")

    header_index = _find_header_row(rows)
    if header_index is None:
        raise ExtractionError("Statement is missing date/description/amount columns")

    headers = rows[header_index]
    date_col = _find_column(headers, DateHeaders)
    description_col = _find_column(headers, DescriptionHeaders)
    debit_col = _find_column(headers, LedgerDebitHeaders)
    credit_col = _find_column(headers, LedgerCreditHeaders)
    balance_col = _find_column(headers, LedgerBalanceHeaders)

    transactions: List[Dict[str, Any]] = []
    for row in rows[header_index + 1 :]:
        parsed_date = parse_date(_cell(row, date_col))
        description = _cell(row, description_col)
        if parsed_date is None or not description:
            # Opening/closing balance lines and page footers.
            continue

        debit = _parse_amount(_cell(row, debit_col))
        credit = _parse_amount(_cell(row, credit_col))
        transactions.append(
            {
                "date": parsed_date.isoformat(),
                "description": description,
                "debit": debit,
                "credit": credit,
                "balance": _parse_amount(_cell(row, balance_col)),
                "category": _categorize(description, debit, credit),
            }
        )

    return {"transactions": transactions}


def _categorize(description: str, debit: Optional[float], credit: Optional[float]) -> Optional[str]:
    if debit is None:
        return DEFAULT_CATEGORY if credit is not None else None
    if is_cash_withdrawal(description):
        return DEFAULT_CATEGORY
    return categorize_description(description)


def _looks_like_html(text: str) -> bool:
    head = text.lstrip()[:512].lower()
    return head.startswith("<!doctype html") or "<html" in head or "<table" in head


def _csv_rows(text: str) -> List[List[str]]:
    reader = csv.reader(StringIO(text))
    return [[cell.strip() for cell in row] for row in reader if any(cell.strip() for cell in row)]


def _html_rows(text: str) -> List[List[str]]:
    soup = BeautifulSoup(text, "html.parser")
    rows: List[List[str]] = []
    for tr in soup.find_all("tr"):
        row = [" ".join(cell.get_text().split()) for cell in tr.find_all(["td", "th"], recursive=False)]
        if any(row):
            rows.append(row)
    return rows


def _find_header_row(rows: Sequence[Sequence[str]]) -> Optional[int]:
    # Bank exports often carry account details above the table header.
    for index, row in enumerate(rows[:25]):
        if _find_column(row, DateHeaders) is None or _find_column(row, DescriptionHeaders) is None:
            continue
        if _find_column(row, LedgerDebitHeaders) is not None or _find_column(row, LedgerCreditHeaders) is not None:
            return index
    return None


def _find_column(headers: Sequence[str], candidates: Iterable[str]) -> Optional[int]:
    lowered = {header.lower().strip(): index for index, header in enumerate(headers)}
    for candidate in candidates:
        normalized = candidate.lower().strip()
        if normalized in lowered:
            return lowered[normalized]
    return None


def _cell(row: Sequence[str], index: Optional[int]) -> str:
    if index is None or index >= len(row):
        return ""
    return row[index].strip()


def _parse_amount(raw_value: object) -> Optional[float]:
    """Blank cells are None so a debit column is distinguishable from a zero debit."""

    if raw_value is None:
        return None
    cleaned = str(raw_value).replace(",", "").strip()
    for token in ("PKR", "Rs.", "Rs", "$"):
        cleaned = cleaned.replace(token, "")
    cleaned = cleaned.strip()
    if cleaned in ("", "-"):
        return None
    if cleaned.startswith("(") and cleaned.endswith(")"):
        cleaned = cleaned[1:-1]
    try:
        value = abs(float(cleaned))
    except ValueError:
        return None
    return value or None
