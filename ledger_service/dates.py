from __future__ import annotations

from datetime import date, datetime

# Extraction returns ISO dates; the rest covers spreadsheet and bank-portal exports.
DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d-%b-%Y", "%d %b %Y", "%d-%b-%y", "%m/%d/%Y")


def parse_date(raw_value: object) -> date | None:
    """Parse a transaction/receipt date, returning None when it is missing or unreadable."""

    if not raw_value:
        return None
    if isinstance(raw_value, datetime):
        return raw_value.date()
    if isinstance(raw_value, date):
        return raw_value

    text = str(raw_value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def days_between(first: object, second: object) -> int | None:
    """Absolute whole-day distance between two dates, or None if either is unreadable."""

    first_date = parse_date(first)
    second_date = parse_date(second)
    if first_date is None or second_date is None:
        return None
    return abs((first_date - second_date).days)


def month_key(raw_value: object) -> str | None:
    parsed = parse_date(raw_value)
    return parsed.strftime("%Y-%m") if parsed else None
