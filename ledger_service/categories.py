"""
Category vocabulary and keyword rules for Pakistani merchants and billers.

Used by the rule-based statement reader and by the extraction gateway to keep
every debit inside the fixed category list.
"""

from __future__ import annotations

import re

from .models import DEFAULT_CATEGORY, EXPENSE_CATEGORIES

# Order matters: the first rule whose keyword appears in the description wins.
KEYWORD_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Utilities", ("ptcl", "k-electric", "kelectric", "sngpl", "ssgc", "lesco", "iesco", "wasa", "jazz", "zong", "telenor", "ufone")),
    ("Fuel & Transportation", ("pso", "total parco", "shell", "attock", "careem", "uber", "indrive", "motorway")),
    ("Food & Groceries", ("foodpanda", "cheetay", "imtiaz", "carrefour", "metro", "al-fatah", "naheed", "bakery")),
    ("Personal Care", ("daraz", "alkaram", "khaadi", "gul ahmed", "sapphire", "salon")),
    ("Medical", ("pharmacy", "hospital", "clinic", "chughtai", "shifa", "aga khan", "medical")),
    ("Education", ("school", "college", "university", "academy", "tuition")),
    ("Entertainment", ("cinema", "cinepax", "netflix", "spotify")),
    ("Charitable Donations", ("edhi", "shaukat khanum", "zakat", "donation")),
    ("Rent & Housing", ("rent", "maintenance charges")),
)

CASH_WITHDRAWAL_MARKERS = ("atm", "cash withdrawal", "cash wdl")

_CANONICAL = {category.lower(): category for category in EXPENSE_CATEGORIES}


def normalize_category(raw_value: object) -> str | None:
    """Map a provider-supplied category onto the fixed list; None when it is not recognisable."""

    if raw_value is None:
        return None
    text = str(raw_value).strip().lower()
    if not text:
        return None
    if text in _CANONICAL:
        return _CANONICAL[text]
    # Providers sometimes drop the ampersand half ("Fuel", "Food").
    for key, category in _CANONICAL.items():
        if key.split(" ")[0] == text.split(" ")[0] and category != DEFAULT_CATEGORY:
            return category
    return None


def _contains_word(text: str, keyword: str) -> bool:
    return re.search(rf"\b{re.escape(keyword)}\b", text) is not None


def is_cash_withdrawal(description: str) -> bool:
    lowered = description.lower()
    return any(_contains_word(lowered, marker) for marker in CASH_WITHDRAWAL_MARKERS)


def categorize_description(description: str) -> str:
    """Keyword-based category for a statement line; falls back to Other."""

    lowered = description.lower()
    if is_cash_withdrawal(lowered):
        return DEFAULT_CATEGORY
    for category, keywords in KEYWORD_RULES:
        if any(_contains_word(lowered, keyword) for keyword in keywords):
            return category
    return DEFAULT_CATEGORY
