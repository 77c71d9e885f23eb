"""Normalization of raw row values and construction of NormalizedKey."""

from __future__ import annotations

import math
import re
import unicodedata
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from app.ledger.models import NormalizedKey

_WHITESPACE = re.compile(r"\s+")


# ============================================================================
# Description
# ============================================================================

def normalize_description(description: str | None) -> str:
    """
    Canonical form of a description for duplicate comparison.

    - Diacritics removed ("Café" -> "Cafe")
    - Punctuation replaced by spaces ("Coffee-shop!" -> "Coffee shop")
    - Whitespace runs collapsed, ends trimmed

    Case is preserved. Applying the function twice gives the same result as
    applying it once.

    Args:
        description: Description as supplied

    Returns:
        Canonical description (empty string for None)
    """
    if description is None:
        return ""

    decomposed = unicodedata.normalize("NFKD", str(description))
    chars = []
    for ch in decomposed:
        category = unicodedata.category(ch)
        if category == "Mn":
            continue
        chars.append(" " if category.startswith("P") else ch)

    return _WHITESPACE.sub(" ", "".join(chars)).strip()


def make_key(transaction_date: date, description: str) -> NormalizedKey:
    """Build the composite key for a date and a (not yet normalized) description."""
    return NormalizedKey(transaction_date, normalize_description(description))


# ============================================================================
# Currency
# ============================================================================

def normalize_currency(currency: Any) -> str | None:
    """
    Normalize a currency code: trimmed and upper-cased.

    Returns None for missing or blank values.
    """
    if currency is None:
        return None
    code = str(currency).strip().upper()
    return code or None


# ============================================================================
# Amount
# ============================================================================

def parse_amount(amount: Any) -> Decimal | None:
    """
    Parse an amount into a Decimal.

    Accepts int, float, Decimal and numeric strings ("12.50", " 3 ").
    Floats go through their shortest repr so 0.1 becomes Decimal("0.1").

    Returns:
        Decimal amount, or None when the value is not a finite number
    """
    if amount is None or isinstance(amount, bool):
        return None

    if isinstance(amount, Decimal):
        value = amount
    elif isinstance(amount, int):
        value = Decimal(amount)
    elif isinstance(amount, float):
        if not math.isfinite(amount):
            return None
        value = Decimal(repr(amount))
    elif isinstance(amount, str):
        cleaned = amount.strip()
        if not cleaned:
            return None
        try:
            value = Decimal(cleaned)
        except InvalidOperation:
            return None
    else:
        return None

    if not value.is_finite():
        return None
    return value


# ============================================================================
# Date
# ============================================================================

def parse_date(value: Any, date_format: str) -> date | None:
    """
    Parse a transaction date.

    Strings must match `date_format` exactly and name a real calendar day
    (31-04-2024 is rejected). `date` and `datetime` instances pass through.

    Returns:
        Calendar date or None if parsing fails
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    try:
        return datetime.strptime(value.strip(), date_format).date()
    except ValueError:
        return None
