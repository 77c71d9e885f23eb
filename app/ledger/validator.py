"""Per-row validation of raw import rows."""

from __future__ import annotations

from typing import Any, Union

from app.ledger.config import ImportConfig
from app.ledger.models import RawRow, RejectionCode, RejectionReason, ValidatedFields
from app.ledger.normalizer import (
    normalize_currency,
    normalize_description,
    parse_amount,
    parse_date,
)
from app.ledger.rates import RateResolver

REQUIRED_FIELDS = ("date", "description", "amount", "currency")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _reject(code: RejectionCode, message: str) -> RejectionReason:
    return RejectionReason(code=code, message=message)


class RowValidator:
    """
    Validates one RawRow against the import schema.

    Checks run in a fixed order and the first failure wins:

    1. every field present and non-empty
    2. amount numeric and not negative (zero is allowed)
    3. date parses with the configured day-month-year format
    4. currency known to the rate resolver

    Nothing is raised for bad input; failures come back as RejectionReason.
    """

    def __init__(self, rates: RateResolver, config: ImportConfig | None = None):
        self.rates = rates
        self.config = config or ImportConfig(reference_currency=rates.reference_currency)

    def validate(self, row: RawRow) -> Union[ValidatedFields, RejectionReason]:
        missing = [name for name in REQUIRED_FIELDS if _is_blank(getattr(row, name))]
        if missing:
            return _reject(
                RejectionCode.MALFORMED_ROW,
                f"Missing required field(s): {', '.join(missing)}",
            )

        description = str(row.description).strip()
        normalized_description = normalize_description(description)
        if not normalized_description:
            return _reject(
                RejectionCode.MALFORMED_ROW,
                f"Description has no comparable content: {description!r}",
            )

        amount = parse_amount(row.amount)
        if amount is None:
            return _reject(
                RejectionCode.MALFORMED_ROW, f"Amount is not a number: {row.amount!r}"
            )
        if amount < 0:
            return _reject(
                RejectionCode.NEGATIVE_AMOUNT, f"Negative amount: {row.amount}"
            )

        transaction_date = parse_date(row.date, self.config.date_format)
        if transaction_date is None:
            return _reject(
                RejectionCode.INVALID_DATE,
                f"Invalid date: {row.date!r} (expected {self.config.date_format})",
            )

        currency = normalize_currency(row.currency)
        if currency is None or not self.rates.supports(currency):
            return _reject(
                RejectionCode.UNKNOWN_CURRENCY, f"Unsupported currency: {row.currency}"
            )

        return ValidatedFields(
            date=transaction_date,
            description=description,
            normalized_description=normalized_description,
            amount=amount,
            currency=currency,
        )
