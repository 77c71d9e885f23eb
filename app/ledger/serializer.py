"""Flat CSV rendering of transaction records."""

from __future__ import annotations

import csv
import io
from decimal import Decimal
from typing import Any, Iterable, Protocol

EXPORT_COLUMNS = (
    "id",
    "date",
    "description",
    "originalAmount",
    "currency",
    "amountInReferenceCurrency",
)


class ExportableRecord(Protocol):
    id: Any
    date: Any
    description: str
    original_amount: Decimal
    currency: str
    amount_in_reference_currency: Decimal


def _format_amount(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Decimal):
        # Drop storage padding (428.860000 -> 428.86) without scientific notation
        text = format(value, "f")
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        return text
    return str(value)


def to_table(records: Iterable[ExportableRecord]) -> bytes:
    """
    Render records as UTF-8 CSV with a header row.

    Column order is fixed (EXPORT_COLUMNS) and rows keep the input order.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)

    for record in records:
        writer.writerow(
            [
                "" if record.id is None else record.id,
                record.date.isoformat(),
                record.description,
                _format_amount(record.original_amount),
                record.currency,
                _format_amount(record.amount_in_reference_currency),
            ]
        )

    return buffer.getvalue().encode("utf-8")
