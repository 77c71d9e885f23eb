"""Data models for the bulk import reconciliation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date as calendar_date
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Literal, Mapping, NamedTuple, Union

from pydantic import BaseModel, ConfigDict, Field


class NormalizedKey(NamedTuple):
    """Composite identity of a logical transaction: (calendar date, canonical description)."""

    date: calendar_date
    description: str

    def to_string(self) -> str:
        return f"{self.date.isoformat()}|{self.description}"


class RawRow(BaseModel):
    """One unparsed input row. Values are kept as received so bad rows can be reported verbatim."""

    model_config = ConfigDict(extra="ignore")

    date: Any = Field(default=None, description="Transaction date (day-month-year)")
    description: Any = Field(default=None, description="Free-text description")
    amount: Any = Field(default=None, description="Amount in the original currency")
    currency: Any = Field(default=None, description="ISO 4217 currency code")


class RejectionCode(str, Enum):
    """Per-row failure kinds. They never abort a batch."""

    MALFORMED_ROW = "MalformedRow"
    INVALID_DATE = "InvalidDate"
    NEGATIVE_AMOUNT = "NegativeAmount"
    UNKNOWN_CURRENCY = "UnknownCurrency"


class RejectionReason(BaseModel):
    """Structured reason attached to a rejected row."""

    code: RejectionCode = Field(..., description="Failure kind")
    message: str = Field(..., description="Human-readable explanation")


class ValidatedFields(BaseModel):
    """Typed fields of a row that passed every per-row check."""

    date: calendar_date
    description: str = Field(..., description="Trimmed original description")
    normalized_description: str = Field(..., description="Canonical description")
    amount: Decimal = Field(..., ge=0, description="Original amount")
    currency: str = Field(..., description="Upper-cased ISO currency code")

    @property
    def key(self) -> NormalizedKey:
        return NormalizedKey(self.date, self.normalized_description)


class RowOutcome(BaseModel):
    """Common part of every classification: where the row was and what it held."""

    index: int = Field(..., ge=0, description="Zero-based position in the upload")
    row: RawRow


class Accepted(RowOutcome):
    status: Literal["accepted"] = "accepted"
    key: NormalizedKey
    parsed: ValidatedFields
    rate: Decimal = Field(..., description="Multiplier into the reference currency")
    amount_in_reference_currency: Decimal

    def to_record_values(self) -> dict[str, Any]:
        """Column values for a new Transaction row."""
        return {
            "date": self.parsed.date,
            "description": self.parsed.description,
            "normalized_description": self.parsed.normalized_description,
            "original_amount": self.parsed.amount,
            "currency": self.parsed.currency,
            "amount_in_reference_currency": self.amount_in_reference_currency,
            "is_deleted": False,
        }


class Rejected(RowOutcome):
    status: Literal["rejected"] = "rejected"
    reason: RejectionReason


class DuplicateInBatch(RowOutcome):
    status: Literal["duplicate_in_batch"] = "duplicate_in_batch"
    key: NormalizedKey
    first_index: int = Field(..., description="Index of the row that claimed the key")


class DuplicateInStore(RowOutcome):
    status: Literal["duplicate_in_store"] = "duplicate_in_store"
    key: NormalizedKey


ValidationOutcome = Union[Accepted, Rejected, DuplicateInBatch, DuplicateInStore]


@dataclass(frozen=True)
class ReconciliationResult:
    """
    Final classification of one batch.

    The four tuples partition the input rows; each keeps upload order.
    `summary` maps currency code to the sum of accepted original amounts and
    is read-only.
    """

    reference_currency: str
    accepted: tuple[Accepted, ...] = ()
    rejected: tuple[Rejected, ...] = ()
    duplicates_in_batch: tuple[DuplicateInBatch, ...] = ()
    duplicates_in_store: tuple[DuplicateInStore, ...] = ()
    summary: Mapping[str, Decimal] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @property
    def accepted_count(self) -> int:
        return len(self.accepted)

    @property
    def total_rows(self) -> int:
        return (
            len(self.accepted)
            + len(self.rejected)
            + len(self.duplicates_in_batch)
            + len(self.duplicates_in_store)
        )

    @property
    def outcomes(self) -> list[ValidationOutcome]:
        """Every outcome in upload order."""
        merged: list[ValidationOutcome] = [
            *self.accepted,
            *self.rejected,
            *self.duplicates_in_batch,
            *self.duplicates_in_store,
        ]
        return sorted(merged, key=lambda outcome: outcome.index)

    def record_values(self) -> list[dict[str, Any]]:
        """Column values for every accepted row, in upload order."""
        return [outcome.to_record_values() for outcome in self.accepted]
