"""Request and response models of the transactions API."""

from __future__ import annotations

from datetime import date as calendar_date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.db.models.transaction import Transaction
from app.ledger.models import RawRow, ReconciliationResult
from app.ledger.normalizer import normalize_description


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _clean_description(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("description must not be blank")
    # Same rule as an uploaded row: the key needs at least one letter or digit
    if not normalize_description(value):
        raise ValueError("description must contain a letter or digit")
    return value


# ============================================================================
# Requests
# ============================================================================

class TransactionCreate(CamelModel):
    """Body of POST /transactions."""

    description: str = Field(..., min_length=1, max_length=500)
    original_amount: Decimal = Field(..., ge=0, description="Amount in `currency`")
    currency: str = Field(..., min_length=1, max_length=3)
    date: calendar_date = Field(..., description="ISO date (YYYY-MM-DD)")

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        return _clean_description(value)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.strip().upper()


class TransactionUpdate(CamelModel):
    """Body of PUT /transactions/{id}; omitted fields stay unchanged."""

    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    original_amount: Optional[Decimal] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=1, max_length=3)
    date: Optional[calendar_date] = None

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return _clean_description(value)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().upper() if value is not None else value


class IdsRequest(BaseModel):
    """Body of the batch endpoints."""

    ids: List[int] = Field(..., min_length=1)


class ImportRowsRequest(BaseModel):
    """Body of POST /transactions/import/rows."""

    rows: List[RawRow] = Field(default_factory=list)


# ============================================================================
# Responses
# ============================================================================

class TransactionOut(CamelModel):
    id: int
    date: calendar_date
    description: str
    original_amount: float
    currency: str
    amount_in_reference_currency: float
    is_deleted: bool

    @classmethod
    def from_record(cls, record: Transaction) -> "TransactionOut":
        return cls(
            id=record.id,
            date=record.date,
            description=record.description,
            original_amount=float(record.original_amount),
            currency=record.currency,
            amount_in_reference_currency=float(record.amount_in_reference_currency),
            is_deleted=record.is_deleted,
        )


class TransactionPage(CamelModel):
    transactions: List[TransactionOut]
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def build(
        cls, records: List[Transaction], total: int, page: int, limit: int
    ) -> "TransactionPage":
        return cls(
            transactions=[TransactionOut.from_record(r) for r in records],
            total=total,
            page=page,
            limit=limit,
            total_pages=-(-total // limit) if limit else 0,
        )


class TransactionMessage(CamelModel):
    message: str
    transaction: Optional[TransactionOut] = None


class BatchMessage(CamelModel):
    message: str
    transactions: List[TransactionOut] = Field(default_factory=list)
    skipped_ids: List[int] = Field(default_factory=list)


class RowRef(CamelModel):
    index: int
    row: Dict[str, Any]


class DuplicateInBatchOut(RowRef):
    first_index: int


class RejectedRowOut(RowRef):
    reason: str
    message: str


class ImportResponse(CamelModel):
    """Partitioned result of a bulk import."""

    message: str
    accepted_count: int
    reference_currency: str
    records: List[TransactionOut]
    duplicates_in_batch: List[DuplicateInBatchOut]
    duplicates_in_store: List[RowRef]
    rejected: List[RejectedRowOut]
    summary: Dict[str, float]
    processed_transactions_csv: str
    run_id: Optional[str] = None

    @classmethod
    def build(
        cls,
        result: ReconciliationResult,
        records: List[Transaction],
        table: bytes,
        run_id: Optional[str] = None,
    ) -> "ImportResponse":
        return cls(
            message=f"{result.accepted_count} Transactions uploaded successfully",
            accepted_count=result.accepted_count,
            reference_currency=result.reference_currency,
            records=[TransactionOut.from_record(r) for r in records],
            duplicates_in_batch=[
                DuplicateInBatchOut(
                    index=d.index, row=d.row.model_dump(), first_index=d.first_index
                )
                for d in result.duplicates_in_batch
            ],
            duplicates_in_store=[
                RowRef(index=d.index, row=d.row.model_dump())
                for d in result.duplicates_in_store
            ],
            rejected=[
                RejectedRowOut(
                    index=r.index,
                    row=r.row.model_dump(),
                    reason=r.reason.code.value,
                    message=r.reason.message,
                )
                for r in result.rejected
            ],
            summary={currency: float(total) for currency, total in result.summary.items()},
            processed_transactions_csv=table.decode("utf-8"),
            run_id=run_id,
        )
