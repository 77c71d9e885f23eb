"""Transaction model: one ledger entry with its reference-currency conversion."""

from datetime import date as calendar_date, datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.types import ExactDecimal


class Transaction(Base):
    """
    Stores expense transactions created by hand or by bulk import.

    `normalized_description` holds the canonical form of `description` so that
    duplicate detection against stored rows uses the same rule as the upload
    side. Rows are soft-deleted through `is_deleted`; hard deletion removes them.
    """

    __tablename__ = "transactions"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Transaction details
    date: Mapped[calendar_date] = mapped_column(
        Date, nullable=False, index=True, comment="Calendar date of the transaction"
    )
    description: Mapped[str] = mapped_column(
        String(500), nullable=False, comment="Description as supplied by the caller"
    )
    normalized_description: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="Canonical description used for duplicate detection",
    )
    original_amount: Mapped[Decimal] = mapped_column(
        ExactDecimal(),
        nullable=False,
        comment="Amount in the original currency",
    )
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, index=True, comment="Currency code (ISO 4217)"
    )
    amount_in_reference_currency: Mapped[Decimal] = mapped_column(
        ExactDecimal(),
        nullable=False,
        comment="original_amount multiplied by the conversion rate",
    )

    # Soft delete
    is_deleted: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        index=True,
        comment="Hidden from normal listings when true",
    )

    # Audit fields
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_transaction_key", "date", "normalized_description"),
        # At most one active row per (date, normalized_description)
        Index(
            "uq_transaction_active_key",
            "date",
            "normalized_description",
            unique=True,
            sqlite_where=text("is_deleted = 0"),
            postgresql_where=text("is_deleted = false"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, date={self.date}, "
            f"description={self.description!r}, amount={self.original_amount}, "
            f"currency={self.currency}, deleted={self.is_deleted})>"
        )
