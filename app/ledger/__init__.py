"""Expense ledger: bulk import reconciliation and transaction bookkeeping."""

from app.ledger.models import (
    Accepted,
    DuplicateInBatch,
    DuplicateInStore,
    NormalizedKey,
    RawRow,
    ReconciliationResult,
    Rejected,
    RejectionCode,
    RejectionReason,
    ValidatedFields,
)
from app.ledger.normalizer import make_key, normalize_description

__all__ = [
    # Models
    "Accepted",
    "DuplicateInBatch",
    "DuplicateInStore",
    "NormalizedKey",
    "RawRow",
    "ReconciliationResult",
    "Rejected",
    "RejectionCode",
    "RejectionReason",
    "ValidatedFields",
    # Functions
    "make_key",
    "normalize_description",
]
