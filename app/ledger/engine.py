"""Reconciliation engine: classifies an import batch without touching the store."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Dict, List, Sequence, Set, Tuple

import structlog

from app.ledger.conflicts import PersistedConflictChecker
from app.ledger.duplicates import DuplicateDetector
from app.ledger.errors import UnknownCurrency
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
from app.ledger.rates import RateResolver
from app.ledger.validator import RowValidator

logger = structlog.get_logger(__name__)


@dataclass
class LocalScreening:
    """
    Outcome of the local pass over a batch.

    Rows are either settled (rejected, duplicate in batch) or left as
    candidates waiting for the store check.
    """

    total_rows: int = 0
    rejected: List[Rejected] = field(default_factory=list)
    duplicates_in_batch: List[DuplicateInBatch] = field(default_factory=list)
    candidates: List[Tuple[int, RawRow, ValidatedFields]] = field(default_factory=list)

    @property
    def candidate_keys(self) -> Set[NormalizedKey]:
        return {fields.key for _, _, fields in self.candidates}


class ReconciliationEngine:
    """
    Classifies every row of a batch as Accepted, Rejected, DuplicateInBatch or
    DuplicateInStore.

    Per row:
    1. RowValidator: failure -> Rejected
    2. DuplicateDetector: repeat of an earlier key -> DuplicateInBatch
    3. otherwise the row becomes a candidate

    After the local pass all candidate keys go to the store in one batched
    lookup. Keys already present -> DuplicateInStore; the rest are converted
    with the rate resolver (a failure there -> Rejected) and Accepted.

    The engine plans only; persisting the accepted rows is the caller's job.
    """

    def __init__(self, validator: RowValidator, rates: RateResolver):
        self.validator = validator
        self.rates = rates

    def screen(self, rows: Sequence[RawRow]) -> LocalScreening:
        """Run per-row validation and in-batch duplicate detection."""
        screening = LocalScreening(total_rows=len(rows))
        detector = DuplicateDetector()

        for index, row in enumerate(rows):
            verdict = self.validator.validate(row)
            if isinstance(verdict, RejectionReason):
                logger.debug(
                    "reconcile.row_rejected", index=index, code=verdict.code.value
                )
                screening.rejected.append(Rejected(index=index, row=row, reason=verdict))
                continue

            key = verdict.key
            if not detector.observe(key, index):
                first_index = detector.first_index(key)
                logger.debug(
                    "reconcile.duplicate_in_batch", index=index, first_index=first_index
                )
                screening.duplicates_in_batch.append(
                    DuplicateInBatch(
                        index=index,
                        row=row,
                        key=key,
                        first_index=first_index if first_index is not None else -1,
                    )
                )
                continue

            screening.candidates.append((index, row, verdict))

        return screening

    def plan(
        self, screening: LocalScreening, existing: Set[NormalizedKey]
    ) -> ReconciliationResult:
        """Settle the candidates against a snapshot of keys already in the store."""
        accepted: List[Accepted] = []
        rejected: List[Rejected] = list(screening.rejected)
        duplicates_in_store: List[DuplicateInStore] = []
        summary: Dict[str, Decimal] = defaultdict(Decimal)

        for index, row, fields in screening.candidates:
            key = fields.key
            if key in existing:
                duplicates_in_store.append(DuplicateInStore(index=index, row=row, key=key))
                continue

            try:
                rate = self.rates.resolve(fields.currency, fields.date)
            except UnknownCurrency as e:
                rejected.append(
                    Rejected(
                        index=index,
                        row=row,
                        reason=RejectionReason(
                            code=RejectionCode.UNKNOWN_CURRENCY, message=str(e)
                        ),
                    )
                )
                continue

            accepted.append(
                Accepted(
                    index=index,
                    row=row,
                    key=key,
                    parsed=fields,
                    rate=rate,
                    amount_in_reference_currency=fields.amount * rate,
                )
            )
            summary[fields.currency] += fields.amount

        rejected.sort(key=lambda outcome: outcome.index)

        return ReconciliationResult(
            reference_currency=self.rates.reference_currency,
            accepted=tuple(accepted),
            rejected=tuple(rejected),
            duplicates_in_batch=tuple(screening.duplicates_in_batch),
            duplicates_in_store=tuple(duplicates_in_store),
            summary=MappingProxyType(dict(summary)),
        )

    async def reconcile(
        self, rows: Sequence[RawRow], checker: PersistedConflictChecker
    ) -> ReconciliationResult:
        """Screen locally, look up candidate keys once, then plan."""
        screening = self.screen(rows)
        existing = await checker.find_existing(screening.candidate_keys)
        result = self.plan(screening, existing)

        logger.info(
            "reconcile.planned",
            rows=screening.total_rows,
            accepted=result.accepted_count,
            rejected=len(result.rejected),
            duplicates_in_batch=len(result.duplicates_in_batch),
            duplicates_in_store=len(result.duplicates_in_store),
        )
        return result
