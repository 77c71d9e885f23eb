"""Transaction service: ledger bookkeeping and the bulk import pipeline."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError

from app.core.logging import bound_context
from app.db.models.transaction import Transaction
from app.db.unit_of_work import UnitOfWork
from app.ledger.config import ImportConfig
from app.ledger.conflicts import PersistedConflictChecker
from app.ledger.engine import ReconciliationEngine
from app.ledger.errors import (
    DuplicateTransaction,
    NoMatchingTransactions,
    PersistenceFailure,
    SoftDeletedTransactionUpdate,
    TransactionAlreadyDeleted,
    TransactionNotDeleted,
    TransactionNotFound,
    UnknownCurrency,
)
from app.ledger.metrics import ImportMetrics, ImportRunMetrics, ImportStatus
from app.ledger.models import NormalizedKey, RawRow, ReconciliationResult
from app.ledger.normalizer import make_key
from app.ledger.rates import CachedRateResolver, RateResolver
from app.ledger.schemas import TransactionCreate, TransactionUpdate
from app.ledger.serializer import to_table
from app.ledger.validator import RowValidator

logger = structlog.get_logger(__name__)


@dataclass
class ImportReport:
    """What a committed import produced."""

    result: ReconciliationResult
    records: List[Transaction]
    table: bytes
    run: ImportRunMetrics


class TransactionService:
    """
    Ledger operations over an injected unit of work.

    The service never opens connections; the caller supplies the UnitOfWork
    (and through it the session) and owns its lifecycle.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        rates: RateResolver,
        config: Optional[ImportConfig] = None,
        metrics: Optional[ImportMetrics] = None,
    ):
        self.uow = uow
        self.rates = rates
        self.config = config or ImportConfig(reference_currency=rates.reference_currency)
        self.metrics = metrics or ImportMetrics()

    @property
    def repo(self):
        return self.uow.transactions

    # ------------------------------------------------------------------
    # Bulk import
    # ------------------------------------------------------------------

    async def import_rows(self, rows: Sequence[RawRow], source: str = "rows") -> ImportReport:
        """
        Reconcile a batch and persist its accepted rows atomically.

        Raises:
            PersistenceFailure: The batch could not be committed; nothing from
                it was stored
        """
        run = ImportRunMetrics.start(source)
        with bound_context(import_run_id=run.run_id):
            return await self._import(run, rows)

    async def _import(self, run: ImportRunMetrics, rows: Sequence[RawRow]) -> ImportReport:
        run.rows_total = len(rows)
        logger.info("import.started", source=run.source, rows=run.rows_total)

        try:
            if isinstance(self.rates, CachedRateResolver):
                await self.rates.refresh()

            engine = ReconciliationEngine(RowValidator(self.rates, self.config), self.rates)
            checker = PersistedConflictChecker(self.repo)

            lookup_start = time.perf_counter()
            result = await engine.reconcile(rows, checker)
            run.lookup_seconds = time.perf_counter() - lookup_start

            persist_start = time.perf_counter()
            records = await self._persist_batch(result)
            run.persist_seconds = time.perf_counter() - persist_start
        except Exception as e:
            run.finish(ImportStatus.FAILED, error=str(e))
            self.metrics.record(run)
            logger.error("import.failed", error=str(e), exc_info=True)
            raise

        run.rows_total = result.total_rows
        run.rows_accepted = result.accepted_count
        run.rows_rejected = len(result.rejected)
        run.rows_duplicate_in_batch = len(result.duplicates_in_batch)
        run.rows_duplicate_in_store = len(result.duplicates_in_store)
        run.finish(ImportStatus.SUCCESS)
        self.metrics.record(run)

        logger.info(
            "import.completed",
            accepted=run.rows_accepted,
            rejected=run.rows_rejected,
            duplicates_in_batch=run.rows_duplicate_in_batch,
            duplicates_in_store=run.rows_duplicate_in_store,
            duration_seconds=round(run.duration_seconds, 4),
        )
        return ImportReport(result=result, records=records, table=to_table(records), run=run)

    async def _persist_batch(self, result: ReconciliationResult) -> List[Transaction]:
        """All accepted rows in one commit, or none of them."""
        values = result.record_values()
        if not values:
            return []

        try:
            records = await self.repo.persist_all(values)
            await self.uow.commit()
        except SQLAlchemyError as e:
            await self.uow.rollback()
            raise PersistenceFailure("Batch could not be persisted") from e

        return records

    # ------------------------------------------------------------------
    # Single records
    # ------------------------------------------------------------------

    def _resolve_rate(self, currency: str, on_date=None):
        if not self.rates.supports(currency):
            raise UnknownCurrency(currency)
        return self.rates.resolve(currency, on_date)

    async def _ensure_key_free(self, key: NormalizedKey, exclude_id: Optional[int] = None):
        existing = await self.repo.get_active_by_key(key, exclude_id=exclude_id)
        if existing is not None:
            raise DuplicateTransaction(existing.id)

    async def _commit(self) -> None:
        try:
            await self.uow.commit()
        except SQLAlchemyError as e:
            await self.uow.rollback()
            raise PersistenceFailure("Transaction could not be saved") from e

    async def _get_or_raise(self, transaction_id: int) -> Transaction:
        transaction = await self.repo.get_by_id(transaction_id)
        if transaction is None:
            raise TransactionNotFound(transaction_id)
        return transaction

    async def add_transaction(self, data: TransactionCreate) -> Transaction:
        """Create one transaction, converting its amount into the reference currency."""
        if isinstance(self.rates, CachedRateResolver):
            await self.rates.refresh()

        rate = self._resolve_rate(data.currency, data.date)
        key = make_key(data.date, data.description)
        await self._ensure_key_free(key)

        transaction = await self.repo.create(
            date=data.date,
            description=data.description,
            normalized_description=key.description,
            original_amount=data.original_amount,
            currency=data.currency,
            amount_in_reference_currency=data.original_amount * rate,
            is_deleted=False,
        )
        await self._commit()
        logger.info("transaction.created", transaction_id=transaction.id)
        return transaction

    async def update_transaction(
        self, transaction_id: int, data: TransactionUpdate
    ) -> Transaction:
        """
        Apply a partial update and recompute the converted amount.

        Raises:
            TransactionNotFound, SoftDeletedTransactionUpdate, UnknownCurrency,
            DuplicateTransaction
        """
        transaction = await self._get_or_raise(transaction_id)
        if transaction.is_deleted:
            raise SoftDeletedTransactionUpdate(transaction_id)

        changes = data.model_dump(exclude_none=True)
        new_date = changes.get("date", transaction.date)
        new_description = changes.get("description", transaction.description)
        new_currency = changes.get("currency", transaction.currency)
        new_amount = changes.get("original_amount", transaction.original_amount)

        rate = self._resolve_rate(new_currency, new_date)
        key = make_key(new_date, new_description)
        await self._ensure_key_free(key, exclude_id=transaction.id)

        transaction.date = new_date
        transaction.description = new_description
        transaction.normalized_description = key.description
        transaction.currency = new_currency
        transaction.original_amount = new_amount
        transaction.amount_in_reference_currency = new_amount * rate

        await self._commit()
        logger.info(
            "transaction.updated", transaction_id=transaction.id, fields=sorted(changes)
        )
        return transaction

    async def delete_transaction(self, transaction_id: int) -> None:
        """Hard-delete one transaction regardless of its soft-delete state."""
        if not await self.repo.delete(transaction_id):
            raise TransactionNotFound(transaction_id)
        await self._commit()
        logger.info("transaction.deleted", transaction_id=transaction_id)

    async def soft_delete_transaction(self, transaction_id: int) -> Transaction:
        transaction = await self._get_or_raise(transaction_id)
        if transaction.is_deleted:
            raise TransactionAlreadyDeleted(transaction_id)

        transaction.is_deleted = True
        await self._commit()
        logger.info("transaction.soft_deleted", transaction_id=transaction_id)
        return transaction

    async def restore_transaction(self, transaction_id: int) -> Transaction:
        """
        Bring a soft-deleted transaction back.

        Raises:
            TransactionNotDeleted: Missing or not soft-deleted
            DuplicateTransaction: An active transaction now holds the same key
        """
        transaction = await self.repo.get_by_id(transaction_id)
        if transaction is None or not transaction.is_deleted:
            raise TransactionNotDeleted(transaction_id)

        key = NormalizedKey(transaction.date, transaction.normalized_description)
        await self._ensure_key_free(key, exclude_id=transaction.id)

        transaction.is_deleted = False
        await self._commit()
        logger.info("transaction.restored", transaction_id=transaction_id)
        return transaction

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def batch_soft_delete(self, ids: Sequence[int]) -> List[Transaction]:
        transactions = await self.repo.get_many(ids, is_deleted=False)
        if not transactions:
            raise NoMatchingTransactions("No transactions found to delete")

        for transaction in transactions:
            transaction.is_deleted = True
        await self._commit()
        logger.info("transaction.batch_soft_deleted", count=len(transactions))
        return transactions

    async def batch_restore(
        self, ids: Sequence[int]
    ) -> Tuple[List[Transaction], List[int]]:
        """
        Restore soft-deleted transactions.

        A transaction whose key is held by an active one (or by an earlier
        transaction restored in the same call) stays deleted and is reported
        in the skipped list.

        Returns:
            (restored transactions, skipped IDs)
        """
        transactions = await self.repo.get_many(ids, is_deleted=True)
        if not transactions:
            raise NoMatchingTransactions("No transactions found to restore")

        keys = {NormalizedKey(t.date, t.normalized_description) for t in transactions}
        claimed = await self.repo.existing_keys(keys)

        restored: List[Transaction] = []
        skipped: List[int] = []
        for transaction in transactions:
            key = NormalizedKey(transaction.date, transaction.normalized_description)
            if key in claimed:
                skipped.append(transaction.id)
                continue
            claimed.add(key)
            transaction.is_deleted = False
            restored.append(transaction)

        await self._commit()
        logger.info(
            "transaction.batch_restored", restored=len(restored), skipped=len(skipped)
        )
        return restored, skipped

    async def batch_hard_delete(self, ids: Sequence[int]) -> int:
        """Permanently delete the soft-deleted transactions among `ids`."""
        transactions = await self.repo.get_many(ids, is_deleted=True)
        if not transactions:
            raise NoMatchingTransactions("No transactions found to delete")

        deleted = await self.repo.delete_where(
            id__in=[t.id for t in transactions], is_deleted=True
        )
        await self._commit()
        logger.info("transaction.batch_hard_deleted", count=deleted)
        return deleted

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_transactions(self, page: int, limit: int):
        return await self.repo.list_active(page, limit)

    async def list_deleted_transactions(self, page: int, limit: int):
        return await self.repo.list_deleted(page, limit)

    async def search_transactions(self, query: str, page: int, limit: int):
        return await self.repo.search(query, page, limit)

    async def export_csv(self) -> bytes:
        """CSV of every active transaction."""
        transactions = await self.repo.get_all_active()
        if not transactions:
            raise NoMatchingTransactions("No transactions available to download")
        return to_table(transactions)
