"""
Tests for TransactionService.

Covers the import pipeline end to end against a real (in-memory) store:
idempotent re-import, the single batched lookup, atomic persistence and
metrics, plus the CRUD and batch operations.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from app.db.repositories import TransactionRepository
from app.db.unit_of_work import UnitOfWork
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
from app.ledger.metrics import ImportMetrics, ImportStatus
from app.ledger.models import RawRow
from app.ledger.rates import CachedRateResolver, StaticRateResolver
from app.ledger.schemas import TransactionCreate, TransactionUpdate
from app.ledger.service import TransactionService


def raw(description="Coffee", on="01-01-2024", amount="5", currency="USD"):
    return RawRow(date=on, description=description, amount=amount, currency=currency)


async def import_rows(rows, rates, metrics=None):
    async with UnitOfWork() as uow:
        service = TransactionService(uow, rates, metrics=metrics or ImportMetrics())
        return await service.import_rows(rows)


async def active_count() -> int:
    async with UnitOfWork() as uow:
        return await uow.transactions.count(is_deleted=False)


@pytest.mark.asyncio
class TestImportPipeline:
    """Import reconciliation against the store."""

    async def test_accepted_rows_are_persisted(self, test_db, rates):
        report = await import_rows([raw(), raw("Tea", amount="2", currency="EUR")], rates)

        assert report.result.accepted_count == 2
        assert [r.description for r in report.records] == ["Coffee", "Tea"]
        assert all(r.id is not None for r in report.records)
        assert await active_count() == 2

        table = report.table.decode("utf-8").splitlines()
        assert table[0] == "id,date,description,originalAmount,currency,amountInReferenceCurrency"
        assert table[1].endswith(",2024-01-01,Coffee,5,USD,428.86")

    async def test_reimport_is_idempotent(self, test_db, rates):
        rows = [raw(), raw("Tea"), raw("Lunch", amount="-1")]

        first = await import_rows(rows, rates)
        second = await import_rows(rows, rates)

        assert first.result.accepted_count == 2
        assert second.result.accepted_count == 0
        assert [d.index for d in second.result.duplicates_in_store] == [0, 1]
        assert len(second.result.rejected) == 1
        assert await active_count() == 2

    async def test_normalized_description_matches_stored_record(self, test_db, rates):
        await import_rows([raw("Café latte")], rates)
        report = await import_rows([raw("  Cafe-latte! ")], rates)

        assert len(report.result.duplicates_in_store) == 1

    async def test_single_store_lookup_per_import(self, test_db, rates):
        rows = [raw(f"Item {i}", on=f"{(i % 28) + 1:02d}-01-2024") for i in range(50)]

        with patch.object(
            TransactionRepository,
            "existing_keys",
            autospec=True,
            side_effect=TransactionRepository.existing_keys,
        ) as spy:
            report = await import_rows(rows, rates)

        assert spy.call_count == 1
        assert report.result.accepted_count == 50

    async def test_soft_deleted_records_are_not_duplicates(
        self, test_db, rates, make_transaction
    ):
        await make_transaction("Coffee", is_deleted=True)

        report = await import_rows([raw()], rates)

        assert report.result.accepted_count == 1
        assert report.result.duplicates_in_store == ()

    async def test_persistence_failure_commits_nothing(self, test_db, rates):
        metrics = ImportMetrics()
        failing = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("disk full")))

        with patch.object(TransactionRepository, "persist_all", failing):
            with pytest.raises(PersistenceFailure):
                await import_rows([raw(), raw("Tea")], rates, metrics)

        assert await active_count() == 0
        [run] = metrics.get_history()
        assert run.status == ImportStatus.FAILED
        assert run.error

    async def test_unique_index_race_surfaces_as_persistence_failure(
        self, test_db, rates, make_transaction
    ):
        # A concurrent import committed the key after our lookup ran
        with patch.object(
            TransactionRepository, "existing_keys", AsyncMock(return_value=set())
        ):
            await make_transaction("Coffee")
            with pytest.raises(PersistenceFailure):
                await import_rows([raw("Tea"), raw("Coffee")], rates)

        async with UnitOfWork() as uow:
            records = await uow.transactions.filter(is_deleted=False)
        assert [r.description for r in records] == ["Coffee"]

    async def test_stored_amounts_equal_planned_product(self, test_db, rates):
        report = await import_rows([raw(amount="1.2341")], rates)
        [accepted] = report.result.accepted

        async with UnitOfWork() as uow:
            [stored] = await uow.transactions.filter(is_deleted=False)

        assert stored.original_amount == Decimal("1.2341")
        assert stored.amount_in_reference_currency == accepted.amount_in_reference_currency
        assert stored.amount_in_reference_currency == Decimal("105.8512252")

    async def test_long_rate_product_is_not_truncated(self, test_db):
        # Live rates are inverted quotes with many significant digits
        rate = Decimal("1") / Decimal("0.011659")
        live = StaticRateResolver(rates={"INR": Decimal("1"), "USD": rate})

        report = await import_rows([raw(amount="1.2341")], live)
        [accepted] = report.result.accepted

        async with UnitOfWork() as uow:
            [stored] = await uow.transactions.filter(is_deleted=False)

        assert stored.amount_in_reference_currency == Decimal("1.2341") * rate
        assert stored.amount_in_reference_currency == accepted.amount_in_reference_currency

    async def test_nothing_to_persist(self, test_db, rates):
        report = await import_rows([raw(amount="-5")], rates)

        assert report.records == []
        assert report.table.decode("utf-8").strip() == (
            "id,date,description,originalAmount,currency,amountInReferenceCurrency"
        )

    async def test_metrics_recorded_on_success(self, test_db, rates):
        metrics = ImportMetrics()
        rows = [raw(), raw(), raw("Tea", amount="-1"), raw("Lunch")]

        report = await import_rows(rows, rates, metrics)

        [run] = metrics.get_history()
        assert run.run_id == report.run.run_id
        assert run.status == ImportStatus.SUCCESS
        assert run.rows_total == 4
        assert run.rows_accepted == 2
        assert run.rows_rejected == 1
        assert run.rows_duplicate_in_batch == 1
        assert run.ended_at is not None

    async def test_live_rates_refreshed_before_planning(self, test_db):
        cached = CachedRateResolver(StaticRateResolver())
        with patch.object(cached, "refresh", AsyncMock(return_value=False)) as refresh:
            await import_rows([raw()], cached)

        refresh.assert_awaited_once()


@pytest.mark.asyncio
class TestTransactionCrud:
    """Single-record operations."""

    async def test_add_transaction_converts_amount(self, test_db, rates):
        async with UnitOfWork() as uow:
            service = TransactionService(uow, rates)
            transaction = await service.add_transaction(
                TransactionCreate(
                    description="Coffee",
                    original_amount=Decimal("10"),
                    currency="usd",
                    date=date(2024, 1, 1),
                )
            )

        assert transaction.currency == "USD"
        assert transaction.normalized_description == "Coffee"
        assert transaction.amount_in_reference_currency == Decimal("857.72")

    async def test_add_zero_amount(self, test_db, rates):
        async with UnitOfWork() as uow:
            service = TransactionService(uow, rates)
            transaction = await service.add_transaction(
                TransactionCreate(
                    description="Free sample",
                    original_amount=Decimal("0"),
                    currency="INR",
                    date=date(2024, 1, 1),
                )
            )

        assert transaction.amount_in_reference_currency == Decimal("0")

    async def test_add_duplicate_key(self, test_db, rates, make_transaction):
        existing = await make_transaction("Coffee")

        async with UnitOfWork() as uow:
            service = TransactionService(uow, rates)
            with pytest.raises(DuplicateTransaction) as exc_info:
                await service.add_transaction(
                    TransactionCreate(
                        description="Coffee!",
                        original_amount=Decimal("1"),
                        currency="INR",
                        date=date(2024, 1, 1),
                    )
                )
        assert exc_info.value.existing_id == existing.id

    async def test_add_unknown_currency(self, test_db, rates):
        async with UnitOfWork() as uow:
            service = TransactionService(uow, rates)
            with pytest.raises(UnknownCurrency):
                await service.add_transaction(
                    TransactionCreate(
                        description="Coffee",
                        original_amount=Decimal("1"),
                        currency="XYZ",
                        date=date(2024, 1, 1),
                    )
                )

    async def test_update_reconverts(self, test_db, rates, make_transaction):
        existing = await make_transaction("Coffee")

        async with UnitOfWork() as uow:
            service = TransactionService(uow, rates)
            updated = await service.update_transaction(
                existing.id, TransactionUpdate(currency="EUR", original_amount=Decimal("2"))
            )

        assert updated.description == "Coffee"
        assert updated.currency == "EUR"
        assert updated.amount_in_reference_currency == Decimal("2") * Decimal("88.819")

    async def test_update_errors(self, test_db, rates, make_transaction):
        deleted = await make_transaction("Gone", is_deleted=True)
        await make_transaction("Tea")
        coffee = await make_transaction("Coffee")

        async with UnitOfWork() as uow:
            service = TransactionService(uow, rates)
            with pytest.raises(TransactionNotFound):
                await service.update_transaction(9999, TransactionUpdate(description="x"))
            with pytest.raises(SoftDeletedTransactionUpdate):
                await service.update_transaction(deleted.id, TransactionUpdate(description="x"))
            with pytest.raises(UnknownCurrency):
                await service.update_transaction(coffee.id, TransactionUpdate(currency="XYZ"))
            with pytest.raises(DuplicateTransaction):
                await service.update_transaction(coffee.id, TransactionUpdate(description="Tea"))

    async def test_update_keeping_own_key(self, test_db, rates, make_transaction):
        coffee = await make_transaction("Coffee")

        async with UnitOfWork() as uow:
            service = TransactionService(uow, rates)
            updated = await service.update_transaction(
                coffee.id, TransactionUpdate(original_amount=Decimal("7"))
            )

        assert updated.original_amount == Decimal("7")

    async def test_soft_delete_and_restore(self, test_db, rates, make_transaction):
        coffee = await make_transaction("Coffee")

        async with UnitOfWork() as uow:
            service = TransactionService(uow, rates)
            assert (await service.soft_delete_transaction(coffee.id)).is_deleted is True
            with pytest.raises(TransactionAlreadyDeleted):
                await service.soft_delete_transaction(coffee.id)
            assert (await service.restore_transaction(coffee.id)).is_deleted is False
            with pytest.raises(TransactionNotDeleted):
                await service.restore_transaction(coffee.id)
            with pytest.raises(TransactionNotFound):
                await service.soft_delete_transaction(9999)

    async def test_restore_blocked_by_active_key(self, test_db, rates, make_transaction):
        old = await make_transaction("Coffee", is_deleted=True)
        await make_transaction("Coffee")

        async with UnitOfWork() as uow:
            service = TransactionService(uow, rates)
            with pytest.raises(DuplicateTransaction):
                await service.restore_transaction(old.id)

    async def test_hard_delete(self, test_db, rates, make_transaction):
        coffee = await make_transaction("Coffee")

        async with UnitOfWork() as uow:
            service = TransactionService(uow, rates)
            await service.delete_transaction(coffee.id)
            with pytest.raises(TransactionNotFound):
                await service.delete_transaction(coffee.id)

        assert await active_count() == 0


@pytest.mark.asyncio
class TestBatchOperations:
    """Batch soft-delete, restore and hard-delete."""

    async def test_batch_soft_delete(self, test_db, rates, make_transaction):
        a = await make_transaction("A")
        b = await make_transaction("B", is_deleted=True)

        async with UnitOfWork() as uow:
            service = TransactionService(uow, rates)
            deleted = await service.batch_soft_delete([a.id, b.id, 9999])
            assert [t.id for t in deleted] == [a.id]
            with pytest.raises(NoMatchingTransactions):
                await service.batch_soft_delete([b.id])

    async def test_batch_restore_skips_collisions(self, test_db, rates, make_transaction):
        first = await make_transaction("Coffee", is_deleted=True)
        second = await make_transaction("Coffee!", is_deleted=True)
        blocked = await make_transaction("Tea", is_deleted=True)
        await make_transaction("Tea")

        async with UnitOfWork() as uow:
            service = TransactionService(uow, rates)
            restored, skipped = await service.batch_restore([first.id, second.id, blocked.id])

        assert [t.id for t in restored] == [first.id]
        assert skipped == [second.id, blocked.id]
        assert await active_count() == 2

    async def test_batch_restore_nothing_deleted(self, test_db, rates, make_transaction):
        active = await make_transaction("A")

        async with UnitOfWork() as uow:
            service = TransactionService(uow, rates)
            with pytest.raises(NoMatchingTransactions):
                await service.batch_restore([active.id])

    async def test_batch_hard_delete_only_soft_deleted(self, test_db, rates, make_transaction):
        active = await make_transaction("A")
        gone = await make_transaction("B", is_deleted=True)

        async with UnitOfWork() as uow:
            service = TransactionService(uow, rates)
            assert await service.batch_hard_delete([active.id, gone.id]) == 1
            with pytest.raises(NoMatchingTransactions):
                await service.batch_hard_delete([active.id])

        async with UnitOfWork() as uow:
            assert await uow.transactions.get_by_id(active.id) is not None
            assert await uow.transactions.get_by_id(gone.id) is None

    async def test_export_csv(self, test_db, rates, make_transaction):
        async with UnitOfWork() as uow:
            service = TransactionService(uow, rates)
            with pytest.raises(NoMatchingTransactions):
                await service.export_csv()

        await make_transaction("Coffee")
        await make_transaction("Gone", is_deleted=True)

        async with UnitOfWork() as uow:
            table = await TransactionService(uow, rates).export_csv()

        lines = table.decode("utf-8").splitlines()
        assert len(lines) == 2
        assert ",Coffee," in lines[1]
