"""
Transaction ledger API routes.

CRUD over individual transactions, batch soft-delete/restore/hard-delete,
CSV export and the bulk import endpoints.
"""

import logging
from typing import Any, AsyncGenerator, Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.db.base import get_db
from app.db.unit_of_work import UnitOfWork
from app.ledger.config import ImportConfig, get_import_config
from app.ledger.errors import (
    DuplicateTransaction,
    MalformedUpload,
    NoMatchingTransactions,
    PersistenceFailure,
    SoftDeletedTransactionUpdate,
    TransactionAlreadyDeleted,
    TransactionNotDeleted,
    TransactionNotFound,
    UnknownCurrency,
)
from app.ledger.metrics import ImportMetrics, get_import_metrics
from app.ledger.rates import RateResolver, get_rate_resolver
from app.ledger.reader import read_csv_rows
from app.ledger.schemas import (
    BatchMessage,
    IdsRequest,
    ImportResponse,
    ImportRowsRequest,
    TransactionCreate,
    TransactionMessage,
    TransactionOut,
    TransactionPage,
    TransactionUpdate,
)
from app.ledger.service import ImportReport, TransactionService

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/transactions", tags=["transactions"])

PROCESSING_FAILED = "Processing failed"


class ImportMetricsResponse(BaseModel):
    """Response for the import metrics endpoint."""

    aggregate: Dict[str, Any]
    recent_runs: List[Dict[str, Any]]


async def get_unit_of_work(
    session: AsyncSession = Depends(get_db),
) -> AsyncGenerator[UnitOfWork, None]:
    async with UnitOfWork(session) as uow:
        yield uow


def get_transaction_service(
    uow: UnitOfWork = Depends(get_unit_of_work),
    rates: RateResolver = Depends(get_rate_resolver),
    config: ImportConfig = Depends(get_import_config),
    metrics: ImportMetrics = Depends(get_import_metrics),
) -> TransactionService:
    return TransactionService(uow, rates, config, metrics)


def _page_size(limit: Optional[int]) -> int:
    return limit or settings.DEFAULT_PAGE_SIZE


# ============================================================================
# Bulk import
# ============================================================================

async def _run_import(service: TransactionService, rows, source: str) -> ImportResponse:
    try:
        report: ImportReport = await service.import_rows(rows, source=source)
    except PersistenceFailure as e:
        logger.error(f"Import could not be persisted: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=PROCESSING_FAILED,
        )
    except Exception as e:
        logger.error(f"Unexpected error during import: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=PROCESSING_FAILED,
        )

    return ImportResponse.build(
        report.result, report.records, report.table, run_id=report.run.run_id
    )


@router.post(
    "/import",
    response_model=ImportResponse,
    status_code=status.HTTP_201_CREATED,
)
async def import_file(
    file: Optional[UploadFile] = File(None),
    service: TransactionService = Depends(get_transaction_service),
):
    """
    Upload a CSV of transactions and reconcile it against the ledger.

    Rows are partitioned into accepted, rejected, duplicates within the
    upload and duplicates of stored transactions. Accepted rows are stored
    in one commit.
    """
    if file is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded")

    content = await file.read()
    if not content.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty"
        )

    try:
        rows = read_csv_rows(content, service.config)
    except MalformedUpload as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(f"Importing {len(rows)} rows from {file.filename}")
    return await _run_import(service, rows, source=file.filename or "upload")


@router.post(
    "/import/rows",
    response_model=ImportResponse,
    status_code=status.HTTP_201_CREATED,
)
async def import_rows(
    body: ImportRowsRequest,
    service: TransactionService = Depends(get_transaction_service),
):
    """Reconcile rows sent as JSON, same pipeline as the CSV upload."""
    return await _run_import(service, body.rows, source="rows")


@router.get("/import/metrics", response_model=ImportMetricsResponse)
async def get_metrics(
    hours: Optional[int] = None,
    limit: int = Query(10, ge=1, le=100),
    metrics: ImportMetrics = Depends(get_import_metrics),
):
    """
    Aggregate metrics for bulk imports.

    Args:
        hours: Limit to last N hours (omit for all history)
        limit: Number of recent runs to include
    """
    return ImportMetricsResponse(
        aggregate=metrics.get_aggregate(hours=hours).to_dict(),
        recent_runs=[run.to_dict() for run in metrics.get_history(limit)],
    )


# ============================================================================
# Queries
# ============================================================================

@router.get("", response_model=TransactionPage)
async def list_transactions(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=settings.MAX_PAGE_SIZE),
    service: TransactionService = Depends(get_transaction_service),
):
    """Active transactions, newest date first."""
    limit = _page_size(limit)
    records, total = await service.list_transactions(page, limit)
    return TransactionPage.build(records, total, page, limit)


@router.get("/deleted", response_model=TransactionPage)
async def list_deleted_transactions(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=settings.MAX_PAGE_SIZE),
    service: TransactionService = Depends(get_transaction_service),
):
    limit = _page_size(limit)
    records, total = await service.list_deleted_transactions(page, limit)
    return TransactionPage.build(records, total, page, limit)


@router.get("/search", response_model=TransactionPage)
async def search_transactions(
    query: str = Query(..., min_length=1),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=settings.MAX_PAGE_SIZE),
    service: TransactionService = Depends(get_transaction_service),
):
    """Case-insensitive match on description or currency."""
    if not query.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Search query is required"
        )

    limit = _page_size(limit)
    records, total = await service.search_transactions(query, page, limit)
    return TransactionPage.build(records, total, page, limit)


@router.get("/export")
async def export_transactions(
    service: TransactionService = Depends(get_transaction_service),
):
    """Download every active transaction as CSV."""
    try:
        table = await service.export_csv()
    except NoMatchingTransactions as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return Response(
        content=table,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="transactions.csv"'},
    )


# ============================================================================
# Batches
# ============================================================================

@router.post("/batch/soft-delete", response_model=BatchMessage)
async def batch_soft_delete(
    body: IdsRequest,
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        transactions = await service.batch_soft_delete(body.ids)
    except NoMatchingTransactions as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return BatchMessage(
        message=f"{len(transactions)} transactions soft deleted successfully",
        transactions=[TransactionOut.from_record(t) for t in transactions],
    )


@router.post("/batch/restore", response_model=BatchMessage)
async def batch_restore(
    body: IdsRequest,
    service: TransactionService = Depends(get_transaction_service),
):
    """
    Restore soft-deleted transactions.

    Transactions whose date and description are now taken by an active
    transaction stay deleted and are listed in `skippedIds`.
    """
    try:
        restored, skipped = await service.batch_restore(body.ids)
    except NoMatchingTransactions as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return BatchMessage(
        message=f"{len(restored)} transactions restored successfully",
        transactions=[TransactionOut.from_record(t) for t in restored],
        skipped_ids=skipped,
    )


@router.post("/batch/hard-delete", response_model=BatchMessage)
async def batch_hard_delete(
    body: IdsRequest,
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        deleted = await service.batch_hard_delete(body.ids)
    except NoMatchingTransactions as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return BatchMessage(message=f"{deleted} transactions permanently deleted")


# ============================================================================
# Single transactions
# ============================================================================

@router.post("", response_model=TransactionMessage, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    body: TransactionCreate,
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        transaction = await service.add_transaction(body)
    except UnknownCurrency as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except DuplicateTransaction as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return TransactionMessage(
        message="Transaction added successfully",
        transaction=TransactionOut.from_record(transaction),
    )


@router.put("/{transaction_id}", response_model=TransactionMessage)
async def update_transaction(
    transaction_id: int,
    body: TransactionUpdate,
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        transaction = await service.update_transaction(transaction_id, body)
    except TransactionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SoftDeletedTransactionUpdate as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except UnknownCurrency as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except DuplicateTransaction as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return TransactionMessage(
        message="Transaction updated successfully",
        transaction=TransactionOut.from_record(transaction),
    )


@router.delete("/{transaction_id}", response_model=TransactionMessage)
async def delete_transaction(
    transaction_id: int,
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        await service.delete_transaction(transaction_id)
    except TransactionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return TransactionMessage(message="Transaction deleted successfully")


@router.post("/{transaction_id}/soft-delete", response_model=TransactionMessage)
async def soft_delete_transaction(
    transaction_id: int,
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        transaction = await service.soft_delete_transaction(transaction_id)
    except TransactionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except TransactionAlreadyDeleted as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return TransactionMessage(
        message="Transaction soft deleted successfully",
        transaction=TransactionOut.from_record(transaction),
    )


@router.post("/{transaction_id}/restore", response_model=TransactionMessage)
async def restore_transaction(
    transaction_id: int,
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        transaction = await service.restore_transaction(transaction_id)
    except TransactionNotDeleted as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except DuplicateTransaction as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return TransactionMessage(
        message="Transaction restored successfully",
        transaction=TransactionOut.from_record(transaction),
    )
