"""Ledger error taxonomy.

Per-row problems found during an import (MalformedRow, InvalidDate,
NegativeAmount, UnknownCurrency) are reported as `RejectionReason` values
rather than raised; the exceptions below cover the CRUD surface, the
rate source and the batch-fatal persistence failure.
"""


class LedgerError(Exception):
    """Base exception for ledger errors."""

    pass


class UnknownCurrency(LedgerError):
    """No conversion rate exists for a currency code."""

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Conversion rate for currency {currency} not found")


class RateSourceUnavailable(LedgerError):
    """The live rate provider could not be reached or returned bad data."""

    pass


class PersistenceFailure(LedgerError):
    """The batch could not be committed; nothing from it was stored."""

    pass


class MalformedUpload(LedgerError):
    """The uploaded file cannot be decoded or lacks a required column."""

    pass


class TransactionNotFound(LedgerError):
    def __init__(self, transaction_id: int):
        self.transaction_id = transaction_id
        super().__init__("Transaction not found")


class TransactionAlreadyDeleted(LedgerError):
    def __init__(self, transaction_id: int):
        self.transaction_id = transaction_id
        super().__init__("Transaction already soft-deleted")


class TransactionNotDeleted(LedgerError):
    def __init__(self, transaction_id: int):
        self.transaction_id = transaction_id
        super().__init__("Transaction not found or not soft-deleted")


class SoftDeletedTransactionUpdate(LedgerError):
    def __init__(self, transaction_id: int):
        self.transaction_id = transaction_id
        super().__init__("Cannot update a soft-deleted transaction")


class DuplicateTransaction(LedgerError):
    """An active transaction already exists for the same date and description."""

    def __init__(self, existing_id: int):
        self.existing_id = existing_id
        super().__init__(
            f"Transaction already exists for this date and description (id={existing_id})"
        )


class NoMatchingTransactions(LedgerError):
    """A batch or export request matched no transaction in the required state."""

    pass
