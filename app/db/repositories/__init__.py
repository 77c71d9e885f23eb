"""Repository exports."""

from .transaction_repository import TransactionRepository

__all__ = ["TransactionRepository"]
