"""Database models for the expense ledger."""

from .transaction import Transaction

__all__ = ["Transaction"]
