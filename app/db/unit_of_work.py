"""Unit of Work pattern for managing database transactions."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.db import base
from app.db.models import Transaction
from app.db.repositories import TransactionRepository


class UnitOfWork:
    """
    Single transaction boundary around the ledger repositories.

    The session is injected by the caller (e.g. FastAPI's `get_db`) or, when
    omitted, opened from the session factory and closed on exit. Ledger code
    commits or rolls back through this object and never manages connections
    itself.

    Usage:
        async with UnitOfWork() as uow:
            records = await uow.transactions.persist_all(values)
            await uow.commit()
    """

    def __init__(self, session: Optional[AsyncSession] = None):
        """
        Initialize Unit of Work.

        Args:
            session: Optional existing session (request-scoped or from tests)
        """
        self._session = session
        self._owned_session = session is None
        self.transactions: TransactionRepository = None  # type: ignore

    @property
    def session(self) -> AsyncSession:
        assert self._session is not None, "UnitOfWork used outside its context"
        return self._session

    async def __aenter__(self):
        if self._owned_session:
            self._session = base.AsyncSessionLocal()

        assert self._session is not None, "Session must be initialized"
        self.transactions = TransactionRepository(Transaction, self._session)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            await self.rollback()
        elif self._owned_session:
            await self.commit()

        if self._owned_session and self._session:
            await self._session.close()

    async def commit(self):
        """Commit the current transaction."""
        if self._session:
            await self._session.commit()

    async def rollback(self):
        """Rollback the current transaction."""
        if self._session:
            await self._session.rollback()

