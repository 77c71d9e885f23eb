"""Transaction repository with ledger-specific queries."""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import or_, select

from app.db.models.transaction import Transaction
from app.db.repository import BaseRepository
from app.ledger.models import NormalizedKey


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class TransactionRepository(BaseRepository[Transaction]):
    """Repository for Transaction model with ledger queries."""

    def _newest_first(self) -> Tuple[Any, ...]:
        return (self.model.date.desc(), self.model.id.desc())

    async def list_active(self, page: int, limit: int) -> Tuple[List[Transaction], int]:
        """One page of non-deleted transactions, newest date first."""
        return await self.paginate(
            page,
            limit,
            order_by=self._newest_first(),
            where=[self.model.is_deleted.is_(False)],
        )

    async def list_deleted(self, page: int, limit: int) -> Tuple[List[Transaction], int]:
        """One page of soft-deleted transactions, newest date first."""
        return await self.paginate(
            page,
            limit,
            order_by=self._newest_first(),
            where=[self.model.is_deleted.is_(True)],
        )

    async def search(
        self, term: str, page: int, limit: int
    ) -> Tuple[List[Transaction], int]:
        """
        Case-insensitive substring search over description and currency.

        Only non-deleted transactions are searched.
        """
        pattern = f"%{_escape_like(term.strip())}%"
        return await self.paginate(
            page,
            limit,
            order_by=self._newest_first(),
            where=[
                self.model.is_deleted.is_(False),
                or_(
                    self.model.description.ilike(pattern, escape="\\"),
                    self.model.currency.ilike(pattern, escape="\\"),
                ),
            ],
        )

    async def get_all_active(self) -> List[Transaction]:
        """Every non-deleted transaction, oldest first (export order)."""
        return await self.filter(
            order_by=self.model.id.asc(), is_deleted=False
        )

    async def get_many(
        self, ids: Sequence[int], is_deleted: Optional[bool] = None
    ) -> List[Transaction]:
        """Transactions with the given IDs, optionally restricted by delete state."""
        if not ids:
            return []
        filters: Dict[str, Any] = {"id__in": list(ids)}
        if is_deleted is not None:
            filters["is_deleted"] = is_deleted
        return await self.filter(order_by=self.model.id.asc(), **filters)

    async def get_active_by_key(
        self, key: NormalizedKey, exclude_id: Optional[int] = None
    ) -> Optional[Transaction]:
        """The non-deleted transaction holding `key`, if any."""
        query = select(self.model).where(
            self.model.is_deleted.is_(False),
            self.model.date == key.date,
            self.model.normalized_description == key.description,
        )
        if exclude_id is not None:
            query = query.where(self.model.id != exclude_id)

        result = await self.session.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def existing_keys(self, keys: Iterable[NormalizedKey]) -> Set[NormalizedKey]:
        """
        Which of `keys` belong to non-deleted transactions.

        Issues a single query: rows matching any requested date and any
        requested description are fetched, then intersected with the exact
        key pairs.
        """
        requested = set(keys)
        if not requested:
            return set()

        dates = {key.date for key in requested}
        descriptions = {key.description for key in requested}

        result = await self.session.execute(
            select(self.model.date, self.model.normalized_description).where(
                self.model.is_deleted.is_(False),
                self.model.date.in_(dates),
                self.model.normalized_description.in_(descriptions),
            )
        )
        found = {NormalizedKey(row_date, description) for row_date, description in result.all()}
        return found & requested

    async def persist_all(self, values: Sequence[Dict[str, Any]]) -> List[Transaction]:
        """
        Stage every record and flush them together.

        Nothing is committed here; the caller's unit of work commits or rolls
        back the whole batch.
        """
        instances = [self.model(**row) for row in values]
        if not instances:
            return []

        self.session.add_all(instances)
        await self.session.flush()
        return instances
