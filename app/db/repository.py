"""Base repository class with common CRUD operations."""

from typing import Any, Generic, List, Optional, Sequence, Tuple, Type, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)

_OPERATORS = {
    "eq": lambda field, value: field == value,
    "ne": lambda field, value: field != value,
    "lt": lambda field, value: field < value,
    "lte": lambda field, value: field <= value,
    "gt": lambda field, value: field > value,
    "gte": lambda field, value: field >= value,
    "in": lambda field, value: field.in_(value),
}


class BaseRepository(Generic[ModelType]):
    """
    Base repository providing common CRUD operations for all models.

    Repositories never commit; the surrounding UnitOfWork owns the
    transaction boundary.
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session

    async def create(self, **kwargs) -> ModelType:
        """
        Create a new record.

        Args:
            **kwargs: Field values for the new record

        Returns:
            Created model instance
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def get_by_id(self, id: int) -> Optional[ModelType]:
        """Get a record by primary key, or None."""
        result = await self.session.execute(
            select(self.model).where(self.model.id == id)  # type: ignore
        )
        return result.scalar_one_or_none()

    async def filter(self, order_by: Any = None, **filters) -> List[ModelType]:
        """
        Filter records by field values.

        Supports comparison operators using double underscore syntax:
        - field__lt / field__lte / field__gt / field__gte: comparisons
        - field__ne: not equal
        - field__in: membership in a collection
        - field (no suffix): equal

        Args:
            order_by: Optional SQLAlchemy ordering clause
            **filters: Field name and value pairs

        Returns:
            List of matching model instances

        Examples:
            await repo.filter(id__in=[1, 2, 3], is_deleted=False)
        """
        query = self._apply_filters(select(self.model), filters)
        if order_by is not None:
            query = query.order_by(order_by)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def paginate(
        self,
        page: int,
        limit: int,
        order_by: Sequence[Any] = (),
        where: Sequence[Any] = (),
    ) -> Tuple[List[ModelType], int]:
        """
        Return one page of records and the total number of matches.

        Args:
            page: 1-based page number
            limit: Page size
            order_by: Ordering clauses
            where: SQLAlchemy boolean clauses combined with AND

        Returns:
            (records on the page, total count)
        """
        count_query = select(func.count(self.model.id))  # type: ignore
        query = select(self.model)
        for clause in where:
            count_query = count_query.where(clause)
            query = query.where(clause)

        if order_by:
            query = query.order_by(*order_by)
        query = query.offset((page - 1) * limit).limit(limit)

        total = (await self.session.execute(count_query)).scalar() or 0
        result = await self.session.execute(query)
        return list(result.scalars().all()), total

    def _apply_filters(self, query, filters: dict):
        """Apply `field__op=value` filters to a select or delete statement."""
        for filter_key, value in filters.items():
            if "__" in filter_key:
                field_name, operator = filter_key.rsplit("__", 1)
            else:
                field_name, operator = filter_key, "eq"

            if operator not in _OPERATORS:
                raise ValueError(f"Unsupported filter operator: {operator}")

            field = getattr(self.model, field_name)
            query = query.where(_OPERATORS[operator](field, value))

        return query

    async def delete(self, id: int) -> bool:
        """Hard-delete a record by ID. Returns False if it did not exist."""
        result = await self.session.execute(
            delete(self.model).where(self.model.id == id)  # type: ignore
        )
        await self.session.flush()
        return (result.rowcount or 0) > 0  # type: ignore

    async def delete_where(self, **filters) -> int:
        """
        Delete all records matching the given filters.

        Filters are required; an empty call would wipe the table.
        """
        if not filters:
            raise ValueError("delete_where requires at least one filter")

        query = self._apply_filters(delete(self.model), filters)
        result = await self.session.execute(query)
        await self.session.flush()
        return result.rowcount or 0  # type: ignore

    async def count(self, **filters) -> int:
        """Count records matching the given filters."""
        query = select(func.count(self.model.id))  # type: ignore
        query = self._apply_filters(query, filters)

        result = await self.session.execute(query)
        return result.scalar() or 0

