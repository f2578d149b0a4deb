"""Generic repository for type-safe SQLModel operations.

:class:`Repository` translates the store-agnostic
:class:`~puros.query.Filter` / :class:`~puros.query.Order` descriptions into
SQLModel statements for one table.

Example:
    >>> from puros.models import ReviewRow
    >>> from puros.query import Filter, Order
    >>> repo = Repository[ReviewRow](session, ReviewRow)
    >>> rows = repo.find([Filter.gte("rating", 4)], [Order.desc("rating")], 0, 9)
    >>> total = repo.count([Filter.gte("rating", 4)])
"""

from collections.abc import Sequence
from typing import Any, Generic, TypeVar

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, SQLModel, select

from puros.errors import ValidationError
from puros.models import table_for
from puros.query import Filter, FilterOp, Order

# =============================================================================
# Type Variables
# =============================================================================

T = TypeVar("T", bound=SQLModel)


# =============================================================================
# Generic Repository
# =============================================================================


class Repository(Generic[T]):
    """Generic repository for one SQLModel table.

    Args:
        session: SQLModel Session for database operations
        model: SQLModel table class (e.g., ReviewRow)
    """

    def __init__(self, session: Session, model: type[T]):
        self.session = session
        self.model = model

    def column(self, field: str) -> Any:
        """Resolve a field name to a mapped column.

        Raises:
            ValidationError: If the table has no such column
        """
        if field not in self.model.model_fields:
            raise ValidationError(
                f"{self.model.__tablename__} has no field {field!r}", field=field
            )
        return getattr(self.model, field)

    def predicate(self, flt: Filter) -> ColumnElement[bool]:
        """Translate one filter into a SQL expression."""
        col = self.column(flt.field)
        if flt.op == FilterOp.EQ:
            return col == flt.value
        if flt.op == FilterOp.GTE:
            return col >= flt.value
        if flt.op == FilterOp.LT:
            return col < flt.value
        # ILIKE patterns arrive with % and _ escaped by backslash
        return col.ilike(flt.value, escape="\\")

    def _where(self, stmt: Any, filters: Sequence[Filter]) -> Any:
        for flt in filters:
            stmt = stmt.where(self.predicate(flt))
        return stmt

    def get(self, entity_id: str) -> T | None:
        """Get entity by primary key."""
        return self.session.get(self.model, entity_id)

    def find(
        self,
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
        range_start: int | None = None,
        range_end: int | None = None,
    ) -> Sequence[T]:
        """Rows matching all filters, sorted and sliced.

        Args:
            filters: Conjunction of predicates
            order: Sort keys, most significant first
            range_start: Zero-based first row (inclusive)
            range_end: Zero-based last row (inclusive)

        Returns:
            Sequence of entity instances
        """
        stmt = self._where(select(self.model), filters)
        for key in order:
            col = self.column(key.field)
            stmt = stmt.order_by(col.desc() if key.descending else col.asc())
        if range_start is not None:
            stmt = stmt.offset(range_start)
            if range_end is not None:
                stmt = stmt.limit(max(0, range_end - range_start + 1))
        elif range_end is not None:
            stmt = stmt.limit(range_end + 1)
        return self.session.exec(stmt).all()

    def first(self, filters: Sequence[Filter]) -> T | None:
        """First row matching all filters, if any."""
        stmt = self._where(select(self.model), filters).limit(1)
        return self.session.exec(stmt).first()

    def count(self, filters: Sequence[Filter] = ()) -> int:
        """Count rows matching all filters."""
        stmt = self._where(select(func.count()).select_from(self.model), filters)
        return self.session.exec(stmt).one()

    def create(self, entity: T) -> T:
        """Insert a new entity and refresh it from the database."""
        self.session.add(entity)
        self.session.commit()
        self.session.refresh(entity)
        return entity

    def update_where(self, filters: Sequence[Filter], patch: dict[str, Any]) -> T | None:
        """Patch the first row matching all filters.

        Returns:
            Updated entity, or None if nothing matched
        """
        entity = self.first(filters)
        if entity is None:
            return None
        for key, value in patch.items():
            self.column(key)
            setattr(entity, key, value)
        self.session.add(entity)
        self.session.commit()
        self.session.refresh(entity)
        return entity

    def delete_where(self, filters: Sequence[Filter]) -> int:
        """Delete rows matching all filters.

        Returns:
            Number of rows deleted
        """
        if not filters:
            raise ValidationError("Refusing to delete without a filter")
        stmt = sa_delete(self.model)
        for flt in filters:
            stmt = stmt.where(self.predicate(flt))
        result = self.session.connection().execute(stmt)
        self.session.commit()
        return result.rowcount or 0


# =============================================================================
# Repository Factory Helper
# =============================================================================


class RepositoryFactory:
    """Creates repositories bound to one session.

    Example:
        >>> factory = RepositoryFactory(session)
        >>> reviews = factory.for_collection("reviews")
    """

    def __init__(self, session: Session):
        self.session = session

    def for_entity(self, model: type[T]) -> Repository[T]:
        """Repository for a SQLModel table class."""
        return Repository[T](self.session, model)

    def for_collection(self, collection: str) -> Repository[Any]:
        """Repository for a collection name (e.g., "reviews")."""
        return Repository(self.session, table_for(collection))


# =============================================================================
# Export Public API
# =============================================================================

__all__ = ["Repository", "RepositoryFactory"]
