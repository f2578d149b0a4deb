"""Relational store backed by SQLite via SQLModel.

This module provides:
- Connection management with WAL mode (file databases) or a shared
  in-memory connection (``:memory:``)
- The :class:`~puros.interfaces.IRelationalStore` operations over the
  collection registry in :mod:`puros.models`
- Index creation for the feed's filter and sort columns
- Metrics and error wrapping: every SQLAlchemy failure rolls back the
  session and surfaces as :class:`~puros.errors.StoreError`

Example:
    >>> db = DatabaseManager()
    >>> db.initialize()
    >>> row = await db.insert("profiles", {"id": "u1", "email": "a@b.c"})
    >>> await db.count("profiles")
    1
    >>> db.close()
"""

import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from puros.config import settings
from puros.errors import StoreError, ValidationError
from puros.logging import logger
from puros.metrics import store_duration_seconds, store_operations_total
from puros.models import COLLECTIONS, table_for
from puros.query import Filter, Order
from puros.repository import RepositoryFactory
from puros.utils import new_id, utc_now

INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_review_date_created "
    "ON reviews(review_date DESC, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_review_rating_date "
    "ON reviews(rating DESC, review_date DESC)",
    "CREATE INDEX IF NOT EXISTS idx_review_user_date "
    "ON reviews(user_id, review_date DESC)",
    "CREATE INDEX IF NOT EXISTS idx_comment_review_created "
    "ON comments(review_id, created_at)",
)


# =============================================================================
# Database Manager
# =============================================================================


class DatabaseManager:
    """SQLite implementation of the relational store.

    Store methods are coroutines so callers treat every store call as a
    suspension point; the SQL itself runs synchronously on the event loop
    thread.

    Args:
        database_path: Path to the SQLite database, or ``:memory:``
            (defaults to settings.database_path)
    """

    def __init__(self, database_path: Path | str | None = None):
        self.database_path = Path(database_path or settings.database_path)
        self.engine: Any = None
        self.session: Session | None = None

    @property
    def in_memory(self) -> bool:
        return str(self.database_path) == ":memory:"

    def initialize(self) -> None:
        """Create the engine, tables and indexes.

        File databases get WAL mode and tuned PRAGMAs; in-memory databases
        share one connection so every session sees the same data.
        """
        if self.in_memory:
            self.engine = create_engine(
                "sqlite://",
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(
                f"sqlite:///{self.database_path}",
                echo=False,
                connect_args={"check_same_thread": False},
            )

        SQLModel.metadata.create_all(self.engine, tables=[m.__table__ for m in COLLECTIONS.values()])  # type: ignore[attr-defined]

        if not self.in_memory:
            with self.engine.connect() as conn:
                conn.exec_driver_sql("PRAGMA journal_mode = WAL;")
                conn.exec_driver_sql("PRAGMA synchronous = NORMAL;")
                conn.exec_driver_sql("PRAGMA cache_size = -16000;")  # 16MB cache
                conn.exec_driver_sql("PRAGMA temp_store = MEMORY;")
                conn.commit()

        self.create_indexes()

        self.session = Session(self.engine, expire_on_commit=False)
        logger.info(f"✅ Database initialized at {self.database_path}")

    def create_indexes(self) -> None:
        """Create composite indexes for the feed sort orders."""
        if self.engine is None:
            raise RuntimeError("Database not initialized")

        with self.engine.connect() as conn:
            for statement in INDEXES:
                conn.exec_driver_sql(statement)
            conn.commit()

        logger.debug("✅ Database indexes created")

    def close(self) -> None:
        """Close the session and dispose of the engine."""
        if self.session is not None:
            self.session.close()
            self.session = None
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    # =========================================================================
    # Internals
    # =========================================================================

    def _repos(self) -> RepositoryFactory:
        if self.session is None:
            raise RuntimeError("Database not initialized")
        return RepositoryFactory(self.session)

    @contextmanager
    def _operation(self, operation: str, collection: str) -> Iterator[None]:
        """Time a store call, count it and translate SQLAlchemy failures."""
        start = time.perf_counter()
        status = "success"
        try:
            yield
        except SQLAlchemyError as e:
            status = "error"
            if self.session is not None:
                self.session.rollback()
            logger.error(f"Store {operation} on {collection} failed: {e}")
            raise StoreError(f"{operation} on {collection} failed") from e
        except PydanticValidationError as e:
            status = "error"
            raise ValidationError(f"Invalid {collection} row: {e.error_count()} error(s)") from e
        except Exception:
            status = "error"
            raise
        finally:
            store_operations_total.labels(
                operation=operation, collection=collection, status=status
            ).inc()
            store_duration_seconds.labels(
                operation=operation, collection=collection
            ).observe(time.perf_counter() - start)

    @staticmethod
    def _dump(entity: SQLModel) -> dict[str, Any]:
        return entity.model_dump()

    # =========================================================================
    # Relational Store Operations
    # =========================================================================

    async def find(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
        range_start: int | None = None,
        range_end: int | None = None,
    ) -> list[dict[str, Any]]:
        """Rows matching all filters, sorted and sliced (inclusive range)."""
        with self._operation("find", collection):
            repo = self._repos().for_collection(collection)
            rows = repo.find(filters, order, range_start, range_end)
            return [self._dump(row) for row in rows]

    async def count(self, collection: str, filters: Sequence[Filter] = ()) -> int:
        """Number of rows matching all filters."""
        with self._operation("count", collection):
            return self._repos().for_collection(collection).count(filters)

    async def get(self, collection: str, entity_id: str) -> dict[str, Any] | None:
        """Row by primary key, or None."""
        with self._operation("get", collection):
            row = self._repos().for_collection(collection).get(entity_id)
            return self._dump(row) if row is not None else None

    async def insert(self, collection: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a row; ``id`` and timestamps are filled in when missing.

        Raises:
            StoreError: On constraint violations (e.g., a duplicate like)
        """
        with self._operation("insert", collection):
            table = table_for(collection)
            now = utc_now()
            data = {"id": new_id(), **row}
            for ts_field in ("created_at", "updated_at"):
                if ts_field in table.model_fields and data.get(ts_field) is None:
                    data[ts_field] = now
            entity = table.model_validate(data)
            created = self._repos().for_entity(table).create(entity)
            return self._dump(created)

    async def update(
        self,
        collection: str,
        entity_id: str,
        patch: dict[str, Any],
        owner_id: str | None = None,
    ) -> dict[str, Any] | None:
        """Patch one row, optionally constrained to its owner.

        Returns:
            Updated row, or None if nothing matched
        """
        with self._operation("update", collection):
            filters = [Filter.eq("id", entity_id)]
            if owner_id is not None:
                filters.append(Filter.eq("user_id", owner_id))
            updated = self._repos().for_collection(collection).update_where(filters, patch)
            return self._dump(updated) if updated is not None else None

    async def delete(self, collection: str, filters: Sequence[Filter]) -> int:
        """Delete rows matching all filters; returns the affected count."""
        with self._operation("delete", collection):
            affected = self._repos().for_collection(collection).delete_where(filters)
            # Bulk deletes bypass the identity map; drop stale instances.
            if self.session is not None:
                self.session.expire_all()
            return affected

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_statistics(self) -> dict[str, int]:
        """Row counts per collection.

        Example:
            >>> db.get_statistics()
            {'profiles': 3, 'reviews': 12, 'comments': 4, 'likes': 9, 'follows': 2}
        """
        repos = self._repos()
        return {name: repos.for_entity(table).count() for name, table in COLLECTIONS.items()}


# =============================================================================
# Export Public API
# =============================================================================

__all__ = ["DatabaseManager", "INDEXES"]
