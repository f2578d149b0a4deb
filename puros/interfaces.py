"""Protocol interfaces for the external collaborators.

Puros talks to four things it does not own: an identity provider, a
relational store, an object store and a notification sink. Each is described
here as a ``@runtime_checkable`` Protocol so tests and alternative backends
can be dropped in by structural typing, without inheritance.

Example:
    >>> from puros.interfaces import IObjectStore
    >>> class MemoryObjectStore:
    ...     async def put(self, bucket, key, data, cache_control="3600", upsert=False):
    ...         return f"memory://{bucket}/{key}"
    >>> isinstance(MemoryObjectStore(), IObjectStore)
    True
"""

from collections.abc import Callable, Sequence
from typing import Any, Protocol, runtime_checkable

from puros.config import NotificationKind
from puros.models import Viewer
from puros.query import Filter, Order


@runtime_checkable
class IRelationalStore(Protocol):
    """System of record for reviews, comments, likes, follows and profiles.

    Rows are plain dictionaries keyed by column name. Every method may raise
    :class:`~puros.errors.StoreError`.
    """

    async def find(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
        range_start: int | None = None,
        range_end: int | None = None,
    ) -> list[dict[str, Any]]:
        """Rows matching all ``filters``, sorted by ``order``.

        Args:
            collection: Collection name (e.g., "reviews")
            filters: Conjunction of predicates
            order: Sort keys, most significant first
            range_start: Zero-based first row (inclusive)
            range_end: Zero-based last row (inclusive)
        """
        ...

    async def count(self, collection: str, filters: Sequence[Filter] = ()) -> int:
        """Number of rows matching all ``filters``."""
        ...

    async def insert(self, collection: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return it as stored."""
        ...

    async def update(
        self,
        collection: str,
        entity_id: str,
        patch: dict[str, Any],
        owner_id: str | None = None,
    ) -> dict[str, Any] | None:
        """Apply ``patch`` to one row.

        When ``owner_id`` is given the row must also belong to that member.

        Returns:
            Updated row, or None if no row matched
        """
        ...

    async def delete(self, collection: str, filters: Sequence[Filter]) -> int:
        """Delete rows matching all ``filters``; returns the affected count."""
        ...


@runtime_checkable
class IObjectStore(Protocol):
    """Blob storage for review photos and avatars."""

    async def put(
        self,
        bucket: str,
        key: str,
        data: bytes,
        cache_control: str = "3600",
        upsert: bool = False,
    ) -> str:
        """Store ``data`` under ``bucket/key`` and return its public URL.

        Raises:
            StoreError: If the key exists and ``upsert`` is False, or the
                write fails
        """
        ...


@runtime_checkable
class INotificationSink(Protocol):
    """Outbound member notifications (e-mail)."""

    async def send(self, kind: NotificationKind, payload: dict[str, Any]) -> Any:
        """Deliver one notification.

        Returns:
            A receipt exposing ``delivered: bool``; never raises for
            delivery failures
        """
        ...


@runtime_checkable
class IViewerProvider(Protocol):
    """Snapshot of the signed-in member with change notifications."""

    def current(self) -> Viewer | None:
        """The signed-in member, or None."""
        ...

    def subscribe(self, listener: Callable[[Viewer | None], None]) -> Callable[[], None]:
        """Register a sign-in/sign-out listener; returns an unsubscribe function."""
        ...


@runtime_checkable
class IIdentityProvider(Protocol):
    """Resolves bearer tokens presented to the HTTP surface."""

    async def resolve(self, token: str) -> Viewer | None:
        """The member a token belongs to, or None if it is invalid."""
        ...


__all__ = [
    "IIdentityProvider",
    "INotificationSink",
    "IObjectStore",
    "IRelationalStore",
    "IViewerProvider",
]
