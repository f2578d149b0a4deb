"""Puros - a social cigar review backend.

Members post reviews, follow each other, like and comment on reviews and get
e-mailed when someone follows them or posts. This package holds the feed
query composer, paginator, staged filters, the optimistic mutation protocol,
the services behind them and a small HTTP surface.

Example:
    >>> from puros import DatabaseManager, FeedView, ReviewService, Viewer, ViewerSession
    >>> import asyncio
    >>>
    >>> async def main():
    ...     db = DatabaseManager()
    ...     db.initialize()
    ...     session = ViewerSession(store=db)
    ...     await session.start(Viewer(id="u1", email="u1@example.com"))
    ...     feed = FeedView(ReviewService(db), session.current)
    ...     await feed.load()
    ...     print(feed.total_count, [r.cigar_name for r in feed.rows])
    ...     db.close()
    >>>
    >>> asyncio.run(main())
"""

__version__ = "0.1.0"

from puros.config import DateRange, RatingFilterMode, SortKey, settings
from puros.database import DatabaseManager
from puros.errors import (
    AuthRequired,
    NotFoundOrNotOwned,
    NotificationFailure,
    PurosError,
    StoreError,
    ValidationError,
)
from puros.feed import CommentThread, FeedView
from puros.filters import FilterPanel, FilterState
from puros.models import (
    Comment,
    CommentRow,
    Follow,
    FollowRow,
    Like,
    LikeRow,
    Profile,
    ProfileRow,
    Review,
    ReviewDraft,
    ReviewRow,
    Viewer,
)
from puros.mutations import FollowToggle, LikeToggle
from puros.pagination import Paginator
from puros.query import Query, compose
from puros.reviews import CommentService, LikeService, ReviewService
from puros.session import ViewerSession
from puros.social import FanOutService, FollowService

__all__ = [
    # Feed
    "FeedView",
    "CommentThread",
    "FilterPanel",
    "FilterState",
    "Paginator",
    "Query",
    "compose",
    # Mutations
    "LikeToggle",
    "FollowToggle",
    # Services
    "DatabaseManager",
    "ReviewService",
    "LikeService",
    "CommentService",
    "FollowService",
    "FanOutService",
    "ViewerSession",
    # Configuration
    "settings",
    "SortKey",
    "DateRange",
    "RatingFilterMode",
    # Errors
    "PurosError",
    "AuthRequired",
    "ValidationError",
    "StoreError",
    "NotFoundOrNotOwned",
    "NotificationFailure",
    # Pydantic models
    "Viewer",
    "Profile",
    "Review",
    "ReviewDraft",
    "Comment",
    "Like",
    "Follow",
    # SQLModel tables
    "ProfileRow",
    "ReviewRow",
    "CommentRow",
    "LikeRow",
    "FollowRow",
]
