"""Review, like and comment services.

These are the authoritative writes behind the views: each validates input,
enforces ownership through the store's filters and returns domain models.
Zero rows affected on an owner-constrained update or delete is reported as
:class:`~puros.errors.NotFoundOrNotOwned`.
"""

import json
import math
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, Field

from puros.config import settings
from puros.errors import AuthRequired, NotFoundOrNotOwned, StoreError, ValidationError
from puros.interfaces import IRelationalStore
from puros.logging import logger, set_request_context
from puros.models import Comment, Like, Review, ReviewDraft, Viewer
from puros.query import Filter, Order, Query
from puros.utils import utc_now, utc_today

if TYPE_CHECKING:
    from puros.notifications import NotificationDispatcher
    from puros.social import FanOutService


class FeedPage(BaseModel):
    """One page of reviews plus the total match count."""

    rows: list[Review] = Field(default_factory=list)
    total_count: int = 0


class CommentPage(BaseModel):
    """One page of a comment thread, oldest first."""

    comments: list[Comment] = Field(default_factory=list)
    has_more: bool = False


def _require_viewer(viewer: Viewer | None) -> Viewer:
    if viewer is None:
        raise AuthRequired()
    return viewer


def validate_rating(rating: float) -> float:
    """Check a rating is between 0.5 and 5.0 in half-star steps.

    Raises:
        ValidationError: For 0 (not rated) or any other value
    """
    if rating == 0:
        raise ValidationError("Please select a rating", field="rating")
    if not 0.5 <= rating <= 5.0 or not math.isclose(rating * 2, round(rating * 2)):
        raise ValidationError("Rating must be between 0.5 and 5 in half-star steps", field="rating")
    return round(rating * 2) / 2


# =============================================================================
# Reviews
# =============================================================================


class ReviewService:
    """Create, edit, delete and list reviews.

    Args:
        store: Relational store
        fan_out: Optional new-post notifier run after a review is created
        dispatcher: Runs the fan-out out of band (required with ``fan_out``)
        max_images: Photo limit per review (defaults to settings)
    """

    def __init__(
        self,
        store: IRelationalStore,
        fan_out: Optional["FanOutService"] = None,
        dispatcher: Optional["NotificationDispatcher"] = None,
        max_images: int | None = None,
    ):
        self.store = store
        self.fan_out = fan_out
        self.dispatcher = dispatcher
        self.max_images = settings.max_review_images if max_images is None else max_images

    def validate(self, draft: ReviewDraft) -> dict[str, object]:
        """Validate a draft and return the columns to write.

        Raises:
            ValidationError: Blank cigar name, missing or invalid rating,
                too many photos
        """
        cigar_name = draft.cigar_name.strip()
        if not cigar_name:
            raise ValidationError("Please enter a cigar name", field="cigar_name")
        rating = validate_rating(draft.rating)
        if len(draft.images) > self.max_images:
            raise ValidationError(
                f"A review can have at most {self.max_images} images", field="images"
            )
        return {
            "cigar_name": cigar_name,
            "rating": rating,
            "notes": draft.notes.strip(),
            "review_date": draft.review_date or utc_today(),
            "images": list(draft.images),
        }

    async def get(self, review_id: str) -> Review | None:
        rows = await self.store.find("reviews", [Filter.eq("id", review_id)], range_start=0, range_end=0)
        return Review.model_validate(rows[0]) if rows else None

    async def fetch_page(self, query: Query) -> FeedPage:
        """Run a composed feed query and its count query.

        Raises:
            StoreError: If either sub-query fails; no partial page is returned
        """
        rows = await self.store.find(
            query.collection, query.filters, query.order, query.range_start, query.range_end
        )
        counted = query.count_query()
        total = await self.store.count(counted.collection, counted.filters)
        return FeedPage(rows=[Review.model_validate(r) for r in rows], total_count=total)

    async def create(self, viewer: Viewer | None, draft: ReviewDraft) -> Review:
        """Insert a review, then notify followers out of band.

        Raises:
            AuthRequired: If nobody is signed in
            ValidationError: If the draft is invalid
            StoreError: If the insert fails
        """
        viewer = _require_viewer(viewer)
        values = self.validate(draft)
        images = values.pop("images")
        record = {"user_id": viewer.id, **values, "images_json": json.dumps(images)}

        row = await self.store.insert("reviews", record)
        review = Review.model_validate(row)
        set_request_context(operation="create_review")
        logger.info(f"Review {review.id} created by {viewer.id}: {review.cigar_name} ({review.rating})")

        if self.fan_out is not None and self.dispatcher is not None:
            self.dispatcher.run(self.fan_out.notify_new_post(viewer, review.id))

        return review

    async def update(self, viewer: Viewer | None, review_id: str, draft: ReviewDraft) -> Review:
        """Edit one of the viewer's reviews.

        Raises:
            NotFoundOrNotOwned: If the review is gone or belongs to someone else
        """
        viewer = _require_viewer(viewer)
        values = self.validate(draft)
        images = values.pop("images")
        patch = {**values, "images_json": json.dumps(images), "updated_at": utc_now()}

        row = await self.store.update("reviews", review_id, patch, owner_id=viewer.id)
        if row is None:
            raise NotFoundOrNotOwned("Review not found or you don't have permission to edit it")
        logger.info(f"Review {review_id} updated by {viewer.id}")
        return Review.model_validate(row)

    async def delete(self, viewer: Viewer | None, review_id: str) -> None:
        """Delete one of the viewer's reviews with its likes and comments.

        Raises:
            NotFoundOrNotOwned: If no row matched ``(id, user_id == viewer)``
        """
        viewer = _require_viewer(viewer)
        affected = await self.store.delete(
            "reviews", [Filter.eq("id", review_id), Filter.eq("user_id", viewer.id)]
        )
        if affected == 0:
            raise NotFoundOrNotOwned("Review not found or you don't have permission to delete it")

        for collection in ("likes", "comments"):
            try:
                await self.store.delete(collection, [Filter.eq("review_id", review_id)])
            except StoreError as e:
                logger.warning(f"Orphaned {collection} left for review {review_id}: {e}")

        logger.info(f"Review {review_id} deleted by {viewer.id}")


# =============================================================================
# Likes
# =============================================================================


class LikeService:
    """Likes on reviews; at most one per (review, member)."""

    def __init__(self, store: IRelationalStore):
        self.store = store

    @staticmethod
    def _filters(viewer_id: str, review_id: str) -> list[Filter]:
        return [Filter.eq("review_id", review_id), Filter.eq("user_id", viewer_id)]

    async def like(self, viewer: Viewer | None, review_id: str) -> Like:
        """Like a review; liking twice returns the existing like."""
        viewer = _require_viewer(viewer)
        existing = await self.store.find("likes", self._filters(viewer.id, review_id), range_start=0, range_end=0)
        if existing:
            return Like.model_validate(existing[0])
        row = await self.store.insert("likes", {"review_id": review_id, "user_id": viewer.id})
        return Like.model_validate(row)

    async def unlike(self, viewer: Viewer | None, review_id: str) -> int:
        """Remove the viewer's like; removing a missing like is not an error."""
        viewer = _require_viewer(viewer)
        return await self.store.delete("likes", self._filters(viewer.id, review_id))

    async def count(self, review_id: str) -> int:
        return await self.store.count("likes", [Filter.eq("review_id", review_id)])

    async def has_liked(self, viewer: Viewer | None, review_id: str) -> bool:
        if viewer is None:
            return False
        return await self.store.count("likes", self._filters(viewer.id, review_id)) > 0


# =============================================================================
# Comments
# =============================================================================


class CommentService:
    """Comments on reviews, listed oldest first.

    Args:
        store: Relational store
        page_size: Comments per page (defaults to settings.comments_per_page)
    """

    def __init__(self, store: IRelationalStore, page_size: int | None = None):
        self.store = store
        self.page_size = page_size or settings.comments_per_page

    @staticmethod
    def _clean(content: str) -> str:
        text = content.strip()
        if not text:
            raise ValidationError("Comment cannot be empty", field="content")
        return text

    async def list(self, review_id: str, page: int = 1) -> CommentPage:
        """One page of comments; ``has_more`` is set when a later page exists."""
        start = self.page_size * (max(1, page) - 1)
        rows = await self.store.find(
            "comments",
            [Filter.eq("review_id", review_id)],
            [Order.asc("created_at"), Order.asc("id")],
            start,
            start + self.page_size,  # one extra row probes for a next page
        )
        return CommentPage(
            comments=[Comment.model_validate(r) for r in rows[: self.page_size]],
            has_more=len(rows) > self.page_size,
        )

    async def first(self, review_id: str) -> Comment | None:
        """Oldest comment on a review (shown as a preview)."""
        rows = await self.store.find(
            "comments",
            [Filter.eq("review_id", review_id)],
            [Order.asc("created_at"), Order.asc("id")],
            0,
            0,
        )
        return Comment.model_validate(rows[0]) if rows else None

    async def count(self, review_id: str) -> int:
        return await self.store.count("comments", [Filter.eq("review_id", review_id)])

    async def add(self, viewer: Viewer | None, review_id: str, content: str) -> Comment:
        """Post a comment.

        Raises:
            AuthRequired: If nobody is signed in
            ValidationError: If the content is blank
            NotFoundOrNotOwned: If the review no longer exists
        """
        viewer = _require_viewer(viewer)
        text = self._clean(content)
        if await self.store.count("reviews", [Filter.eq("id", review_id)]) == 0:
            raise NotFoundOrNotOwned("Review not found")
        row = await self.store.insert(
            "comments", {"review_id": review_id, "user_id": viewer.id, "content": text}
        )
        return Comment.model_validate(row)

    async def edit(self, viewer: Viewer | None, comment_id: str, content: str) -> Comment:
        """Edit one of the viewer's comments."""
        viewer = _require_viewer(viewer)
        text = self._clean(content)
        row = await self.store.update(
            "comments", comment_id, {"content": text, "updated_at": utc_now()}, owner_id=viewer.id
        )
        if row is None:
            raise NotFoundOrNotOwned("Comment not found or you don't have permission to edit it")
        return Comment.model_validate(row)

    async def delete(self, viewer: Viewer | None, comment_id: str) -> None:
        """Delete one of the viewer's comments."""
        viewer = _require_viewer(viewer)
        affected = await self.store.delete(
            "comments", [Filter.eq("id", comment_id), Filter.eq("user_id", viewer.id)]
        )
        if affected == 0:
            raise NotFoundOrNotOwned("Comment not found or you don't have permission to delete it")


__all__ = [
    "CommentPage",
    "CommentService",
    "FeedPage",
    "LikeService",
    "ReviewService",
    "validate_rating",
]
