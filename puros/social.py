"""Follow graph and new-post fan-out.

:class:`FollowService` backs the ``/api/follow`` routes and the follow
toggle. :class:`FanOutService` e-mails a member's followers when they post a
review. Notifications are best effort: a failed e-mail never fails the
follow or the review that triggered it.
"""

import asyncio
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from puros.config import NotificationKind, settings
from puros.errors import AuthRequired, NotFoundOrNotOwned, ValidationError
from puros.interfaces import INotificationSink, IRelationalStore
from puros.logging import logger, set_request_context
from puros.models import Follow, Review, Viewer
from puros.notifications import NotificationDispatcher
from puros.profiles import display_name, get_profile, get_profiles
from puros.query import Filter, Order
from puros.utils import chunk_list


class FollowStats(BaseModel):
    followers: int = 0
    following: int = 0


class FollowStatus(BaseModel):
    """Whether the viewer follows a member (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    is_following: bool = Field(False, serialization_alias="isFollowing")
    follow_id: Optional[str] = Field(None, serialization_alias="followId")


class FanOutResult(BaseModel):
    """Summary of a new-post notification run."""

    message: str
    notifications_sent: int = Field(0, serialization_alias="notificationsSent")
    total_followers: int = Field(0, serialization_alias="totalFollowers")


def _require_viewer(viewer: Viewer | None) -> Viewer:
    if viewer is None:
        raise AuthRequired("Authentication required")
    return viewer


# =============================================================================
# Follows
# =============================================================================


class FollowService:
    """Directed follow relation between members.

    Args:
        store: Relational store
        dispatcher: Sends the new-follower e-mail out of band (optional)
    """

    def __init__(self, store: IRelationalStore, dispatcher: NotificationDispatcher | None = None):
        self.store = store
        self.dispatcher = dispatcher

    @staticmethod
    def _pair(follower_id: str, following_id: str) -> list[Filter]:
        return [Filter.eq("follower_id", follower_id), Filter.eq("following_id", following_id)]

    async def follow(self, viewer: Viewer | None, following_id: str | None) -> Follow:
        """Start following a member.

        Raises:
            ValidationError: Missing target, self-follow, already following
            AuthRequired: If nobody is signed in
        """
        if not following_id:
            raise ValidationError("following_id is required", field="following_id")
        viewer = _require_viewer(viewer)
        if viewer.id == following_id:
            raise ValidationError("Cannot follow yourself", field="following_id")

        existing = await self.store.count("follows", self._pair(viewer.id, following_id))
        if existing:
            raise ValidationError("Already following this user", field="following_id")

        row = await self.store.insert(
            "follows", {"follower_id": viewer.id, "following_id": following_id}
        )
        follow = Follow.model_validate(row)
        set_request_context(operation="follow")
        logger.info(f"{viewer.id} followed {following_id}")

        if self.dispatcher is not None:
            self.dispatcher.run(self._notify_followed(self.dispatcher.sink, viewer.id, following_id))
        return follow

    async def _notify_followed(self, sink: INotificationSink, follower_id: str, following_id: str) -> Any:
        follower = await get_profile(self.store, follower_id)
        followed = await get_profile(self.store, following_id)
        if follower is None or followed is None or not followed.email:
            logger.debug(f"Skipping follow e-mail to {following_id}: no profile or address")
            return None
        return await sink.send(
            NotificationKind.FOLLOW,
            {"to": followed.email, "follower_name": display_name(follower)},
        )

    async def unfollow(self, viewer: Viewer | None, following_id: str | None) -> int:
        """Stop following a member; unfollowing a stranger is not an error."""
        if not following_id:
            raise ValidationError("following_id is required", field="following_id")
        viewer = _require_viewer(viewer)
        affected = await self.store.delete("follows", self._pair(viewer.id, following_id))
        logger.info(f"{viewer.id} unfollowed {following_id} ({affected} row(s))")
        return affected

    async def stats(self, user_id: str) -> FollowStats:
        followers = await self.store.count("follows", [Filter.eq("following_id", user_id)])
        following = await self.store.count("follows", [Filter.eq("follower_id", user_id)])
        return FollowStats(followers=followers, following=following)

    async def status(self, viewer: Viewer | None, user_id: str) -> FollowStatus:
        viewer = _require_viewer(viewer)
        rows = await self.store.find("follows", self._pair(viewer.id, user_id), range_start=0, range_end=0)
        if not rows:
            return FollowStatus()
        return FollowStatus(is_following=True, follow_id=rows[0]["id"])

    async def follower_ids(self, user_id: str) -> list[str]:
        rows = await self.store.find(
            "follows", [Filter.eq("following_id", user_id)], [Order.asc("created_at")]
        )
        return [row["follower_id"] for row in rows]


# =============================================================================
# New-post Fan-out
# =============================================================================


class FanOutService:
    """E-mails followers about a new review.

    Args:
        store: Relational store
        sink: Notification sink
        batch_size: Concurrent sends per batch (defaults to settings)
    """

    def __init__(
        self,
        store: IRelationalStore,
        sink: INotificationSink,
        batch_size: int | None = None,
    ):
        self.store = store
        self.sink = sink
        self.follows = FollowService(store)
        self.batch_size = batch_size or settings.notification_batch_size

    async def notify_new_post(self, viewer: Viewer | None, review_id: str | None) -> FanOutResult:
        """Notify the author's followers about one of their reviews.

        Raises:
            ValidationError: Missing review id
            AuthRequired: If nobody is signed in
            NotFoundOrNotOwned: Review missing or written by someone else
        """
        if not review_id:
            raise ValidationError("reviewId is required", field="reviewId")
        viewer = _require_viewer(viewer)
        set_request_context(operation="new_post_fan_out")

        rows = await self.store.find("reviews", [Filter.eq("id", review_id)], range_start=0, range_end=0)
        if not rows:
            raise NotFoundOrNotOwned("Review not found")
        review = Review.model_validate(rows[0])
        if review.user_id != viewer.id:
            raise NotFoundOrNotOwned("Review not found")

        follower_ids = await self.follows.follower_ids(viewer.id)
        if not follower_ids:
            return FanOutResult(message="No followers to notify")

        profiles = await get_profiles(self.store, follower_ids)
        emails = [profiles[f].email for f in follower_ids if f in profiles and profiles[f].email]
        if not emails:
            return FanOutResult(message="No valid email addresses found for followers")

        author_name = display_name(await get_profile(self.store, viewer.id))
        payload = {
            "author_name": author_name,
            "cigar_name": review.cigar_name,
            "rating": review.rating,
            "review_url": settings.review_url(review.id),
        }

        sent = 0
        for batch in chunk_list(emails, self.batch_size):
            results = await asyncio.gather(
                *(self.sink.send(NotificationKind.NEW_POST, {**payload, "to": email}) for email in batch),
                return_exceptions=True,
            )
            for email, result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.error(f"Failed to send notification e-mail to {email}: {result}")
                elif getattr(result, "delivered", False):
                    sent += 1

        logger.info(f"Sent {sent}/{len(emails)} post notification e-mails for review {review_id}")
        return FanOutResult(
            message="Notifications sent", notifications_sent=sent, total_followers=len(emails)
        )


__all__ = ["FanOutResult", "FanOutService", "FollowService", "FollowStats", "FollowStatus"]
