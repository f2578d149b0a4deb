"""Optimistic toggles for likes and follows.

A toggle flips its local state and adjusts its counter before the
authoritative write runs, then keeps the speculative state on success or
restores the exact previous state on failure::

    Idle --toggle()--> Pending --write ok-----> Idle (flipped)
                               --write failed-> Idle (rolled back, notice)

While a toggle is Pending, further ``toggle()`` calls are ignored, so rapid
clicks produce one write and one net flip.

Example:
    >>> like = LikeToggle("review-1", liked=False, count=10, likes=likes, viewer=session.current)
    >>> await like.toggle()
    True
    >>> like.liked, like.count
    (True, 11)
"""

from collections.abc import Callable
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from puros.errors import AuthRequired, PurosError, ValidationError
from puros.logging import logger
from puros.metrics import toggles_total
from puros.models import Viewer
from puros.notices import NoticeBoard

if TYPE_CHECKING:
    from puros.reviews import LikeService
    from puros.social import FollowService

ViewerFn = Callable[[], Viewer | None]


class ToggleState(StrEnum):
    IDLE = "idle"
    PENDING = "pending"


class OptimisticToggle:
    """Base class for a boolean relation with an optional counter.

    Subclasses implement :meth:`_commit` (the authoritative write) and may
    override :meth:`_check` for extra pre-dispatch validation.

    Args:
        active: Current relation state (liked / following)
        count: Current counter value, or None when not displayed
        viewer: Callable returning the signed-in member
        notices: Board that receives rollback notices
    """

    kind = "toggle"
    failure_message = "Something went wrong, please try again"

    def __init__(
        self,
        active: bool,
        count: int | None,
        viewer: ViewerFn,
        notices: NoticeBoard | None = None,
    ):
        self.active = active
        self.count = count
        self.state = ToggleState.IDLE
        self._viewer = viewer
        self._notices = notices
        self._closed = False

    @property
    def is_pending(self) -> bool:
        return self.state == ToggleState.PENDING

    def _check(self, viewer: Viewer) -> None:
        """Pre-dispatch validation; raise ValidationError to refuse."""

    async def _commit(self, viewer: Viewer, target: bool) -> Any:
        raise NotImplementedError

    def _apply(self, target: bool) -> None:
        self.active = target
        if self.count is not None:
            self.count = max(0, self.count + (1 if target else -1))

    async def toggle(self) -> bool:
        """Flip the relation optimistically.

        Returns:
            True if the write committed; False if it was coalesced into an
            in-flight toggle or rolled back

        Raises:
            AuthRequired: If nobody is signed in (no state change)
            ValidationError: If the flip is not allowed (no state change)
        """
        viewer = self._viewer()
        if viewer is None:
            raise AuthRequired()
        self._check(viewer)

        if self.is_pending or self._closed:
            toggles_total.labels(kind=self.kind, outcome="coalesced").inc()
            return False

        previous = (self.active, self.count)
        target = not self.active
        self._apply(target)
        self.state = ToggleState.PENDING

        try:
            await self._commit(viewer, target)
        except PurosError as e:
            if not self._closed:
                self.active, self.count = previous
                if self._notices is not None:
                    self._notices.push_error(e, fallback=self.failure_message)
            logger.warning(f"{self.kind} toggle rolled back: {e}")
            toggles_total.labels(kind=self.kind, outcome="rolled_back").inc()
            return False
        except Exception:
            if not self._closed:
                self.active, self.count = previous
            toggles_total.labels(kind=self.kind, outcome="rolled_back").inc()
            raise
        finally:
            self.state = ToggleState.IDLE

        toggles_total.labels(kind=self.kind, outcome="committed").inc()
        return True

    def reconcile(self, count: int) -> None:
        """Replace the speculative counter with an authoritative value.

        Ignored while a toggle is in flight or after :meth:`close`.
        """
        if self.is_pending or self._closed or self.count is None:
            return
        self.count = max(0, count)

    def close(self) -> None:
        """Detach from the view; late write results no longer change state."""
        self._closed = True


class LikeToggle(OptimisticToggle):
    """Like/unlike a review with a like counter."""

    kind = "like"
    failure_message = "Failed to update like"

    def __init__(
        self,
        review_id: str,
        liked: bool,
        count: int,
        likes: "LikeService",
        viewer: ViewerFn,
        notices: NoticeBoard | None = None,
    ):
        super().__init__(liked, count, viewer, notices)
        self.review_id = review_id
        self._likes = likes

    @property
    def liked(self) -> bool:
        return self.active

    async def _commit(self, viewer: Viewer, target: bool) -> Any:
        if target:
            return await self._likes.like(viewer, self.review_id)
        return await self._likes.unlike(viewer, self.review_id)


class FollowToggle(OptimisticToggle):
    """Follow/unfollow a member, optionally tracking their follower count."""

    kind = "follow"
    failure_message = "Failed to update follow status"

    def __init__(
        self,
        target_user_id: str,
        following: bool,
        follows: "FollowService",
        viewer: ViewerFn,
        follower_count: int | None = None,
        notices: NoticeBoard | None = None,
    ):
        super().__init__(following, follower_count, viewer, notices)
        self.target_user_id = target_user_id
        self._follows = follows

    @property
    def following(self) -> bool:
        return self.active

    def _check(self, viewer: Viewer) -> None:
        if viewer.id == self.target_user_id:
            raise ValidationError("You cannot follow yourself", field="following_id")

    async def _commit(self, viewer: Viewer, target: bool) -> Any:
        if target:
            return await self._follows.follow(viewer, self.target_user_id)
        return await self._follows.unfollow(viewer, self.target_user_id)


__all__ = ["FollowToggle", "LikeToggle", "OptimisticToggle", "ToggleState"]
