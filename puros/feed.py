"""Feed and comment-thread views.

A view owns its state exclusively: the rows on screen, the filter panel, the
paginator, per-review like toggles and comment counters. The relational store
stays the only source of truth; the view is a cache with explicit rollback
rules.

Ordering rules:
- Feed fetches are last-request-wins. Each fetch takes a token from a
  monotonically increasing counter and a response whose token is no longer
  current is dropped.
- ``close()`` cancels in-flight work; nothing that completes afterwards
  touches the view.
- A failed fetch keeps the previous rows and pushes a notice.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any, TypeVar

from puros.errors import NotFoundOrNotOwned, PurosError, StoreError
from puros.filters import FilterPanel, FilterState
from puros.logging import logger
from puros.metrics import feed_fetches_total
from puros.models import Comment, Review, ReviewDraft, Viewer
from puros.mutations import LikeToggle, ViewerFn
from puros.notices import NoticeBoard
from puros.pagination import Paginator
from puros.query import Query, compose
from puros.reviews import CommentService, FeedPage, LikeService, ReviewService

T = TypeVar("T")

LOAD_FAILED = "Failed to load reviews"


class _ViewBase:
    """Shared cancellation bookkeeping for views."""

    def __init__(self, viewer: ViewerFn, notices: NoticeBoard | None):
        self._viewer = viewer
        self.notices = notices or NoticeBoard()
        self._closed = False
        self._inflight: set[asyncio.Future[Any]] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    def viewer(self) -> Viewer | None:
        return self._viewer()

    async def _run(self, coro: Awaitable[T]) -> T:
        """Await ``coro`` as a child task that :meth:`close` can cancel."""
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)
        try:
            return await task
        finally:
            self._inflight.discard(task)

    def _cancel_inflight(self) -> None:
        self._closed = True
        for task in list(self._inflight):
            task.cancel()


# =============================================================================
# Feed View
# =============================================================================


class FeedView(_ViewBase):
    """Paginated, filterable review feed.

    Args:
        reviews: Review service (runs the composed queries)
        viewer: Callable returning the signed-in member
        likes: Optional like service; enables per-review like toggles
        comments: Optional comment service; enables comment counters
        subject_user_id: Restrict the feed to one author (profile page)
        page_size: Reviews per page (defaults to settings)
        today: Fixed reference date for the date filter (defaults to today)
        notices: Board for user-facing failure notices

    Example:
        >>> view = FeedView(reviews, session.current)
        >>> await view.load()
        >>> view.panel.open_panel()
        >>> view.panel.edit_pending("sort_key", "rating_high")
        >>> await view.apply_filters()
        >>> [r.cigar_name for r in view.rows]
        ['Cohiba', 'Padron']
    """

    def __init__(
        self,
        reviews: ReviewService,
        viewer: ViewerFn,
        likes: LikeService | None = None,
        comments: CommentService | None = None,
        subject_user_id: str | None = None,
        page_size: int | None = None,
        today: date | None = None,
        notices: NoticeBoard | None = None,
    ):
        super().__init__(viewer, notices)
        self.reviews = reviews
        self.likes = likes
        self.comments = comments
        self.subject_user_id = subject_user_id
        self.today = today
        self.panel = FilterPanel(on_apply=self._filters_applied)
        self.paginator = Paginator(page_size=page_size)
        self.rows: list[Review] = []
        self.like_toggles: dict[str, LikeToggle] = {}
        self.comment_counts: dict[str, int] = {}
        self.loading = False
        self.load_failed = False
        self.reload: asyncio.Task[bool] | None = None
        self._token = 0

    @property
    def active_filters(self) -> FilterState:
        return self.panel.active

    @property
    def total_count(self) -> int:
        return self.paginator.total_count

    def current_query(self) -> Query:
        """The query the next fetch will run."""
        return compose(
            self.panel.active,
            subject_user_id=self.subject_user_id,
            page_range=self.paginator.range(),
            today=self.today,
        )

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    async def _fetch(self, query: Query) -> tuple[FeedPage, dict[str, tuple[bool, int]], dict[str, int]]:
        page = await self.reviews.fetch_page(query)
        viewer = self.viewer()
        like_state: dict[str, tuple[bool, int]] = {}
        comment_counts: dict[str, int] = {}
        for review in page.rows:
            if self.likes is not None:
                liked = await self.likes.has_liked(viewer, review.id)
                like_state[review.id] = (liked, await self.likes.count(review.id))
            if self.comments is not None:
                comment_counts[review.id] = await self.comments.count(review.id)
        return page, like_state, comment_counts

    async def load(self) -> bool:
        """Fetch the current page for the active filters.

        Returns:
            True if the response was applied; False if it was stale, failed
            or the view was closed
        """
        if self._closed:
            return False
        self._token += 1
        token = self._token
        query = self.current_query()
        self.loading = True

        try:
            page, like_state, comment_counts = await self._run(self._fetch(query))
        except asyncio.CancelledError:
            if self._closed:
                feed_fetches_total.labels(outcome="cancelled").inc()
                return False
            raise
        except StoreError as e:
            if self._closed or token != self._token:
                feed_fetches_total.labels(outcome="stale").inc()
                return False
            self.loading = False
            self.load_failed = True
            logger.error(f"Feed fetch failed: {e}")
            self.notices.push(LOAD_FAILED)
            feed_fetches_total.labels(outcome="failed").inc()
            return False

        if self._closed or token != self._token:
            feed_fetches_total.labels(outcome="stale").inc()
            return False

        requested = self.paginator.page_number
        self.paginator.set_total(page.total_count)
        if self.paginator.page_number != requested:
            # The total shrank under us; show the page that still exists
            feed_fetches_total.labels(outcome="clamped").inc()
            return await self.load()

        self.rows = list(page.rows)
        self._replace_toggles(like_state)
        self.comment_counts = comment_counts
        self.loading = False
        self.load_failed = False
        feed_fetches_total.labels(outcome="applied").inc()
        return True

    def _replace_toggles(self, like_state: dict[str, tuple[bool, int]]) -> None:
        for toggle in self.like_toggles.values():
            toggle.close()
        self.like_toggles = {}
        if self.likes is None:
            return
        for review_id, (liked, count) in like_state.items():
            self.like_toggles[review_id] = LikeToggle(
                review_id, liked, count, self.likes, self._viewer, self.notices
            )

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    def _filters_applied(self, active: FilterState) -> None:
        """Panel hook: back to page 1 and schedule a refetch."""
        self.paginator.reset()
        self.reload = None
        if self._closed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (synchronous caller); the next load() uses the new filters
            return
        self.reload = loop.create_task(self.load())

    async def apply_filters(self) -> bool:
        """Commit the pending filters, return to page 1 and refetch."""
        self.panel.apply()
        if self.reload is None:
            return await self.load()
        return await self.reload

    async def go_to(self, n: int) -> bool:
        self.paginator.go_to(n)
        return await self.load()

    async def set_page_size(self, n: int) -> bool:
        self.paginator.set_page_size(n)
        return await self.load()

    async def next_page(self) -> bool:
        if not self.paginator.has_next():
            return False
        self.paginator.next()
        return await self.load()

    async def prev_page(self) -> bool:
        if not self.paginator.has_prev():
            return False
        self.paginator.prev()
        return await self.load()

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def create_review(self, draft: ReviewDraft) -> Review:
        """Insert a review, then append it to the visible rows.

        A review outside the active filters (or the profile scope) is saved
        but neither shown nor counted. A matching review is counted, and is
        appended only while the current page has room; otherwise it shows up
        on the next fetch.

        Raises:
            AuthRequired, ValidationError: Before anything is written
            StoreError: If the insert fails (also pushed as a notice)
        """
        try:
            review = await self._run(self.reviews.create(self.viewer(), draft))
        except StoreError:
            if not self._closed:
                self.notices.push("Failed to save review")
            raise
        if self._closed or not self.current_query().matches(review.model_dump()):
            return review
        self.paginator.set_total(self.paginator.total_count + 1)
        if len(self.rows) < self.paginator.page_size:
            self.rows.append(review)
            self.comment_counts[review.id] = 0
            if self.likes is not None:
                self.like_toggles[review.id] = LikeToggle(
                    review.id, False, 0, self.likes, self._viewer, self.notices
                )
        return review

    async def delete_review(self, review_id: str) -> None:
        """Delete one of the viewer's reviews.

        The row leaves the view only after the store confirms the delete. When
        it was the only row on the last page, the new last page is loaded.

        Raises:
            NotFoundOrNotOwned: Nothing was deleted; the row stays
            StoreError: The delete failed; the row stays
        """
        try:
            await self._run(self.reviews.delete(self.viewer(), review_id))
        except (NotFoundOrNotOwned, StoreError) as e:
            if not self._closed:
                self.notices.push_error(e, fallback="Failed to delete review")
            raise
        if self._closed:
            return
        self.rows = [r for r in self.rows if r.id != review_id]
        self.comment_counts.pop(review_id, None)
        toggle = self.like_toggles.pop(review_id, None)
        if toggle is not None:
            toggle.close()

        page_number = self.paginator.page_number
        self.paginator.set_total(self.paginator.total_count - 1)
        if self.paginator.page_number != page_number:
            # Deleted the last row of the last page
            await self.load()

    async def toggle_like(self, review_id: str) -> bool:
        """Optimistically like or unlike a visible review."""
        toggle = self.like_toggles.get(review_id)
        if toggle is None:
            return False
        return await toggle.toggle()

    def close(self) -> None:
        """Cancel in-flight work; late results are ignored."""
        self._cancel_inflight()
        if self.reload is not None:
            self.reload.cancel()
        for toggle in self.like_toggles.values():
            toggle.close()


# =============================================================================
# Comment Thread
# =============================================================================


class CommentThread(_ViewBase):
    """Paged comments under one review, oldest first.

    Args:
        review_id: Review whose comments are shown
        comments: Comment service
        viewer: Callable returning the signed-in member
        count: Known comment count (shown on the feed card)
        on_count_change: Called with the new count after add/delete
        notices: Board for user-facing failure notices
    """

    def __init__(
        self,
        review_id: str,
        comments: CommentService,
        viewer: ViewerFn,
        count: int = 0,
        on_count_change: Callable[[int], None] | None = None,
        notices: NoticeBoard | None = None,
    ):
        super().__init__(viewer, notices)
        self.review_id = review_id
        self.service = comments
        self.items: list[Comment] = []
        self.count = count
        self.page = 0
        self.has_more = True
        self.loading = False
        self._on_count_change = on_count_change

    def _set_count(self, count: int) -> None:
        self.count = max(0, count)
        if self._on_count_change is not None:
            self._on_count_change(self.count)

    async def load_more(self) -> bool:
        """Append the next page of comments.

        Returns:
            True if a page was appended
        """
        if self._closed or self.loading or not self.has_more:
            return False
        self.loading = True
        try:
            page = await self._run(self.service.list(self.review_id, self.page + 1))
        except asyncio.CancelledError:
            if self._closed:
                return False
            raise
        except StoreError as e:
            if not self._closed:
                self.loading = False
                self.notices.push_error(e, fallback="Failed to load comments")
            return False
        if self._closed:
            return False
        self.page += 1
        known = {c.id for c in self.items}
        self.items.extend(c for c in page.comments if c.id not in known)
        self.has_more = page.has_more
        self.loading = False
        return True

    async def add(self, content: str) -> Comment:
        """Post a comment and append it once the store has it.

        Raises:
            AuthRequired, ValidationError: Before anything is written
            PurosError: Store failures (also pushed as a notice)
        """
        try:
            comment = await self._run(self.service.add(self.viewer(), self.review_id, content))
        except (StoreError, NotFoundOrNotOwned) as e:
            if not self._closed:
                self.notices.push_error(e, fallback="Failed to post comment")
            raise
        if not self._closed:
            self.items.append(comment)
            self._set_count(self.count + 1)
        return comment

    async def edit(self, comment_id: str, content: str) -> Comment:
        try:
            updated = await self._run(self.service.edit(self.viewer(), comment_id, content))
        except (StoreError, NotFoundOrNotOwned) as e:
            if not self._closed:
                self.notices.push_error(e, fallback="Failed to update comment")
            raise
        if not self._closed:
            self.items = [updated if c.id == comment_id else c for c in self.items]
        return updated

    async def delete(self, comment_id: str) -> None:
        """Delete one of the viewer's comments.

        Raises:
            NotFoundOrNotOwned: Nothing was deleted; the comment stays
        """
        try:
            await self._run(self.service.delete(self.viewer(), comment_id))
        except PurosError as e:
            if not self._closed and isinstance(e, (StoreError, NotFoundOrNotOwned)):
                self.notices.push_error(e, fallback="Failed to delete comment")
            raise
        if self._closed:
            return
        self.items = [c for c in self.items if c.id != comment_id]
        self._set_count(self.count - 1)

    def close(self) -> None:
        self._cancel_inflight()


__all__ = ["CommentThread", "FeedView", "LOAD_FAILED"]
