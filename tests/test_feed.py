"""Tests for the feed view and comment thread."""

import asyncio
from datetime import date

import pytest

from conftest import ALICE, BOB, TODAY, add_review
from puros.errors import AuthRequired, NotFoundOrNotOwned, StoreError, ValidationError
from puros.feed import LOAD_FAILED, CommentThread, FeedView
from puros.models import Review, ReviewDraft
from puros.notices import NoticeLevel
from puros.query import Filter, Query
from puros.reviews import CommentService, FeedPage, LikeService, ReviewService


def _review(review_id: str, name: str = "Cohiba", rating: float = 4.0) -> Review:
    return Review(id=review_id, user_id="alice", cigar_name=name, rating=rating, review_date=date(2024, 6, 1))


class GatedReviews:
    """Review service stand-in whose fetches finish only when released."""

    def __init__(self):
        self.pending: list[tuple[Query, asyncio.Future]] = []

    async def fetch_page(self, query: Query) -> FeedPage:
        future = asyncio.get_running_loop().create_future()
        self.pending.append((query, future))
        return await future


class FailingReviews:
    async def fetch_page(self, query: Query) -> FeedPage:
        raise StoreError("count on reviews failed")


def _feed(db, viewer=ALICE, **kwargs) -> FeedView:
    return FeedView(ReviewService(db), lambda: viewer, today=TODAY, **kwargs)


async def settle() -> None:
    """Let scheduled tasks run up to their next suspension point."""
    for _ in range(5):
        await asyncio.sleep(0)


async def add_alice_reviews(db, n: int) -> list[str]:
    """Insert ``n`` of Alice's reviews, newest first by ID order."""
    ids = []
    for i in range(n):
        row = await add_review(db, f"Cigar {i:02d}", 4.0, f"2024-05-{28 - i:02d}", review_id=f"a-{i:02d}")
        ids.append(row["id"])
    return ids


# =============================================================================
# End-to-end Feed Scenarios
# =============================================================================


class TestFeedScenarios:
    """Filter, sort and date scenarios against a real store."""

    async def test_rating_high_order(self, seeded_db):
        view = _feed(seeded_db, page_size=10)
        view.panel.open_panel()
        view.panel.edit_pending("sort_key", "rating_high")
        await view.apply_filters()

        assert [r.cigar_name for r in view.rows] == ["Cohiba", "Padron"]

    async def test_name_substring_is_case_insensitive(self, seeded_db):
        view = _feed(seeded_db)
        view.panel.open_panel()
        view.panel.edit_pending("name_substring", "pad")
        await view.apply_filters()

        assert [r.cigar_name for r in view.rows] == ["Padron"]
        assert view.total_count == 1

    async def test_week_boundary_is_inclusive(self, seeded_db):
        # TODAY is 2024-06-08; Padron was smoked exactly seven days earlier
        view = _feed(seeded_db)
        view.panel.open_panel()
        view.panel.edit_pending("date_range", "week")
        await view.apply_filters()

        assert [r.cigar_name for r in view.rows] == ["Padron"]

    async def test_rating_band(self, db):
        for name, rating in [("A", 4.5), ("B", 3.9), ("C", 5.0), ("D", 4.0)]:
            await add_review(db, name, rating, "2024-06-01")

        view = _feed(db)
        view.panel.open_panel()
        view.panel.edit_pending("rating_floor", 4)
        view.panel.edit_pending("sort_key", "name")
        await view.apply_filters()

        assert [r.cigar_name for r in view.rows] == ["A", "D"]

    async def test_profile_feed(self, seeded_db):
        await add_review(seeded_db, "Arturo Fuente", 4.0, "2024-06-02", user_id="bob")

        view = _feed(seeded_db, subject_user_id="bob")
        await view.load()

        assert [r.cigar_name for r in view.rows] == ["Arturo Fuente"]

    async def test_deterministic(self, many_reviews_db):
        view = _feed(many_reviews_db, page_size=7)
        view.panel.open_panel()
        view.panel.edit_pending("sort_key", "rating_high")
        await view.apply_filters()
        first = [r.id for r in view.rows]

        await view.load()
        assert [r.id for r in view.rows] == first
        assert view.total_count == 23

    @pytest.mark.parametrize("sort_key", ["newest", "oldest", "rating_high", "rating_low", "name"])
    async def test_pages_cover_every_row_once(self, many_reviews_db, sort_key):
        view = _feed(many_reviews_db, page_size=5)
        view.panel.open_panel()
        view.panel.edit_pending("sort_key", sort_key)
        await view.apply_filters()

        seen = [r.id for r in view.rows]
        while await view.next_page():
            seen.extend(r.id for r in view.rows)

        assert view.paginator.page_number == 5
        assert len(seen) == 23
        assert len(set(seen)) == 23

        everything = await ReviewService(many_reviews_db).fetch_page(
            view.current_query().model_copy(update={"range_start": None, "range_end": None})
        )
        assert seen == [r.id for r in everything.rows]


# =============================================================================
# Navigation
# =============================================================================


class TestNavigation:
    """Tests for paging through the feed."""

    async def test_apply_resets_to_first_page(self, many_reviews_db):
        view = _feed(many_reviews_db, page_size=5)
        await view.load()
        await view.go_to(3)
        assert view.paginator.page_number == 3

        view.panel.open_panel()
        view.panel.edit_pending("rating_floor", 3)
        await view.apply_filters()

        assert view.paginator.page_number == 1
        assert view.current_query().range_start == 0

    async def test_panel_apply_resets_page_and_refetches(self, many_reviews_db):
        view = _feed(many_reviews_db, page_size=10)
        await view.load()
        await view.go_to(3)

        view.panel.open_panel()
        view.panel.edit_pending("rating_floor", 4)
        view.panel.apply()

        assert view.paginator.page_number == 1
        assert await view.reload is True
        assert view.total_count == 15
        assert len(view.rows) == 10
        assert all(4 <= r.rating < 5 for r in view.rows)

    async def test_page_size_change_resets(self, many_reviews_db):
        view = _feed(many_reviews_db, page_size=5)
        await view.load()
        await view.go_to(2)
        await view.set_page_size(10)

        assert view.paginator.page_number == 1
        assert len(view.rows) == 10
        assert view.paginator.page_count() == 3

    async def test_prev_at_first_page(self, many_reviews_db):
        view = _feed(many_reviews_db)
        await view.load()
        assert await view.prev_page() is False

    async def test_pending_edits_do_not_change_rows(self, seeded_db):
        view = _feed(seeded_db)
        await view.load()
        view.panel.open_panel()
        view.panel.edit_pending("name_substring", "pad")
        await view.load()

        assert len(view.rows) == 2


# =============================================================================
# Fetch Ordering and Failures
# =============================================================================


class TestFetchLifecycle:
    """Tests for last-request-wins, failures and close()."""

    async def test_stale_response_is_dropped(self):
        reviews = GatedReviews()
        view = FeedView(reviews, lambda: ALICE, today=TODAY)

        first = asyncio.ensure_future(view.load())
        await settle()
        second = asyncio.ensure_future(view.load())
        await settle()
        assert len(reviews.pending) == 2

        reviews.pending[1][1].set_result(FeedPage(rows=[_review("new")], total_count=1))
        assert await second is True
        reviews.pending[0][1].set_result(FeedPage(rows=[_review("old")], total_count=1))
        assert await first is False

        assert [r.id for r in view.rows] == ["new"]

    async def test_failure_keeps_previous_rows(self, seeded_db):
        view = _feed(seeded_db)
        await view.load()
        assert len(view.rows) == 2

        view.reviews = FailingReviews()
        assert await view.load() is False

        assert len(view.rows) == 2
        assert view.load_failed is True
        assert view.notices.latest().message == LOAD_FAILED

    async def test_close_cancels_inflight_fetch(self):
        reviews = GatedReviews()
        view = FeedView(reviews, lambda: ALICE, today=TODAY)
        view.rows = [_review("kept")]

        task = asyncio.ensure_future(view.load())
        await settle()
        view.close()

        assert await task is False
        assert [r.id for r in view.rows] == ["kept"]
        assert await view.load() is False

    async def test_shrunken_total_loads_the_new_last_page(self, db):
        ids = await add_alice_reviews(db, 11)
        view = _feed(db, page_size=10)
        await view.load()
        await view.go_to(2)
        assert [r.id for r in view.rows] == [ids[-1]]

        await db.delete("reviews", [Filter.eq("id", ids[0])])
        assert await view.load() is True

        assert view.paginator.page_number == 1
        assert view.total_count == 10
        assert [r.id for r in view.rows] == ids[1:]


# =============================================================================
# Mutations
# =============================================================================


class TestFeedMutations:
    """Tests for create, delete and like through the view."""

    async def test_create_appends(self, seeded_db):
        view = _feed(seeded_db, likes=LikeService(seeded_db))
        await view.load()

        review = await view.create_review(ReviewDraft(cigar_name="Montecristo", rating=4.5))

        assert view.rows[-1].id == review.id
        assert view.total_count == 3
        assert view.like_toggles[review.id].count == 0

    async def test_create_requires_viewer(self, seeded_db):
        view = _feed(seeded_db, viewer=None)
        with pytest.raises(AuthRequired):
            await view.create_review(ReviewDraft(cigar_name="Montecristo", rating=4.5))

    async def test_create_rejects_unrated(self, seeded_db):
        view = _feed(seeded_db)
        with pytest.raises(ValidationError, match="Please select a rating"):
            await view.create_review(ReviewDraft(cigar_name="Montecristo"))

    async def test_delete_own_review(self, seeded_db):
        view = _feed(seeded_db, comments=CommentService(seeded_db))
        await view.load()

        await view.delete_review("r-padron")

        assert [r.id for r in view.rows] == ["r-cohiba"]
        assert view.total_count == 1
        assert "r-padron" not in view.comment_counts

    async def test_delete_someone_elses_review(self, seeded_db):
        view = _feed(seeded_db, viewer=BOB)
        await view.load()

        with pytest.raises(NotFoundOrNotOwned):
            await view.delete_review("r-cohiba")

        assert len(view.rows) == 2
        assert await seeded_db.get("reviews", "r-cohiba") is not None
        notice = view.notices.latest()
        assert notice.level == NoticeLevel.WARNING
        assert notice.refresh_suggested

    async def test_like_counts_loaded(self, seeded_db):
        likes = LikeService(seeded_db)
        await likes.like(BOB, "r-cohiba")

        view = _feed(seeded_db, likes=likes)
        await view.load()

        assert view.like_toggles["r-cohiba"].count == 1
        assert view.like_toggles["r-cohiba"].liked is False

        assert await view.toggle_like("r-cohiba") is True
        assert view.like_toggles["r-cohiba"].count == 2
        assert await likes.count("r-cohiba") == 2

    async def test_toggle_unknown_review(self, seeded_db):
        view = _feed(seeded_db)
        assert await view.toggle_like("nope") is False

    async def test_delete_only_row_on_last_page(self, db):
        ids = await add_alice_reviews(db, 11)
        view = _feed(db, page_size=10)
        await view.load()
        await view.go_to(2)

        await view.delete_review(ids[-1])

        assert view.paginator.page_number == 1
        assert view.paginator.page_count() == 1
        assert view.total_count == 10
        assert [r.id for r in view.rows] == ids[:10]

    async def test_create_outside_filters_is_not_shown(self, seeded_db):
        view = _feed(seeded_db)
        view.panel.edit_pending("name_substring", "pad")
        await view.apply_filters()

        await view.create_review(ReviewDraft(cigar_name="Montecristo", rating=4.5))
        assert [r.cigar_name for r in view.rows] == ["Padron"]
        assert view.total_count == 1

        await view.create_review(ReviewDraft(cigar_name="Padron Maduro", rating=4.0))
        assert [r.cigar_name for r in view.rows] == ["Padron", "Padron Maduro"]
        assert view.total_count == 2

    async def test_create_on_full_page_only_counts(self, seeded_db):
        view = _feed(seeded_db, page_size=2)
        await view.load()

        await view.create_review(ReviewDraft(cigar_name="Montecristo", rating=4.5))

        assert len(view.rows) == 2
        assert view.total_count == 3
        assert view.paginator.page_count() == 2


# =============================================================================
# Comment Thread
# =============================================================================


class TestCommentThread:
    """Tests for paged comments with a counter."""

    async def test_paging(self, seeded_db):
        service = CommentService(seeded_db, page_size=10)
        for i in range(12):
            await service.add(BOB, "r-cohiba", f"Comment {i}")

        thread = CommentThread("r-cohiba", service, lambda: ALICE, count=12)
        assert await thread.load_more() is True
        assert len(thread.items) == 10
        assert thread.has_more is True

        assert await thread.load_more() is True
        assert len(thread.items) == 12
        assert thread.has_more is False
        assert await thread.load_more() is False

    async def test_add_and_delete_update_counter(self, seeded_db):
        counts = []
        thread = CommentThread(
            "r-cohiba", CommentService(seeded_db), lambda: ALICE, count=0, on_count_change=counts.append
        )

        comment = await thread.add("  Great draw  ")
        assert comment.content == "Great draw"
        assert thread.count == 1

        await thread.delete(comment.id)
        assert thread.items == []
        assert counts == [1, 0]

    async def test_blank_comment(self, seeded_db):
        thread = CommentThread("r-cohiba", CommentService(seeded_db), lambda: ALICE)
        with pytest.raises(ValidationError):
            await thread.add("   ")
        assert thread.count == 0

    async def test_delete_someone_elses_comment(self, seeded_db):
        service = CommentService(seeded_db)
        comment = await service.add(BOB, "r-cohiba", "Mine")
        thread = CommentThread("r-cohiba", service, lambda: ALICE, count=1)
        await thread.load_more()

        with pytest.raises(NotFoundOrNotOwned):
            await thread.delete(comment.id)

        assert thread.count == 1
        assert [c.id for c in thread.items] == [comment.id]
        assert thread.notices.latest().refresh_suggested

    async def test_edit(self, seeded_db):
        service = CommentService(seeded_db)
        thread = CommentThread("r-cohiba", service, lambda: ALICE)
        comment = await thread.add("First")

        updated = await thread.edit(comment.id, "Edited")
        assert thread.items[0].content == "Edited"
        assert updated.id == comment.id

    async def test_comment_on_deleted_review(self, seeded_db):
        thread = CommentThread("gone", CommentService(seeded_db), lambda: ALICE)
        with pytest.raises(NotFoundOrNotOwned):
            await thread.add("Hello?")
        assert thread.count == 0
