"""Tests for the follow graph and new-post fan-out."""

from unittest.mock import AsyncMock

import pytest

from conftest import ALICE, BOB, CAROL, add_profile, add_review
from puros.config import NotificationKind
from puros.errors import AuthRequired, NotFoundOrNotOwned, ValidationError
from puros.notifications import NotificationDispatcher, NotificationReceipt
from puros.social import FanOutService, FollowService, FollowStatus


def _sink(delivered: bool = True) -> AsyncMock:
    sink = AsyncMock()
    sink.send.side_effect = lambda kind, payload: NotificationReceipt(
        kind=kind, recipient=payload.get("to"), delivered=delivered
    )
    return sink


# =============================================================================
# Follows
# =============================================================================


class TestFollowService:
    """Tests for follow / unfollow / stats / status."""

    async def test_follow(self, db):
        follows = FollowService(db)
        follow = await follows.follow(ALICE, "bob")

        assert follow.follower_id == "alice"
        assert follow.following_id == "bob"
        stats = await follows.stats("bob")
        assert (stats.followers, stats.following) == (1, 0)
        assert (await follows.stats("alice")).following == 1

    async def test_follow_requires_target(self, db):
        with pytest.raises(ValidationError, match="following_id is required"):
            await FollowService(db).follow(ALICE, None)

    async def test_cannot_follow_yourself(self, db):
        with pytest.raises(ValidationError, match="Cannot follow yourself"):
            await FollowService(db).follow(ALICE, "alice")

    async def test_already_following(self, db):
        follows = FollowService(db)
        await follows.follow(ALICE, "bob")
        with pytest.raises(ValidationError, match="Already following this user"):
            await follows.follow(ALICE, "bob")
        assert await db.count("follows") == 1

    async def test_anonymous(self, db):
        with pytest.raises(AuthRequired):
            await FollowService(db).follow(None, "bob")

    async def test_unfollow_stranger_is_not_an_error(self, db):
        assert await FollowService(db).unfollow(ALICE, "bob") == 0

    async def test_status(self, db):
        follows = FollowService(db)
        assert await follows.status(ALICE, "bob") == FollowStatus()

        follow = await follows.follow(ALICE, "bob")
        status = await follows.status(ALICE, "bob")
        assert status.model_dump(by_alias=True) == {"isFollowing": True, "followId": follow.id}

    async def test_follow_sends_email(self, db):
        await add_profile(db, ALICE, "Alice", "Smith")
        await add_profile(db, BOB, "Bob", "Jones")
        sink = _sink()
        dispatcher = NotificationDispatcher(sink)

        await FollowService(db, dispatcher=dispatcher).follow(ALICE, "bob")
        await dispatcher.drain()

        sink.send.assert_awaited_once_with(
            NotificationKind.FOLLOW, {"to": "bob@example.com", "follower_name": "Alice Smith"}
        )

    async def test_follow_email_skipped_without_profile(self, db):
        sink = _sink()
        dispatcher = NotificationDispatcher(sink)

        await FollowService(db, dispatcher=dispatcher).follow(ALICE, "bob")
        await dispatcher.drain()

        sink.send.assert_not_awaited()

    async def test_failed_email_does_not_fail_follow(self, db):
        await add_profile(db, ALICE, "Alice", "Smith")
        await add_profile(db, BOB, "Bob", "Jones")
        sink = AsyncMock()
        sink.send.side_effect = RuntimeError("provider down")
        dispatcher = NotificationDispatcher(sink)

        await FollowService(db, dispatcher=dispatcher).follow(ALICE, "bob")
        await dispatcher.drain()

        assert (await FollowService(db).status(ALICE, "bob")).is_following


# =============================================================================
# Fan-out
# =============================================================================


class TestFanOut:
    """Tests for new-post notifications."""

    @pytest.fixture
    async def author_db(self, db):
        await add_profile(db, ALICE, "Alice", "Smith")
        await add_review(db, "Cohiba", 5.0, "2024-06-01", review_id="r-cohiba")
        return db

    async def test_requires_review_id(self, author_db):
        with pytest.raises(ValidationError, match="reviewId is required"):
            await FanOutService(author_db, _sink()).notify_new_post(ALICE, "")

    async def test_unknown_review(self, author_db):
        with pytest.raises(NotFoundOrNotOwned, match="Review not found"):
            await FanOutService(author_db, _sink()).notify_new_post(ALICE, "missing")

    async def test_someone_elses_review(self, author_db):
        with pytest.raises(NotFoundOrNotOwned):
            await FanOutService(author_db, _sink()).notify_new_post(BOB, "r-cohiba")

    async def test_no_followers(self, author_db):
        sink = _sink()
        result = await FanOutService(author_db, sink).notify_new_post(ALICE, "r-cohiba")

        assert result.message == "No followers to notify"
        assert result.notifications_sent == 0
        sink.send.assert_not_awaited()

    async def test_followers_without_email(self, author_db):
        await FollowService(author_db).follow(BOB, "alice")
        result = await FanOutService(author_db, _sink()).notify_new_post(ALICE, "r-cohiba")
        assert result.message == "No valid email addresses found for followers"

    async def test_sends_to_every_follower(self, author_db):
        for viewer in (BOB, CAROL):
            await add_profile(author_db, viewer)
            await FollowService(author_db).follow(viewer, "alice")
        sink = _sink()

        result = await FanOutService(author_db, sink, batch_size=1).notify_new_post(ALICE, "r-cohiba")

        assert result.model_dump(by_alias=True) == {
            "message": "Notifications sent",
            "notificationsSent": 2,
            "totalFollowers": 2,
        }
        kind, payload = sink.send.await_args_list[0].args
        assert kind == NotificationKind.NEW_POST
        assert payload["author_name"] == "Alice Smith"
        assert payload["cigar_name"] == "Cohiba"
        assert payload["review_url"].endswith("/review/r-cohiba")
        assert {call.args[1]["to"] for call in sink.send.await_args_list} == {
            "bob@example.com",
            "carol@example.com",
        }

    async def test_partial_failures_are_counted(self, author_db):
        for viewer in (BOB, CAROL):
            await add_profile(author_db, viewer)
            await FollowService(author_db).follow(viewer, "alice")

        async def flaky(kind, payload):
            if payload["to"] == "bob@example.com":
                raise RuntimeError("bounced")
            return NotificationReceipt(kind=kind, recipient=payload["to"], delivered=True)

        sink = AsyncMock()
        sink.send.side_effect = flaky

        result = await FanOutService(author_db, sink).notify_new_post(ALICE, "r-cohiba")

        assert result.notifications_sent == 1
        assert result.total_followers == 2
