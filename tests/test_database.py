"""Tests for the SQLite relational store and its repository layer."""

from datetime import date, datetime

import pytest

from conftest import ALICE, add_profile, add_review
from puros.database import DatabaseManager
from puros.errors import StoreError, ValidationError
from puros.models import ReviewRow
from puros.query import Filter, Order
from puros.repository import Repository, RepositoryFactory


# =============================================================================
# Lifecycle
# =============================================================================


class TestDatabaseManager:
    """Tests for engine setup and teardown."""

    def test_in_memory(self, db):
        assert db.in_memory
        assert db.session is not None

    def test_file_database_uses_wal(self, file_db):
        with file_db.engine.connect() as conn:
            mode = conn.exec_driver_sql("PRAGMA journal_mode;").scalar()
        assert mode == "wal"
        assert file_db.database_path.exists()

    def test_indexes_created(self, file_db):
        with file_db.engine.connect() as conn:
            names = {
                row[0]
                for row in conn.exec_driver_sql(
                    "SELECT name FROM sqlite_master WHERE type = 'index'"
                )
            }
        assert "idx_review_rating_date" in names
        assert "idx_comment_review_created" in names

    def test_close(self, tmp_path):
        manager = DatabaseManager(database_path=tmp_path / "x.db")
        manager.initialize()
        manager.close()
        assert manager.session is None
        assert manager.engine is None

    def test_uninitialized(self):
        with pytest.raises(RuntimeError):
            DatabaseManager(database_path=":memory:").get_statistics()

    async def test_statistics(self, seeded_db):
        stats = seeded_db.get_statistics()
        assert stats["reviews"] == 2
        assert stats["profiles"] == 1
        assert stats["likes"] == 0


# =============================================================================
# Store Operations
# =============================================================================


class TestStoreOperations:
    """Tests for find / count / insert / update / delete."""

    async def test_insert_fills_id_and_timestamps(self, db):
        row = await add_profile(db, ALICE)
        assert row["id"] == "alice"
        assert isinstance(row["created_at"], datetime)
        assert row["updated_at"] is not None

        review = await add_review(db, "Cohiba", 5.0, "2024-01-10")
        assert review["id"]
        assert review["review_date"] == date(2024, 1, 10)

    async def test_get(self, seeded_db):
        row = await seeded_db.get("reviews", "r-cohiba")
        assert row is not None
        assert row["cigar_name"] == "Cohiba"
        assert await seeded_db.get("reviews", "missing") is None

    async def test_find_filters_and_order(self, seeded_db):
        rows = await seeded_db.find("reviews", [Filter.gte("rating", 3)], [Order.desc("rating")])
        assert [r["cigar_name"] for r in rows] == ["Cohiba", "Padron"]

    async def test_find_inclusive_range(self, many_reviews_db):
        rows = await many_reviews_db.find("reviews", [], [Order.asc("id")], 5, 9)
        assert [r["id"] for r in rows] == ["r-05", "r-06", "r-07", "r-08", "r-09"]

    async def test_ilike_is_case_insensitive(self, seeded_db):
        rows = await seeded_db.find("reviews", [Filter.ilike("cigar_name", "%PAD%")])
        assert [r["cigar_name"] for r in rows] == ["Padron"]

    async def test_ilike_escaped_wildcards_match_literally(self, db):
        await add_review(db, "50% Off Special", 3.0, "2024-01-01")
        await add_review(db, "500 Series", 3.0, "2024-01-01")

        rows = await db.find("reviews", [Filter.ilike("cigar_name", "%50\\%%")])
        assert [r["cigar_name"] for r in rows] == ["50% Off Special"]

    async def test_count(self, seeded_db):
        assert await seeded_db.count("reviews") == 2
        assert await seeded_db.count("reviews", [Filter.lt("rating", 4)]) == 1

    async def test_update_owner_constrained(self, seeded_db):
        assert await seeded_db.update("reviews", "r-cohiba", {"notes": "x"}, owner_id="bob") is None

        row = await seeded_db.update("reviews", "r-cohiba", {"notes": "Creamy"}, owner_id="alice")
        assert row is not None
        assert row["notes"] == "Creamy"

    async def test_update_unknown_field(self, seeded_db):
        with pytest.raises(ValidationError):
            await seeded_db.update("reviews", "r-cohiba", {"colour": "maduro"})

    async def test_delete_returns_affected(self, seeded_db):
        assert await seeded_db.delete("reviews", [Filter.eq("id", "r-cohiba"), Filter.eq("user_id", "bob")]) == 0
        assert await seeded_db.delete("reviews", [Filter.eq("id", "r-cohiba")]) == 1
        assert await seeded_db.get("reviews", "r-cohiba") is None

    async def test_delete_requires_filter(self, seeded_db):
        with pytest.raises(ValidationError):
            await seeded_db.delete("reviews", [])

    async def test_unique_constraint_is_store_error(self, seeded_db):
        await seeded_db.insert("likes", {"review_id": "r-cohiba", "user_id": "bob"})
        with pytest.raises(StoreError):
            await seeded_db.insert("likes", {"review_id": "r-cohiba", "user_id": "bob"})

        # The session is usable again after the rollback
        assert await seeded_db.count("likes") == 1

    async def test_invalid_row_is_validation_error(self, db):
        with pytest.raises(ValidationError):
            await db.insert("reviews", {"user_id": "alice", "cigar_name": "X", "rating": "high", "review_date": "2024-01-01"})

    async def test_unknown_filter_field(self, seeded_db):
        with pytest.raises(ValidationError):
            await seeded_db.find("reviews", [Filter.eq("colour", "maduro")])


# =============================================================================
# Repository
# =============================================================================


class TestRepository:
    """Tests for the generic repository."""

    async def test_factory(self, seeded_db):
        factory = RepositoryFactory(seeded_db.session)
        repo = factory.for_collection("reviews")
        assert repo.model is ReviewRow
        assert factory.for_entity(ReviewRow).count() == 2

    def test_unknown_collection(self, db):
        with pytest.raises(KeyError):
            RepositoryFactory(db.session).for_collection("cigars")

    async def test_first(self, seeded_db):
        repo = Repository(seeded_db.session, ReviewRow)
        row = repo.first([Filter.eq("cigar_name", "Padron")])
        assert row is not None
        assert row.rating == 3.5
        assert repo.first([Filter.eq("cigar_name", "Montecristo")]) is None

    async def test_range_end_only(self, many_reviews_db):
        repo = Repository(many_reviews_db.session, ReviewRow)
        assert len(repo.find([], [Order.asc("id")], None, 4)) == 5
