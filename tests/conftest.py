"""Pytest configuration and shared fixtures for Puros tests."""

import os

os.environ.setdefault("ENVIRONMENT", "testing")

import sys
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Generator

import pytest
from loguru import logger

from puros.database import DatabaseManager
from puros.models import Viewer
from puros.notices import NoticeBoard
from puros.session import ViewerSession

# Fixed "today" for date-range filters
TODAY = date(2024, 6, 8)

ALICE = Viewer(id="alice", email="alice@example.com")
BOB = Viewer(id="bob", email="bob@example.com")
CAROL = Viewer(id="carol", email="carol@example.com")


# =============================================================================
# Test Configuration
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_loguru():
    """Reset loguru handlers before each test to prevent I/O errors."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="ERROR",
        format="{time} {level} {message}",
        catch=True,
    )
    yield
    logger.remove()


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def db() -> Generator[DatabaseManager, None, None]:
    """Empty in-memory relational store."""
    manager = DatabaseManager(database_path=":memory:")
    manager.initialize()
    yield manager
    manager.close()


@pytest.fixture
def file_db(tmp_path: Path) -> Generator[DatabaseManager, None, None]:
    """Empty file-backed relational store (WAL mode)."""
    manager = DatabaseManager(database_path=tmp_path / "puros.db")
    manager.initialize()
    yield manager
    manager.close()


async def add_profile(db: DatabaseManager, viewer: Viewer, first: str = "", last: str = "") -> dict[str, Any]:
    return await db.insert(
        "profiles",
        {"id": viewer.id, "email": viewer.email, "first_name": first, "last_name": last},
    )


async def add_review(
    db: DatabaseManager,
    cigar_name: str,
    rating: float,
    review_date: str,
    user_id: str = "alice",
    review_id: str | None = None,
    created_at: datetime | None = None,
) -> dict[str, Any]:
    row: dict[str, Any] = {
        "user_id": user_id,
        "cigar_name": cigar_name,
        "rating": rating,
        "review_date": review_date,
        "images_json": "[]",
    }
    if review_id is not None:
        row["id"] = review_id
    if created_at is not None:
        row["created_at"] = created_at
    return await db.insert("reviews", row)


@pytest.fixture
async def seeded_db(db: DatabaseManager) -> DatabaseManager:
    """Store holding the Cohiba / Padron reviews used by the feed scenarios."""
    await add_profile(db, ALICE, "Alice", "Smith")
    await add_review(db, "Cohiba", 5.0, "2024-01-10", review_id="r-cohiba")
    await add_review(db, "Padron", 3.5, "2024-06-01", review_id="r-padron")
    return db


@pytest.fixture
async def many_reviews_db(db: DatabaseManager) -> DatabaseManager:
    """Store with 23 reviews, several sharing a rating and a date."""
    base = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    for i in range(23):
        await add_review(
            db,
            f"Cigar {i:02d}",
            rating=[3.0, 4.0, 4.5][i % 3],
            review_date=f"2024-05-{1 + i % 5:02d}",
            user_id="alice" if i % 2 else "bob",
            review_id=f"r-{i:02d}",
            created_at=base,
        )
    return db


# =============================================================================
# Viewer Fixtures
# =============================================================================


@pytest.fixture
def alice() -> Viewer:
    return ALICE


@pytest.fixture
def bob() -> Viewer:
    return BOB


@pytest.fixture
def alice_session() -> ViewerSession:
    return ViewerSession(ALICE)


@pytest.fixture
def anonymous_session() -> ViewerSession:
    return ViewerSession()


@pytest.fixture
def notices() -> NoticeBoard:
    return NoticeBoard()


@pytest.fixture
def today() -> date:
    return TODAY
