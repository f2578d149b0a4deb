"""Data models for Puros.

This module defines both Pydantic models (domain objects handed to callers)
and SQLModel ORM models (database persistence).

Models are organized into three sections:
1. Pydantic domain models
2. SQLModel tables for database persistence
3. Collection registry used by the relational store
"""

import json
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field as PydanticField, field_validator, model_validator
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from puros.utils import parse_date, parse_datetime

# =============================================================================
# Section 1: Pydantic Domain Models
# =============================================================================


class Viewer(BaseModel):
    """Authenticated member as supplied by the identity provider.

    Attributes:
        id: Member ID
        email: Sign-in e-mail address
    """

    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None


class Profile(BaseModel):
    """Public member profile.

    Attributes:
        id: Member ID (same as the identity provider's user id)
        email: Contact address used for notifications
        first_name: Given name
        last_name: Family name
        avatar_url: Public URL of the profile picture
        created_at: Creation timestamp (UTC)
        updated_at: Last modification timestamp (UTC)
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    email: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    avatar_url: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _coerce_timestamps(cls, v: Any) -> Optional[datetime]:
        return parse_datetime(v)

    @property
    def display_name(self) -> str:
        """Full name, falling back to the e-mail local part."""
        full_name = f"{self.first_name} {self.last_name}".strip()
        if full_name:
            return full_name
        if self.email:
            return self.email.split("@", 1)[0]
        return "A Puros member"

    @property
    def initials(self) -> str:
        return f"{self.first_name[:1]}{self.last_name[:1]}".upper()


class Review(BaseModel):
    """A cigar review.

    Attributes:
        id: Unique review ID
        user_id: Author's member ID
        cigar_name: Name of the reviewed cigar
        rating: 0.0-5.0 in half-star steps
        notes: Free-form tasting notes
        review_date: Calendar date the cigar was smoked
        created_at: Creation timestamp (UTC)
        updated_at: Last edit timestamp (UTC)
        images: Up to three photo URLs
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    cigar_name: str
    rating: float
    notes: Optional[str] = None
    review_date: date
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    images: list[str] = PydanticField(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _unpack_images_json(cls, data: Any) -> Any:
        """Accept rows that carry images as a JSON column."""
        if isinstance(data, dict) and "images_json" in data:
            data = dict(data)
            raw = data.pop("images_json")
            data.setdefault("images", json.loads(raw) if raw else [])
        return data

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _coerce_timestamps(cls, v: Any) -> Optional[datetime]:
        return parse_datetime(v)

    @field_validator("review_date", mode="before")
    @classmethod
    def _coerce_review_date(cls, v: Any) -> Optional[date]:
        return parse_date(v)

    def to_record(self) -> dict[str, Any]:
        """Convert to a ``reviews`` collection record."""
        record = self.model_dump(exclude={"images"})
        record["images_json"] = json.dumps(self.images)
        return record


class ReviewDraft(BaseModel):
    """User input for creating or editing a review.

    Attributes:
        cigar_name: Name of the cigar (required)
        rating: 0.5-5.0 in half steps; 0 means "not rated yet"
        notes: Tasting notes
        review_date: Date smoked (defaults to today on create)
        images: Already-uploaded photo URLs
    """

    model_config = ConfigDict(extra="ignore")

    cigar_name: str = ""
    rating: float = 0.0
    notes: str = ""
    review_date: Optional[date] = None
    images: list[str] = PydanticField(default_factory=list)

    @field_validator("review_date", mode="before")
    @classmethod
    def _coerce_review_date(cls, v: Any) -> Optional[date]:
        return parse_date(v)


class Comment(BaseModel):
    """Comment on a review.

    Attributes:
        id: Unique comment ID
        review_id: Review the comment belongs to
        user_id: Author's member ID
        content: Comment text
        created_at: Creation timestamp (UTC)
        updated_at: Last edit timestamp (UTC)
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    review_id: str
    user_id: str
    content: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _coerce_timestamps(cls, v: Any) -> Optional[datetime]:
        return parse_datetime(v)


class Like(BaseModel):
    """A member's like on a review."""

    model_config = ConfigDict(extra="ignore")

    id: str
    review_id: str
    user_id: str
    created_at: Optional[datetime] = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, v: Any) -> Optional[datetime]:
        return parse_datetime(v)


class Follow(BaseModel):
    """Directed follow relation: ``follower_id`` follows ``following_id``."""

    model_config = ConfigDict(extra="ignore")

    id: str
    follower_id: str
    following_id: str
    created_at: Optional[datetime] = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, v: Any) -> Optional[datetime]:
        return parse_datetime(v)


# =============================================================================
# Section 2: SQLModel Tables for Database Persistence
# =============================================================================


class ProfileRow(SQLModel, table=True):
    """Persisted member profile."""

    __tablename__ = "profiles"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    email: Optional[str] = Field(default=None, index=True)
    first_name: str = ""
    last_name: str = ""
    avatar_url: str = ""
    created_at: datetime
    updated_at: datetime


class ReviewRow(SQLModel, table=True):
    """Persisted review.

    Attributes:
        id: Review ID (primary key)
        user_id: FK to ProfileRow.id (indexed)
        cigar_name: Cigar name (indexed for name sorting)
        rating: Rating (indexed for rating filters)
        notes: Tasting notes
        review_date: Date smoked (indexed for date filters)
        created_at: Creation timestamp (indexed, sort tiebreaker)
        updated_at: Last edit timestamp
        images_json: JSON stringified list of photo URLs
    """

    __tablename__ = "reviews"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    user_id: str = Field(foreign_key="profiles.id", index=True)
    cigar_name: str = Field(index=True)
    rating: float = Field(index=True)
    notes: Optional[str] = None
    review_date: date = Field(index=True)
    created_at: datetime = Field(index=True)
    updated_at: datetime
    images_json: Optional[str] = None


class CommentRow(SQLModel, table=True):
    """Persisted comment."""

    __tablename__ = "comments"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    review_id: str = Field(foreign_key="reviews.id", index=True)
    user_id: str = Field(foreign_key="profiles.id", index=True)
    content: str
    created_at: datetime = Field(index=True)
    updated_at: datetime


class LikeRow(SQLModel, table=True):
    """Persisted like; one per (review, member)."""

    __tablename__ = "likes"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("review_id", "user_id"),)

    id: str = Field(primary_key=True)
    review_id: str = Field(foreign_key="reviews.id", index=True)
    user_id: str = Field(foreign_key="profiles.id", index=True)
    created_at: datetime


class FollowRow(SQLModel, table=True):
    """Persisted follow relation; one per (follower, following) pair."""

    __tablename__ = "follows"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("follower_id", "following_id"),)

    id: str = Field(primary_key=True)
    follower_id: str = Field(foreign_key="profiles.id", index=True)
    following_id: str = Field(foreign_key="profiles.id", index=True)
    created_at: datetime


# =============================================================================
# Section 3: Collection Registry
# =============================================================================

COLLECTIONS: dict[str, type[SQLModel]] = {
    "profiles": ProfileRow,
    "reviews": ReviewRow,
    "comments": CommentRow,
    "likes": LikeRow,
    "follows": FollowRow,
}


def table_for(collection: str) -> type[SQLModel]:
    """Resolve a collection name to its SQLModel table.

    Raises:
        KeyError: If the collection is unknown
    """
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise KeyError(f"Unknown collection: {collection}") from None
