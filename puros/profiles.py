"""Member profiles.

:func:`ensure_profile` is the explicit, idempotent step run once when a
session starts: it creates an empty profile for a member who has none.
"""

from typing import Optional

from puros.errors import AuthRequired, StoreError, ValidationError
from puros.interfaces import IRelationalStore
from puros.logging import logger
from puros.models import Profile, Viewer
from puros.query import Filter
from puros.storage import ImageUploader
from puros.utils import utc_now


async def get_profile(store: IRelationalStore, user_id: str) -> Profile | None:
    """Profile by member ID, or None."""
    rows = await store.find("profiles", [Filter.eq("id", user_id)], range_start=0, range_end=0)
    return Profile.model_validate(rows[0]) if rows else None


async def get_profiles(store: IRelationalStore, user_ids: list[str]) -> dict[str, Profile]:
    """Profiles for several members keyed by ID; unknown IDs are omitted."""
    profiles: dict[str, Profile] = {}
    for user_id in dict.fromkeys(user_ids):
        profile = await get_profile(store, user_id)
        if profile is not None:
            profiles[user_id] = profile
    return profiles


async def ensure_profile(store: IRelationalStore, viewer: Viewer) -> Profile:
    """Return the viewer's profile, creating an empty one if missing.

    A concurrent creation that wins the race is tolerated: the insert error
    is followed by a re-read.
    """
    existing = await get_profile(store, viewer.id)
    if existing is not None:
        return existing

    try:
        row = await store.insert(
            "profiles",
            {"id": viewer.id, "email": viewer.email, "first_name": "", "last_name": ""},
        )
    except StoreError:
        existing = await get_profile(store, viewer.id)
        if existing is None:
            raise
        return existing

    logger.info(f"Created profile for {viewer.id}")
    return Profile.model_validate(row)


def display_name(profile: Profile | None) -> str:
    """Human-readable name for notifications and listings."""
    if profile is None:
        return "A Puros member"
    return profile.display_name


async def save_profile(
    store: IRelationalStore,
    viewer: Viewer | None,
    first_name: str,
    last_name: str,
    avatar: Optional[tuple[str, bytes]] = None,
    uploader: ImageUploader | None = None,
) -> Profile:
    """Update the viewer's names and optionally replace their avatar.

    Args:
        store: Relational store
        viewer: Signed-in member
        first_name: Given name (required)
        last_name: Family name (required)
        avatar: Optional ``(filename, bytes)`` profile picture
        uploader: Required when ``avatar`` is given

    Raises:
        AuthRequired: If nobody is signed in
        ValidationError: If a name is blank
    """
    if viewer is None:
        raise AuthRequired()

    first, last = first_name.strip(), last_name.strip()
    if not first:
        raise ValidationError("First name is required", field="first_name")
    if not last:
        raise ValidationError("Last name is required", field="last_name")

    await ensure_profile(store, viewer)

    patch: dict[str, object] = {"first_name": first, "last_name": last, "updated_at": utc_now()}
    if avatar is not None:
        if uploader is None:
            raise ValidationError("An uploader is required to change the avatar", field="avatar")
        filename, data = avatar
        patch["avatar_url"] = await uploader.upload_avatar(viewer.id, filename, data)

    row = await store.update("profiles", viewer.id, patch)
    if row is None:
        raise StoreError(f"Profile {viewer.id} disappeared during update")
    return Profile.model_validate(row)


__all__ = ["display_name", "ensure_profile", "get_profile", "get_profiles", "save_profile"]
