"""Object storage for review photos and avatars.

:class:`LocalObjectStore` is a filesystem-backed object store used in
development and tests. :class:`ImageUploader` holds the upload rules: key
layout, allowed extensions, the per-review photo limit and partial-failure
handling.
"""

import asyncio
import json
import uuid
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from puros.config import settings
from puros.errors import AuthRequired, StoreError, ValidationError
from puros.interfaces import IObjectStore
from puros.logging import logger
from puros.models import Viewer
from puros.notices import NoticeBoard, NoticeLevel
from puros.utils import utc_now

REVIEW_IMAGES_BUCKET = "review-images"
PROFILE_PICTURES_BUCKET = "profile-pictures"
ALLOWED_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp"})


# =============================================================================
# Local Object Store
# =============================================================================


class LocalObjectStore:
    """Filesystem object store.

    Objects live at ``<root>/<bucket>/<key>``; each object's cache-control
    value is kept in a ``.meta.json`` sidecar.

    Args:
        root: Storage root (defaults to settings.storage_dir)
        public_base_url: Prefix for returned URLs
            (defaults to ``<base_url>/storage``)
    """

    def __init__(self, root: Path | None = None, public_base_url: str | None = None):
        self.root = Path(root or settings.storage_dir)  # type: ignore[arg-type]
        self.public_base_url = (public_base_url or f"{settings.base_url}/storage").rstrip("/")

    def path_for(self, bucket: str, key: str) -> Path:
        path = (self.root / bucket / key).resolve()
        if not path.is_relative_to((self.root / bucket).resolve()):
            raise ValidationError(f"Invalid object key: {key}", field="key")
        return path

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.public_base_url}/{bucket}/{key}"

    async def put(
        self,
        bucket: str,
        key: str,
        data: bytes,
        cache_control: str = "3600",
        upsert: bool = False,
    ) -> str:
        """Write an object and return its public URL.

        Raises:
            StoreError: If the object exists and ``upsert`` is False, or the
                write fails
        """
        path = self.path_for(bucket, key)
        if path.exists() and not upsert:
            raise StoreError(f"Object already exists: {bucket}/{key}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            path.with_name(path.name + ".meta.json").write_text(
                json.dumps({"cache_control": cache_control, "size": len(data)})
            )
        except OSError as e:
            raise StoreError(f"Failed to write {bucket}/{key}") from e
        logger.debug(f"Stored {bucket}/{key} ({len(data)} bytes)")
        return self.public_url(bucket, key)

    async def get(self, bucket: str, key: str) -> bytes:
        """Read an object back.

        Raises:
            StoreError: If the object does not exist
        """
        path = self.path_for(bucket, key)
        try:
            return path.read_bytes()
        except OSError as e:
            raise StoreError(f"Object not found: {bucket}/{key}") from e


# =============================================================================
# Upload Rules
# =============================================================================


def file_extension(filename: str) -> str:
    """Lower-cased extension of an image file name.

    Raises:
        ValidationError: If the extension is missing or not an image type

    Example:
        >>> file_extension("Robusto.JPG")
        'jpg'
    """
    _, dot, ext = filename.rpartition(".")
    ext = ext.lower()
    if not dot or ext not in ALLOWED_EXTENSIONS:
        raise ValidationError(f"Unsupported image type: {filename}", field="images")
    return ext


def review_image_key(user_id: str, filename: str, now_ms: Optional[int] = None, token: Optional[str] = None) -> str:
    """Object key for a review photo: ``<user_id>/<epoch_ms>-<random>.<ext>``."""
    ext = file_extension(filename)
    if now_ms is None:
        now_ms = int(utc_now().timestamp() * 1000)
    if token is None:
        token = uuid.uuid4().hex[:11]
    return f"{user_id}/{now_ms}-{token}.{ext}"


def avatar_key(user_id: str, filename: str) -> str:
    """Object key for a profile picture: ``<user_id>.<ext>``."""
    return f"{user_id}.{file_extension(filename)}"


class UploadResult(BaseModel):
    """Outcome of a batch photo upload.

    Attributes:
        urls: Public URLs of the photos that were stored
        rejected: File names skipped because no slot was left
        failed: File names whose upload failed
    """

    urls: list[str] = Field(default_factory=list)
    rejected: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


class ImageUploader:
    """Uploads review photos and avatars through an object store.

    Args:
        store: Object store implementation
        notices: Optional board that receives member-facing messages
        max_images: Photo limit per review (defaults to settings)
    """

    def __init__(
        self,
        store: IObjectStore,
        notices: NoticeBoard | None = None,
        max_images: int | None = None,
    ):
        self.store = store
        self.notices = notices
        self.max_images = settings.max_review_images if max_images is None else max_images

    def _notify(self, message: str, level: NoticeLevel) -> None:
        if self.notices is not None:
            self.notices.push(message, level=level)

    async def _upload_one(self, viewer: Viewer, filename: str, data: bytes) -> str | None:
        try:
            key = review_image_key(viewer.id, filename)
            return await self.store.put(
                REVIEW_IMAGES_BUCKET,
                key,
                data,
                cache_control=settings.image_cache_control,
                upsert=False,
            )
        except (StoreError, ValidationError) as e:
            logger.warning(f"Image upload failed for {filename}: {e}")
            return None

    async def upload_review_images(
        self,
        viewer: Viewer | None,
        files: list[tuple[str, bytes]],
        existing: int = 0,
    ) -> UploadResult:
        """Upload photos for a review, respecting the remaining slots.

        Files beyond the remaining slots are rejected; a failed upload does
        not fail the others.

        Args:
            viewer: Uploading member
            files: ``(filename, bytes)`` pairs
            existing: Photos already attached to the review

        Raises:
            AuthRequired: If nobody is signed in
        """
        if viewer is None:
            raise AuthRequired()

        remaining = max(0, self.max_images - existing)
        accepted, overflow = files[:remaining], files[remaining:]
        result = UploadResult(rejected=[name for name, _ in overflow])

        if overflow:
            self._notify(f"You can only upload {remaining} more image(s)", NoticeLevel.WARNING)

        urls = await asyncio.gather(
            *(self._upload_one(viewer, name, data) for name, data in accepted)
        )
        for (name, _), url in zip(accepted, urls):
            if url is None:
                result.failed.append(name)
            else:
                result.urls.append(url)

        if result.urls:
            self._notify(f"{len(result.urls)} image(s) uploaded successfully", NoticeLevel.INFO)
        if result.failed:
            self._notify("Some images failed to upload", NoticeLevel.ERROR)

        return result

    async def upload_avatar(self, user_id: str, filename: str, data: bytes) -> str:
        """Store a profile picture, replacing any previous one.

        Raises:
            ValidationError: If the file type is not an image
            StoreError: If the write fails
        """
        return await self.store.put(
            PROFILE_PICTURES_BUCKET,
            avatar_key(user_id, filename),
            data,
            cache_control=settings.image_cache_control,
            upsert=True,
        )


__all__ = [
    "ALLOWED_EXTENSIONS",
    "ImageUploader",
    "LocalObjectStore",
    "PROFILE_PICTURES_BUCKET",
    "REVIEW_IMAGES_BUCKET",
    "UploadResult",
    "avatar_key",
    "file_extension",
    "review_image_key",
]
