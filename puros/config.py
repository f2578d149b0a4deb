"""Configuration management for Puros.

Settings come from environment variables and an optional ``.env`` file and are
validated by Pydantic Settings. One module-level instance is shared.

Environment Profiles:
    - DEVELOPMENT: Verbose logging, human-readable output
    - PRODUCTION: JSON logs, INFO level, file logging
    - TESTING: In-memory database, minimal logging, no file output
    - STAGING: Production-like with INFO logging

Example:
    >>> from puros.config import settings, SortKey
    >>> settings.default_page_size
    10
    >>> SortKey("rating_high")
    <SortKey.RATING_HIGH: 'rating_high'>
"""

from enum import StrEnum
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from puros.utils import redact_token


class SortKey(StrEnum):
    """Feed sort options."""

    NEWEST = "newest"
    OLDEST = "oldest"
    RATING_HIGH = "rating_high"
    RATING_LOW = "rating_low"
    NAME = "name"


class DateRange(StrEnum):
    """Review date buckets for the feed date filter."""

    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class RatingFilterMode(StrEnum):
    """How a rating floor of ``r`` is turned into a predicate.

    Attributes:
        BAND: ``r <= rating < r + 1`` (a single star band)
        FLOOR: ``rating >= r``
    """

    BAND = "band"
    FLOOR = "floor"


class NotificationKind(StrEnum):
    """Kinds of outbound member notifications."""

    FOLLOW = "follow"
    NEW_POST = "newPost"


class Environment(StrEnum):
    """Deployment profile; each one adjusts logging and storage defaults.

    Attributes:
        DEVELOPMENT: Verbose logging, human-readable output
        PRODUCTION: JSON logs written to stdout and a rotating file
        TESTING: In-memory database, errors-only logging
        STAGING: JSON logs at INFO, file-backed database
    """

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
    STAGING = "staging"


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Attributes:
        environment: Runtime profile
        data_dir: Base directory for the database, uploads and logs
        database_path: Path to the SQLite database file
        storage_dir: Root directory of the local object store
        base_url: Public site URL used in notification links
        resend_api_key: Resend API key; e-mail is disabled when unset
        email_from: Sender address for notifications
        email_endpoint: Resend e-mail API endpoint
        notification_timeout: Per-request timeout for the e-mail API (seconds)
        notification_batch_size: Recipients e-mailed concurrently per batch
        default_page_size: Feed page size
        comments_per_page: Comment thread page size
        max_review_images: Maximum photos attached to one review
        image_cache_control: Cache-Control max-age for uploaded images
        rating_filter_mode: Rating floor semantics (band or floor)
        server_host: Bind address for `puros serve`
        server_port: Port for `puros serve`
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Runtime environment (development, production, testing, staging)",
    )

    # Paths
    data_dir: Path = Field(
        Path("./data"),
        description="Base directory for all data files (database, uploads, logs)",
    )
    database_path: Path = Field(
        Path("puros.db"),  # Will be updated to data_dir/puros.db by validator
        description="Path to SQLite database file (defaults to data_dir/puros.db)",
    )
    storage_dir: Optional[Path] = Field(
        None,
        description="Root of the local object store (defaults to data_dir/storage)",
    )

    # Site / e-mail
    base_url: str = Field(
        "http://localhost:3000",
        alias="BASE_URL",
        description="Public site URL used to build links in notifications",
    )
    resend_api_key: Optional[str] = Field(
        None,
        alias="RESEND_API_KEY",
        description="Resend API key for transactional e-mail",
    )
    email_from: str = Field(
        "noreply@puros.app",
        alias="EMAIL_FROM",
        description="Sender address for notification e-mail",
    )
    email_endpoint: str = Field(
        "https://api.resend.com/emails",
        description="Resend e-mail API endpoint",
    )
    notification_timeout: float = Field(
        10.0,
        gt=0,
        le=60,
        description="Timeout for a single e-mail API request (seconds)",
    )
    notification_batch_size: int = Field(
        10,
        ge=1,
        le=100,
        description="Number of notification e-mails sent concurrently",
    )

    # Feed behaviour
    default_page_size: int = Field(
        10,
        ge=1,
        le=100,
        description="Number of reviews per feed page",
    )
    comments_per_page: int = Field(
        10,
        ge=1,
        le=100,
        description="Number of comments loaded per thread page",
    )
    max_review_images: int = Field(
        3,
        ge=0,
        le=10,
        description="Maximum number of photos attached to a review",
    )
    image_cache_control: str = Field(
        "3600",
        description="Cache-Control max-age for uploaded images",
    )
    rating_filter_mode: RatingFilterMode = Field(
        RatingFilterMode.BAND,
        description="Rating floor semantics: 'band' keeps [r, r+1), 'floor' keeps >= r",
    )

    # HTTP server
    server_host: str = Field(
        "127.0.0.1",
        description="Interface the HTTP API binds to",
    )
    server_port: int = Field(
        8000,
        ge=1,
        le=65535,
        description="Port the HTTP API listens on",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_to_file: bool = Field(
        default=False,
        description="Enable file logging in addition to console",
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (recommended for production)",
    )

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_data_dir(cls, v: str | Path) -> Path:
        """Expand and resolve data directory path."""
        return Path(v).expanduser().resolve()

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the base URL so paths can be appended."""
        return v.rstrip("/")

    @model_validator(mode="after")
    def set_path_defaults(self) -> "Settings":
        """Derive database and storage paths from data_dir when not provided."""
        if self.database_path == Path("puros.db"):
            self.database_path = self.data_dir / "puros.db"
        if self.storage_dir is None:
            self.storage_dir = self.data_dir / "storage"
        return self

    @model_validator(mode="after")
    def apply_environment_profile(self) -> "Settings":
        """Apply environment-specific defaults.

        Profiles:
            - PRODUCTION: INFO logging (unless stricter), JSON logs, file logging
            - DEVELOPMENT: DEBUG logging, human-readable logs
            - TESTING: In-memory database, ERROR logging, no file logging
            - STAGING: INFO logging, JSON logs

        Returns:
            Modified settings instance with environment-specific adjustments
        """
        if self.environment == Environment.PRODUCTION:
            if self.log_level == "DEBUG":
                self.log_level = "INFO"
            self.log_json = True
            self.log_to_file = True

        elif self.environment == Environment.DEVELOPMENT:
            self.log_level = "DEBUG"
            self.log_json = False

        elif self.environment == Environment.TESTING:
            self.database_path = Path(":memory:")
            self.log_level = "ERROR"
            self.log_to_file = False
            self.log_json = False

        elif self.environment == Environment.STAGING:
            self.log_level = "INFO"
            self.log_json = True

        return self

    @property
    def uses_memory_database(self) -> bool:
        """Check if the database lives in memory."""
        return str(self.database_path) == ":memory:"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING

    @property
    def has_email_credentials(self) -> bool:
        """Check if outbound e-mail is configured."""
        return bool(self.resend_api_key)

    def redact_api_key(self, key: Optional[str] = None) -> str:
        """Redact the e-mail API key for logging.

        Args:
            key: Key to redact (defaults to resend_api_key)

        Returns:
            Redacted key string
        """
        return redact_token(key or self.resend_api_key)

    def review_url(self, review_id: str) -> str:
        """Build the public link to a review."""
        return f"{self.base_url}/review/{review_id}"


def get_settings() -> Settings:
    """Get a settings instance from the current environment.

    Returns:
        Configured Settings instance
    """
    settings_instance = Settings()
    if not settings_instance.uses_memory_database:
        settings_instance.data_dir.mkdir(parents=True, exist_ok=True)
    return settings_instance


# Global settings instance
settings = get_settings()

__all__ = [
    "DateRange",
    "Environment",
    "NotificationKind",
    "RatingFilterMode",
    "Settings",
    "SortKey",
    "get_settings",
    "settings",
]
