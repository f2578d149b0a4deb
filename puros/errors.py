"""Error taxonomy for Puros.

- AuthRequired and ValidationError are raised before any write is dispatched
  and are handled by the caller.
- StoreError and NotFoundOrNotOwned come back from the relational store and
  are surfaced as dismissible notices; only the failed action rolls back.
- NotificationFailure never escapes the notification dispatcher.
"""


class PurosError(Exception):
    """Base class for all Puros errors."""


class AuthRequired(PurosError):
    """A mutation was attempted without an authenticated viewer."""

    def __init__(self, message: str = "You need to be logged in to do that"):
        super().__init__(message)


class ValidationError(PurosError):
    """Malformed input to a mutation.

    Attributes:
        field: Name of the offending field, when known
    """

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class StoreError(PurosError):
    """A relational or object store call failed (network, permission, constraint)."""


class NotFoundOrNotOwned(PurosError):
    """An update or delete affected zero rows.

    The entity either no longer exists or belongs to someone else; the
    caller's view is stale and should be refreshed.
    """


class NotificationFailure(PurosError):
    """A notification could not be delivered."""


class TransientNotificationError(NotificationFailure):
    """Retryable e-mail API failure.

    Raised for errors that should trigger retry logic:
    - Network timeouts
    - Connection errors
    - HTTP 429 (rate limit)
    - HTTP 5xx (server errors)
    """


__all__ = [
    "AuthRequired",
    "NotFoundOrNotOwned",
    "NotificationFailure",
    "PurosError",
    "StoreError",
    "TransientNotificationError",
    "ValidationError",
]
