"""Outbound e-mail notifications.

This module provides:
- :class:`EmailService`: async Resend API client (httpx) with retry on
  transient failures (tenacity)
- :class:`EmailNotificationSink`: turns ``follow`` / ``newPost``
  notifications into plain-text e-mails
- :class:`DisabledNotificationSink`: used when no API key is configured
- :class:`NotificationDispatcher`: fire-and-forget delivery on background
  tasks; failures are logged and never reach the caller

Example:
    >>> sink = build_notification_sink()
    >>> dispatcher = NotificationDispatcher(sink)
    >>> dispatcher.dispatch(NotificationKind.FOLLOW, {"to": "a@b.c", "follower_name": "Ana"})
    >>> await dispatcher.drain()
"""

import asyncio
import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from puros.config import NotificationKind, settings
from puros.errors import NotificationFailure, TransientNotificationError
from puros.interfaces import INotificationSink
from puros.logging import logger
from puros.metrics import notifications_total, pending_notifications


class NotificationReceipt(BaseModel):
    """Result of one notification attempt.

    Attributes:
        kind: Notification kind
        recipient: Destination address, when known
        delivered: Whether the provider accepted the message
        error: Failure description when not delivered
    """

    kind: NotificationKind
    recipient: Optional[str] = None
    delivered: bool
    error: Optional[str] = None


# =============================================================================
# Resend Client
# =============================================================================


class EmailService:
    """Async client for the Resend e-mail API.

    Args:
        api_key: Resend API key (defaults to settings.resend_api_key)
        sender: From address (defaults to settings.email_from)
        endpoint: API endpoint (defaults to settings.email_endpoint)
        timeout: Request timeout in seconds
        max_attempts: Attempts per message, including the first
        backoff: Base delay for exponential backoff between attempts
        transport: Optional httpx transport (tests use ``httpx.MockTransport``)
    """

    def __init__(
        self,
        api_key: str | None = None,
        sender: str | None = None,
        endpoint: str | None = None,
        timeout: float | None = None,
        max_attempts: int = 3,
        backoff: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key or settings.resend_api_key
        if not self._api_key:
            raise NotificationFailure("RESEND_API_KEY is required to send e-mail")
        self.sender = sender or settings.email_from
        self.endpoint = endpoint or settings.email_endpoint
        self._timeout = httpx.Timeout(timeout or settings.notification_timeout)
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Lazy initialization of the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def __aenter__(self) -> "EmailService":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _do_http_post(self, message: dict[str, Any]) -> dict[str, Any]:
        """POST one message.

        Raises:
            TransientNotificationError: Timeouts, network errors, 429, 5xx
            NotificationFailure: Any other non-2xx response
        """
        client = await self._ensure_client()

        try:
            resp = await client.post(self.endpoint, json=message)
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            raise TransientNotificationError(f"Network/timeout error: {exc}") from exc

        if resp.status_code == 429 or 500 <= resp.status_code < 600:
            raise TransientNotificationError(f"HTTP {resp.status_code}")

        if not resp.is_success:
            logger.error(f"Non-retryable HTTP {resp.status_code}: {resp.text[:200]}")
            raise NotificationFailure(f"HTTP {resp.status_code}")

        try:
            return resp.json()
        except ValueError:
            return {}

    async def send_email(self, to: str, subject: str, text: str) -> bool:
        """Send a plain-text e-mail.

        Returns:
            True if the provider accepted it; failures are logged, not raised
        """
        message = {"from": self.sender, "to": to, "subject": subject, "text": text}
        logging_logger = logging.getLogger(__name__)

        @retry(
            reraise=True,
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff, min=0, max=8),
            retry=retry_if_exception_type(TransientNotificationError),
            before_sleep=before_sleep_log(logging_logger, logging.WARNING),
        )
        async def _runner() -> dict[str, Any]:
            return await self._do_http_post(message)

        try:
            body = await _runner()
        except NotificationFailure as e:
            logger.warning(f"E-mail to {to} not sent: {e}")
            return False

        logger.debug(f"E-mail sent to {to}: {body.get('id', 'no id')}")
        return True


# =============================================================================
# Message Formatting
# =============================================================================


def follow_message(follower_name: str) -> tuple[str, str]:
    """Subject and body of a new-follower e-mail."""
    subject = f"{follower_name} started following you on Puros!"
    text = (
        f"{follower_name} started following you on Puros! They'll now see your "
        f"cigar reviews in their feed. Visit {settings.base_url}/home to view your profile."
    )
    return subject, text


def new_post_message(author_name: str, cigar_name: str, rating: float, review_url: str) -> tuple[str, str]:
    """Subject and body of a new-review e-mail sent to followers."""
    subject = f"{author_name} reviewed {cigar_name} on Puros!"
    text = (
        f"{author_name} just reviewed {cigar_name} and gave it {rating:g}/5 stars! "
        f"Visit {review_url} to read the full review."
    )
    return subject, text


# =============================================================================
# Notification Sinks
# =============================================================================


class EmailNotificationSink:
    """Notification sink that delivers through :class:`EmailService`.

    Payloads:
        follow: ``{"to", "follower_name"}``
        newPost: ``{"to", "author_name", "cigar_name", "rating", "review_url"}``
    """

    def __init__(self, email: EmailService):
        self.email = email

    async def send(self, kind: NotificationKind, payload: dict[str, Any]) -> NotificationReceipt:
        recipient = payload.get("to")
        if not recipient:
            notifications_total.labels(kind=kind.value, outcome="skipped").inc()
            return NotificationReceipt(kind=kind, delivered=False, error="missing recipient")

        try:
            if kind == NotificationKind.FOLLOW:
                subject, text = follow_message(payload["follower_name"])
            else:
                subject, text = new_post_message(
                    payload["author_name"],
                    payload["cigar_name"],
                    payload["rating"],
                    payload["review_url"],
                )
        except KeyError as e:
            notifications_total.labels(kind=kind.value, outcome="failed").inc()
            return NotificationReceipt(
                kind=kind, recipient=recipient, delivered=False, error=f"missing {e.args[0]}"
            )

        delivered = await self.email.send_email(recipient, subject, text)
        notifications_total.labels(
            kind=kind.value, outcome="delivered" if delivered else "failed"
        ).inc()
        return NotificationReceipt(
            kind=kind,
            recipient=recipient,
            delivered=delivered,
            error=None if delivered else "provider rejected message",
        )

    async def close(self) -> None:
        await self.email.close()


class DisabledNotificationSink:
    """Sink used when e-mail is not configured; nothing is delivered."""

    async def send(self, kind: NotificationKind, payload: dict[str, Any]) -> NotificationReceipt:
        logger.debug(f"E-mail disabled; dropping {kind.value} notification")
        notifications_total.labels(kind=kind.value, outcome="skipped").inc()
        return NotificationReceipt(
            kind=kind, recipient=payload.get("to"), delivered=False, error="e-mail disabled"
        )

    async def close(self) -> None:
        return None


def build_notification_sink() -> INotificationSink:
    """E-mail sink when an API key is configured, otherwise the disabled sink."""
    if settings.has_email_credentials:
        logger.info(f"E-mail notifications enabled (key {settings.redact_api_key()})")
        return EmailNotificationSink(EmailService())
    logger.info("E-mail notifications disabled (RESEND_API_KEY not set)")
    return DisabledNotificationSink()


# =============================================================================
# Dispatcher
# =============================================================================


class NotificationDispatcher:
    """Runs notifications out of band.

    :meth:`dispatch` returns immediately; delivery happens on a background
    task whose failures are logged and swallowed.
    """

    def __init__(self, sink: INotificationSink):
        self.sink = sink
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _track(self, task: asyncio.Task[Any]) -> asyncio.Task[Any]:
        self._tasks.add(task)
        pending_notifications.inc()

        def _done(t: asyncio.Task[Any]) -> None:
            self._tasks.discard(t)
            pending_notifications.dec()

        task.add_done_callback(_done)
        return task

    async def _deliver(self, kind: NotificationKind, payload: dict[str, Any]) -> NotificationReceipt:
        try:
            return await self.sink.send(kind, payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Notification {kind.value} failed: {e}")
            notifications_total.labels(kind=kind.value, outcome="failed").inc()
            return NotificationReceipt(
                kind=kind, recipient=payload.get("to"), delivered=False, error=str(e)
            )

    def dispatch(self, kind: NotificationKind, payload: dict[str, Any]) -> asyncio.Task[NotificationReceipt]:
        """Schedule one notification; never raises for delivery failures."""
        return self._track(asyncio.ensure_future(self._deliver(kind, payload)))

    def run(self, coro: Any) -> asyncio.Task[Any]:
        """Run an arbitrary notification coroutine out of band (e.g., a fan-out)."""

        async def _guarded() -> Any:
            try:
                return await coro
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Background notification job failed: {e}")
                return None

        return self._track(asyncio.ensure_future(_guarded()))

    async def drain(self) -> None:
        """Wait for every scheduled notification to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel outstanding work and release the sink."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        close = getattr(self.sink, "close", None)
        if close is not None:
            await close()


__all__ = [
    "DisabledNotificationSink",
    "EmailNotificationSink",
    "EmailService",
    "NotificationDispatcher",
    "NotificationReceipt",
    "build_notification_sink",
    "follow_message",
    "new_post_message",
]
