"""Tests for e-mail delivery, retry and the notification dispatcher.

This module tests:
- Retry with tenacity on 429 / 5xx / network errors
- Permanent failures that are logged instead of raised
- Message formatting for follow and newPost notifications
- Background dispatch that never fails the caller
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from puros.config import NotificationKind, settings
from puros.errors import NotificationFailure
from puros.notifications import (
    DisabledNotificationSink,
    EmailNotificationSink,
    EmailService,
    NotificationDispatcher,
    build_notification_sink,
    follow_message,
    new_post_message,
)


def _service(handler, **kwargs) -> EmailService:
    return EmailService(
        api_key="re_test_key_12345678",
        sender="Puros <noreply@puros.example>",
        endpoint="https://api.resend.test/emails",
        backoff=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


# =============================================================================
# EmailService
# =============================================================================


async def test_send_email_posts_message():
    """Request carries the bearer key and a plain-text message."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "em_1"})

    async with _service(handler) as service:
        assert await service.send_email("bob@example.com", "Hi", "Body") is True

    request = seen[0]
    assert request.headers["Authorization"] == "Bearer re_test_key_12345678"
    assert json.loads(request.content) == {
        "from": "Puros <noreply@puros.example>",
        "to": "bob@example.com",
        "subject": "Hi",
        "text": "Body",
    }


@pytest.mark.parametrize("status", [429, 500, 503])
async def test_retry_on_transient_status(status):
    """Transient statuses are retried until the provider accepts."""
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls < 3:
            return httpx.Response(status)
        return httpx.Response(200, json={"id": "em_2"})

    service = _service(handler)
    assert await service.send_email("bob@example.com", "Hi", "Body") is True
    assert calls == 3
    await service.close()


async def test_retry_on_network_error():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={})

    service = _service(handler)
    assert await service.send_email("bob@example.com", "Hi", "Body") is True
    assert calls == 2
    await service.close()


async def test_gives_up_after_max_attempts():
    """Exhausted retries surface as an undelivered message, not an exception."""
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(502)

    service = _service(handler, max_attempts=2)
    assert await service.send_email("bob@example.com", "Hi", "Body") is False
    assert calls == 2
    await service.close()


async def test_client_error_is_not_retried():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(422, json={"message": "invalid to"})

    service = _service(handler)
    assert await service.send_email("not-an-address", "Hi", "Body") is False
    assert calls == 1
    await service.close()


def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(settings, "resend_api_key", None)
    with pytest.raises(NotificationFailure):
        EmailService()


# =============================================================================
# Message Formatting and Sinks
# =============================================================================


def test_follow_message():
    subject, text = follow_message("Alice Smith")
    assert subject == "Alice Smith started following you on Puros!"
    assert "/home" in text


def test_new_post_message():
    subject, text = new_post_message("Alice Smith", "Cohiba", 4.5, "https://puros.example/review/r1")
    assert subject == "Alice Smith reviewed Cohiba on Puros!"
    assert "4.5/5 stars" in text
    assert "https://puros.example/review/r1" in text


async def test_email_sink_new_post():
    email = MagicMock(spec=EmailService)
    email.send_email = AsyncMock(return_value=True)
    sink = EmailNotificationSink(email)

    receipt = await sink.send(
        NotificationKind.NEW_POST,
        {
            "to": "bob@example.com",
            "author_name": "Alice Smith",
            "cigar_name": "Cohiba",
            "rating": 5.0,
            "review_url": "https://puros.example/review/r1",
        },
    )

    assert receipt.delivered is True
    to, subject, _ = email.send_email.await_args.args
    assert to == "bob@example.com"
    assert subject == "Alice Smith reviewed Cohiba on Puros!"


async def test_email_sink_missing_recipient():
    email = MagicMock(spec=EmailService)
    email.send_email = AsyncMock()
    receipt = await EmailNotificationSink(email).send(NotificationKind.FOLLOW, {"follower_name": "Alice"})

    assert receipt.delivered is False
    email.send_email.assert_not_awaited()


async def test_email_sink_incomplete_payload():
    email = MagicMock(spec=EmailService)
    email.send_email = AsyncMock()
    receipt = await EmailNotificationSink(email).send(NotificationKind.FOLLOW, {"to": "bob@example.com"})

    assert receipt.delivered is False
    assert receipt.error == "missing follower_name"


async def test_disabled_sink():
    receipt = await DisabledNotificationSink().send(NotificationKind.FOLLOW, {"to": "bob@example.com"})
    assert receipt.delivered is False
    assert receipt.recipient == "bob@example.com"


def test_build_notification_sink(monkeypatch):
    monkeypatch.setattr(settings, "resend_api_key", None)
    assert isinstance(build_notification_sink(), DisabledNotificationSink)

    monkeypatch.setattr(settings, "resend_api_key", "re_test_key_12345678")
    assert isinstance(build_notification_sink(), EmailNotificationSink)


# =============================================================================
# Dispatcher
# =============================================================================


async def test_dispatch_returns_before_delivery():
    gate = asyncio.Event()

    async def slow_send(kind, payload):
        await gate.wait()

    sink = MagicMock()
    sink.send = slow_send
    dispatcher = NotificationDispatcher(sink)

    dispatcher.dispatch(NotificationKind.FOLLOW, {"to": "bob@example.com"})
    await asyncio.sleep(0)
    assert dispatcher.pending == 1

    gate.set()
    await dispatcher.drain()
    assert dispatcher.pending == 0


async def test_dispatch_failure_is_a_receipt():
    sink = MagicMock()
    sink.send = AsyncMock(side_effect=RuntimeError("provider down"))
    dispatcher = NotificationDispatcher(sink)

    task = dispatcher.dispatch(NotificationKind.FOLLOW, {"to": "bob@example.com"})
    receipt = await task

    assert receipt.delivered is False
    assert receipt.error == "provider down"


async def test_close_cancels_and_closes_sink():
    gate = asyncio.Event()

    async def never(kind, payload):
        await gate.wait()

    sink = MagicMock()
    sink.send = never
    sink.close = AsyncMock()
    dispatcher = NotificationDispatcher(sink)

    task = dispatcher.dispatch(NotificationKind.FOLLOW, {"to": "bob@example.com"})
    await asyncio.sleep(0)
    await dispatcher.close()

    assert task.cancelled()
    sink.close.assert_awaited_once()
