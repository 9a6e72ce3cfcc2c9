"""Push delivery service, its HTTP endpoint and the gateways that call it."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator

import httpx
import pytest
import respx
from fastapi.testclient import TestClient
from sqlalchemy import select

from wolfpack.database import SessionLocal
from wolfpack.main import app
from wolfpack.models import Notification, NotificationPreference, PushToken, User
from wolfpack.remote.push import (
    PUSH_SECRET_HEADER,
    HttpPushGateway,
    LocalPushGateway,
    NullPushGateway,
    PushDeliveryError,
)
from wolfpack.routers.notifications import get_push_provider
from wolfpack.services.push_service import (
    InvalidPushTokenError,
    PushMessage,
    PushProvider,
    delete_expired_notifications,
    deliver_push,
    in_quiet_hours,
)

NOON = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class RecordingProvider(PushProvider):
    def __init__(self, invalid: set[str] | None = None) -> None:
        self.invalid = invalid or set()
        self.sent: list[PushMessage] = []

    def send(self, message: PushMessage) -> None:
        if message.token in self.invalid:
            raise InvalidPushTokenError(message.token)
        self.sent.append(message)


@pytest.fixture
def notification_factory() -> Callable[..., Notification]:
    def _factory(recipient: User, **overrides) -> Notification:
        values = {
            "recipient_id": recipient.id,
            "type": "message",
            "title": "New message from Alice",
            "body": "hi",
            "action_url": "/messages/conversation/c1",
        }
        values.update(overrides)
        with SessionLocal() as session:
            notification = Notification(**values)
            session.add(notification)
            session.commit()
            session.refresh(notification)
            return notification

    return _factory


def _add_tokens(user: User, *tokens: str) -> None:
    with SessionLocal() as session:
        for token in tokens:
            session.add(PushToken(user_id=user.id, token=token, platform="web"))
        session.commit()


def test_quiet_hours_wrap_midnight() -> None:
    assert in_quiet_hours(23, 22, 6)
    assert in_quiet_hours(3, 22, 6)
    assert not in_quiet_hours(12, 22, 6)
    assert in_quiet_hours(13, 12, 14)
    assert not in_quiet_hours(13, None, 6)


def test_delivers_to_active_tokens_and_drops_invalid(user_factory, notification_factory) -> None:
    bob = user_factory("bob")
    _add_tokens(bob, "good-token", "stale-token")
    notification = notification_factory(bob)
    provider = RecordingProvider(invalid={"stale-token"})

    with SessionLocal() as session:
        result = deliver_push(session, notification.id, provider=provider, now=NOON)

    assert (result.push_sent, result.sent_to, result.failed, result.total) == (True, 1, 1, 2)
    assert provider.sent[0].channel == "messages"
    assert provider.sent[0].data["link"] == "/messages/conversation/c1"
    with SessionLocal() as session:
        assert session.get(Notification, notification.id).push_sent is True
        stale = session.scalars(select(PushToken).where(PushToken.token == "stale-token")).one()
        assert stale.is_active is False

    with SessionLocal() as session:
        again = deliver_push(session, notification.id, provider=provider, now=NOON)
    assert again.skipped_reason == "already_sent"


@pytest.mark.parametrize(
    ("preference", "reason"),
    [
        ({"push_enabled": False}, "push_disabled"),
        ({"muted_types": ["message"]}, "muted_type"),
        ({"quiet_hours_start": 11, "quiet_hours_end": 13}, "quiet_hours"),
    ],
)
def test_preferences_skip_delivery(user_factory, notification_factory, preference, reason) -> None:
    bob = user_factory("bob")
    _add_tokens(bob, "token")
    with SessionLocal() as session:
        session.add(NotificationPreference(user_id=bob.id, **preference))
        session.commit()
    notification = notification_factory(bob)
    provider = RecordingProvider()

    with SessionLocal() as session:
        result = deliver_push(session, notification.id, provider=provider, now=NOON)

    assert result.skipped_reason == reason
    assert provider.sent == []


def test_hourly_cap(user_factory, notification_factory) -> None:
    bob = user_factory("bob")
    _add_tokens(bob, "token")
    with SessionLocal() as session:
        session.add(NotificationPreference(user_id=bob.id, max_per_hour=1))
        session.commit()
    notification_factory(bob, push_sent=True, push_sent_at=NOON - timedelta(minutes=10))
    pending = notification_factory(bob)

    with SessionLocal() as session:
        result = deliver_push(session, pending.id, provider=RecordingProvider(), now=NOON)

    assert result.skipped_reason == "rate_limited"


def test_no_tokens_and_expired(user_factory, notification_factory) -> None:
    bob = user_factory("bob")
    fresh = notification_factory(bob)
    expired = notification_factory(bob, expires_at=NOON - timedelta(days=1))

    with SessionLocal() as session:
        assert deliver_push(session, fresh.id, now=NOON).skipped_reason == "no_tokens"
        assert deliver_push(session, expired.id, now=NOON).skipped_reason == "expired"
        assert delete_expired_notifications(session, now=NOON) == 1
    with SessionLocal() as session:
        assert session.get(Notification, expired.id) is None
        assert session.get(Notification, fresh.id) is not None


@pytest.fixture
def push_provider() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture
def push_client(push_provider: RecordingProvider) -> Iterator[TestClient]:
    app.dependency_overrides[get_push_provider] = lambda: push_provider
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


def test_push_endpoint(user_factory, notification_factory, push_client, push_provider) -> None:
    bob = user_factory("bob")
    _add_tokens(bob, "token")
    notification = notification_factory(bob)

    response = push_client.post(f"/notifications/{notification.id}/push")

    assert response.status_code == 200
    payload = response.json()
    assert payload["push_sent"] is True
    assert payload["sent_to"] == 1
    assert len(push_provider.sent) == 1
    assert push_client.post("/notifications/missing/push").status_code == 404


def test_push_endpoint_checks_shared_secret(monkeypatch, user_factory, notification_factory, push_client) -> None:
    from wolfpack.config import get_settings

    monkeypatch.setattr(get_settings(), "push_shared_secret", "s3cret")
    notification = notification_factory(user_factory("bob"))

    assert push_client.post(f"/notifications/{notification.id}/push").status_code == 401
    accepted = push_client.post(f"/notifications/{notification.id}/push", headers={PUSH_SECRET_HEADER: "s3cret"})
    assert accepted.status_code == 200


def test_health_and_websocket_ping(push_client) -> None:
    assert push_client.get("/health").json() == {"status": "ok"}

    with push_client.websocket_connect("/ws/conversations/c1") as websocket:
        websocket.send_text("ping")
        assert websocket.receive_json() == {"type": "pong"}
        websocket.send_text('{"type": "hello"}')
        assert websocket.receive_json() == {"type": "ready", "conversation_id": "c1"}


@pytest.mark.asyncio
@respx.mock
async def test_http_gateway_posts_to_delivery_service() -> None:
    route = respx.post("https://push.example.com/notifications/n1/push").respond(
        json={"success": True, "notification_id": "n1", "push_sent": True, "sent_to": 2, "total": 2}
    )
    gateway = HttpPushGateway("https://push.example.com/", shared_secret="s3cret")

    result = await gateway.deliver("n1")
    await gateway.aclose()

    assert route.called
    assert route.calls.last.request.headers[PUSH_SECRET_HEADER] == "s3cret"
    assert (result.push_sent, result.sent_to) == (True, 2)


@pytest.mark.asyncio
@respx.mock
async def test_http_gateway_wraps_failures() -> None:
    respx.post("https://push.example.com/notifications/n1/push").respond(status_code=503)
    respx.post("https://push.example.com/notifications/n2/push").mock(side_effect=httpx.ConnectError("down"))
    gateway = HttpPushGateway("https://push.example.com")

    with pytest.raises(PushDeliveryError):
        await gateway.deliver("n1")
    with pytest.raises(PushDeliveryError):
        await gateway.deliver("n2")
    await gateway.aclose()


@pytest.mark.asyncio
async def test_local_and_null_gateways(user_factory, notification_factory) -> None:
    bob = user_factory("bob")
    _add_tokens(bob, "token")
    notification = notification_factory(bob)
    provider = RecordingProvider()

    result = await LocalPushGateway(provider).deliver(notification.id)
    skipped = await NullPushGateway().deliver(notification.id)

    assert result.push_sent is True
    assert len(provider.sent) == 1
    assert skipped.skipped_reason == "push_not_configured"


@pytest.mark.asyncio
async def test_expiry_sweep_logs_unexpected_errors(monkeypatch, caplog) -> None:
    from wolfpack import main

    def explode() -> int:
        raise RuntimeError("disk gone")

    monkeypatch.setattr(main, "_sweep_expired", explode)

    with caplog.at_level(logging.ERROR, logger="wolfpack.main"):
        await main._run_sweep_once()

    assert "Unexpected error during expiry sweep" in caplog.text
