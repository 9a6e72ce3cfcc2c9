"""Push delivery for stored notifications.

The dispatcher writes a notification row first and then asks this service to
push it to the recipient's devices. Delivery honours the recipient's
preferences, fans out to every active push token through a
:class:`PushProvider`, deactivates tokens the provider rejects and records
``push_sent`` on the row.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Notification, NotificationPreference, PushToken
from ..models.base import ensure_utc
from ..schemas.notifications import PushDeliveryResponse

logger = logging.getLogger(__name__)

DEFAULT_LINK = "/notifications"


class PushServiceError(RuntimeError):
    """Raised when push delivery cannot complete."""


class NotificationNotFoundError(PushServiceError):
    """Raised when the notification to push does not exist."""


class PushProviderError(RuntimeError):
    """Raised by a provider when one device could not be reached."""


class InvalidPushTokenError(PushProviderError):
    """Raised by a provider when a device token is no longer registered."""


@dataclass(frozen=True, slots=True)
class PushMessage:
    token: str
    platform: str
    title: str
    body: str
    link: str
    priority: str
    icon: str
    channel: str
    data: dict[str, str] = field(default_factory=dict)

    @property
    def high_priority(self) -> bool:
        return self.priority in {"high", "urgent"}


class PushProvider(ABC):
    """Wire transport to device push services (FCM, APNs, web push)."""

    @abstractmethod
    def send(self, message: PushMessage) -> None:
        ...


class LoggingPushProvider(PushProvider):
    """Default provider; records deliveries in the log instead of calling a push network."""

    def send(self, message: PushMessage) -> None:
        logger.info(
            "Push %s -> %s (%s, priority=%s, channel=%s)",
            message.title,
            message.token[:12],
            message.platform,
            message.priority,
            message.channel,
        )


def _icon_for(notification_type: str) -> str:
    if notification_type == "follow":
        return "/icons/user-icon.png"
    if notification_type == "like":
        return "/icons/heart-icon.png"
    if notification_type == "comment":
        return "/icons/comment-icon.png"
    if notification_type == "message":
        return "/icons/message-icon.png"
    return "/icons/wolf-icon.png"


def in_quiet_hours(hour: int, start: int | None, end: int | None) -> bool:
    """Whether ``hour`` (UTC) falls inside a quiet window that may wrap midnight."""

    if start is None or end is None or start == end:
        return False
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


def build_message(notification: Notification, token: PushToken) -> PushMessage:
    data = {key: str(value) for key, value in (notification.data or {}).items()}
    data.update(
        {
            "type": notification.type,
            "notificationId": notification.id,
            "link": notification.action_url or DEFAULT_LINK,
            "priority": notification.priority,
        }
    )
    return PushMessage(
        token=token.token,
        platform=token.platform,
        title=notification.title,
        body=notification.body,
        link=notification.action_url or DEFAULT_LINK,
        priority=notification.priority,
        icon=_icon_for(notification.type),
        channel="messages" if notification.type == "message" else "default",
        data=data,
    )


def _skip_reason(
    db: Session,
    notification: Notification,
    preference: NotificationPreference | None,
    now: datetime,
) -> str | None:
    if notification.push_sent:
        return "already_sent"
    if notification.expires_at is not None and ensure_utc(notification.expires_at) <= now:
        return "expired"
    if preference is None:
        return None
    if not preference.push_enabled:
        return "push_disabled"
    if notification.type in (preference.muted_types or []):
        return "muted_type"
    if in_quiet_hours(now.hour, preference.quiet_hours_start, preference.quiet_hours_end):
        return "quiet_hours"
    if preference.max_per_hour:
        sent_last_hour = db.scalar(
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.recipient_id == notification.recipient_id,
                Notification.push_sent.is_(True),
                Notification.push_sent_at >= now - timedelta(hours=1),
            )
        )
        if int(sent_last_hour or 0) >= preference.max_per_hour:
            return "rate_limited"
    return None


def deliver_push(
    db: Session,
    notification_id: str,
    *,
    provider: PushProvider | None = None,
    now: datetime | None = None,
) -> PushDeliveryResponse:
    """Push one stored notification to every active device of its recipient."""

    provider = provider or LoggingPushProvider()
    now = now or datetime.now(timezone.utc)

    notification = db.get(Notification, notification_id)
    if notification is None:
        raise NotificationNotFoundError(f"Notification {notification_id} not found")

    preference = db.get(NotificationPreference, notification.recipient_id)
    reason = _skip_reason(db, notification, preference, now)
    if reason is not None:
        logger.info("Push for %s skipped: %s", notification_id, reason)
        return PushDeliveryResponse(
            notification_id=notification_id,
            push_sent=notification.push_sent,
            skipped_reason=reason,
        )

    tokens = list(
        db.scalars(
            select(PushToken).where(
                PushToken.user_id == notification.recipient_id,
                PushToken.is_active.is_(True),
            )
        )
    )
    if not tokens:
        return PushDeliveryResponse(notification_id=notification_id, skipped_reason="no_tokens")

    sent = 0
    failed = 0
    for token in tokens:
        try:
            provider.send(build_message(notification, token))
            sent += 1
        except InvalidPushTokenError:
            logger.warning("Deactivating invalid push token %s", token.id)
            token.is_active = False
            failed += 1
        except PushProviderError as exc:
            logger.warning("Push to token %s failed: %s", token.id, exc)
            failed += 1

    if sent:
        notification.push_sent = True
        notification.push_sent_at = now
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to record push delivery for %s", notification_id)
        raise PushServiceError("Unable to record push delivery") from exc

    logger.info("Push for %s delivered to %d/%d devices", notification_id, sent, len(tokens))
    return PushDeliveryResponse(
        notification_id=notification_id,
        push_sent=sent > 0,
        sent_to=sent,
        failed=failed,
        total=len(tokens),
    )


def delete_expired_notifications(db: Session, *, now: datetime | None = None) -> int:
    """Remove notifications whose ``expires_at`` has passed and return how many went."""

    cutoff = now or datetime.now(timezone.utc)
    statement = (
        delete(Notification)
        .where(Notification.expires_at.is_not(None), Notification.expires_at < cutoff)
        .returning(Notification.id)
        .execution_options(synchronize_session=False)
    )
    try:
        removed = len(db.execute(statement).scalars().all())
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Expired notification sweep failed; transaction rolled back")
        raise PushServiceError("Expired notification sweep failed") from exc

    if removed:
        logger.info("Deleted %d expired notifications", removed)
    return removed


__all__ = [
    "PushMessage",
    "PushProvider",
    "LoggingPushProvider",
    "PushProviderError",
    "InvalidPushTokenError",
    "PushServiceError",
    "NotificationNotFoundError",
    "build_message",
    "deliver_push",
    "delete_expired_notifications",
    "in_quiet_hours",
]
