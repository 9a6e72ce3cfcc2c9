"""Builders for the notification payloads sent on social and chat activity."""
from __future__ import annotations

from ..config import get_settings
from ..constants import PREVIEW_ELLIPSIS
from ..schemas.notifications import NotificationPayload, NotificationPriority, NotificationType


def preview(text: str, limit: int | None = None) -> str:
    """Shorten ``text`` to ``limit`` characters, marking the cut with an ellipsis."""

    limit = limit if limit is not None else get_settings().notification_preview_chars
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return f"{text[:limit]}{PREVIEW_ELLIPSIS}"


def message_notification(
    *,
    recipient_id: str,
    sender_id: str,
    sender_name: str,
    conversation_id: str,
    message_id: str | None,
    content: str,
) -> NotificationPayload:
    return NotificationPayload(
        recipient_id=recipient_id,
        type=NotificationType.MESSAGE,
        title=f"New message from {sender_name}",
        body=preview(content) or "Sent an attachment",
        actor_id=sender_id,
        entity_type="message",
        entity_id=message_id,
        action_url=f"/messages/conversation/{conversation_id}",
        priority=NotificationPriority.NORMAL,
        data={"conversation_id": conversation_id, "sender_name": sender_name},
    )


def like_notification(
    *,
    recipient_id: str,
    actor_id: str,
    actor_name: str,
    post_id: str,
    post_thumbnail: str | None = None,
) -> NotificationPayload:
    return NotificationPayload(
        recipient_id=recipient_id,
        type=NotificationType.LIKE,
        title=f"{actor_name} liked your post",
        body="Tap to see your post",
        actor_id=actor_id,
        entity_type="post",
        entity_id=post_id,
        action_url=f"/social/post/{post_id}",
        image_url=post_thumbnail,
        priority=NotificationPriority.LOW,
    )


def follow_notification(*, recipient_id: str, actor_id: str, actor_name: str) -> NotificationPayload:
    return NotificationPayload(
        recipient_id=recipient_id,
        type=NotificationType.FOLLOW,
        title=f"{actor_name} started following you",
        body="Tap to view their profile",
        actor_id=actor_id,
        entity_type="user",
        entity_id=actor_id,
        action_url=f"/profile/{actor_id}",
        priority=NotificationPriority.LOW,
    )


__all__ = [
    "preview",
    "message_notification",
    "like_notification",
    "follow_notification",
]
