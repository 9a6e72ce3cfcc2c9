"""Schemas for notifications and push delivery."""
from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class NotificationType(StrEnum):
    MESSAGE = "message"
    LIKE = "like"
    COMMENT = "comment"
    FOLLOW = "follow"
    MENTION = "mention"
    SYSTEM = "system"


class NotificationPriority(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class NotificationPayload(BaseModel):
    """What a caller asks the dispatcher to deliver to one recipient."""

    recipient_id: str | None = None
    type: NotificationType = NotificationType.SYSTEM
    title: str
    body: str
    actor_id: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    action_url: str | None = None
    image_url: str | None = None
    priority: NotificationPriority = NotificationPriority.NORMAL
    expires_at: datetime | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    send_push: bool = True


class NotificationRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    recipient_id: str
    actor_id: str | None = None
    type: str
    title: str
    body: str
    entity_type: str | None = None
    entity_id: str | None = None
    action_url: str | None = None
    image_url: str | None = None
    priority: NotificationPriority = NotificationPriority.NORMAL
    data: dict[str, Any] | None = None
    is_read: bool = False
    read_at: datetime | None = None
    is_archived: bool = False
    archived_at: datetime | None = None
    push_sent: bool = False
    push_sent_at: datetime | None = None
    expires_at: datetime | None = None
    created_at: datetime


class PushDeliveryResponse(BaseModel):
    success: bool = True
    notification_id: str
    push_sent: bool = False
    sent_to: int = 0
    failed: int = 0
    total: int = 0
    skipped_reason: str | None = None


__all__ = [
    "NotificationType",
    "NotificationPriority",
    "NotificationPayload",
    "NotificationRecord",
    "PushDeliveryResponse",
]
