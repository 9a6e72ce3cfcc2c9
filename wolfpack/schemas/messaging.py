"""Schemas describing conversations, participants and messages."""
from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class ConversationType(StrEnum):
    DIRECT = "direct"
    GROUP = "group"


class ParticipantRole(StrEnum):
    MEMBER = "member"
    ADMIN = "admin"
    OWNER = "owner"


class MessageType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    SYSTEM = "system"
    DELETED = "deleted"


class MediaType(StrEnum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"
    GIF = "gif"


class NotificationSettings(BaseModel):
    """Per-conversation notification settings of a participant."""

    model_config = ConfigDict(extra="allow")

    muted: bool = False
    sound: str | None = None
    vibrate: bool = True


class ParticipantRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    conversation_id: str
    user_id: str
    role: ParticipantRole = ParticipantRole.MEMBER
    joined_at: datetime | None = None
    left_at: datetime | None = None
    is_active: bool = True
    last_read_at: datetime | None = None
    notification_settings: NotificationSettings | None = None
    display_name: str | None = None


class ConversationRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_type: ConversationType = ConversationType.DIRECT
    name: str | None = None
    avatar_url: str | None = None
    created_by: str | None = None
    participant_count: int = 0
    last_message_at: datetime | None = None
    last_message_preview: str | None = None
    last_message_sender_id: str | None = None
    is_archived: bool = False
    is_pinned: bool = False
    unread_count: int = 0
    participants: List[ParticipantRecord] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ReactionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    message_id: str
    user_id: str
    reaction: str
    created_at: datetime | None = None


class MessageRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    sender_id: str
    content: str
    message_type: MessageType = MessageType.TEXT
    media_url: str | None = None
    media_type: MediaType | None = None
    reply_to_id: str | None = None
    is_edited: bool = False
    edited_at: datetime | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None
    created_at: datetime
    sender_display_name: str | None = None
    reactions: List[ReactionRecord] = Field(default_factory=list)


__all__ = [
    "ConversationType",
    "ParticipantRole",
    "MessageType",
    "MediaType",
    "NotificationSettings",
    "ParticipantRecord",
    "ConversationRecord",
    "ReactionRecord",
    "MessageRecord",
]
