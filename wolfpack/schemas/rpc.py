"""Named response envelopes for every stored procedure the client calls.

Each procedure answers ``{"success": bool, "error": str | None, ...}``; the
client validates the raw payload into one of these models and checks
``success`` before trusting any other field.
"""
from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from .messaging import ConversationRecord, MessageRecord


class RpcEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool
    error: str | None = None
    code: str | None = None


class DirectConversationResult(RpcEnvelope):
    conversation_id: str | None = None
    created: bool = False


class GroupConversationResult(RpcEnvelope):
    conversation_id: str | None = None


class ConversationListResult(RpcEnvelope):
    conversations: List[ConversationRecord] = Field(default_factory=list)


class MessageListResult(RpcEnvelope):
    messages: List[MessageRecord] = Field(default_factory=list)
    has_more: bool = False


class SendMessageResult(RpcEnvelope):
    message: MessageRecord | None = None


class ReadCursorResult(RpcEnvelope):
    last_read_at: datetime | None = None


class ConversationUpdateResult(RpcEnvelope):
    conversation_id: str | None = None
    updated: List[str] = Field(default_factory=list)


class ParticipantChangeResult(RpcEnvelope):
    participant_count: int = 0


class ToggleLikeResult(RpcEnvelope):
    liked: bool = False
    likes_count: int = 0


class ToggleFollowResult(RpcEnvelope):
    following: bool = False
    followers_count: int = 0
    following_count: int = 0


class BlockResult(RpcEnvelope):
    blocked: bool = False


class CanMessageResult(RpcEnvelope):
    allowed: bool = False
    reason: str | None = None


class PushTokenResult(RpcEnvelope):
    token_id: str | None = None


class NotificationReadResult(RpcEnvelope):
    updated: int = 0


__all__ = [
    "RpcEnvelope",
    "DirectConversationResult",
    "GroupConversationResult",
    "ConversationListResult",
    "MessageListResult",
    "SendMessageResult",
    "ReadCursorResult",
    "ConversationUpdateResult",
    "ParticipantChangeResult",
    "ToggleLikeResult",
    "ToggleFollowResult",
    "BlockResult",
    "CanMessageResult",
    "PushTokenResult",
    "NotificationReadResult",
]
