"""Project-wide constant values."""
from __future__ import annotations

NOT_AUTHENTICATED = "Not authenticated"  # surfaced when no user session exists

CONVERSATIONS_LOAD_FAILED = "Failed to load conversations"
CONVERSATION_CREATE_FAILED = "Failed to create conversation"
CONVERSATION_UPDATE_FAILED = "Failed to update conversation"
MESSAGES_LOAD_FAILED = "Failed to load messages"
MESSAGE_SEND_FAILED = "Failed to send message"
MEDIA_UPLOAD_FAILED = "Failed to upload media"
MEDIA_NOT_CONFIGURED = "Media uploads are not configured"
REACTION_FAILED = "Failed to add reaction"
LIKE_UPDATE_FAILED = "Failed to update like. Please try again."
FOLLOW_UPDATE_FAILED = "Failed to update follow. Please try again."
BLOCK_UPDATE_FAILED = "Failed to update block. Please try again."

PREVIEW_ELLIPSIS = "..."

__all__ = [
    "NOT_AUTHENTICATED",
    "CONVERSATIONS_LOAD_FAILED",
    "CONVERSATION_CREATE_FAILED",
    "CONVERSATION_UPDATE_FAILED",
    "MESSAGES_LOAD_FAILED",
    "MESSAGE_SEND_FAILED",
    "MEDIA_UPLOAD_FAILED",
    "MEDIA_NOT_CONFIGURED",
    "REACTION_FAILED",
    "LIKE_UPDATE_FAILED",
    "FOLLOW_UPDATE_FAILED",
    "BLOCK_UPDATE_FAILED",
    "PREVIEW_ELLIPSIS",
]
