"""Convenience exports for ORM models."""
from .conversation import Conversation, Participant, direct_key_for
from .follow import Block, Follow
from .message import Message, MessageReaction, MessageReceipt
from .notification import Notification, NotificationPreference, PushToken
from .post import Post, PostLike
from .user import User

__all__ = [
    "Block",
    "Conversation",
    "Follow",
    "Message",
    "MessageReaction",
    "MessageReceipt",
    "Notification",
    "NotificationPreference",
    "Participant",
    "Post",
    "PostLike",
    "PushToken",
    "User",
    "direct_key_for",
]
