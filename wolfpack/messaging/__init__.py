"""Client-side conversation and message state kept in sync with the remote store."""
from .conversations import ConversationManager
from .messages import MessageManager, media_type_for
from .state import MessagingState
from .subscriptions import ConversationSubscription
from .typing_indicators import TypingIndicator, TypingUser

__all__ = [
    "ConversationManager",
    "MessageManager",
    "media_type_for",
    "MessagingState",
    "ConversationSubscription",
    "TypingIndicator",
    "TypingUser",
]
