"""Pydantic schemas shared by the client managers and the HTTP surface."""
from .messaging import (
    ConversationRecord,
    ConversationType,
    MediaType,
    MessageRecord,
    MessageType,
    NotificationSettings,
    ParticipantRecord,
    ParticipantRole,
    ReactionRecord,
)
from .notifications import (
    NotificationPayload,
    NotificationPriority,
    NotificationRecord,
    NotificationType,
    PushDeliveryResponse,
)
from .rpc import (
    BlockResult,
    CanMessageResult,
    ConversationListResult,
    DirectConversationResult,
    GroupConversationResult,
    MessageListResult,
    NotificationReadResult,
    ConversationUpdateResult,
    ParticipantChangeResult,
    PushTokenResult,
    ReadCursorResult,
    RpcEnvelope,
    SendMessageResult,
    ToggleFollowResult,
    ToggleLikeResult,
)

__all__ = [
    "ConversationRecord",
    "ConversationType",
    "MediaType",
    "MessageRecord",
    "MessageType",
    "NotificationSettings",
    "ParticipantRecord",
    "ParticipantRole",
    "ReactionRecord",
    "NotificationPayload",
    "NotificationPriority",
    "NotificationRecord",
    "NotificationType",
    "PushDeliveryResponse",
    "BlockResult",
    "CanMessageResult",
    "ConversationListResult",
    "DirectConversationResult",
    "GroupConversationResult",
    "MessageListResult",
    "NotificationReadResult",
    "ConversationUpdateResult",
    "ParticipantChangeResult",
    "PushTokenResult",
    "ReadCursorResult",
    "RpcEnvelope",
    "SendMessageResult",
    "ToggleFollowResult",
    "ToggleLikeResult",
]
