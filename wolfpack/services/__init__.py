"""Convenience exports for service layer."""
from .push_service import (
    InvalidPushTokenError,
    LoggingPushProvider,
    NotificationNotFoundError,
    PushMessage,
    PushProvider,
    PushProviderError,
    PushServiceError,
    delete_expired_notifications,
    deliver_push,
)

__all__ = [
    "InvalidPushTokenError",
    "LoggingPushProvider",
    "NotificationNotFoundError",
    "PushMessage",
    "PushProvider",
    "PushProviderError",
    "PushServiceError",
    "delete_expired_notifications",
    "deliver_push",
]
