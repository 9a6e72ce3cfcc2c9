"""In-app notification fan-out, realtime feed and permission handling."""
from .composers import follow_notification, like_notification, message_notification, preview
from .dispatcher import NotificationDispatcher
from .permissions import (
    NotificationPermissions,
    NullSystemNotifier,
    PermissionState,
    SystemNotifier,
    SystemNotifierError,
)
from .subscription import NotificationSubscription

__all__ = [
    "follow_notification",
    "like_notification",
    "message_notification",
    "preview",
    "NotificationDispatcher",
    "NotificationPermissions",
    "NullSystemNotifier",
    "PermissionState",
    "SystemNotifier",
    "SystemNotifierError",
    "NotificationSubscription",
]
