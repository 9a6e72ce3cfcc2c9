"""Remote Data Store contract and its SQL-backed implementation."""
from .auth import AuthSession, AuthUser
from .base import (
    NotAuthenticatedError,
    PermissionDeniedError,
    RemoteConflictError,
    RemoteStore,
    RemoteStoreError,
    Row,
    RpcError,
    parse_envelope,
)
from .filters import Filter, eq, gt, gte, in_, is_, lt, lte, neq
from .realtime import BroadcastChannel, ChangeEvent, ChannelClosedError, RealtimeHub, Subscription, realtime_hub
from .sql_store import SqlRemoteStore

__all__ = [
    "AuthSession",
    "AuthUser",
    "NotAuthenticatedError",
    "PermissionDeniedError",
    "RemoteConflictError",
    "RemoteStore",
    "RemoteStoreError",
    "Row",
    "RpcError",
    "parse_envelope",
    "Filter",
    "eq",
    "gt",
    "gte",
    "in_",
    "is_",
    "lt",
    "lte",
    "neq",
    "BroadcastChannel",
    "ChangeEvent",
    "ChannelClosedError",
    "RealtimeHub",
    "Subscription",
    "realtime_hub",
    "SqlRemoteStore",
]
