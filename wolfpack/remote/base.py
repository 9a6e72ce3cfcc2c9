"""Contract of the hosted backend the client core talks to."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence, TypeVar

from pydantic import ValidationError

from ..schemas.rpc import RpcEnvelope
from .auth import AuthSession
from .filters import Filter

if TYPE_CHECKING:
    from .realtime import BroadcastChannel, ChangeCallback, Subscription

Row = dict[str, Any]
EnvelopeT = TypeVar("EnvelopeT", bound=RpcEnvelope)


class RemoteStoreError(RuntimeError):
    """Raised when a remote query, procedure or channel operation fails."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class NotAuthenticatedError(RemoteStoreError):
    """Raised when an operation needs a signed-in user and there is none."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message, code="UNAUTHENTICATED")


class RemoteConflictError(RemoteStoreError):
    """Raised when a write collides with an existing row."""


class PermissionDeniedError(RemoteStoreError):
    """Raised when row-level rules do not let the caller touch a table or row."""

    def __init__(self, message: str = "Permission denied") -> None:
        super().__init__(message, code="FORBIDDEN")


class RpcError(RemoteStoreError):
    """Raised when a procedure answers with ``success: false`` or a malformed envelope."""


def parse_envelope(model: type[EnvelopeT], raw: Mapping[str, Any] | None) -> EnvelopeT:
    """Validate a procedure response and fail unless it reports success."""

    if raw is None:
        raise RpcError("Empty procedure response", code="EMPTY_RESPONSE")
    try:
        envelope = model.model_validate(raw)
    except ValidationError as exc:
        raise RpcError("Malformed procedure response", code="MALFORMED_RESPONSE") from exc
    if not envelope.success:
        raise RpcError(envelope.error or "Procedure failed", code=envelope.code)
    return envelope


class RemoteStore(ABC):
    """Query, RPC and realtime surface of the backend-as-a-service.

    Implementations raise :class:`RemoteStoreError` (or a subclass) for every
    failure; nothing backend-specific leaks to callers.
    """

    def __init__(self, auth: AuthSession) -> None:
        self.auth = auth

    @property
    def current_user_id(self) -> str | None:
        return self.auth.current_user_id

    @abstractmethod
    async def select(
        self,
        table: str,
        *,
        filters: Sequence[Filter] = (),
        columns: Sequence[str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Row]:
        ...

    @abstractmethod
    async def count(self, table: str, *, filters: Sequence[Filter] = ()) -> int:
        ...

    @abstractmethod
    async def insert(self, table: str, rows: Row | Iterable[Row]) -> list[Row]:
        ...

    @abstractmethod
    async def update(self, table: str, values: Row, *, filters: Sequence[Filter]) -> list[Row]:
        ...

    @abstractmethod
    async def upsert(self, table: str, row: Row, *, on_conflict: Sequence[str]) -> Row:
        ...

    @abstractmethod
    async def delete(self, table: str, *, filters: Sequence[Filter]) -> int:
        ...

    @abstractmethod
    async def rpc(self, name: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        ...

    @abstractmethod
    async def subscribe(
        self,
        table: str,
        callback: "ChangeCallback",
        *,
        events: Iterable[str] = ("INSERT",),
        filters: Sequence[Filter] = (),
    ) -> "Subscription":
        ...

    @abstractmethod
    async def unsubscribe(self, subscription: "Subscription") -> None:
        ...

    @abstractmethod
    def channel(self, topic: str, *, receive_own: bool = False) -> "BroadcastChannel":
        ...


__all__ = [
    "Row",
    "RemoteStore",
    "RemoteStoreError",
    "NotAuthenticatedError",
    "RemoteConflictError",
    "PermissionDeniedError",
    "RpcError",
    "parse_envelope",
]
