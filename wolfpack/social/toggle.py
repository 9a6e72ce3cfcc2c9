"""Optimistic on/off toggle for social edges such as likes and follows."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

from ..constants import NOT_AUTHENTICATED
from ..remote.base import RemoteStore, RemoteStoreError, parse_envelope
from ..remote.filters import eq
from ..schemas.notifications import NotificationPayload
from ..schemas.rpc import RpcEnvelope
from ..notifications.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

# (recipient_id, actor_id, actor_name, target_id) -> payload
Composer = Callable[[str, str, str, str], NotificationPayload]


@dataclass(frozen=True, slots=True)
class EdgeSpec:
    """Describes one kind of edge and the procedure that flips it."""

    name: str
    procedure: str
    target_param: str
    result_model: type[RpcEnvelope]
    active_field: str
    count_field: str
    error_message: str
    edge_table: str
    actor_column: str
    target_column: str
    counter_table: str
    counter_column: str
    owner_column: str
    compose: Composer | None = None


@dataclass(frozen=True, slots=True)
class ToggleSnapshot:
    active: bool
    count: int


class OptimisticToggle:
    """Flip an edge locally first, then confirm it with the server.

    While a toggle is in flight further calls are ignored. On failure the
    pre-toggle snapshot is restored; on success the server's boolean and
    counter replace the optimistic values. Becoming active sends a
    best-effort notification to the target's owner, never to the actor.
    """

    def __init__(
        self,
        spec: EdgeSpec,
        store: RemoteStore,
        target_id: str,
        *,
        active: bool = False,
        count: int = 0,
        owner_id: str | None = None,
        dispatcher: NotificationDispatcher | None = None,
        on_change: Callable[["OptimisticToggle"], Any] | None = None,
    ) -> None:
        self.spec = spec
        self.target_id = target_id
        self._store = store
        self._active = active
        self._count = max(0, count)
        self._owner_id = owner_id
        self._dispatcher = dispatcher
        self._on_change = on_change
        self._pending = False
        self.error: str | None = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def count(self) -> int:
        return self._count

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    def snapshot(self) -> ToggleSnapshot:
        return ToggleSnapshot(self._active, self._count)

    def _apply(self, active: bool, count: int) -> None:
        self._active = active
        self._count = max(0, count)
        if self._on_change is None:
            return
        try:
            self._on_change(self)
        except Exception:
            logger.exception("%s toggle listener failed", self.spec.name)

    async def toggle(self) -> bool:
        """Returns ``True`` once the server confirmed the flip."""

        if self._pending:
            logger.debug("%s toggle for %s already in flight", self.spec.name, self.target_id)
            return False
        user_id = self._store.current_user_id
        if not user_id:
            self.error = NOT_AUTHENTICATED
            return False

        self._pending = True
        before = self.snapshot()
        flipped = not before.active
        self._apply(flipped, before.count + (1 if flipped else -1))
        try:
            raw = await self._store.rpc(self.spec.procedure, {self.spec.target_param: self.target_id})
            result = parse_envelope(self.spec.result_model, raw)
        except RemoteStoreError as exc:
            logger.warning("%s toggle for %s failed: %s", self.spec.name, self.target_id, exc)
            self._apply(before.active, before.count)
            self.error = self.spec.error_message
            return False
        except asyncio.CancelledError:
            logger.info("%s toggle for %s cancelled; restoring previous state", self.spec.name, self.target_id)
            self._apply(before.active, before.count)
            raise
        except Exception:
            logger.exception("Unexpected %s toggle failure for %s", self.spec.name, self.target_id)
            self._apply(before.active, before.count)
            self.error = self.spec.error_message
            return False
        finally:
            self._pending = False

        self.error = None
        self._apply(bool(getattr(result, self.spec.active_field)), int(getattr(result, self.spec.count_field)))
        if self._active and not before.active:
            await self._notify_owner(user_id)
        return True

    async def _resolve_owner(self) -> str | None:
        if self._owner_id is None:
            rows = await self._store.select(
                self.spec.counter_table,
                columns=[self.spec.owner_column],
                filters=[eq("id", self.target_id)],
                limit=1,
            )
            if rows:
                self._owner_id = rows[0][self.spec.owner_column]
        return self._owner_id

    async def _notify_owner(self, actor_id: str) -> None:
        if self._dispatcher is None or self.spec.compose is None:
            return
        try:
            owner_id = await self._resolve_owner()
            if not owner_id or owner_id == actor_id:
                return
            user = self._store.auth.user
            actor_name = user.label if user is not None else "Someone"
            payload = self.spec.compose(owner_id, actor_id, actor_name, self.target_id)
            await self._dispatcher.create_notification(owner_id, payload)
        except Exception:
            # The toggle already succeeded; a lost notification is acceptable.
            logger.exception("%s notification for %s failed", self.spec.name, self.target_id)

    async def refresh(self) -> bool:
        """Reload the edge and its counter from the store."""

        if self._pending:
            return False
        user_id = self._store.current_user_id
        spec = self.spec
        try:
            rows = await self._store.select(
                spec.counter_table,
                columns=[spec.counter_column, spec.owner_column],
                filters=[eq("id", self.target_id)],
                limit=1,
            )
            active = False
            if user_id:
                active = bool(
                    await self._store.count(
                        spec.edge_table,
                        filters=[eq(spec.actor_column, user_id), eq(spec.target_column, self.target_id)],
                    )
                )
        except RemoteStoreError:
            logger.exception("Failed to refresh %s state for %s", spec.name, self.target_id)
            return False
        if not rows:
            return False
        self._owner_id = rows[0].get(spec.owner_column) or self._owner_id
        self._apply(active, int(rows[0].get(spec.counter_column) or 0))
        return True


__all__ = ["Composer", "EdgeSpec", "OptimisticToggle", "ToggleSnapshot"]
