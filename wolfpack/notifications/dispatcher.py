"""Notification fan-out: write rows, then ask the push gateway to deliver them."""
from __future__ import annotations

import logging
from typing import Any, Iterable

from ..models.base import utcnow
from ..remote.base import RemoteStore, RemoteStoreError, RpcError, parse_envelope
from ..remote.filters import eq
from ..remote.push import NullPushGateway, PushDeliveryError, PushGateway
from ..schemas.notifications import NotificationPayload, NotificationRecord
from ..schemas.rpc import NotificationReadResult, PushTokenResult

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Creates in-app notifications and triggers best-effort push delivery.

    Self-notifications and empty notifications are dropped before any remote
    call. Push delivery never fails the write it follows. Delivery rules such
    as quiet hours and hourly caps are applied by the delivery service from
    the recipient's preference record.
    """

    def __init__(self, store: RemoteStore, push: PushGateway | None = None) -> None:
        self._store = store
        self._push = push or NullPushGateway()
        self.error: str | None = None

    def _row(self, payload: NotificationPayload) -> dict[str, Any] | None:
        actor_id = payload.actor_id or self._store.current_user_id
        if not payload.recipient_id:
            return None
        if actor_id and actor_id == payload.recipient_id:
            logger.debug("Dropping self-notification for %s", payload.recipient_id)
            return None
        if not payload.title.strip() or not payload.body.strip():
            logger.debug("Dropping empty notification for %s", payload.recipient_id)
            return None
        return {
            "recipient_id": payload.recipient_id,
            "actor_id": actor_id,
            "type": str(payload.type),
            "title": payload.title.strip(),
            "body": payload.body.strip(),
            "entity_type": payload.entity_type,
            "entity_id": payload.entity_id,
            "action_url": payload.action_url,
            "image_url": payload.image_url,
            "priority": str(payload.priority),
            "expires_at": payload.expires_at,
            "data": payload.data or None,
        }

    async def _deliver_push(self, notification_id: str) -> None:
        try:
            await self._push.deliver(notification_id)
        except PushDeliveryError as exc:
            logger.warning("Push delivery for %s failed: %s", notification_id, exc)
        except Exception:
            logger.exception("Unexpected push delivery failure for %s", notification_id)

    async def create_notification(self, recipient_id: str, payload: NotificationPayload) -> str | None:
        """Write one notification for ``recipient_id`` and return its id."""

        row = self._row(payload.model_copy(update={"recipient_id": recipient_id}))
        if row is None:
            return None
        try:
            created = await self._store.insert("notifications", row)
        except RemoteStoreError:
            logger.exception("Failed to create notification for %s", recipient_id)
            self.error = "Failed to create notification"
            return None
        notification_id = str(created[0]["id"])
        if payload.send_push:
            await self._deliver_push(notification_id)
        return notification_id

    async def send_bulk_notifications(self, payloads: Iterable[NotificationPayload]) -> list[str]:
        """Insert a batch of notifications in one write, then push each one."""

        accepted = [(payload, row) for payload in payloads if (row := self._row(payload)) is not None]
        if not accepted:
            return []
        try:
            created = await self._store.insert("notifications", [row for _, row in accepted])
        except RemoteStoreError:
            logger.exception("Failed to create %d notifications", len(accepted))
            self.error = "Failed to create notifications"
            return []

        identifiers = [str(item["id"]) for item in created]
        for (payload, _), notification_id in zip(accepted, identifiers):
            if payload.send_push:
                await self._deliver_push(notification_id)
        return identifiers

    async def list_notifications(
        self,
        *,
        limit: int = 20,
        offset: int = 0,
        unread_only: bool = False,
        include_archived: bool = False,
    ) -> list[NotificationRecord]:
        user_id = self._store.current_user_id
        if not user_id:
            return []
        filters = [eq("recipient_id", user_id)]
        if unread_only:
            filters.append(eq("is_read", False))
        if not include_archived:
            filters.append(eq("is_archived", False))
        try:
            rows = await self._store.select(
                "notifications",
                filters=filters,
                order_by="created_at",
                descending=True,
                limit=limit,
                offset=offset,
            )
        except RemoteStoreError:
            logger.exception("Failed to load notifications")
            self.error = "Failed to load notifications"
            return []
        return [NotificationRecord.model_validate(row) for row in rows]

    async def unread_count(self) -> int:
        user_id = self._store.current_user_id
        if not user_id:
            return 0
        try:
            return await self._store.count(
                "notifications",
                filters=[eq("recipient_id", user_id), eq("is_read", False), eq("is_archived", False)],
            )
        except RemoteStoreError:
            logger.exception("Failed to count unread notifications")
            return 0

    async def mark_as_read(self, notification_id: str) -> bool:
        try:
            parse_envelope(
                NotificationReadResult,
                await self._store.rpc("mark_notification_read", {"notification_id": notification_id}),
            )
        except RemoteStoreError as exc:
            logger.warning("Failed to mark notification %s read: %s", notification_id, exc)
            self.error = "Failed to update notification"
            return False
        return True

    async def mark_all_as_read(self) -> int:
        try:
            result = parse_envelope(
                NotificationReadResult,
                await self._store.rpc("mark_all_notifications_read", {}),
            )
        except RemoteStoreError as exc:
            logger.warning("Failed to mark notifications read: %s", exc)
            self.error = "Failed to update notifications"
            return 0
        return result.updated

    async def archive(self, notification_id: str) -> bool:
        user_id = self._store.current_user_id
        if not user_id:
            return False
        try:
            changed = await self._store.update(
                "notifications",
                {"is_archived": True, "archived_at": utcnow()},
                filters=[eq("id", notification_id), eq("recipient_id", user_id)],
            )
        except RemoteStoreError:
            logger.exception("Failed to archive notification %s", notification_id)
            return False
        return bool(changed)

    async def register_push_token(
        self,
        token: str,
        *,
        platform: str = "web",
        device_info: dict[str, Any] | None = None,
    ) -> str | None:
        if not token:
            return None
        try:
            result = parse_envelope(
                PushTokenResult,
                await self._store.rpc(
                    "upsert_push_token",
                    {"token": token, "platform": platform, "device_info": device_info},
                ),
            )
        except RpcError as exc:
            logger.warning("Push token registration refused: %s", exc)
            return None
        except RemoteStoreError:
            logger.exception("Push token registration failed")
            return None
        return result.token_id

    async def aclose(self) -> None:
        await self._push.aclose()


__all__ = ["NotificationDispatcher"]
