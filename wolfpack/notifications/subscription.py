"""Realtime notification feed for the signed-in user."""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

from ..config import get_settings
from ..remote.base import RemoteStore, RemoteStoreError
from ..remote.filters import eq
from ..remote.realtime import ChangeEvent, Subscription
from .dispatcher import NotificationDispatcher
from .permissions import NotificationPermissions, SystemNotifierError

logger = logging.getLogger(__name__)


class NotificationSubscription:
    """Track the unread counter and raise system banners for new notifications.

    The realtime channel covers inserts, updates and deletes for the current
    recipient. The counter is also refreshed on a fixed interval so a missed
    event is corrected.
    """

    def __init__(
        self,
        store: RemoteStore,
        dispatcher: NotificationDispatcher,
        permissions: NotificationPermissions | None = None,
        *,
        refresh_interval: float | None = None,
        on_change: Callable[[ChangeEvent], Any] | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._permissions = permissions
        self._interval = refresh_interval if refresh_interval is not None else get_settings().unread_refresh_seconds
        self._on_change = on_change
        self._subscription: Subscription | None = None
        self._refresh_task: asyncio.Task[None] | None = None
        self._unread = 0

    @property
    def unread_count(self) -> int:
        return self._unread

    @property
    def active(self) -> bool:
        return self._subscription is not None

    async def subscribe_to_notifications(self) -> bool:
        user_id = self._store.current_user_id
        if not user_id:
            return False
        if self._subscription is not None:
            return True
        self._unread = await self._dispatcher.unread_count()
        try:
            self._subscription = await self._store.subscribe(
                "notifications",
                self._handle,
                events=("INSERT", "UPDATE", "DELETE"),
                filters=[eq("recipient_id", user_id)],
            )
        except RemoteStoreError:
            logger.exception("Failed to subscribe to notifications")
            return False
        self._refresh_task = asyncio.create_task(self._refresh_loop())
        return True

    async def refresh(self) -> int:
        self._unread = await self._dispatcher.unread_count()
        return self._unread

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.refresh()

    async def _handle(self, event: ChangeEvent) -> None:
        if event.event_type == "INSERT" and event.new is not None:
            if not event.new.get("is_read"):
                self._unread += 1
            await self._show_banner(event.new)
        else:
            await self.refresh()

        if self._on_change is not None:
            result = self._on_change(event)
            if inspect.isawaitable(result):
                await result

    async def _show_banner(self, record: dict[str, Any]) -> None:
        if self._permissions is None or not self._permissions.has_permission:
            return
        try:
            await self._permissions.notifier.show(
                record.get("title") or "Notification",
                record.get("body") or "",
                url=record.get("action_url"),
                tag=f"notification-{record.get('id')}",
            )
        except SystemNotifierError:
            logger.warning("System banner for %s could not be shown", record.get("id"))

    async def close(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await self._store.unsubscribe(subscription)

    async def __aenter__(self) -> "NotificationSubscription":
        await self.subscribe_to_notifications()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


__all__ = ["NotificationSubscription"]
