"""Single live subscription to new messages of the open conversation."""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from ..remote.base import RemoteStore, RemoteStoreError
from ..remote.filters import eq
from ..remote.realtime import ChangeEvent, Subscription

logger = logging.getLogger(__name__)

MessageCallback = Callable[[ChangeEvent], "Awaitable[Any] | Any"]


class ConversationSubscription:
    """Keeps at most one ``chat_messages`` insert subscription alive.

    Watching another conversation tears the previous subscription down
    first. Callers usually answer each event with a full
    :meth:`MessageManager.load_messages` rather than patching the list.
    """

    def __init__(self, store: RemoteStore) -> None:
        self._store = store
        self._subscription: Subscription | None = None
        self._conversation_id: str | None = None

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def active(self) -> bool:
        return self._subscription is not None

    async def watch(self, conversation_id: str | None, callback: MessageCallback) -> bool:
        if conversation_id == self._conversation_id and self._subscription is not None:
            return True
        await self.close()
        if not conversation_id:
            return False
        try:
            self._subscription = await self._store.subscribe(
                "chat_messages",
                callback,
                events=("INSERT",),
                filters=[eq("conversation_id", conversation_id)],
            )
        except RemoteStoreError:
            logger.exception("Failed to subscribe to conversation %s", conversation_id)
            return False
        self._conversation_id = conversation_id
        logger.debug("Watching conversation %s", conversation_id)
        return True

    async def close(self) -> None:
        subscription, self._subscription = self._subscription, None
        self._conversation_id = None
        if subscription is not None:
            await self._store.unsubscribe(subscription)

    async def __aenter__(self) -> "ConversationSubscription":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


__all__ = ["ConversationSubscription", "MessageCallback"]
