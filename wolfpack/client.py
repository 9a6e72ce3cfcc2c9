"""Composition root wiring the remote store, state and managers for one signed-in session."""
from __future__ import annotations

import logging

from .messaging import (
    ConversationManager,
    ConversationSubscription,
    MessageManager,
    MessagingState,
    TypingIndicator,
)
from .notifications import (
    NotificationDispatcher,
    NotificationPermissions,
    NotificationSubscription,
    NullSystemNotifier,
    SystemNotifier,
)
from .remote.base import RemoteStore
from .remote.push import PushGateway, build_push_gateway
from .remote.realtime import ChangeEvent
from .remote.storage import ObjectStorage
from .social import BlockManager, FollowToggle, PostLikeToggle

logger = logging.getLogger(__name__)


class WolfpackClient:
    """Everything a UI needs, built once and passed down explicitly.

    Managers share one :class:`MessagingState`; the open conversation's
    realtime subscription reloads its messages on every new insert.
    """

    def __init__(
        self,
        store: RemoteStore,
        *,
        push: PushGateway | None = None,
        storage: ObjectStorage | None = None,
        notifier: SystemNotifier | None = None,
        state: MessagingState | None = None,
    ) -> None:
        self.store = store
        self.state = state or MessagingState()
        self.dispatcher = NotificationDispatcher(store, push if push is not None else build_push_gateway())
        self.permissions = NotificationPermissions(notifier or NullSystemNotifier())
        self.conversations = ConversationManager(store, self.state)
        self.messages = MessageManager(store, self.state, dispatcher=self.dispatcher, storage=storage)
        self.blocks = BlockManager(store)
        self.notifications = NotificationSubscription(store, self.dispatcher, self.permissions)
        self.conversation_feed = ConversationSubscription(store)
        self._typing: TypingIndicator | None = None

    @property
    def current_user_id(self) -> str | None:
        return self.store.current_user_id

    @property
    def typing(self) -> TypingIndicator | None:
        return self._typing

    async def open_conversation(self, conversation_id: str) -> bool:
        """Load a conversation's messages and keep them live until another one is opened."""

        await self.messages.load_messages(conversation_id)

        async def reload(event: ChangeEvent) -> None:
            await self.messages.load_messages(conversation_id)

        if self._typing is not None and self._typing.conversation_id != conversation_id:
            await self._typing.close()
            self._typing = None
        if self._typing is None:
            self._typing = await TypingIndicator(self.store, conversation_id).start()
        return await self.conversation_feed.watch(conversation_id, reload)

    async def close_conversation(self) -> None:
        await self.conversation_feed.close()
        if self._typing is not None:
            await self._typing.close()
            self._typing = None

    def like_toggle(self, post_id: str, *, liked: bool = False, likes_count: int = 0, author_id: str | None = None) -> PostLikeToggle:
        return PostLikeToggle(
            self.store,
            post_id,
            liked=liked,
            likes_count=likes_count,
            author_id=author_id,
            dispatcher=self.dispatcher,
        )

    def follow_toggle(self, target_user_id: str, *, following: bool = False, followers_count: int = 0) -> FollowToggle:
        return FollowToggle(
            self.store,
            target_user_id,
            following=following,
            followers_count=followers_count,
            dispatcher=self.dispatcher,
        )

    async def start(self) -> "WolfpackClient":
        await self.conversations.load_conversations()
        await self.notifications.subscribe_to_notifications()
        return self

    async def close(self) -> None:
        await self.close_conversation()
        await self.notifications.close()
        await self.dispatcher.aclose()
        logger.debug("Client for %s closed", self.current_user_id)

    async def __aenter__(self) -> "WolfpackClient":
        return await self.start()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


__all__ = ["WolfpackClient"]
