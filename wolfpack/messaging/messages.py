"""Message loading, sending, read receipts and reactions for one open conversation."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from ..config import get_settings
from ..constants import (
    MEDIA_NOT_CONFIGURED,
    MEDIA_UPLOAD_FAILED,
    MESSAGE_SEND_FAILED,
    MESSAGES_LOAD_FAILED,
    NOT_AUTHENTICATED,
    REACTION_FAILED,
)
from ..remote.base import RemoteStore, RemoteStoreError, RpcError, parse_envelope
from ..remote.filters import eq, neq
from ..remote.storage import ObjectStorage, StorageConfigurationError, StorageUploadError
from ..schemas.messaging import MediaType, MessageRecord, MessageType, NotificationSettings, ReactionRecord
from ..schemas.rpc import MessageListResult, ReadCursorResult, SendMessageResult
from ..notifications.composers import message_notification
from ..notifications.dispatcher import NotificationDispatcher
from .state import MessagingState

logger = logging.getLogger(__name__)


def media_type_for(content_type: str | None) -> MediaType:
    kind = (content_type or "").lower()
    if kind == "image/gif":
        return MediaType.GIF
    if kind.startswith("image/"):
        return MediaType.IMAGE
    if kind.startswith("video/"):
        return MediaType.VIDEO
    if kind.startswith("audio/"):
        return MediaType.AUDIO
    return MediaType.FILE


class MessageManager:
    """Owns the message slice of :class:`MessagingState`."""

    def __init__(
        self,
        store: RemoteStore,
        state: MessagingState,
        *,
        dispatcher: NotificationDispatcher | None = None,
        storage: ObjectStorage | None = None,
        page_size: int | None = None,
    ) -> None:
        self._store = store
        self._state = state
        self._dispatcher = dispatcher
        self._storage = storage
        self._page_size = page_size or get_settings().message_page_size
        self.has_more = False

    @property
    def state(self) -> MessagingState:
        return self._state

    async def load_messages(
        self,
        conversation_id: str,
        limit: int | None = None,
        before: str | None = None,
    ) -> list[MessageRecord]:
        """Replace the message collection with one page, oldest first.

        ``before`` is a message id; the page then holds the messages sent
        just before it.
        """

        if not self._store.current_user_id:
            self._state.set_error(NOT_AUTHENTICATED)
            return []
        params: dict[str, Any] = {"conversation_id": conversation_id, "limit": limit or self._page_size}
        if before:
            params["before_message_id"] = before
        self._state.set_loading(True)
        try:
            result = parse_envelope(MessageListResult, await self._store.rpc("fetch_messages", params))
        except RemoteStoreError:
            logger.exception("Failed to load messages for %s", conversation_id)
            self._state.set_error(MESSAGES_LOAD_FAILED)
            return self._state.messages
        finally:
            self._state.set_loading(False)

        self.has_more = result.has_more
        self._state.set_messages(result.messages)
        self._state.set_error(None)
        return result.messages

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        message_type: MessageType | str = MessageType.TEXT,
        media_url: str | None = None,
        media_type: MediaType | str | None = None,
        reply_to_id: str | None = None,
    ) -> bool:
        user_id = self._store.current_user_id
        if not user_id:
            self._state.set_error(NOT_AUTHENTICATED)
            return False
        text = (content or "").strip()
        if not text and not media_url:
            return False

        try:
            result = parse_envelope(
                SendMessageResult,
                await self._store.rpc(
                    "send_message",
                    {
                        "conversation_id": conversation_id,
                        "content": text,
                        "message_type": str(message_type),
                        "media_url": media_url,
                        "media_type": str(media_type) if media_type else None,
                        "reply_to_id": reply_to_id,
                    },
                ),
            )
        except RpcError as exc:
            logger.warning("Message to %s refused: %s", conversation_id, exc)
            self._state.set_error(str(exc) or MESSAGE_SEND_FAILED)
            return False
        except RemoteStoreError:
            logger.exception("Failed to send message to %s", conversation_id)
            self._state.set_error(MESSAGE_SEND_FAILED)
            return False

        await self._notify_participants(conversation_id, user_id, result.message, text)
        await self.load_messages(conversation_id)
        return True

    async def _notify_participants(
        self,
        conversation_id: str,
        sender_id: str,
        message: MessageRecord | None,
        text: str,
    ) -> None:
        if self._dispatcher is None:
            return
        try:
            rows = await self._store.select(
                "chat_participants",
                columns=["user_id", "notification_settings"],
                filters=[
                    eq("conversation_id", conversation_id),
                    eq("is_active", True),
                    neq("user_id", sender_id),
                ],
            )
            user = self._store.auth.user
            sender_name = user.label if user is not None else "Someone"
            payloads = [
                message_notification(
                    recipient_id=row["user_id"],
                    sender_id=sender_id,
                    sender_name=sender_name,
                    conversation_id=conversation_id,
                    message_id=message.id if message else None,
                    content=text,
                )
                for row in rows
                if not NotificationSettings.model_validate(row.get("notification_settings") or {}).muted
            ]
            await self._dispatcher.send_bulk_notifications(payloads)
        except Exception:
            # Notification fan-out never fails the send it follows.
            logger.exception("Message notification fan-out failed for %s", conversation_id)

    async def send_media_message(
        self,
        conversation_id: str,
        data: bytes,
        filename: str | None,
        content_type: str | None,
        caption: str = "",
    ) -> bool:
        """Upload an attachment, then send a message pointing at its public URL."""

        if not self._store.current_user_id:
            self._state.set_error(NOT_AUTHENTICATED)
            return False
        if self._storage is None:
            self._state.set_error(MEDIA_NOT_CONFIGURED)
            return False
        try:
            stored = await self._storage.upload(
                data,
                filename=filename,
                content_type=content_type,
                folder=f"messages/{conversation_id}",
            )
        except (StorageUploadError, StorageConfigurationError):
            logger.exception("Media upload for %s failed", conversation_id)
            self._state.set_error(MEDIA_UPLOAD_FAILED)
            return False

        media_type = media_type_for(stored.content_type)
        message_type = MessageType.IMAGE if media_type in (MediaType.IMAGE, MediaType.GIF) else MessageType.TEXT
        return await self.send_message(
            conversation_id,
            caption,
            message_type=message_type,
            media_url=stored.url,
            media_type=media_type,
        )

    async def mark_message_as_read(self, message_id: str) -> bool:
        """Record a read receipt; repeating the call keeps the first read time."""

        user_id = self._store.current_user_id
        if not user_id:
            return False
        try:
            await self._store.upsert(
                "chat_message_receipts",
                {"message_id": message_id, "user_id": user_id},
                on_conflict=["message_id", "user_id"],
            )
        except RemoteStoreError:
            logger.exception("Failed to mark message %s read", message_id)
            return False
        return True

    async def mark_conversation_as_read(self, conversation_id: str, read_at: datetime | None = None) -> bool:
        """Move the caller's read cursor forward; an older ``read_at`` never moves it back."""

        if not self._store.current_user_id:
            return False
        params: dict[str, Any] = {"conversation_id": conversation_id}
        if read_at is not None:
            params["read_at"] = read_at
        try:
            parse_envelope(ReadCursorResult, await self._store.rpc("mark_conversation_read", params))
        except RemoteStoreError as exc:
            logger.warning("Failed to mark conversation %s read: %s", conversation_id, exc)
            return False

        if read_at is None:
            conversations = [
                item.model_copy(update={"unread_count": 0}) if item.id == conversation_id else item
                for item in self._state.conversations
            ]
            self._state.set_conversations(conversations)
        return True

    async def add_reaction(self, message_id: str, reaction: str) -> bool:
        """Set the caller's reaction on a message, replacing any earlier one."""

        user_id = self._store.current_user_id
        if not user_id:
            self._state.set_error(NOT_AUTHENTICATED)
            return False
        reaction = (reaction or "").strip()
        if not reaction:
            return False
        try:
            row = await self._store.upsert(
                "chat_message_reactions",
                {"message_id": message_id, "user_id": user_id, "reaction": reaction},
                on_conflict=["message_id", "user_id"],
            )
        except RemoteStoreError:
            logger.exception("Failed to react to message %s", message_id)
            self._state.set_error(REACTION_FAILED)
            return False

        record = ReactionRecord.model_validate(row)
        messages = []
        for message in self._state.messages:
            if message.id == message_id:
                reactions = [item for item in message.reactions if item.user_id != user_id] + [record]
                message = message.model_copy(update={"reactions": reactions})
            messages.append(message)
        self._state.set_messages(messages)
        return True

    async def edit_message(self, message_id: str, content: str) -> bool:
        logger.warning("Editing messages is not supported (message %s)", message_id)
        return False

    async def delete_message(self, message_id: str) -> bool:
        logger.warning("Deleting messages is not supported (message %s)", message_id)
        return False

    async def remove_reaction(self, message_id: str) -> bool:
        logger.warning("Removing reactions is not supported (message %s)", message_id)
        return False


__all__ = ["MessageManager", "media_type_for"]
