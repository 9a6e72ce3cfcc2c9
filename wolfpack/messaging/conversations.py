"""Conversation list management: load, resolve direct chats, groups and archiving."""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, TypeVar

from ..constants import (
    CONVERSATION_CREATE_FAILED,
    CONVERSATION_UPDATE_FAILED,
    CONVERSATIONS_LOAD_FAILED,
    NOT_AUTHENTICATED,
)
from ..remote.base import RemoteStore, RemoteStoreError, RpcError, parse_envelope
from ..remote.filters import eq
from ..schemas.messaging import ConversationRecord, NotificationSettings, ParticipantRole
from ..schemas.rpc import (
    ConversationListResult,
    ConversationUpdateResult,
    DirectConversationResult,
    GroupConversationResult,
    ParticipantChangeResult,
    RpcEnvelope,
)
from .state import MessagingState

logger = logging.getLogger(__name__)

EnvelopeT = TypeVar("EnvelopeT", bound=RpcEnvelope)


class ConversationManager:
    """Owns the conversation slice of :class:`MessagingState`.

    Every public method catches remote failures, records an error string on
    the state and returns ``None``/``False``; nothing propagates to callers.
    """

    def __init__(self, store: RemoteStore, state: MessagingState) -> None:
        self._store = store
        self._state = state

    @property
    def state(self) -> MessagingState:
        return self._state

    async def _rpc(
        self,
        name: str,
        params: Mapping[str, Any],
        model: type[EnvelopeT],
        failure: str,
    ) -> EnvelopeT | None:
        try:
            return parse_envelope(model, await self._store.rpc(name, params))
        except RpcError as exc:
            logger.warning("Procedure %s refused: %s", name, exc)
            self._state.set_error(str(exc) or failure)
        except RemoteStoreError:
            logger.exception("Procedure %s failed", name)
            self._state.set_error(failure)
        return None

    def _require_user(self) -> str | None:
        user_id = self._store.current_user_id
        if not user_id:
            self._state.set_error(NOT_AUTHENTICATED)
        return user_id

    async def load_conversations(self) -> list[ConversationRecord]:
        """Reload the caller's conversations, most recent activity first."""

        if not self._require_user():
            return []
        self._state.set_loading(True)
        try:
            result = await self._rpc("fetch_conversations", {}, ConversationListResult, CONVERSATIONS_LOAD_FAILED)
        finally:
            self._state.set_loading(False)
        if result is None:
            return self._state.conversations
        self._state.set_conversations(result.conversations)
        self._state.set_error(None)
        return result.conversations

    async def get_or_create_direct_conversation(self, other_user_id: str) -> str | None:
        """Return the id of the single direct conversation with ``other_user_id``."""

        if not self._require_user():
            return None
        result = await self._rpc(
            "get_or_create_direct_conversation",
            {"other_user_id": other_user_id},
            DirectConversationResult,
            CONVERSATION_CREATE_FAILED,
        )
        if result is None or not result.conversation_id:
            return None
        if result.created:
            logger.info("Started direct conversation %s with %s", result.conversation_id, other_user_id)
        return result.conversation_id

    async def create_group_conversation(
        self,
        name: str,
        participant_ids: Iterable[str],
        avatar_url: str | None = None,
    ) -> str | None:
        if not self._require_user():
            return None
        result = await self._rpc(
            "create_group_conversation",
            {"name": name, "participant_ids": list(participant_ids), "avatar_url": avatar_url},
            GroupConversationResult,
            CONVERSATION_CREATE_FAILED,
        )
        if result is None or not result.conversation_id:
            return None
        await self.load_conversations()
        return result.conversation_id

    async def _update(self, conversation_id: str, values: dict[str, Any]) -> bool:
        if not self._require_user():
            return False
        if not values:
            return True
        result = await self._rpc(
            "update_conversation",
            {"conversation_id": conversation_id, **values},
            ConversationUpdateResult,
            CONVERSATION_UPDATE_FAILED,
        )
        if result is None:
            return False
        await self.load_conversations()
        return True

    async def archive_conversation(self, conversation_id: str) -> bool:
        return await self._update(conversation_id, {"is_archived": True})

    async def update_conversation(
        self,
        conversation_id: str,
        *,
        name: str | None = None,
        avatar_url: str | None = None,
        is_pinned: bool | None = None,
        is_archived: bool | None = None,
    ) -> bool:
        values = {
            key: value
            for key, value in {
                "name": name,
                "avatar_url": avatar_url,
                "is_pinned": is_pinned,
                "is_archived": is_archived,
            }.items()
            if value is not None
        }
        return await self._update(conversation_id, values)

    async def _change_participants(self, name: str, params: Mapping[str, Any]) -> bool:
        if not self._require_user():
            return False
        result = await self._rpc(name, params, ParticipantChangeResult, CONVERSATION_UPDATE_FAILED)
        if result is None:
            return False
        await self.load_conversations()
        return True

    async def leave_conversation(self, conversation_id: str) -> bool:
        return await self._change_participants("leave_conversation", {"conversation_id": conversation_id})

    async def add_participants(self, conversation_id: str, user_ids: Iterable[str]) -> bool:
        return await self._change_participants(
            "add_participants",
            {"conversation_id": conversation_id, "user_ids": list(user_ids)},
        )

    async def remove_participant(self, conversation_id: str, user_id: str) -> bool:
        return await self._change_participants(
            "remove_participant",
            {"conversation_id": conversation_id, "user_id": user_id},
        )

    async def update_participant_role(
        self,
        conversation_id: str,
        user_id: str,
        role: ParticipantRole | str,
    ) -> bool:
        return await self._change_participants(
            "update_participant_role",
            {"conversation_id": conversation_id, "user_id": user_id, "role": str(role)},
        )

    async def get_notification_settings(self, conversation_id: str) -> NotificationSettings | None:
        user_id = self._require_user()
        if not user_id:
            return None
        try:
            rows = await self._store.select(
                "chat_participants",
                columns=["notification_settings"],
                filters=[eq("conversation_id", conversation_id), eq("user_id", user_id)],
                limit=1,
            )
        except RemoteStoreError:
            logger.exception("Failed to load notification settings for %s", conversation_id)
            return None
        if not rows:
            return None
        return NotificationSettings.model_validate(rows[0].get("notification_settings") or {})

    async def update_notification_settings(self, conversation_id: str, settings: NotificationSettings) -> bool:
        user_id = self._require_user()
        if not user_id:
            return False
        try:
            changed = await self._store.update(
                "chat_participants",
                {"notification_settings": settings.model_dump()},
                filters=[eq("conversation_id", conversation_id), eq("user_id", user_id)],
            )
        except RemoteStoreError:
            logger.exception("Failed to update notification settings for %s", conversation_id)
            self._state.set_error(CONVERSATION_UPDATE_FAILED)
            return False
        return bool(changed)


__all__ = ["ConversationManager"]
