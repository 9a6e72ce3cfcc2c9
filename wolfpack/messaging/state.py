"""Observable in-memory state shared by the conversation and message managers."""
from __future__ import annotations

import logging
from typing import Callable, Iterable

from ..schemas.messaging import ConversationRecord, MessageRecord

logger = logging.getLogger(__name__)

Listener = Callable[["MessagingState"], None]


class MessagingState:
    """Holds conversations, the open conversation's messages, a loading flag and an error string.

    Collections are replaced wholesale on every reload; callers never mutate
    the lists in place. Registered listeners run after each change.
    """

    def __init__(self) -> None:
        self._conversations: tuple[ConversationRecord, ...] = ()
        self._messages: tuple[MessageRecord, ...] = ()
        self._loading = False
        self._error: str | None = None
        self._listeners: list[Listener] = []

    @property
    def conversations(self) -> list[ConversationRecord]:
        return list(self._conversations)

    @property
    def messages(self) -> list[MessageRecord]:
        return list(self._messages)

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> str | None:
        return self._error

    def set_conversations(self, conversations: Iterable[ConversationRecord]) -> None:
        self._conversations = tuple(conversations)
        self._notify()

    def set_messages(self, messages: Iterable[MessageRecord]) -> None:
        self._messages = tuple(messages)
        self._notify()

    def set_loading(self, loading: bool) -> None:
        self._loading = loading
        self._notify()

    def set_error(self, error: str | None) -> None:
        self._error = error
        self._notify()

    def get_conversation(self, conversation_id: str) -> ConversationRecord | None:
        return next((item for item in self._conversations if item.id == conversation_id), None)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("State listener failed")


__all__ = ["MessagingState"]
