"""Ephemeral "is typing" signals for one conversation."""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from ..config import get_settings
from ..models.base import utcnow
from ..remote.base import RemoteStore, RemoteStoreError
from ..remote.realtime import BroadcastChannel

logger = logging.getLogger(__name__)

TYPING_EVENT = "typing"


@dataclass(frozen=True, slots=True)
class TypingUser:
    user_id: str
    user_name: str
    last_seen: datetime


class TypingIndicator:
    """Broadcasts the local user's typing state and tracks remote typers.

    Nothing is persisted. Every remote typer has an expiry timer that is
    reset by each "typing" event and cancelled by a "stopped" event, so a
    lost "stopped" event only delays removal until the timeout.
    """

    def __init__(
        self,
        store: RemoteStore,
        conversation_id: str,
        *,
        timeout: float | None = None,
        debounce: float | None = None,
        on_change: Callable[[list[TypingUser]], Any] | None = None,
    ) -> None:
        settings = get_settings()
        self._store = store
        self.conversation_id = conversation_id
        self._timeout = timeout if timeout is not None else settings.typing_timeout_seconds
        self._debounce = debounce if debounce is not None else settings.typing_debounce_seconds
        self._on_change = on_change
        self._channel: BroadcastChannel | None = None
        self._typing: dict[str, TypingUser] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._pending: set[asyncio.Task[None]] = set()
        self._announced: tuple[str, str] | None = None
        self._last_sent: float | None = None

    @property
    def topic(self) -> str:
        return f"typing:{self.conversation_id}"

    @property
    def typing_users(self) -> list[TypingUser]:
        return sorted(self._typing.values(), key=lambda item: item.last_seen)

    async def start(self) -> "TypingIndicator":
        if self._channel is None:
            channel = self._store.channel(self.topic)
            channel.on(TYPING_EVENT, self._receive)
            await channel.subscribe()
            self._channel = channel
        return self

    async def send_typing(self, user_id: str, user_name: str, is_typing: bool) -> bool:
        """Announce a typing change; repeated "typing" calls inside the debounce window are dropped."""

        if self._channel is None:
            return False
        loop = asyncio.get_running_loop()
        if is_typing:
            if (
                self._announced is not None
                and self._last_sent is not None
                and loop.time() - self._last_sent < self._debounce
            ):
                return False
        elif self._announced is None:
            return False

        try:
            await self._channel.send(
                TYPING_EVENT,
                {"user_id": user_id, "user_name": user_name, "is_typing": is_typing},
            )
        except RemoteStoreError:
            logger.warning("Typing signal for %s could not be sent", self.topic)
            return False
        self._announced = (user_id, user_name) if is_typing else None
        self._last_sent = loop.time() if is_typing else None
        return True

    async def _receive(self, payload: dict[str, Any]) -> None:
        user_id = payload.get("user_id")
        if not user_id:
            return
        if payload.get("is_typing"):
            self._typing[user_id] = TypingUser(
                user_id=user_id,
                user_name=payload.get("user_name") or "Someone",
                last_seen=utcnow(),
            )
            self._cancel_timer(user_id)
            loop = asyncio.get_running_loop()
            self._timers[user_id] = loop.call_later(self._timeout, self._expire, user_id)
        else:
            self._cancel_timer(user_id)
            if self._typing.pop(user_id, None) is None:
                return
        await self._changed()

    def _expire(self, user_id: str) -> None:
        self._timers.pop(user_id, None)
        if self._typing.pop(user_id, None) is not None:
            task = asyncio.get_running_loop().create_task(self._changed())
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    def _cancel_timer(self, user_id: str) -> None:
        handle = self._timers.pop(user_id, None)
        if handle is not None:
            handle.cancel()

    async def _changed(self) -> None:
        if self._on_change is None:
            return
        try:
            result = self._on_change(self.typing_users)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Typing listener failed for %s", self.topic)

    async def close(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._typing.clear()
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        if self._announced is not None:
            user_id, user_name = self._announced
            await self.send_typing(user_id, user_name, False)
        channel, self._channel = self._channel, None
        if channel is not None:
            await channel.close()

    async def __aenter__(self) -> "TypingIndicator":
        return await self.start()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


__all__ = ["TypingIndicator", "TypingUser", "TYPING_EVENT"]
