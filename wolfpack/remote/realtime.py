"""In-process change feed and broadcast topics for realtime delivery."""
from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Sequence

from .base import RemoteStoreError
from .filters import Filter, matches_all

logger = logging.getLogger(__name__)

EVENT_TYPES = frozenset({"INSERT", "UPDATE", "DELETE"})

ChangeCallback = Callable[["ChangeEvent"], "Awaitable[None] | None"]
BroadcastHandler = Callable[[dict[str, Any]], "Awaitable[None] | None"]


class ChannelClosedError(RemoteStoreError):
    """Raised when sending on a broadcast channel that is not joined."""


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    table: str
    event_type: str
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None

    @property
    def record(self) -> dict[str, Any]:
        if self.new is not None:
            return self.new
        return self.old or {}

    def to_payload(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "eventType": self.event_type,
            "new": self.new,
            "old": self.old,
        }


async def _invoke(callback: Callable[[Any], Any], argument: Any) -> None:
    result = callback(argument)
    if inspect.isawaitable(result):
        await result


@dataclass(eq=False)
class Subscription:
    """A filtered interest in row changes of one table."""

    hub: "RealtimeHub"
    table: str
    callback: ChangeCallback
    events: frozenset[str]
    filters: tuple[Filter, ...] = ()
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    active: bool = True

    def accepts(self, event: ChangeEvent) -> bool:
        if not self.active or event.table != self.table:
            return False
        if event.event_type not in self.events:
            return False
        return matches_all(event.record, self.filters)

    async def unsubscribe(self) -> None:
        await self.hub.unsubscribe(self)


class BroadcastChannel:
    """Named topic carrying ephemeral payloads between clients.

    Handlers are registered per event name with :meth:`on`. By default a
    channel does not receive its own broadcasts.
    """

    def __init__(self, hub: "RealtimeHub", topic: str, *, receive_own: bool = False) -> None:
        self.hub = hub
        self.topic = topic
        self.receive_own = receive_own
        self._handlers: dict[str, list[BroadcastHandler]] = {}
        self._joined = False

    @property
    def joined(self) -> bool:
        return self._joined

    def on(self, event: str, handler: BroadcastHandler) -> "BroadcastChannel":
        self._handlers.setdefault(event, []).append(handler)
        return self

    async def subscribe(self) -> "BroadcastChannel":
        if not self._joined:
            await self.hub._join(self)
            self._joined = True
        return self

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        if not self._joined:
            raise ChannelClosedError(f"Channel {self.topic} is not joined", code="CHANNEL_CLOSED")
        await self.hub._broadcast(self, event, payload)

    async def close(self) -> None:
        if self._joined:
            await self.hub._leave(self)
        self._joined = False
        self._handlers.clear()

    async def _deliver(self, event: str, payload: dict[str, Any]) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                await _invoke(handler, dict(payload))
            except Exception:
                logger.exception("Broadcast handler failed on %s/%s", self.topic, event)


class RealtimeHub:
    """Fan out committed row changes and topic broadcasts to subscribers."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, set[Subscription]] = {}
        self._channels: dict[str, set[BroadcastChannel]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        events: Iterable[str] = ("INSERT",),
        filters: Sequence[Filter] = (),
    ) -> Subscription:
        wanted = frozenset(EVENT_TYPES if "*" in events else (item.upper() for item in events))
        unknown = wanted - EVENT_TYPES
        if unknown:
            raise ValueError(f"Unsupported change events: {sorted(unknown)}")
        subscription = Subscription(self, table, callback, wanted, tuple(filters))
        async with self._lock:
            self._subscriptions.setdefault(table, set()).add(subscription)
        logger.debug("Subscribed %s to %s %s", subscription.id, table, sorted(wanted))
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        subscription.active = False
        async with self._lock:
            group = self._subscriptions.get(subscription.table)
            if group is None:
                return
            group.discard(subscription)
            if not group:
                self._subscriptions.pop(subscription.table, None)

    async def publish(self, event: ChangeEvent) -> None:
        async with self._lock:
            targets = list(self._subscriptions.get(event.table, ()))
        for subscription in targets:
            if not subscription.accepts(event):
                continue
            try:
                await _invoke(subscription.callback, event)
            except Exception:
                logger.exception("Change callback %s failed for %s", subscription.id, event.table)

    async def publish_many(self, events: Iterable[ChangeEvent]) -> None:
        for event in events:
            await self.publish(event)

    def channel(self, topic: str, *, receive_own: bool = False) -> BroadcastChannel:
        return BroadcastChannel(self, topic, receive_own=receive_own)

    def subscription_count(self, table: str | None = None) -> int:
        if table is not None:
            return len(self._subscriptions.get(table, ()))
        return sum(len(group) for group in self._subscriptions.values())

    def member_count(self, topic: str) -> int:
        return len(self._channels.get(topic, ()))

    async def _join(self, channel: BroadcastChannel) -> None:
        async with self._lock:
            self._channels.setdefault(channel.topic, set()).add(channel)

    async def _leave(self, channel: BroadcastChannel) -> None:
        async with self._lock:
            group = self._channels.get(channel.topic)
            if group is None:
                return
            group.discard(channel)
            if not group:
                self._channels.pop(channel.topic, None)

    async def _broadcast(self, sender: BroadcastChannel, event: str, payload: dict[str, Any]) -> None:
        async with self._lock:
            targets = list(self._channels.get(sender.topic, ()))
        for member in targets:
            if member is sender and not sender.receive_own:
                continue
            await member._deliver(event, payload)


realtime_hub = RealtimeHub()


__all__ = [
    "ChangeEvent",
    "ChangeCallback",
    "BroadcastHandler",
    "Subscription",
    "BroadcastChannel",
    "ChannelClosedError",
    "RealtimeHub",
    "realtime_hub",
]
