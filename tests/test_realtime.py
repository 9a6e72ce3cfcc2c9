"""Realtime hub, conversation subscriptions and typing indicators."""
from __future__ import annotations

import asyncio

import pytest

from wolfpack.client import WolfpackClient
from wolfpack.messaging import ConversationManager, ConversationSubscription, MessageManager, MessagingState, TypingIndicator
from wolfpack.remote import ChangeEvent, ChannelClosedError, RealtimeHub, eq
from wolfpack.remote.push import NullPushGateway


async def _direct_conversation(user_factory, store_factory):
    alice = user_factory("alice", "Alice")
    bob = user_factory("bob", "Bob")
    alice_store = store_factory(alice)
    bob_store = store_factory(bob)
    conversation_id = await ConversationManager(alice_store, MessagingState()).get_or_create_direct_conversation(bob.id)
    return alice, bob, alice_store, bob_store, conversation_id


@pytest.mark.asyncio
async def test_hub_filters_events_and_isolates_failing_callbacks() -> None:
    hub = RealtimeHub()
    received: list[ChangeEvent] = []

    def broken(event: ChangeEvent) -> None:
        raise RuntimeError("listener bug")

    await hub.subscribe("chat_messages", broken)
    await hub.subscribe("chat_messages", received.append, filters=[eq("conversation_id", "c1")])

    await hub.publish(ChangeEvent("chat_messages", "INSERT", new={"conversation_id": "c1", "content": "hi"}))
    await hub.publish(ChangeEvent("chat_messages", "INSERT", new={"conversation_id": "c2", "content": "nope"}))
    await hub.publish(ChangeEvent("chat_messages", "UPDATE", new={"conversation_id": "c1", "content": "edit"}))

    assert [event.record["content"] for event in received] == ["hi"]


@pytest.mark.asyncio
async def test_hub_rejects_unknown_event_types() -> None:
    with pytest.raises(ValueError):
        await RealtimeHub().subscribe("chat_messages", print, events=("TRUNCATE",))


@pytest.mark.asyncio
async def test_subscription_reloads_on_new_message(user_factory, store_factory) -> None:
    _, _, alice_store, bob_store, conversation_id = await _direct_conversation(user_factory, store_factory)
    receiver = MessageManager(bob_store, MessagingState())
    reloaded = asyncio.Event()

    async def on_insert(event: ChangeEvent) -> None:
        await receiver.load_messages(conversation_id)
        reloaded.set()

    async with ConversationSubscription(bob_store) as subscription:
        assert await subscription.watch(conversation_id, on_insert)
        assert await MessageManager(alice_store, MessagingState()).send_message(conversation_id, "hi")
        await asyncio.wait_for(reloaded.wait(), timeout=2)

    assert [item.content for item in receiver.state.messages] == ["hi"]


@pytest.mark.asyncio
async def test_switching_conversations_keeps_one_subscription(hub, store_factory, user_factory) -> None:
    store = store_factory(user_factory("alice"))
    subscription = ConversationSubscription(store)

    await subscription.watch("first", lambda event: None)
    await subscription.watch("first", lambda event: None)
    assert hub.subscription_count("chat_messages") == 1

    await subscription.watch("second", lambda event: None)
    assert hub.subscription_count("chat_messages") == 1
    assert subscription.conversation_id == "second"

    await subscription.close()
    assert hub.subscription_count("chat_messages") == 0
    assert subscription.active is False


@pytest.mark.asyncio
async def test_typing_expires_without_follow_up(store_factory, user_factory) -> None:
    alice_store = store_factory(user_factory("alice"))
    bob_store = store_factory(user_factory("bob"))
    sender = await TypingIndicator(alice_store, "conv-1", timeout=0.1, debounce=0).start()
    receiver = await TypingIndicator(bob_store, "conv-1", timeout=0.1, debounce=0).start()

    assert await sender.send_typing("alice-id", "Alice", True)
    assert [user.user_name for user in receiver.typing_users] == ["Alice"]
    assert sender.typing_users == []

    await asyncio.sleep(0.3)
    assert receiver.typing_users == []

    await sender.close()
    await receiver.close()


@pytest.mark.asyncio
async def test_typing_stop_is_immediate_and_timer_resets(store_factory, user_factory) -> None:
    alice_store = store_factory(user_factory("alice"))
    bob_store = store_factory(user_factory("bob"))
    sender = await TypingIndicator(alice_store, "conv-1", timeout=0.3, debounce=0).start()
    receiver = await TypingIndicator(bob_store, "conv-1", timeout=0.3, debounce=0).start()

    await sender.send_typing("alice-id", "Alice", True)
    await asyncio.sleep(0.2)
    await sender.send_typing("alice-id", "Alice", True)
    await asyncio.sleep(0.2)
    assert len(receiver.typing_users) == 1

    assert await sender.send_typing("alice-id", "Alice", False)
    assert receiver.typing_users == []

    await sender.close()
    await receiver.close()


@pytest.mark.asyncio
async def test_typing_debounce_and_close_announces_stop(store_factory, user_factory) -> None:
    alice_store = store_factory(user_factory("alice"))
    bob_store = store_factory(user_factory("bob"))
    seen: list[int] = []
    sender = await TypingIndicator(alice_store, "conv-1", timeout=5, debounce=5).start()
    receiver = await TypingIndicator(
        bob_store, "conv-1", timeout=5, debounce=5, on_change=lambda users: seen.append(len(users))
    ).start()

    assert await sender.send_typing("alice-id", "Alice", True)
    assert await sender.send_typing("alice-id", "Alice", True) is False

    await sender.close()
    assert receiver.typing_users == []
    assert seen == [1, 0]
    with pytest.raises(ChannelClosedError):
        channel = alice_store.channel("typing:conv-1")
        await channel.send("typing", {})

    await receiver.close()


@pytest.mark.asyncio
async def test_typing_expiry_listener_is_tracked_until_close(store_factory, user_factory) -> None:
    alice_store = store_factory(user_factory("alice"))
    bob_store = store_factory(user_factory("bob"))
    gate = asyncio.Event()
    seen: list[int] = []

    async def listener(users) -> None:
        seen.append(len(users))
        if not users:
            await gate.wait()

    sender = await TypingIndicator(alice_store, "conv-1", timeout=0.1, debounce=0).start()
    receiver = await TypingIndicator(bob_store, "conv-1", timeout=0.1, debounce=0, on_change=listener).start()

    assert await sender.send_typing("alice-id", "Alice", True)
    await asyncio.sleep(0.3)
    assert seen == [1, 0]
    assert len(receiver._pending) == 1

    await receiver.close()
    assert receiver._pending == set()
    await sender.close()


@pytest.mark.asyncio
async def test_client_open_conversation_wires_feed_and_typing(user_factory, store_factory, hub) -> None:
    _, _, alice_store, bob_store, conversation_id = await _direct_conversation(user_factory, store_factory)
    client = WolfpackClient(bob_store, push=NullPushGateway())

    async with client:
        assert await client.open_conversation(conversation_id)
        assert client.typing is not None
        assert hub.member_count(f"typing:{conversation_id}") == 1

        await MessageManager(alice_store, MessagingState()).send_message(conversation_id, "you there?")
        assert [item.content for item in client.state.messages] == ["you there?"]

    assert hub.subscription_count("chat_messages") == 0
    assert hub.member_count(f"typing:{conversation_id}") == 0
