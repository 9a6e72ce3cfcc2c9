"""Conversation manager behaviour against the SQL-backed store."""
from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from wolfpack.constants import NOT_AUTHENTICATED
from wolfpack.database import SessionLocal
from wolfpack.messaging import ConversationManager, MessageManager, MessagingState
from wolfpack.models import Conversation, Participant
from wolfpack.schemas import NotificationSettings, ParticipantRole


def _manager(store) -> ConversationManager:
    return ConversationManager(store, MessagingState())


@pytest.mark.asyncio
async def test_direct_conversation_is_created_once_under_concurrency(user_factory, store_factory) -> None:
    alice = user_factory("alice")
    bob = user_factory("bob")
    alice_manager = _manager(store_factory(alice))
    bob_manager = _manager(store_factory(bob))

    first, second = await asyncio.gather(
        alice_manager.get_or_create_direct_conversation(bob.id),
        bob_manager.get_or_create_direct_conversation(alice.id),
    )

    assert first is not None
    assert first == second
    with SessionLocal() as session:
        assert session.scalar(select(func.count()).select_from(Conversation)) == 1
        assert session.scalar(select(func.count()).select_from(Participant)) == 2


@pytest.mark.asyncio
async def test_direct_conversation_with_self_is_refused(user_factory, store_factory) -> None:
    alice = user_factory("alice")
    manager = _manager(store_factory(alice))

    assert await manager.get_or_create_direct_conversation(alice.id) is None
    assert manager.state.error


@pytest.mark.asyncio
async def test_signed_out_user_gets_not_authenticated(store_factory) -> None:
    manager = _manager(store_factory(None))

    assert await manager.load_conversations() == []
    assert manager.state.error == NOT_AUTHENTICATED
    assert await manager.get_or_create_direct_conversation("someone") is None


@pytest.mark.asyncio
async def test_conversations_are_ordered_by_latest_message(user_factory, store_factory) -> None:
    alice = user_factory("alice")
    bob = user_factory("bob")
    carol = user_factory("carol")
    store = store_factory(alice)
    manager = _manager(store)
    messages = MessageManager(store, manager.state)

    with_bob = await manager.get_or_create_direct_conversation(bob.id)
    with_carol = await manager.get_or_create_direct_conversation(carol.id)
    assert await messages.send_message(with_carol, "first")
    assert await messages.send_message(with_bob, "second")

    loaded = await manager.load_conversations()

    assert [item.id for item in loaded] == [with_bob, with_carol]
    assert loaded[0].last_message_preview == "second"
    assert manager.state.loading is False
    assert manager.state.error is None


@pytest.mark.asyncio
async def test_archive_reloads_list(user_factory, store_factory) -> None:
    alice = user_factory("alice")
    bob = user_factory("bob")
    manager = _manager(store_factory(alice))
    conversation_id = await manager.get_or_create_direct_conversation(bob.id)

    assert await manager.archive_conversation(conversation_id)

    record = manager.state.get_conversation(conversation_id)
    assert record is not None
    assert record.is_archived is True


@pytest.mark.asyncio
async def test_group_lifecycle(user_factory, store_factory) -> None:
    alice = user_factory("alice")
    bob = user_factory("bob")
    carol = user_factory("carol")
    owner = _manager(store_factory(alice))

    group_id = await owner.create_group_conversation("Pack night", [bob.id])
    assert group_id is not None
    assert await owner.add_participants(group_id, [carol.id])
    assert await owner.update_participant_role(group_id, bob.id, ParticipantRole.ADMIN)

    member = _manager(store_factory(carol))
    assert await member.remove_participant(group_id, bob.id) is False

    assert await owner.leave_conversation(group_id)
    with SessionLocal() as session:
        roles = {
            participant.user_id: (participant.role, participant.is_active)
            for participant in session.scalars(select(Participant).where(Participant.conversation_id == group_id))
        }
        conversation = session.get(Conversation, group_id)
        assert conversation.participant_count == 2
    assert roles[alice.id] == ("member", False)
    assert roles[bob.id] == ("owner", True)


@pytest.mark.asyncio
async def test_update_conversation_and_notification_settings(user_factory, store_factory) -> None:
    alice = user_factory("alice")
    bob = user_factory("bob")
    manager = _manager(store_factory(alice))
    group_id = await manager.create_group_conversation("Regulars", [bob.id])

    assert await manager.update_conversation(group_id, name="Regulars only", is_pinned=True)
    record = manager.state.get_conversation(group_id)
    assert record.name == "Regulars only"
    assert record.is_pinned is True

    assert await manager.update_notification_settings(group_id, NotificationSettings(muted=True))
    settings = await manager.get_notification_settings(group_id)
    assert settings is not None
    assert settings.muted is True


@pytest.mark.asyncio
async def test_outsider_cannot_rename_or_archive(user_factory, store_factory) -> None:
    alice = user_factory("alice")
    bob = user_factory("bob")
    carol = user_factory("carol")
    owner = _manager(store_factory(alice))
    group_id = await owner.create_group_conversation("Regulars", [bob.id])
    outsider = _manager(store_factory(carol))

    assert await outsider.update_conversation(group_id, name="pwned") is False
    assert await outsider.archive_conversation(group_id) is False
    assert outsider.state.error

    with SessionLocal() as session:
        conversation = session.get(Conversation, group_id)
        assert (conversation.name, conversation.is_archived) == ("Regulars", False)


@pytest.mark.asyncio
async def test_only_managers_rename_groups(user_factory, store_factory) -> None:
    alice = user_factory("alice")
    bob = user_factory("bob")
    owner = _manager(store_factory(alice))
    member = _manager(store_factory(bob))
    group_id = await owner.create_group_conversation("Regulars", [bob.id])
    direct_id = await owner.get_or_create_direct_conversation(bob.id)

    assert await member.update_conversation(group_id, name="Bob's table") is False
    assert await member.update_conversation(group_id, is_pinned=True)
    assert await owner.update_conversation(direct_id, name="Just us") is False
    assert await owner.update_conversation(group_id, name="   ") is False

    with SessionLocal() as session:
        conversation = session.get(Conversation, group_id)
        assert (conversation.name, conversation.is_pinned) == ("Regulars", True)
