"""Message manager: sending, paging, read cursors, reactions and fan-out."""
from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from wolfpack.constants import MEDIA_NOT_CONFIGURED, MEDIA_UPLOAD_FAILED, NOT_AUTHENTICATED
from wolfpack.database import SessionLocal
from wolfpack.messaging import ConversationManager, MessageManager, MessagingState, media_type_for
from wolfpack.models import Message, MessageReceipt, Notification, Participant
from wolfpack.models.base import ensure_utc, utcnow
from wolfpack.notifications import NotificationDispatcher
from wolfpack.remote.storage import ObjectStorage, StorageUploadError, StoredObject
from wolfpack.schemas import MediaType, NotificationSettings


class RecordingStorage(ObjectStorage):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.uploads: list[tuple[str | None, str | None, str]] = []

    async def upload(self, data, *, filename, content_type=None, folder="uploads"):
        if self.fail:
            raise StorageUploadError("bucket unavailable")
        self.uploads.append((filename, content_type, folder))
        return StoredObject(
            url=f"https://cdn.example.com/{folder}/{filename}",
            key=f"{folder}/{filename}",
            bucket="wolfpack",
            content_type=content_type or "application/octet-stream",
            size=len(data),
        )


class ExplodingDispatcher(NotificationDispatcher):
    async def send_bulk_notifications(self, payloads):
        raise RuntimeError("notification backend down")


@pytest.fixture
def direct_pair(user_factory, store_factory):
    async def _setup():
        alice = user_factory("alice", "Alice")
        bob = user_factory("bob", "Bob")
        alice_store = store_factory(alice)
        bob_store = store_factory(bob)
        conversation_id = await ConversationManager(alice_store, MessagingState()).get_or_create_direct_conversation(
            bob.id
        )
        return alice, bob, alice_store, bob_store, conversation_id

    return _setup


def _message_count() -> int:
    with SessionLocal() as session:
        return int(session.scalar(select(func.count()).select_from(Message)) or 0)


@pytest.mark.asyncio
async def test_send_then_receive(direct_pair) -> None:
    alice, bob, alice_store, bob_store, conversation_id = await direct_pair()
    sender = MessageManager(alice_store, MessagingState())
    receiver = MessageManager(bob_store, MessagingState())

    assert await sender.send_message(conversation_id, "hi")
    assert [item.content for item in sender.state.messages] == ["hi"]

    loaded = await receiver.load_messages(conversation_id)

    assert len(loaded) == 1
    assert loaded[0].content == "hi"
    assert loaded[0].sender_id == alice.id
    assert loaded[0].conversation_id == conversation_id
    assert loaded[0].sender_display_name == "Alice"


@pytest.mark.asyncio
async def test_blank_message_is_rejected_without_a_write(direct_pair) -> None:
    _, _, alice_store, _, conversation_id = await direct_pair()
    manager = MessageManager(alice_store, MessagingState())

    assert await manager.send_message(conversation_id, "   ") is False
    assert _message_count() == 0


@pytest.mark.asyncio
async def test_send_requires_a_signed_in_user(direct_pair, store_factory) -> None:
    _, _, _, _, conversation_id = await direct_pair()
    manager = MessageManager(store_factory(None), MessagingState())

    assert await manager.send_message(conversation_id, "hello") is False
    assert manager.state.error == NOT_AUTHENTICATED
    assert _message_count() == 0


@pytest.mark.asyncio
async def test_outsider_cannot_post(direct_pair, user_factory, store_factory) -> None:
    _, _, _, _, conversation_id = await direct_pair()
    mallory = user_factory("mallory")
    manager = MessageManager(store_factory(mallory), MessagingState())

    assert await manager.send_message(conversation_id, "let me in") is False
    assert manager.state.error
    assert _message_count() == 0


@pytest.mark.asyncio
async def test_backward_pagination(direct_pair) -> None:
    _, _, alice_store, _, conversation_id = await direct_pair()
    manager = MessageManager(alice_store, MessagingState())
    for index in range(5):
        assert await manager.send_message(conversation_id, f"message {index}")

    latest = await manager.load_messages(conversation_id, limit=2)
    assert [item.content for item in latest] == ["message 3", "message 4"]
    assert manager.has_more is True

    older = await manager.load_messages(conversation_id, limit=10, before=latest[0].id)
    assert [item.content for item in older] == ["message 0", "message 1", "message 2"]
    assert manager.has_more is False


@pytest.mark.asyncio
async def test_fan_out_notifies_other_participants(direct_pair) -> None:
    alice, bob, alice_store, _, conversation_id = await direct_pair()
    manager = MessageManager(alice_store, MessagingState(), dispatcher=NotificationDispatcher(alice_store))

    assert await manager.send_message(conversation_id, "see you at the bar tonight")

    with SessionLocal() as session:
        rows = session.scalars(select(Notification)).all()
    assert len(rows) == 1
    assert rows[0].recipient_id == bob.id
    assert rows[0].actor_id == alice.id
    assert rows[0].title == "New message from Alice"
    assert rows[0].action_url == f"/messages/conversation/{conversation_id}"


@pytest.mark.asyncio
async def test_muted_participants_are_skipped(direct_pair) -> None:
    _, bob, alice_store, bob_store, conversation_id = await direct_pair()
    await ConversationManager(bob_store, MessagingState()).update_notification_settings(
        conversation_id, NotificationSettings(muted=True)
    )
    manager = MessageManager(alice_store, MessagingState(), dispatcher=NotificationDispatcher(alice_store))

    assert await manager.send_message(conversation_id, "quiet please")

    with SessionLocal() as session:
        assert session.scalar(select(func.count()).select_from(Notification)) == 0


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_send(direct_pair) -> None:
    _, _, alice_store, _, conversation_id = await direct_pair()
    manager = MessageManager(alice_store, MessagingState(), dispatcher=ExplodingDispatcher(alice_store))

    assert await manager.send_message(conversation_id, "still delivered")
    assert _message_count() == 1
    assert manager.state.messages[-1].content == "still delivered"


@pytest.mark.asyncio
async def test_read_cursor_never_moves_backwards(direct_pair) -> None:
    alice, _, alice_store, _, conversation_id = await direct_pair()
    manager = MessageManager(alice_store, MessagingState())
    later = utcnow()
    earlier = later - timedelta(hours=1)

    assert await manager.mark_conversation_as_read(conversation_id, read_at=later)
    assert await manager.mark_conversation_as_read(conversation_id, read_at=earlier)

    with SessionLocal() as session:
        participant = session.get(Participant, (conversation_id, alice.id))
        assert ensure_utc(participant.last_read_at) == later


@pytest.mark.asyncio
async def test_mark_conversation_read_clears_local_unread(direct_pair) -> None:
    _, _, alice_store, bob_store, conversation_id = await direct_pair()
    await MessageManager(alice_store, MessagingState()).send_message(conversation_id, "ping")
    state = MessagingState()
    conversations = ConversationManager(bob_store, state)
    messages = MessageManager(bob_store, state)

    loaded = await conversations.load_conversations()
    assert loaded[0].unread_count == 1

    assert await messages.mark_conversation_as_read(conversation_id)
    assert state.get_conversation(conversation_id).unread_count == 0
    reloaded = await conversations.load_conversations()
    assert reloaded[0].unread_count == 0


@pytest.mark.asyncio
async def test_message_receipt_is_idempotent(direct_pair) -> None:
    _, bob, alice_store, bob_store, conversation_id = await direct_pair()
    sender = MessageManager(alice_store, MessagingState())
    await sender.send_message(conversation_id, "read me")
    message_id = sender.state.messages[-1].id
    reader = MessageManager(bob_store, MessagingState())

    assert await reader.mark_message_as_read(message_id)
    with SessionLocal() as session:
        first_read = session.get(MessageReceipt, (message_id, bob.id)).read_at
    assert await reader.mark_message_as_read(message_id)

    with SessionLocal() as session:
        receipts = session.scalars(select(MessageReceipt)).all()
    assert len(receipts) == 1
    assert receipts[0].read_at == first_read


@pytest.mark.asyncio
async def test_reaction_replaces_previous_one(direct_pair) -> None:
    _, bob, alice_store, bob_store, conversation_id = await direct_pair()
    await MessageManager(alice_store, MessagingState()).send_message(conversation_id, "cheers")
    manager = MessageManager(bob_store, MessagingState())
    messages = await manager.load_messages(conversation_id)
    message_id = messages[0].id

    assert await manager.add_reaction(message_id, "🍺")
    assert await manager.add_reaction(message_id, "🔥")

    reactions = manager.state.messages[0].reactions
    assert [(item.user_id, item.reaction) for item in reactions] == [(bob.id, "🔥")]
    reloaded = await manager.load_messages(conversation_id)
    assert [item.reaction for item in reloaded[0].reactions] == ["🔥"]


@pytest.mark.asyncio
async def test_unsupported_operations_return_false(direct_pair) -> None:
    _, _, alice_store, _, conversation_id = await direct_pair()
    manager = MessageManager(alice_store, MessagingState())
    await manager.send_message(conversation_id, "original")
    before = manager.state.messages

    assert await manager.edit_message(before[0].id, "changed") is False
    assert await manager.delete_message(before[0].id) is False
    assert await manager.remove_reaction(before[0].id) is False
    assert manager.state.messages == before


@pytest.mark.asyncio
async def test_media_message_uploads_then_sends(direct_pair) -> None:
    _, _, alice_store, _, conversation_id = await direct_pair()
    storage = RecordingStorage()
    manager = MessageManager(alice_store, MessagingState(), storage=storage)

    assert await manager.send_media_message(conversation_id, b"\x89PNG", "photo.png", "image/png")

    assert storage.uploads == [("photo.png", "image/png", f"messages/{conversation_id}")]
    sent = manager.state.messages[-1]
    assert sent.media_type == MediaType.IMAGE
    assert sent.media_url.endswith("photo.png")
    assert sent.content == ""


@pytest.mark.asyncio
async def test_media_upload_failure_surfaces_error(direct_pair) -> None:
    _, _, alice_store, _, conversation_id = await direct_pair()
    failing = MessageManager(alice_store, MessagingState(), storage=RecordingStorage(fail=True))
    unconfigured = MessageManager(alice_store, MessagingState())

    assert await failing.send_media_message(conversation_id, b"data", "clip.mp4", "video/mp4") is False
    assert failing.state.error == MEDIA_UPLOAD_FAILED
    assert await unconfigured.send_media_message(conversation_id, b"data", "clip.mp4", "video/mp4") is False
    assert unconfigured.state.error == MEDIA_NOT_CONFIGURED
    assert _message_count() == 0


def test_media_type_mapping() -> None:
    assert media_type_for("image/gif") == MediaType.GIF
    assert media_type_for("image/jpeg") == MediaType.IMAGE
    assert media_type_for("video/mp4") == MediaType.VIDEO
    assert media_type_for("audio/ogg") == MediaType.AUDIO
    assert media_type_for(None) == MediaType.FILE
