"""Row-level access rules for direct table access through the SQL store.

Stored procedures run with full access and make their own checks. These
rules cover ``select``, ``count``, ``insert``, ``update``, ``upsert`` and
``delete`` calls issued by a signed-in client. A table without an entry here
cannot be touched directly at all.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

from sqlalchemy import Table, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from ..models import Message, Participant

Visibility = Callable[[Table, str], ColumnElement[bool]]
RowCheck = Callable[[Session, Mapping[str, Any], str], bool]


@dataclass(frozen=True)
class TablePolicy:
    """``read`` and ``write`` narrow the rows a caller sees or changes.

    ``read=None`` makes every row readable; ``write=None`` forbids direct
    updates and deletes. New rows must pass ``insert_check``; without one the
    table only changes through procedures.
    """

    read: Visibility | None = None
    write: Visibility | None = None
    updatable: frozenset[str] = frozenset()
    insert_check: RowCheck | None = None
    deletable: bool = False


def _member_conversations(user_id: str) -> Any:
    return select(Participant.conversation_id).where(
        Participant.user_id == user_id,
        Participant.is_active.is_(True),
    )


def _own(column: str) -> Visibility:
    def visibility(table: Table, user_id: str) -> ColumnElement[bool]:
        return table.c[column] == user_id

    return visibility


def _in_member_conversation(column: str) -> Visibility:
    def visibility(table: Table, user_id: str) -> ColumnElement[bool]:
        return table.c[column].in_(_member_conversations(user_id))

    return visibility


def _on_visible_message(table: Table, user_id: str) -> ColumnElement[bool]:
    visible = select(Message.id).where(Message.conversation_id.in_(_member_conversations(user_id)))
    return table.c.message_id.in_(visible)


def _blocks_involving(table: Table, user_id: str) -> ColumnElement[bool]:
    return or_(table.c.blocker_id == user_id, table.c.blocked_id == user_id)


def _acting_as(column: str) -> RowCheck:
    def check(session: Session, row: Mapping[str, Any], user_id: str) -> bool:
        return row.get(column) == user_id

    return check


def _own_row_on_visible_message(session: Session, row: Mapping[str, Any], user_id: str) -> bool:
    if row.get("user_id") != user_id:
        return False
    message = session.get(Message, row.get("message_id"))
    if message is None:
        return False
    membership = session.scalar(
        select(Participant.user_id).where(
            Participant.conversation_id == message.conversation_id,
            Participant.user_id == user_id,
            Participant.is_active.is_(True),
        )
    )
    return membership is not None


PUBLIC = TablePolicy()

POLICIES: dict[str, TablePolicy] = {
    "users": PUBLIC,
    "posts": PUBLIC,
    "post_likes": PUBLIC,
    "social_follows": PUBLIC,
    "social_blocks": TablePolicy(read=_blocks_involving),
    "chat_conversations": TablePolicy(read=_in_member_conversation("id")),
    "chat_participants": TablePolicy(
        read=_in_member_conversation("conversation_id"),
        write=_own("user_id"),
        updatable=frozenset({"notification_settings"}),
    ),
    "chat_messages": TablePolicy(read=_in_member_conversation("conversation_id")),
    "chat_message_receipts": TablePolicy(
        read=_on_visible_message,
        write=_own("user_id"),
        updatable=frozenset({"read_at"}),
        insert_check=_own_row_on_visible_message,
    ),
    "chat_message_reactions": TablePolicy(
        read=_on_visible_message,
        write=_own("user_id"),
        updatable=frozenset({"reaction", "created_at"}),
        insert_check=_own_row_on_visible_message,
        deletable=True,
    ),
    "notifications": TablePolicy(
        read=_own("recipient_id"),
        write=_own("recipient_id"),
        updatable=frozenset({"is_read", "read_at", "is_archived", "archived_at"}),
        insert_check=_acting_as("actor_id"),
    ),
    "push_tokens": TablePolicy(
        read=_own("user_id"),
        write=_own("user_id"),
        updatable=frozenset({"is_active", "platform", "device_info"}),
        deletable=True,
    ),
    "notification_preferences": TablePolicy(
        read=_own("user_id"),
        write=_own("user_id"),
        updatable=frozenset(
            {"push_enabled", "muted_types", "quiet_hours_start", "quiet_hours_end", "max_per_hour", "updated_at"}
        ),
        insert_check=_acting_as("user_id"),
    ),
}


def policy_for(table: str) -> TablePolicy | None:
    return POLICIES.get(table)


__all__ = ["POLICIES", "RowCheck", "TablePolicy", "Visibility", "policy_for"]
