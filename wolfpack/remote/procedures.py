"""Atomic stored procedures executed by the SQL-backed remote store.

Each procedure runs inside a single database transaction and answers the
``{"success": bool, "error": str | None, ...}`` envelope the client core
expects. Refusals raise :class:`ProcedureError`, which rolls the transaction
back and becomes a ``success: false`` envelope. Row changes are collected on
the :class:`ProcedureContext` and published to the realtime hub only after
the transaction commits.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import (
    Block,
    Conversation,
    Follow,
    Message,
    Notification,
    Participant,
    Post,
    PostLike,
    PushToken,
    User,
    direct_key_for,
)
from ..models.base import ensure_utc, row_to_dict, utcnow
from .realtime import ChangeEvent

logger = logging.getLogger(__name__)

PREVIEW_LIMIT = 100
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200
MANAGER_ROLES = frozenset({"owner", "admin"})
SENDABLE_MESSAGE_TYPES = frozenset({"text", "image", "system"})
MEDIA_TYPES = frozenset({"image", "video", "audio", "file", "gif"})
CONVERSATION_FIELDS = ("name", "avatar_url", "is_pinned", "is_archived")


class ProcedureError(Exception):
    """Refusal reported back to the caller as a failed envelope."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass
class ProcedureContext:
    session: Session
    user_id: str | None
    events: list[ChangeEvent] = field(default_factory=list)

    def require_user(self) -> str:
        if not self.user_id:
            raise ProcedureError("Not authenticated", "UNAUTHENTICATED")
        return self.user_id

    def emit(
        self,
        table: str,
        event_type: str,
        new: dict[str, Any] | None = None,
        old: dict[str, Any] | None = None,
    ) -> None:
        self.events.append(ChangeEvent(table, event_type, new, old))


Procedure = Callable[[ProcedureContext, Mapping[str, Any]], dict[str, Any]]

PROCEDURES: dict[str, Procedure] = {}


def procedure(name: str) -> Callable[[Procedure], Procedure]:
    """Register a function as a named stored procedure."""

    def decorator(func: Procedure) -> Procedure:
        PROCEDURES[name] = func
        return func

    return decorator


def run_procedure(
    session: Session,
    name: str,
    user_id: str | None,
    params: Mapping[str, Any],
) -> tuple[dict[str, Any], list[ChangeEvent]]:
    """Execute one procedure atomically and return its envelope plus committed changes."""

    handler = PROCEDURES.get(name)
    if handler is None:
        return {"success": False, "error": f"Unknown procedure: {name}", "code": "UNKNOWN_PROCEDURE"}, []

    context = ProcedureContext(session, user_id)
    try:
        payload = handler(context, params)
        session.commit()
    except ProcedureError as exc:
        session.rollback()
        logger.info("Procedure %s refused for %s: %s", name, user_id, exc.code)
        return {"success": False, "error": exc.message, "code": exc.code}, []
    except SQLAlchemyError:
        session.rollback()
        raise
    return {"success": True, "error": None, **payload}, context.events


# ---------------------------------------------------------------------------
# helpers


def _param(params: Mapping[str, Any], key: str) -> str:
    value = params.get(key)
    if value is None or str(value).strip() == "":
        raise ProcedureError(f"Missing parameter: {key}", "INVALID_PARAMS")
    return str(value)


def _limit(value: Any, default: int = DEFAULT_PAGE_SIZE) -> int:
    try:
        limit = int(value) if value is not None else default
    except (TypeError, ValueError) as exc:
        raise ProcedureError("limit must be an integer", "INVALID_PARAMS") from exc
    return max(1, min(limit, MAX_PAGE_SIZE))


def _as_datetime(value: Any) -> datetime:
    if value is None:
        return utcnow()
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ProcedureError("Invalid timestamp", "INVALID_PARAMS") from exc
    if not isinstance(value, datetime):
        raise ProcedureError("Invalid timestamp", "INVALID_PARAMS")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _unique_ids(values: Iterable[Any] | None, *, exclude: str | None = None) -> list[str]:
    ordered = dict.fromkeys(str(item) for item in (values or ()) if item)
    ordered.pop(exclude, None)
    return list(ordered)


def _display_name(user: User | None) -> str | None:
    if user is None:
        return None
    return user.display_name or user.username


def _require_existing_user(session: Session, user_id: str) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise ProcedureError("User not found", "NOT_FOUND")
    return user


def is_blocked(session: Session, first_user_id: str, second_user_id: str) -> bool:
    """True when either user has blocked the other."""

    statement = (
        select(Block.blocker_id)
        .where(
            or_(
                and_(Block.blocker_id == first_user_id, Block.blocked_id == second_user_id),
                and_(Block.blocker_id == second_user_id, Block.blocked_id == first_user_id),
            )
        )
        .limit(1)
    )
    return session.scalar(statement) is not None


def _active_participant(session: Session, conversation_id: str, user_id: str) -> Participant | None:
    return session.scalar(
        select(Participant).where(
            Participant.conversation_id == conversation_id,
            Participant.user_id == user_id,
            Participant.is_active.is_(True),
        )
    )


def _require_participant(ctx: ProcedureContext, conversation_id: str) -> Participant:
    user_id = ctx.require_user()
    participant = _active_participant(ctx.session, conversation_id, user_id)
    if participant is None:
        raise ProcedureError("You are not a participant in this conversation", "NOT_PARTICIPANT")
    return participant


def _require_manager(participant: Participant) -> None:
    if participant.role not in MANAGER_ROLES:
        raise ProcedureError("Only group owners and admins can do that", "FORBIDDEN")


def _require_group(session: Session, conversation_id: str) -> Conversation:
    conversation = session.get(Conversation, conversation_id)
    if conversation is None:
        raise ProcedureError("Conversation not found", "NOT_FOUND")
    if conversation.conversation_type != "group":
        raise ProcedureError("Direct conversations have fixed participants", "NOT_GROUP")
    return conversation


def _recount_participants(ctx: ProcedureContext, conversation: Conversation) -> int:
    ctx.session.flush()
    total = ctx.session.scalar(
        select(func.count())
        .select_from(Participant)
        .where(Participant.conversation_id == conversation.id, Participant.is_active.is_(True))
    )
    conversation.participant_count = int(total or 0)
    ctx.session.flush()
    ctx.emit("chat_conversations", "UPDATE", row_to_dict(conversation))
    return conversation.participant_count


def _unread_count(session: Session, participant: Participant) -> int:
    statement = (
        select(func.count())
        .select_from(Message)
        .where(
            Message.conversation_id == participant.conversation_id,
            Message.sender_id != participant.user_id,
            Message.is_deleted.is_(False),
        )
    )
    if participant.last_read_at is not None:
        statement = statement.where(Message.created_at > participant.last_read_at)
    return int(session.scalar(statement) or 0)


def _participant_dict(participant: Participant, user: User | None) -> dict[str, Any]:
    data = row_to_dict(participant)
    data["display_name"] = _display_name(user)
    return data


def _message_dict(message: Message, sender: User | None) -> dict[str, Any]:
    data = row_to_dict(message)
    data["sender_display_name"] = _display_name(sender)
    reactions = sorted(message.reactions, key=lambda item: ensure_utc(item.created_at))
    data["reactions"] = [row_to_dict(reaction) for reaction in reactions]
    return data


def _preview(content: str, media_url: str | None) -> str:
    if content:
        return content[:PREVIEW_LIMIT]
    return "Sent an attachment" if media_url else ""


def _toggle_edge(ctx: ProcedureContext, model: Any, table: str, keys: dict[str, str]) -> bool:
    """Flip an edge row and report whether it exists afterwards.

    A duplicate insert caused by a concurrent toggle counts as success.
    """

    session = ctx.session
    conditions = [getattr(model, column) == value for column, value in keys.items()]
    existing = session.scalar(select(model).where(*conditions))
    if existing is not None:
        old = row_to_dict(existing)
        session.expunge(existing)
        session.execute(delete(model.__table__).where(*[model.__table__.c[k] == v for k, v in keys.items()]))
        ctx.emit(table, "DELETE", old=old)
        return False

    row = {**keys, "created_at": utcnow()}
    try:
        session.execute(insert(model.__table__).values(**row))
    except IntegrityError:
        session.rollback()
        logger.debug("Concurrent insert on %s absorbed for %s", table, keys)
        return True
    ctx.emit(table, "INSERT", new=row)
    return True


def _recount_follow_counters(ctx: ProcedureContext, *user_ids: str) -> dict[str, User]:
    session = ctx.session
    refreshed: dict[str, User] = {}
    for user_id in dict.fromkeys(user_ids):
        user = session.get(User, user_id)
        if user is None:
            continue
        user.followers_count = int(
            session.scalar(select(func.count()).select_from(Follow).where(Follow.following_id == user_id)) or 0
        )
        user.following_count = int(
            session.scalar(select(func.count()).select_from(Follow).where(Follow.follower_id == user_id)) or 0
        )
        refreshed[user_id] = user
    session.flush()
    for user in refreshed.values():
        ctx.emit("users", "UPDATE", row_to_dict(user))
    return refreshed


# ---------------------------------------------------------------------------
# conversations


def _direct_conversation(session: Session, key: str) -> Conversation | None:
    return session.scalar(select(Conversation).where(Conversation.direct_key == key))


@procedure("get_or_create_direct_conversation")
def get_or_create_direct_conversation(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    user_id = ctx.require_user()
    other_id = _param(params, "other_user_id")
    if other_id == user_id:
        raise ProcedureError("Cannot start a conversation with yourself", "SELF_CONVERSATION")
    _require_existing_user(ctx.session, other_id)
    if is_blocked(ctx.session, user_id, other_id):
        raise ProcedureError("Messaging is not available for this user", "BLOCKED")

    key = direct_key_for(user_id, other_id)
    existing = _direct_conversation(ctx.session, key)
    if existing is not None:
        _rejoin_direct(ctx, existing, user_id)
        return {"conversation_id": existing.id, "created": False}

    conversation = Conversation(
        conversation_type="direct",
        direct_key=key,
        created_by=user_id,
        participant_count=2,
    )
    conversation.participants = [
        Participant(user_id=user_id, role="member"),
        Participant(user_id=other_id, role="member"),
    ]
    ctx.session.add(conversation)
    try:
        ctx.session.flush()
    except IntegrityError:
        # The other participant created the pair first.
        ctx.session.rollback()
        existing = _direct_conversation(ctx.session, key)
        if existing is None:
            raise
        return {"conversation_id": existing.id, "created": False}

    ctx.emit("chat_conversations", "INSERT", row_to_dict(conversation))
    for participant in conversation.participants:
        ctx.emit("chat_participants", "INSERT", row_to_dict(participant))
    logger.info("Created direct conversation %s", conversation.id)
    return {"conversation_id": conversation.id, "created": True}


def _rejoin_direct(ctx: ProcedureContext, conversation: Conversation, user_id: str) -> None:
    participant = ctx.session.get(Participant, (conversation.id, user_id))
    if participant is None or participant.is_active:
        return
    participant.is_active = True
    participant.left_at = None
    ctx.session.flush()
    ctx.emit("chat_participants", "UPDATE", row_to_dict(participant))
    _recount_participants(ctx, conversation)


@procedure("create_group_conversation")
def create_group_conversation(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    user_id = ctx.require_user()
    name = str(params.get("name") or "").strip()
    if not name:
        raise ProcedureError("Group name is required", "INVALID_PARAMS")
    member_ids = _unique_ids(params.get("participant_ids"), exclude=user_id)
    if not member_ids:
        raise ProcedureError("A group needs at least one other member", "INVALID_PARAMS")

    known = set(ctx.session.scalars(select(User.id).where(User.id.in_(member_ids))))
    if len(known) != len(member_ids):
        raise ProcedureError("User not found", "NOT_FOUND")
    if any(is_blocked(ctx.session, user_id, member_id) for member_id in member_ids):
        raise ProcedureError("Messaging is not available for one of these users", "BLOCKED")

    conversation = Conversation(
        conversation_type="group",
        name=name,
        avatar_url=params.get("avatar_url"),
        created_by=user_id,
        participant_count=len(member_ids) + 1,
    )
    conversation.participants = [Participant(user_id=user_id, role="owner")] + [
        Participant(user_id=member_id, role="member") for member_id in member_ids
    ]
    ctx.session.add(conversation)
    ctx.session.flush()

    ctx.emit("chat_conversations", "INSERT", row_to_dict(conversation))
    for participant in conversation.participants:
        ctx.emit("chat_participants", "INSERT", row_to_dict(participant))
    logger.info("Created group conversation %s with %d members", conversation.id, conversation.participant_count)
    return {"conversation_id": conversation.id}


@procedure("leave_conversation")
def leave_conversation(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    conversation_id = _param(params, "conversation_id")
    participant = _require_participant(ctx, conversation_id)
    conversation = ctx.session.get(Conversation, conversation_id)

    was_owner = participant.role == "owner"
    participant.is_active = False
    participant.left_at = utcnow()
    if was_owner:
        participant.role = "member"
        successor = ctx.session.scalar(
            select(Participant)
            .where(
                Participant.conversation_id == conversation_id,
                Participant.user_id != participant.user_id,
                Participant.is_active.is_(True),
            )
            .order_by(Participant.joined_at)
            .limit(1)
        )
        if successor is not None:
            successor.role = "owner"
            ctx.session.flush()
            ctx.emit("chat_participants", "UPDATE", row_to_dict(successor))
    ctx.session.flush()
    ctx.emit("chat_participants", "UPDATE", row_to_dict(participant))
    count = _recount_participants(ctx, conversation)
    return {"participant_count": count}


@procedure("add_participants")
def add_participants(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    conversation_id = _param(params, "conversation_id")
    caller = _require_participant(ctx, conversation_id)
    conversation = _require_group(ctx.session, conversation_id)
    _require_manager(caller)

    member_ids = _unique_ids(params.get("user_ids"), exclude=caller.user_id)
    if not member_ids:
        raise ProcedureError("No users to add", "INVALID_PARAMS")
    for member_id in member_ids:
        _require_existing_user(ctx.session, member_id)
        if is_blocked(ctx.session, caller.user_id, member_id):
            raise ProcedureError("Messaging is not available for one of these users", "BLOCKED")
        participant = ctx.session.get(Participant, (conversation_id, member_id))
        if participant is None:
            participant = Participant(conversation_id=conversation_id, user_id=member_id, role="member")
            ctx.session.add(participant)
            event_type = "INSERT"
        elif not participant.is_active:
            participant.is_active = True
            participant.left_at = None
            participant.joined_at = utcnow()
            participant.role = "member"
            event_type = "UPDATE"
        else:
            continue
        ctx.session.flush()
        ctx.emit("chat_participants", event_type, row_to_dict(participant))

    count = _recount_participants(ctx, conversation)
    return {"participant_count": count}


@procedure("remove_participant")
def remove_participant(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    conversation_id = _param(params, "conversation_id")
    target_id = _param(params, "user_id")
    caller = _require_participant(ctx, conversation_id)
    conversation = _require_group(ctx.session, conversation_id)
    _require_manager(caller)

    target = _active_participant(ctx.session, conversation_id, target_id)
    if target is None:
        raise ProcedureError("User is not a participant in this conversation", "NOT_PARTICIPANT")
    if target.role == "owner":
        raise ProcedureError("The group owner cannot be removed", "FORBIDDEN")
    if target.role == "admin" and caller.role != "owner":
        raise ProcedureError("Only the owner can remove an admin", "FORBIDDEN")

    target.is_active = False
    target.left_at = utcnow()
    ctx.session.flush()
    ctx.emit("chat_participants", "UPDATE", row_to_dict(target))
    count = _recount_participants(ctx, conversation)
    return {"participant_count": count}


@procedure("update_participant_role")
def update_participant_role(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    conversation_id = _param(params, "conversation_id")
    target_id = _param(params, "user_id")
    role = _param(params, "role")
    if role not in {"member", "admin"}:
        raise ProcedureError("Role must be member or admin", "INVALID_PARAMS")

    caller = _require_participant(ctx, conversation_id)
    conversation = _require_group(ctx.session, conversation_id)
    if caller.role != "owner":
        raise ProcedureError("Only the group owner can change roles", "FORBIDDEN")
    if target_id == caller.user_id:
        raise ProcedureError("The owner role cannot be changed here", "FORBIDDEN")
    target = _active_participant(ctx.session, conversation_id, target_id)
    if target is None:
        raise ProcedureError("User is not a participant in this conversation", "NOT_PARTICIPANT")

    target.role = role
    ctx.session.flush()
    ctx.emit("chat_participants", "UPDATE", row_to_dict(target))
    return {"participant_count": conversation.participant_count}


@procedure("update_conversation")
def update_conversation(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    conversation_id = _param(params, "conversation_id")
    participant = _require_participant(ctx, conversation_id)
    conversation = ctx.session.get(Conversation, conversation_id)

    changes = {key: params[key] for key in CONVERSATION_FIELDS if params.get(key) is not None}
    if "name" in changes or "avatar_url" in changes:
        if conversation.conversation_type != "group":
            raise ProcedureError("Only group conversations have a name and avatar", "NOT_GROUP")
        _require_manager(participant)
    if "name" in changes:
        changes["name"] = str(changes["name"]).strip()
        if not changes["name"]:
            raise ProcedureError("Group name is required", "INVALID_PARAMS")
    for flag in ("is_pinned", "is_archived"):
        if flag in changes:
            changes[flag] = bool(changes[flag])

    for key, value in changes.items():
        setattr(conversation, key, value)
    ctx.session.flush()
    if changes:
        ctx.emit("chat_conversations", "UPDATE", row_to_dict(conversation))
    return {"conversation_id": conversation.id, "updated": sorted(changes)}


@procedure("fetch_conversations")
def fetch_conversations(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    user_id = ctx.require_user()
    limit = _limit(params.get("limit"))
    statement = (
        select(Conversation, Participant)
        .join(Participant, Participant.conversation_id == Conversation.id)
        .where(
            Participant.user_id == user_id,
            Participant.is_active.is_(True),
            Conversation.is_active.is_(True),
        )
        .order_by(func.coalesce(Conversation.last_message_at, Conversation.created_at).desc())
        .limit(limit)
    )
    if not params.get("include_archived", True):
        statement = statement.where(Conversation.is_archived.is_(False))
    rows = ctx.session.execute(statement).all()

    conversation_ids = [conversation.id for conversation, _ in rows]
    members: dict[str, list[dict[str, Any]]] = {}
    if conversation_ids:
        member_rows = ctx.session.execute(
            select(Participant, User)
            .join(User, User.id == Participant.user_id)
            .where(Participant.conversation_id.in_(conversation_ids), Participant.is_active.is_(True))
            .order_by(Participant.joined_at)
        ).all()
        for participant, user in member_rows:
            members.setdefault(participant.conversation_id, []).append(_participant_dict(participant, user))

    conversations = []
    for conversation, own in rows:
        data = row_to_dict(conversation)
        data["unread_count"] = _unread_count(ctx.session, own)
        data["participants"] = members.get(conversation.id, [])
        conversations.append(data)
    return {"conversations": conversations}


# ---------------------------------------------------------------------------
# messages


@procedure("fetch_messages")
def fetch_messages(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    user_id = ctx.require_user()
    conversation_id = _param(params, "conversation_id")
    if ctx.session.get(Participant, (conversation_id, user_id)) is None:
        raise ProcedureError("You are not a participant in this conversation", "NOT_PARTICIPANT")
    limit = _limit(params.get("limit"))

    statement = (
        select(Message, User)
        .join(User, User.id == Message.sender_id)
        .where(Message.conversation_id == conversation_id)
    )
    before_id = params.get("before_message_id")
    if before_id:
        cursor = ctx.session.get(Message, str(before_id))
        if cursor is None or cursor.conversation_id != conversation_id:
            raise ProcedureError("Message not found", "NOT_FOUND")
        statement = statement.where(
            or_(
                Message.created_at < cursor.created_at,
                and_(Message.created_at == cursor.created_at, Message.id < cursor.id),
            )
        )
    rows = ctx.session.execute(
        statement.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit + 1)
    ).all()

    has_more = len(rows) > limit
    page = list(reversed(rows[:limit]))
    return {"messages": [_message_dict(message, sender) for message, sender in page], "has_more": has_more}


@procedure("send_message")
def send_message(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    user_id = ctx.require_user()
    conversation_id = _param(params, "conversation_id")
    content = str(params.get("content") or "").strip()
    media_url = params.get("media_url") or None
    if not content and not media_url:
        raise ProcedureError("Message content is required", "EMPTY_MESSAGE")
    message_type = str(params.get("message_type") or "text")
    if message_type not in SENDABLE_MESSAGE_TYPES:
        raise ProcedureError(f"Unsupported message type: {message_type}", "INVALID_PARAMS")
    media_type = params.get("media_type") or None
    if media_type is not None and media_type not in MEDIA_TYPES:
        raise ProcedureError(f"Unsupported media type: {media_type}", "INVALID_PARAMS")

    participant = _require_participant(ctx, conversation_id)
    conversation = ctx.session.get(Conversation, conversation_id)
    if conversation.conversation_type == "direct":
        others = ctx.session.scalars(
            select(Participant.user_id).where(
                Participant.conversation_id == conversation_id,
                Participant.user_id != user_id,
            )
        ).all()
        if any(is_blocked(ctx.session, user_id, other_id) for other_id in others):
            raise ProcedureError("Messaging is not available for this user", "BLOCKED")

    reply_to_id = params.get("reply_to_id") or None
    if reply_to_id is not None:
        parent = ctx.session.get(Message, str(reply_to_id))
        if parent is None or parent.conversation_id != conversation_id:
            raise ProcedureError("Reply target is not in this conversation", "INVALID_PARAMS")

    sent_at = utcnow()
    message = Message(
        conversation_id=conversation_id,
        sender_id=user_id,
        content=content,
        message_type=message_type,
        media_url=media_url,
        media_type=media_type,
        reply_to_id=reply_to_id,
        created_at=sent_at,
    )
    ctx.session.add(message)
    conversation.last_message_at = sent_at
    conversation.last_message_preview = _preview(content, media_url)
    conversation.last_message_sender_id = user_id
    if participant.last_read_at is None or ensure_utc(participant.last_read_at) < sent_at:
        participant.last_read_at = sent_at
    ctx.session.flush()

    sender = ctx.session.get(User, user_id)
    ctx.emit("chat_messages", "INSERT", row_to_dict(message))
    ctx.emit("chat_conversations", "UPDATE", row_to_dict(conversation))
    return {"message": _message_dict(message, sender)}


@procedure("mark_conversation_read")
def mark_conversation_read(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    conversation_id = _param(params, "conversation_id")
    read_at = _as_datetime(params.get("read_at"))
    participant = _require_participant(ctx, conversation_id)

    # The cursor only ever moves forward; the comparison happens in the database.
    result = ctx.session.execute(
        update(Participant.__table__)
        .where(
            Participant.__table__.c.conversation_id == conversation_id,
            Participant.__table__.c.user_id == participant.user_id,
            or_(
                Participant.__table__.c.last_read_at.is_(None),
                Participant.__table__.c.last_read_at < read_at,
            ),
        )
        .values(last_read_at=read_at)
    )
    ctx.session.refresh(participant)
    if result.rowcount:
        ctx.emit("chat_participants", "UPDATE", row_to_dict(participant))
    return {"last_read_at": ensure_utc(participant.last_read_at)}


# ---------------------------------------------------------------------------
# social edges


@procedure("toggle_post_like")
def toggle_post_like(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    user_id = ctx.require_user()
    post_id = _param(params, "post_id")
    if ctx.session.get(Post, post_id) is None:
        raise ProcedureError("Post not found", "NOT_FOUND")

    liked = _toggle_edge(ctx, PostLike, "post_likes", {"post_id": post_id, "user_id": user_id})

    post = ctx.session.get(Post, post_id)
    post.likes_count = int(
        ctx.session.scalar(select(func.count()).select_from(PostLike).where(PostLike.post_id == post_id)) or 0
    )
    ctx.session.flush()
    ctx.emit("posts", "UPDATE", row_to_dict(post))
    return {"liked": liked, "likes_count": post.likes_count}


@procedure("toggle_follow")
def toggle_follow(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    user_id = ctx.require_user()
    target_id = _param(params, "target_user_id")
    if target_id == user_id:
        raise ProcedureError("Cannot follow yourself", "SELF_FOLLOW")
    _require_existing_user(ctx.session, target_id)
    currently_following = ctx.session.get(Follow, (user_id, target_id)) is not None
    if not currently_following and is_blocked(ctx.session, user_id, target_id):
        raise ProcedureError("Cannot follow this user", "BLOCKED")

    following = _toggle_edge(
        ctx,
        Follow,
        "social_follows",
        {"follower_id": user_id, "following_id": target_id},
    )
    users = _recount_follow_counters(ctx, target_id, user_id)
    actor = users.get(user_id)
    return {
        "following": following,
        "followers_count": users[target_id].followers_count,
        "following_count": actor.following_count if actor is not None else 0,
    }


@procedure("block_user")
def block_user(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    user_id = ctx.require_user()
    target_id = _param(params, "target_user_id")
    if target_id == user_id:
        raise ProcedureError("Cannot block yourself", "SELF_BLOCK")
    _require_existing_user(ctx.session, target_id)

    if ctx.session.get(Block, (user_id, target_id)) is None:
        row = {"blocker_id": user_id, "blocked_id": target_id, "created_at": utcnow()}
        try:
            ctx.session.execute(insert(Block.__table__).values(**row))
        except IntegrityError:
            ctx.session.rollback()
        else:
            ctx.emit("social_blocks", "INSERT", new=row)

    # Blocking severs follow edges in both directions.
    removed = ctx.session.execute(
        delete(Follow.__table__).where(
            or_(
                and_(Follow.__table__.c.follower_id == user_id, Follow.__table__.c.following_id == target_id),
                and_(Follow.__table__.c.follower_id == target_id, Follow.__table__.c.following_id == user_id),
            )
        )
    )
    if removed.rowcount:
        _recount_follow_counters(ctx, user_id, target_id)
    return {"blocked": True}


@procedure("unblock_user")
def unblock_user(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    user_id = ctx.require_user()
    target_id = _param(params, "target_user_id")
    result = ctx.session.execute(
        delete(Block.__table__).where(
            Block.__table__.c.blocker_id == user_id,
            Block.__table__.c.blocked_id == target_id,
        )
    )
    if result.rowcount:
        ctx.emit("social_blocks", "DELETE", old={"blocker_id": user_id, "blocked_id": target_id})
    return {"blocked": False}


@procedure("can_message")
def can_message(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    user_id = ctx.require_user()
    target_id = _param(params, "target_user_id")
    if target_id == user_id:
        return {"allowed": False, "reason": "self"}
    if ctx.session.get(User, target_id) is None:
        return {"allowed": False, "reason": "not_found"}
    if is_blocked(ctx.session, user_id, target_id):
        return {"allowed": False, "reason": "blocked"}
    return {"allowed": True, "reason": None}


# ---------------------------------------------------------------------------
# notifications


@procedure("upsert_push_token")
def upsert_push_token(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    user_id = ctx.require_user()
    token = _param(params, "token")
    platform = str(params.get("platform") or "web")
    device_info = params.get("device_info")

    record = ctx.session.scalar(select(PushToken).where(PushToken.token == token))
    if record is None:
        record = PushToken(user_id=user_id, token=token, platform=platform, device_info=device_info)
        ctx.session.add(record)
        try:
            ctx.session.flush()
        except IntegrityError:
            ctx.session.rollback()
            record = ctx.session.scalar(select(PushToken).where(PushToken.token == token))
            if record is None:
                raise
    # A device token moves to whichever user signed in on it last.
    record.user_id = user_id
    record.platform = platform
    record.device_info = device_info
    record.is_active = True
    ctx.session.flush()
    ctx.emit("push_tokens", "UPDATE", row_to_dict(record))
    return {"token_id": record.id}


@procedure("mark_notification_read")
def mark_notification_read(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    user_id = ctx.require_user()
    notification_id = _param(params, "notification_id")
    notification = ctx.session.get(Notification, notification_id)
    if notification is None or notification.recipient_id != user_id:
        raise ProcedureError("Notification not found", "NOT_FOUND")
    if notification.is_read:
        return {"updated": 0}
    notification.is_read = True
    notification.read_at = utcnow()
    ctx.session.flush()
    ctx.emit("notifications", "UPDATE", row_to_dict(notification))
    return {"updated": 1}


@procedure("mark_all_notifications_read")
def mark_all_notifications_read(ctx: ProcedureContext, params: Mapping[str, Any]) -> dict[str, Any]:
    user_id = ctx.require_user()
    unread = ctx.session.scalars(
        select(Notification).where(Notification.recipient_id == user_id, Notification.is_read.is_(False))
    ).all()
    read_at = utcnow()
    for notification in unread:
        notification.is_read = True
        notification.read_at = read_at
    ctx.session.flush()
    for notification in unread:
        ctx.emit("notifications", "UPDATE", row_to_dict(notification))
    return {"updated": len(unread)}


__all__ = [
    "PROCEDURES",
    "ProcedureContext",
    "ProcedureError",
    "is_blocked",
    "procedure",
    "run_procedure",
]
