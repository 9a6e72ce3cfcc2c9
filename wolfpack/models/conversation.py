"""SQLAlchemy ORM models for chat conversations and their participants."""
from __future__ import annotations

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import expression, func

from wolfpack.database import Base
from .base import TimestampMixin, new_id, utcnow


def direct_key_for(first_user_id: str, second_user_id: str) -> str:
    """Key shared by both members of a direct conversation, independent of order."""

    low, high = sorted((first_user_id, second_user_id))
    return f"{low}:{high}"


class Conversation(TimestampMixin, Base):
    __tablename__ = "chat_conversations"

    id = Column(String(36), primary_key=True, default=new_id)
    conversation_type = Column(String(16), nullable=False, default="direct")
    # Unique per unordered user pair; NULL for group conversations.
    direct_key = Column(String(80), nullable=True, unique=True)
    name = Column(String(120), nullable=True)
    avatar_url = Column(String(1024), nullable=True)
    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    participant_count = Column(Integer, nullable=False, server_default="0", default=0)
    last_message_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_message_preview = Column(Text, nullable=True)
    last_message_sender_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_archived = Column(Boolean, nullable=False, server_default=expression.false(), default=False)
    is_pinned = Column(Boolean, nullable=False, server_default=expression.false(), default=False)
    is_active = Column(Boolean, nullable=False, server_default=expression.true(), default=True)

    participants = relationship("Participant", back_populates="conversation", cascade="all, delete-orphan")
    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")


class Participant(Base):
    __tablename__ = "chat_participants"

    conversation_id = Column(
        String(36),
        ForeignKey("chat_conversations.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)
    role = Column(String(16), nullable=False, server_default="member", default="member")
    joined_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    left_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, server_default=expression.true(), default=True)
    last_read_at = Column(DateTime(timezone=True), nullable=True)
    notification_settings = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)

    conversation = relationship("Conversation", back_populates="participants")
    user = relationship("User", back_populates="participations")


__all__ = ["Conversation", "Participant", "direct_key_for"]
