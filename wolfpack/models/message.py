"""SQLAlchemy ORM models for chat messages, read receipts and reactions."""
from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import expression, func

from wolfpack.database import Base
from .base import new_id, utcnow


class Message(Base):
    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True, default=new_id)
    conversation_id = Column(
        String(36),
        ForeignKey("chat_conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sender_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    message_type = Column(String(16), nullable=False, server_default="text", default="text")
    media_url = Column(String(1024), nullable=True)
    media_type = Column(String(16), nullable=True)
    reply_to_id = Column(String(36), ForeignKey("chat_messages.id", ondelete="SET NULL"), nullable=True)
    is_edited = Column(Boolean, nullable=False, server_default=expression.false(), default=False)
    edited_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, nullable=False, server_default=expression.false(), default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True)

    conversation = relationship("Conversation", back_populates="messages")
    sender = relationship("User", foreign_keys=[sender_id])
    parent = relationship("Message", remote_side=[id])
    reactions = relationship("MessageReaction", cascade="all, delete-orphan")


class MessageReceipt(Base):
    __tablename__ = "chat_message_receipts"

    message_id = Column(String(36), ForeignKey("chat_messages.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    read_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


class MessageReaction(Base):
    """One reaction per user per message; a new reaction replaces the old one."""

    __tablename__ = "chat_message_reactions"

    message_id = Column(String(36), ForeignKey("chat_messages.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    reaction = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


__all__ = ["Message", "MessageReceipt", "MessageReaction"]
