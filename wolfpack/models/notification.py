"""SQLAlchemy ORM models for notifications, push tokens and delivery preferences."""
from __future__ import annotations

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import expression, func

from wolfpack.database import Base
from .base import TimestampMixin, new_id, utcnow


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=new_id)
    recipient_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    actor_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    type = Column(String(32), nullable=False)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    entity_type = Column(String(64), nullable=True)
    entity_id = Column(String(64), nullable=True)
    action_url = Column(String(1024), nullable=True)
    image_url = Column(String(1024), nullable=True)
    priority = Column(String(16), nullable=False, server_default="normal", default="normal")
    data = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    is_read = Column(Boolean, nullable=False, server_default=expression.false(), default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    is_archived = Column(Boolean, nullable=False, server_default=expression.false(), default=False)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    push_sent = Column(Boolean, nullable=False, server_default=expression.false(), default=False)
    push_sent_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True)

    recipient = relationship(
        "User",
        foreign_keys=[recipient_id],
        back_populates="notifications_received",
    )


class PushToken(TimestampMixin, Base):
    __tablename__ = "push_tokens"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(512), nullable=False, unique=True)
    platform = Column(String(32), nullable=False, server_default="web", default="web")
    device_info = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    is_active = Column(Boolean, nullable=False, server_default=expression.true(), default=True)

    user = relationship("User", back_populates="push_tokens")


class NotificationPreference(Base):
    """Recipient-side delivery rules read by the push delivery service."""

    __tablename__ = "notification_preferences"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    push_enabled = Column(Boolean, nullable=False, server_default=expression.true(), default=True)
    muted_types = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    # Hours in UTC, start inclusive and end exclusive; the window may wrap midnight.
    quiet_hours_start = Column(Integer, nullable=True)
    quiet_hours_end = Column(Integer, nullable=True)
    max_per_hour = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


__all__ = ["Notification", "PushToken", "NotificationPreference"]
