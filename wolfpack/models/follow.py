"""SQLAlchemy ORM models for follower and block relationships."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.sql import func

from wolfpack.database import Base
from .base import utcnow


class Follow(Base):
    __tablename__ = "social_follows"

    follower_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    following_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


class Block(Base):
    __tablename__ = "social_blocks"

    blocker_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    blocked_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


__all__ = ["Follow", "Block"]
