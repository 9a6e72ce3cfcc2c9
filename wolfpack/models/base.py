"""Utility helpers shared across ORM models."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, DateTime
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.sql import func


def new_id() -> str:
    """Return a fresh opaque identifier."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    """Reusable timestamp columns with timezone-aware defaults."""

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


def ensure_utc(value: Any) -> Any:
    # SQLite hands timezone columns back naive; every stored timestamp is UTC.
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def row_to_dict(record: Any) -> dict[str, Any]:
    """Serialise an ORM instance into a plain column dictionary."""

    mapper = sa_inspect(record).mapper
    return {
        attr.columns[0].name: ensure_utc(getattr(record, attr.key))
        for attr in mapper.column_attrs
    }


__all__ = ["TimestampMixin", "new_id", "utcnow", "ensure_utc", "row_to_dict"]
