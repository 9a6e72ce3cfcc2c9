"""Shared fixtures: a throwaway SQLite schema and per-user remote store clients."""
from __future__ import annotations

import os
from typing import Callable, Iterator

import pytest
from sqlalchemy import delete

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///./test_wolfpack.db")
os.environ.setdefault("DISABLE_EXPIRY_SWEEP", "true")

from wolfpack.database import Base, SessionLocal, engine  # noqa: E402
from wolfpack.models import (  # noqa: E402
    Block,
    Conversation,
    Follow,
    Message,
    MessageReaction,
    MessageReceipt,
    Notification,
    NotificationPreference,
    Participant,
    Post,
    PostLike,
    PushToken,
    User,
)
from wolfpack.remote import AuthSession, AuthUser, RealtimeHub, SqlRemoteStore  # noqa: E402

CLEANUP_ORDER = (
    MessageReaction,
    MessageReceipt,
    Message,
    Participant,
    Conversation,
    PostLike,
    Post,
    Follow,
    Block,
    Notification,
    PushToken,
    NotificationPreference,
    User,
)


@pytest.fixture(scope="session", autouse=True)
def _create_schema() -> Iterator[None]:
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_database() -> Iterator[None]:
    with SessionLocal() as session:
        for model in CLEANUP_ORDER:
            session.execute(delete(model))
        session.commit()
    yield


@pytest.fixture
def user_factory() -> Callable[..., User]:
    def _factory(username: str, display_name: str | None = None) -> User:
        with SessionLocal() as session:
            user = User(username=username, display_name=display_name or username.title())
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    return _factory


@pytest.fixture
def post_factory() -> Callable[..., Post]:
    def _factory(author: User, caption: str = "Friday night at the Wolfpack", likes_count: int = 0) -> Post:
        with SessionLocal() as session:
            post = Post(user_id=author.id, caption=caption, likes_count=likes_count)
            session.add(post)
            session.commit()
            session.refresh(post)
            return post

    return _factory


@pytest.fixture
def hub() -> RealtimeHub:
    return RealtimeHub()


@pytest.fixture
def store_factory(hub: RealtimeHub) -> Callable[[User | None], SqlRemoteStore]:
    def _factory(user: User | None) -> SqlRemoteStore:
        auth = AuthSession()
        if user is not None:
            auth.sign_in(AuthUser(id=user.id, display_name=user.display_name, username=user.username))
        return SqlRemoteStore(hub=hub, auth=auth)

    return _factory
