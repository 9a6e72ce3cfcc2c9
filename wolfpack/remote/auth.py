"""Authenticated-user accessor handed to the remote store and managers."""
from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AuthUser:
    id: str
    display_name: str | None = None
    username: str | None = None
    avatar_url: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.username or "Someone"


class AuthSession:
    """Holds the signed-in user for one client; ``None`` when signed out."""

    def __init__(self, user: AuthUser | None = None) -> None:
        self._user = user

    @property
    def user(self) -> AuthUser | None:
        return self._user

    @property
    def current_user_id(self) -> str | None:
        return self._user.id if self._user else None

    def sign_in(self, user: AuthUser) -> None:
        self._user = user
        logger.info("Signed in as %s", user.id)

    def sign_out(self) -> None:
        if self._user is not None:
            logger.info("Signed out %s", self._user.id)
        self._user = None


__all__ = ["AuthUser", "AuthSession"]
