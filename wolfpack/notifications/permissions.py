"""System-level notification permission state and banner display."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from ..config import get_settings
from ..models.base import utcnow

logger = logging.getLogger(__name__)


class SystemNotifierError(RuntimeError):
    """Raised by a notifier when the platform API is unavailable."""


class SystemNotifier(ABC):
    """Native (browser or OS) notification surface."""

    @abstractmethod
    async def request_permission(self) -> bool:
        ...

    @abstractmethod
    async def show(self, title: str, body: str, *, url: str | None = None, tag: str | None = None) -> None:
        ...


class NullSystemNotifier(SystemNotifier):
    """Headless environments: permission is never granted and nothing is shown."""

    async def request_permission(self) -> bool:
        return False

    async def show(self, title: str, body: str, *, url: str | None = None, tag: str | None = None) -> None:
        logger.debug("System banner suppressed: %s", title)


@dataclass(frozen=True, slots=True)
class PermissionState:
    granted: bool = False
    requested: bool = False
    last_requested: datetime | None = None


class NotificationPermissions:
    """Ask for banner permission at most once per cooldown window."""

    def __init__(
        self,
        notifier: SystemNotifier,
        *,
        cooldown: timedelta | None = None,
        state: PermissionState | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        hours = get_settings().permission_request_cooldown_hours
        self._notifier = notifier
        self._cooldown = cooldown if cooldown is not None else timedelta(hours=hours)
        self._clock = clock
        self.state = state or PermissionState()

    @property
    def notifier(self) -> SystemNotifier:
        return self._notifier

    @property
    def has_permission(self) -> bool:
        return self.state.granted

    def can_request(self) -> bool:
        if not self.state.requested or self.state.last_requested is None:
            return True
        return self._clock() - self.state.last_requested > self._cooldown

    async def request(self) -> bool:
        if self.state.granted:
            return True
        if not self.can_request():
            return False
        try:
            granted = await self._notifier.request_permission()
        except SystemNotifierError:
            logger.exception("Notification permission request failed")
            return False
        self.state = PermissionState(granted=granted, requested=True, last_requested=self._clock())
        logger.info("Notification permission %s", "granted" if granted else "denied")
        return granted


__all__ = [
    "SystemNotifier",
    "SystemNotifierError",
    "NullSystemNotifier",
    "PermissionState",
    "NotificationPermissions",
]
