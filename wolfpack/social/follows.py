"""Follow edges on top of the optimistic toggle, plus follower statistics."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from ..constants import FOLLOW_UPDATE_FAILED
from ..notifications.composers import follow_notification
from ..notifications.dispatcher import NotificationDispatcher
from ..remote.base import RemoteStore, RemoteStoreError
from ..remote.filters import eq
from ..schemas.notifications import NotificationPayload
from ..schemas.rpc import ToggleFollowResult
from .toggle import EdgeSpec, OptimisticToggle

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FollowStats:
    user_id: str
    followers_count: int
    following_count: int
    is_following: bool


def _compose_follow(recipient_id: str, actor_id: str, actor_name: str, target_id: str) -> NotificationPayload:
    return follow_notification(recipient_id=recipient_id, actor_id=actor_id, actor_name=actor_name)


FOLLOW = EdgeSpec(
    name="follow",
    procedure="toggle_follow",
    target_param="target_user_id",
    result_model=ToggleFollowResult,
    active_field="following",
    count_field="followers_count",
    error_message=FOLLOW_UPDATE_FAILED,
    edge_table="social_follows",
    actor_column="follower_id",
    target_column="following_id",
    counter_table="users",
    counter_column="followers_count",
    owner_column="id",
    compose=_compose_follow,
)


class FollowToggle(OptimisticToggle):
    """Follow button state for one target user; the counter is the target's follower count."""

    def __init__(
        self,
        store: RemoteStore,
        target_user_id: str,
        *,
        following: bool = False,
        followers_count: int = 0,
        dispatcher: NotificationDispatcher | None = None,
        on_change: Callable[[OptimisticToggle], Any] | None = None,
    ) -> None:
        super().__init__(
            FOLLOW,
            store,
            target_user_id,
            active=following,
            count=followers_count,
            owner_id=target_user_id,
            dispatcher=dispatcher,
            on_change=on_change,
        )

    @property
    def following(self) -> bool:
        return self.active

    @property
    def followers_count(self) -> int:
        return self.count

    async def toggle_follow(self) -> bool:
        return await self.toggle()


async def load_follow_stats(store: RemoteStore, user_id: str) -> FollowStats | None:
    """Counters for ``user_id`` and whether the signed-in user follows them."""

    try:
        rows = await store.select(
            "users",
            columns=["id", "followers_count", "following_count"],
            filters=[eq("id", user_id)],
            limit=1,
        )
        viewer_id = store.current_user_id
        is_following = False
        if viewer_id and viewer_id != user_id:
            is_following = bool(
                await store.count(
                    "social_follows",
                    filters=[eq("follower_id", viewer_id), eq("following_id", user_id)],
                )
            )
    except RemoteStoreError:
        logger.exception("Failed to load follow stats for %s", user_id)
        return None
    if not rows:
        return None
    return FollowStats(
        user_id=user_id,
        followers_count=int(rows[0].get("followers_count") or 0),
        following_count=int(rows[0].get("following_count") or 0),
        is_following=is_following,
    )


__all__ = ["FOLLOW", "FollowStats", "FollowToggle", "load_follow_stats"]
