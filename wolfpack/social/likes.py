"""Post likes on top of the optimistic toggle."""
from __future__ import annotations

from typing import Any, Callable

from ..constants import LIKE_UPDATE_FAILED
from ..notifications.composers import like_notification
from ..notifications.dispatcher import NotificationDispatcher
from ..remote.base import RemoteStore
from ..schemas.notifications import NotificationPayload
from ..schemas.rpc import ToggleLikeResult
from .toggle import EdgeSpec, OptimisticToggle


def _compose_like(recipient_id: str, actor_id: str, actor_name: str, post_id: str) -> NotificationPayload:
    return like_notification(recipient_id=recipient_id, actor_id=actor_id, actor_name=actor_name, post_id=post_id)


POST_LIKE = EdgeSpec(
    name="like",
    procedure="toggle_post_like",
    target_param="post_id",
    result_model=ToggleLikeResult,
    active_field="liked",
    count_field="likes_count",
    error_message=LIKE_UPDATE_FAILED,
    edge_table="post_likes",
    actor_column="user_id",
    target_column="post_id",
    counter_table="posts",
    counter_column="likes_count",
    owner_column="user_id",
    compose=_compose_like,
)


class PostLikeToggle(OptimisticToggle):
    def __init__(
        self,
        store: RemoteStore,
        post_id: str,
        *,
        liked: bool = False,
        likes_count: int = 0,
        author_id: str | None = None,
        dispatcher: NotificationDispatcher | None = None,
        on_change: Callable[[OptimisticToggle], Any] | None = None,
    ) -> None:
        super().__init__(
            POST_LIKE,
            store,
            post_id,
            active=liked,
            count=likes_count,
            owner_id=author_id,
            dispatcher=dispatcher,
            on_change=on_change,
        )

    @property
    def post_id(self) -> str:
        return self.target_id

    @property
    def liked(self) -> bool:
        return self.active

    @property
    def likes_count(self) -> int:
        return self.count

    async def toggle_like(self) -> bool:
        return await self.toggle()


__all__ = ["POST_LIKE", "PostLikeToggle"]
