"""Likes, follows and blocks."""
from .blocks import BlockManager
from .follows import FOLLOW, FollowStats, FollowToggle, load_follow_stats
from .likes import POST_LIKE, PostLikeToggle
from .toggle import EdgeSpec, OptimisticToggle, ToggleSnapshot

__all__ = [
    "BlockManager",
    "FOLLOW",
    "FollowStats",
    "FollowToggle",
    "load_follow_stats",
    "POST_LIKE",
    "PostLikeToggle",
    "EdgeSpec",
    "OptimisticToggle",
    "ToggleSnapshot",
]
