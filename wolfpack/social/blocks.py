"""Blocking users and the "can message" check built on it."""
from __future__ import annotations

import logging

from ..constants import BLOCK_UPDATE_FAILED, NOT_AUTHENTICATED
from ..remote.base import RemoteStore, RemoteStoreError, parse_envelope
from ..remote.filters import eq
from ..schemas.rpc import BlockResult, CanMessageResult

logger = logging.getLogger(__name__)


class BlockManager:
    """Blocks hide messaging in both directions: if either side blocked the other, ``can_message`` is false."""

    def __init__(self, store: RemoteStore) -> None:
        self._store = store
        self.error: str | None = None

    async def _set_block(self, procedure: str, target_user_id: str) -> bool:
        if not self._store.current_user_id:
            self.error = NOT_AUTHENTICATED
            return False
        try:
            parse_envelope(BlockResult, await self._store.rpc(procedure, {"target_user_id": target_user_id}))
        except RemoteStoreError as exc:
            logger.warning("Procedure %s for %s failed: %s", procedure, target_user_id, exc)
            self.error = BLOCK_UPDATE_FAILED
            return False
        self.error = None
        return True

    async def block_user(self, target_user_id: str) -> bool:
        return await self._set_block("block_user", target_user_id)

    async def unblock_user(self, target_user_id: str) -> bool:
        return await self._set_block("unblock_user", target_user_id)

    async def is_blocked(self, target_user_id: str) -> bool:
        user_id = self._store.current_user_id
        if not user_id:
            return False
        try:
            outgoing = await self._store.count(
                "social_blocks",
                filters=[eq("blocker_id", user_id), eq("blocked_id", target_user_id)],
            )
            incoming = await self._store.count(
                "social_blocks",
                filters=[eq("blocker_id", target_user_id), eq("blocked_id", user_id)],
            )
        except RemoteStoreError:
            logger.exception("Failed to check block state for %s", target_user_id)
            return False
        return bool(outgoing or incoming)

    async def blocked_user_ids(self) -> list[str]:
        user_id = self._store.current_user_id
        if not user_id:
            return []
        try:
            rows = await self._store.select(
                "social_blocks",
                columns=["blocked_id"],
                filters=[eq("blocker_id", user_id)],
                order_by="created_at",
                descending=True,
            )
        except RemoteStoreError:
            logger.exception("Failed to load blocked users")
            return []
        return [row["blocked_id"] for row in rows]

    async def can_message(self, target_user_id: str) -> bool:
        """Unknown or failed checks answer ``False``."""

        if not self._store.current_user_id:
            return False
        try:
            result = parse_envelope(
                CanMessageResult,
                await self._store.rpc("can_message", {"target_user_id": target_user_id}),
            )
        except RemoteStoreError as exc:
            logger.warning("can_message check for %s failed: %s", target_user_id, exc)
            return False
        if not result.allowed:
            logger.debug("Messaging %s not allowed: %s", target_user_id, result.reason)
        return result.allowed


__all__ = ["BlockManager"]
