"""WebSocket bridge from the realtime hub to browser clients."""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..remote.filters import eq
from ..remote.realtime import ChangeEvent, realtime_hub

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws/conversations/{conversation_id}")
async def conversation_updates(websocket: WebSocket, conversation_id: str) -> None:
    """Forward message changes of one conversation to a connected client."""

    await websocket.accept()

    async def forward(event: ChangeEvent) -> None:
        await websocket.send_text(json.dumps(event.to_payload(), default=str))

    subscription = await realtime_hub.subscribe(
        "chat_messages",
        forward,
        events=("INSERT", "UPDATE"),
        filters=(eq("conversation_id", conversation_id),),
    )
    logger.info("Conversation socket %s connected from %s", conversation_id, websocket.client)
    try:
        while True:
            try:
                raw = await websocket.receive_text()
            except WebSocketDisconnect:
                break
            except Exception:
                logger.exception("Conversation socket receive failed")
                break

            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                payload = {"type": raw}
            if not isinstance(payload, dict):
                payload = {"type": str(payload)}

            message_type = str(payload.get("type") or "").lower()
            if message_type == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))
            elif message_type == "hello":
                await websocket.send_text(json.dumps({"type": "ready", "conversation_id": conversation_id}))
    finally:
        await realtime_hub.unsubscribe(subscription)
        logger.info("Conversation socket %s disconnected from %s", conversation_id, websocket.client)


__all__ = ["router"]
