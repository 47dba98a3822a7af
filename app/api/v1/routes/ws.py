"""
Subscriber channel — WebSocket endpoint for live batch updates.

Client → server:  {"type": "SUBSCRIBE_BATCH", "batchId": 7}, {"type": "PING"}
Server → client:  {"type": "BATCH_UPDATE", "data": {...}}, {"type": "PONG"}

Off-protocol frames, binary ones included, are logged and ignored; the
connection stays open.
"""

from __future__ import annotations

from fastapi import APIRouter, WebSocket

from app.core.errors import ProtocolError
from app.core.logging import get_logger
from app.services.notifications import NotificationHub

router = APIRouter(tags=["updates"])
logger = get_logger(__name__)


@router.websocket("/ws/batch-updates")
async def batch_updates(websocket: WebSocket) -> None:
    hub: NotificationHub = websocket.app.state.hub
    await websocket.accept()
    subscriber = await hub.register(websocket)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            try:
                await hub.handle_message(subscriber, raw)
            except ProtocolError as e:
                logger.warning("ws_protocol_error", connection_id=subscriber.id, error=str(e))
    finally:
        await hub.unregister(subscriber)
