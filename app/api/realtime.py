"""
Spark — Realtime chat socket.

``/ws/chat`` speaks JSON frames: ``{"event", "data", "ack"}`` inbound,
``{"event", "data"}`` outbound.  Everything after the handshake goes
through the connection's outbound queue, acks included, so a client sees
frames in the order the server produced them.
"""

from __future__ import annotations

import json

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from app.realtime.gateway import ChatGateway
from app.services.errors import UnauthorizedError
from app.services.identity_service import bearer_token

logger = structlog.get_logger("spark.api.realtime")

router = APIRouter()


@router.websocket("/ws/chat")
async def chat_socket(websocket: WebSocket) -> None:
    gateway: ChatGateway = websocket.app.state.realtime.gateway
    token = websocket.query_params.get("token") or bearer_token(
        websocket.headers.get("authorization")
    )

    await websocket.accept()
    try:
        connection = await gateway.connect(token, websocket.send_json)
    except UnauthorizedError as exc:
        logger.info("ws_handshake_rejected", reason=exc.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
        return

    try:
        while True:
            text = await websocket.receive_text()
            try:
                raw = json.loads(text)
            except ValueError:
                connection.push({
                    "event": "error",
                    "data": {
                        "success": False,
                        "error": "invalid_argument",
                        "message": "Frames must be JSON",
                    },
                })
                continue
            reply = await gateway.dispatch(connection, raw)
            if reply is not None:
                connection.push(reply)
    except WebSocketDisconnect:
        pass
    finally:
        await gateway.disconnect(connection)
