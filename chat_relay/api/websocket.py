# chat_relay/api/websocket.py

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from chat_relay.core import state
from chat_relay.core.errors import InvalidIdentifier, StorageUnavailable
from chat_relay.services.session import ConnectionSession

logger = logging.getLogger(__name__)

router = APIRouter()

# ============================================================================
# WEBSOCKET ENDPOINT
# ============================================================================

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time chat.

    Protocol:
    =========

    Client -> Server Actions:
    -------------------------
    Join Room:
        {"action": "room.join", "room_id": "0"}
        Response: {"type": "room_joined", "room_id": "0"}

    Leave Room:
        {"action": "room.leave", "room_id": "0"}
        Response: {"type": "room_left", "room_id": "0"}

    Send Message:
        {
            "action": "message",
            "data": {"from": "1", "userid": "1", "date": 1700000000000,
                     "message": "hi", "roomId": "0"}
        }

    Server -> Client Messages:
    -------------------------
    Chat Message (every joined connection, sender included):
        {"type": "message", "data": {"from": ..., "roomId": ..., ...}}

    Presence:
        {"type": "user.connected", "data": {"id": "1", "username": "alice", "role": "1", "online": true}}
        {"type": "user.disconnected", "data": {..., "online": false}}

    Error:
        {"type": "error", "message": "..."}

    Lifecycle:
    ==========
    1. The session cookie is resolved to a user; without one the
       connection stays anonymous and is ignored
    2. Client sends "room.join" actions for desired rooms
    3. Client receives messages from joined rooms and all presence changes
    4. On disconnect, clean or abrupt, the session is closed exactly once
    """
    await websocket.accept()

    try:
        profile = await state.identity_resolver.resolve(websocket)
    except StorageUnavailable as e:
        logger.error("Identity lookup failed: %s", e)
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    session = ConnectionSession(websocket, state.connection_manager, state.presence)

    try:
        await session.open(profile)

        while True:
            data = await websocket.receive_text()
            await handle_frame(session, data)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("WebSocket error: %s", e)
    finally:
        await session.close()


async def handle_frame(session: ConnectionSession, data: str) -> None:
    """Dispatch one inbound text frame of a session."""
    websocket = session.websocket
    manager = state.connection_manager

    try:
        frame = json.loads(data)
    except json.JSONDecodeError:
        await manager.send_personal(websocket, {"type": "error", "message": "Invalid JSON"})
        return

    if not isinstance(frame, dict):
        await manager.send_personal(websocket, {"type": "error", "message": "Invalid frame"})
        return

    if not session.is_authenticated:
        # Anonymous connections cannot act; drop silently
        return

    action = frame.get("action")
    logger.info(f"Websocket input: Action: {action}")

    try:
        if action == "room.join":
            room = await state.fanout.join_room(session, frame.get("room_id"))
            await manager.send_personal(websocket, {"type": "room_joined", "room_id": str(room)})

        elif action == "room.leave":
            room = await state.fanout.leave_room(session, frame.get("room_id"))
            await manager.send_personal(websocket, {"type": "room_left", "room_id": str(room)})

        elif action == "message":
            await state.fanout.handle_message(session, frame.get("data") or {})

        else:
            await manager.send_personal(
                websocket, {"type": "error", "message": f"Unknown action: {action}"}
            )

    except InvalidIdentifier as e:
        await manager.send_personal(websocket, {"type": "error", "message": str(e)})
    except ValidationError:
        await manager.send_personal(websocket, {"type": "error", "message": "Invalid message"})
    except StorageUnavailable:
        await manager.send_personal(
            websocket, {"type": "error", "message": "Message could not be stored"}
        )
