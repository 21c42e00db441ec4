# chat_relay/api/routes/rooms.py

from typing import List, Optional

from fastapi import APIRouter, Query

from chat_relay.core import state
from chat_relay.models.models import (
    CreatePrivateRoomRequest,
    LastSeenEntry,
    LastSeenRequest,
    Room,
    RoomPreload,
)

router = APIRouter()

# ============================================================================
# ROOM ENDPOINTS
# ============================================================================

@router.get("/room/0/preload", response_model=RoomPreload)
async def preload_public_room():
    """
    Name and latest messages of the public room.

    Available before login so the landing page can show the conversation.
    """
    return await state.fanout.preload()


@router.get("/room/{room_id}/messages")
async def room_messages(
    room_id: str,
    offset: int = Query(0, ge=0),
    size: Optional[int] = Query(None, ge=1),
) -> List[dict]:
    """
    Page backwards through a room's history, most recent first.

    Args:
        room_id: Public id ("0") or private composite ("1:2")
        offset: Number of most recent messages to skip
        size: Page size (defaults to DEFAULT_PAGE_SIZE)

    Returns:
        List of stored messages; empty when the room has none or the
        window is past the end.

    Raises:
        400 for a malformed room id, 503 when storage is unavailable
    """
    return await state.fanout.history(room_id, offset, size)


@router.post("/room", response_model=Room)
async def create_private_room(request: CreatePrivateRoomRequest):
    """
    Get or create the private room of two users.

    The id is the same whichever user asks: "<min>:<max>".

    Raises:
        400 if the ids are non-numeric or identical
    """
    return await state.fanout.create_private_room(request.user1, request.user2)


@router.get("/rooms/{user_id}", response_model=List[Room])
async def user_rooms(user_id: str):
    """Rooms a user belongs to."""
    return await state.fanout.rooms_for_user(user_id)


@router.post("/lastmessage", response_model=List[LastSeenEntry])
async def last_message(request: LastSeenRequest):
    """Last-seen markers of a user for a list of rooms (unread indicators)."""
    return await state.fanout.last_seen(request.userid, [r.id for r in request.roomids])
