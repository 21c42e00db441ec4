# chat_relay/services/fanout.py

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, List, Optional

from chat_relay.models.ids import PUBLIC_ROOM, RoomId, UserId, private_room_id, room_group
from chat_relay.models.models import ChatMessage, LastSeenEntry, Room, RoomPreload
from chat_relay.services.connection_manager import ConnectionManager
from chat_relay.services.event_bus import EventBus
from chat_relay.services.presence import PresenceTracker
from chat_relay.services.store import RedisMessageStore

if TYPE_CHECKING:
    from chat_relay.services.session import ConnectionSession

logger = logging.getLogger(__name__)

# ============================================================================
# ROOM FANOUT ENGINE
# ============================================================================

class RoomFanoutEngine:
    """
    Routes inbound chat messages to storage, to local sockets and to peers.

    Flow for one message:
        1. Sanitise the body
        2. Touch the sender's presence
        3. Append to the room log (ordered by timestamp)
        4. Append to the global audit log
        5. Record the sender's last-seen marker for the room
        6. Emit to the local room group
        7. Publish on the bus so peers emit to THEIR room groups

    Steps 3-5 run as one Redis transaction and raise StorageUnavailable
    before anything is delivered: a message is either fully recorded and
    delivered, or absent from history and never shown.
    Step 7 can fail without affecting steps 1-6.
    """

    def __init__(
        self,
        store: RedisMessageStore,
        bus: EventBus,
        presence: PresenceTracker,
        connection_manager: ConnectionManager,
        page_size: int = 50,
        preload_size: int = 20,
    ) -> None:
        self.store = store
        self.bus = bus
        self.presence = presence
        self.connection_manager = connection_manager
        self.page_size = page_size
        self.preload_size = preload_size
        self.message_count = 0

    async def join_room(self, session: "ConnectionSession", room_id: object) -> Optional[RoomId]:
        """
        Subscribe a session to a room on this instance. Idempotent.

        Returns None for anonymous sessions, which receive no events.
        """
        if not session.is_authenticated:
            return None
        room = RoomId.of(room_id)
        self.connection_manager.join_group(session.websocket, room_group(room))
        session.rooms.add(room)
        return room

    async def leave_room(self, session: "ConnectionSession", room_id: object) -> Optional[RoomId]:
        if not session.is_authenticated:
            return None
        room = RoomId.of(room_id)
        self.connection_manager.leave_group(session.websocket, room_group(room))
        session.rooms.discard(room)
        return room

    async def handle_message(self, session: "ConnectionSession", raw: dict) -> Optional[ChatMessage]:
        """
        Store and fan out one message sent by a session.

        Returns:
            The stored message, or None when the session is anonymous.

        Raises:
            pydantic.ValidationError: malformed message
            InvalidRoomTarget: malformed room id (nothing was written)
            StorageUnavailable: the store failed (nothing was delivered)
        """
        if not session.is_authenticated:
            logger.debug("Dropping message from anonymous connection")
            return None

        message = ChatMessage.model_validate(raw).sanitised()
        room = RoomId.of(message.room_id)
        sender = session.user_id

        await self.presence.touch(sender)
        await self.store.record_message(room, sender, message)
        self.message_count += 1

        payload = message.to_wire()
        await self.connection_manager.emit_to_group(
            room_group(room), {"type": "message", "data": payload}
        )
        await self.bus.publish("message", payload)
        return message

    async def preload(self) -> RoomPreload:
        """Name and first page of the public room, for clients not yet logged in."""
        room = RoomId(PUBLIC_ROOM)
        name = await self.store.get_room_name(room)
        messages = await self.store.get_messages(room, 0, self.preload_size)
        return RoomPreload(id=str(room), name=name, messages=messages)

    async def history(self, room_id: object, offset: int = 0, limit: Optional[int] = None) -> List[dict]:
        room = RoomId.of(room_id)
        if limit is None:
            limit = self.page_size
        return await self.store.get_messages(room, offset, limit)

    async def create_private_room(self, user_a: object, user_b: object) -> Room:
        """
        Get-or-create the single private room of two users.

        The room itself comes into existence with its first message; here
        it is only added to both users' room sets.
        """
        room = private_room_id(user_a, user_b)
        members = room.members()
        for member in members:
            await self.store.add_user_room(member, room)
        usernames = await self.store.get_usernames(members)
        logger.info("✓ Private room %s ready", room)
        return Room(id=str(room), names=[usernames[str(m)] for m in members])

    async def rooms_for_user(self, user_id: object) -> List[Room]:
        user = UserId.of(user_id)
        rooms = []
        for raw in sorted(await self.store.list_user_rooms(user)):
            room = RoomId.of(raw)
            rooms.append(Room(id=str(room), name=await self.store.get_room_name(room)))
        return rooms

    async def last_seen(self, user_id: object, room_ids: Iterable[object]) -> List[LastSeenEntry]:
        user = UserId.of(user_id)
        entries = []
        for raw in room_ids:
            room = RoomId.of(raw)
            entries.append(
                LastSeenEntry(roomid=str(room), ls=await self.store.get_last_seen(room, user))
            )
        return entries
