# chat_relay/services/store.py

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Iterable, List, Optional, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from chat_relay.core.errors import StorageUnavailable
from chat_relay.models.ids import (
    GLOBAL_LOG_KEY,
    ONLINE_USERS_KEY,
    PUBLIC_ROOM,
    RoomId,
    UserId,
    last_seen_key,
    room_key,
    room_name_key,
    user_key,
    user_rooms_key,
)
from chat_relay.models.models import ChatMessage

logger = logging.getLogger(__name__)

DEFAULT_ROOM_NAMES = {PUBLIC_ROOM: "Announcements"}


# ============================================================================
# DURABLE STORE
# ============================================================================

class RedisMessageStore:
    """
    Shared durable state for every instance, kept in Redis.

    Data Structures:
        room:<id>                          sorted set, member = message JSON,
                                           score = message timestamp (ms)
        messages                           list, every message ever stored
        users:<room>:<user>:lastmessage    string, last-seen timestamp
        online_users                       set of online user ids
        room:<id>:name                     display name of a public room
        user:<id>:rooms                    set of room ids a user belongs to
        user:<id>                          hash written by the login layer

    Concurrency:
        Each operation is a single Redis command, or one MULTI/EXEC for
        record_message, so concurrent appends from several instances never
        lose writes. Two appends with equal timestamps keep Redis' member
        ordering, which pagination tolerates.
        Re-storing a byte-identical message is a no-op in the sorted set.

    Every Redis failure is re-raised as StorageUnavailable.
    """

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @asynccontextmanager
    async def _guard(self, operation: str):
        try:
            yield
        except RedisError as e:
            logger.error("Store operation %s failed: %s", operation, e)
            raise StorageUnavailable(f"{operation} failed: {e}") from e

    async def ping(self) -> bool:
        async with self._guard("ping"):
            return bool(await self.client.ping())

    async def ensure_defaults(self) -> None:
        """Seed names of the well-known public rooms (first run only)."""
        async with self._guard("ensure_defaults"):
            for room_id, name in DEFAULT_ROOM_NAMES.items():
                if await self.client.set(room_name_key(RoomId(room_id)), name, nx=True):
                    logger.info("✓ Created default room %s (%s)", room_id, name)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def append_message(self, room_id: RoomId, message: ChatMessage) -> bool:
        """Insert a message into the room log, ordered by its timestamp."""
        async with self._guard("append_message"):
            await self.client.zadd(room_key(room_id), {message.to_json(): message.date})
        return True

    async def record_message(self, room_id: RoomId, sender: UserId, message: ChatMessage) -> None:
        """
        Room log append, global log append and sender's last-seen update
        in one MULTI/EXEC: either all three are committed or none is.
        """
        data = message.to_json()
        async with self._guard("record_message"):
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.zadd(room_key(room_id), {data: message.date})
                pipe.rpush(GLOBAL_LOG_KEY, data)
                pipe.set(last_seen_key(room_id, sender), str(message.date))
                await pipe.execute()

    async def append_global(self, message: ChatMessage) -> None:
        async with self._guard("append_global"):
            await self.client.rpush(GLOBAL_LOG_KEY, message.to_json())

    async def get_messages(self, room_id: RoomId, offset: int = 0, limit: int = 50) -> List[dict]:
        """
        Page through a room log, most recent first.

        A missing room, or a window past the end of the log, yields an
        empty list rather than an error.
        """
        if offset < 0 or limit <= 0:
            return []
        key = room_key(room_id)
        async with self._guard("get_messages"):
            if not await self.client.exists(key):
                return []
            values = await self.client.zrevrange(key, offset, offset + limit - 1)
        return [json.loads(value) for value in values]

    # ------------------------------------------------------------------
    # Last seen
    # ------------------------------------------------------------------

    async def mark_last_seen(self, room_id: RoomId, user_id: UserId, timestamp: int) -> None:
        async with self._guard("mark_last_seen"):
            await self.client.set(last_seen_key(room_id, user_id), str(timestamp))

    async def get_last_seen(self, room_id: RoomId, user_id: UserId) -> Optional[str]:
        async with self._guard("get_last_seen"):
            return await self.client.get(last_seen_key(room_id, user_id))

    # ------------------------------------------------------------------
    # Presence set
    # ------------------------------------------------------------------

    async def add_online(self, user_id: UserId) -> None:
        async with self._guard("add_online"):
            await self.client.sadd(ONLINE_USERS_KEY, str(user_id))

    async def remove_online(self, user_id: UserId) -> None:
        async with self._guard("remove_online"):
            await self.client.srem(ONLINE_USERS_KEY, str(user_id))

    async def list_online(self) -> Set[str]:
        async with self._guard("list_online"):
            return set(await self.client.smembers(ONLINE_USERS_KEY))

    async def is_online(self, user_id: UserId) -> bool:
        async with self._guard("is_online"):
            return bool(await self.client.sismember(ONLINE_USERS_KEY, str(user_id)))

    # ------------------------------------------------------------------
    # Rooms and users
    # ------------------------------------------------------------------

    async def get_room_name(self, room_id: RoomId) -> Optional[str]:
        async with self._guard("get_room_name"):
            return await self.client.get(room_name_key(room_id))

    async def add_user_room(self, user_id: UserId, room_id: RoomId) -> None:
        async with self._guard("add_user_room"):
            await self.client.sadd(user_rooms_key(user_id), str(room_id))

    async def list_user_rooms(self, user_id: UserId) -> Set[str]:
        async with self._guard("list_user_rooms"):
            return set(await self.client.smembers(user_rooms_key(user_id)))

    async def get_usernames(self, user_ids: Iterable[UserId]) -> dict:
        """Map user id -> username (None when the login layer has no record)."""
        result = {}
        async with self._guard("get_usernames"):
            for user_id in user_ids:
                result[str(user_id)] = await self.client.hget(user_key(user_id), "username")
        return result
