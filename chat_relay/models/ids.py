# chat_relay/models/ids.py
"""
Typed identifiers and the Redis keys derived from them.

Every key the store touches is built here so that no other module
interpolates key strings by hand.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from chat_relay.core.errors import InvalidIdentifier, InvalidRoomTarget

PUBLIC_ROOM = "0"
ONLINE_USERS_KEY = "online_users"
GLOBAL_LOG_KEY = "messages"

_NUMERIC = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class UserId:
    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str) or not self.value.strip():
            raise InvalidIdentifier(f"Invalid user id: {self.value!r}")

    @classmethod
    def of(cls, raw: object) -> "UserId":
        return raw if isinstance(raw, UserId) else cls(str(raw).strip())

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class RoomId:
    """
    Identifier of a room.

    Either a public numeric id ("0") or the private composite
    "<min>:<max>" of two distinct numeric user ids.
    """

    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str):
            raise InvalidRoomTarget(f"Invalid room id: {self.value!r}")
        parts = self.value.split(":")
        if len(parts) == 1:
            if not _NUMERIC.fullmatch(parts[0]):
                raise InvalidRoomTarget(f"Invalid room id: {self.value!r}")
            return
        if len(parts) != 2 or not all(_NUMERIC.fullmatch(p) for p in parts):
            raise InvalidRoomTarget(f"Invalid room id: {self.value!r}")
        low, high = int(parts[0]), int(parts[1])
        if low >= high or self.value != f"{low}:{high}":
            raise InvalidRoomTarget(f"Room id is not canonical: {self.value!r}")

    @classmethod
    def of(cls, raw: object) -> "RoomId":
        if isinstance(raw, RoomId):
            return raw
        if raw is None or isinstance(raw, bool):
            raise InvalidRoomTarget(f"Invalid room id: {raw!r}")
        return cls(str(raw).strip())

    @property
    def is_private(self) -> bool:
        return ":" in self.value

    def members(self) -> tuple[UserId, UserId] | None:
        """The two participants of a private room, or None for a public one."""
        if not self.is_private:
            return None
        low, high = self.value.split(":")
        return UserId(low), UserId(high)

    def __str__(self) -> str:
        return self.value


def private_room_id(user_a: object, user_b: object) -> RoomId:
    """Canonical room id for an unordered pair of users."""
    try:
        a = int(str(user_a).strip())
        b = int(str(user_b).strip())
    except (TypeError, ValueError):
        raise InvalidRoomTarget(f"Private room needs numeric user ids, got {user_a!r} and {user_b!r}") from None
    if a < 0 or b < 0:
        raise InvalidRoomTarget("Private room needs non-negative user ids")
    if a == b:
        raise InvalidRoomTarget("Private room needs two distinct users")
    return RoomId(f"{min(a, b)}:{max(a, b)}")


# ---------------------------------------------------------------------------
# Redis keys
# ---------------------------------------------------------------------------

def room_key(room_id: RoomId) -> str:
    return f"room:{room_id}"


def room_name_key(room_id: RoomId) -> str:
    return f"room:{room_id}:name"


def room_group(room_id: RoomId) -> str:
    """Name of the local connection group for a room."""
    return f"room:{room_id}"


def last_seen_key(room_id: RoomId, user_id: UserId) -> str:
    return f"users:{room_id}:{user_id}:lastmessage"


def user_key(user_id: UserId) -> str:
    return f"user:{user_id}"


def user_rooms_key(user_id: UserId) -> str:
    return f"user:{user_id}:rooms"
