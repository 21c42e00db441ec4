# chat_relay/models/models.py
from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def sanitise(text: str) -> str:
    """Neutralise markup by replacing angle brackets with HTML entities.

    Idempotent: the entities carry no angle brackets, so a second pass
    leaves the text unchanged.
    """
    if "<" in text or ">" in text:
        return text.replace("<", "&lt").replace(">", "&gt")
    return text


class ChatMessage(BaseModel):
    """A chat message as carried on the wire and stored in a room log."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, coerce_numbers_to_str=True)

    sender: str = Field(alias="from")
    userid: str
    date: int
    message: str
    room_id: str = Field(alias="roomId")

    def sanitised(self) -> "ChatMessage":
        return self.model_copy(update={"message": sanitise(self.message)})

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class UserProfile(BaseModel):
    """Public profile fields of an authenticated user."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    username: str
    role: Optional[str] = None


class PresenceNotice(UserProfile):
    online: bool


# ============================================================================
# BUS EVENTS
# ============================================================================

class _BusEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    server_id: str = Field(alias="serverId")


class MessageEvent(_BusEvent):
    type: Literal["message"] = "message"
    data: ChatMessage


class PresenceEvent(_BusEvent):
    type: Literal["user.connected", "user.disconnected"]
    data: PresenceNotice


FanoutEvent = Annotated[Union[MessageEvent, PresenceEvent], Field(discriminator="type")]

fanout_event_adapter: TypeAdapter[FanoutEvent] = TypeAdapter(FanoutEvent)


def build_event(server_id: str, event_type: str, payload: dict) -> FanoutEvent:
    """Wrap a payload in the tagged event for its type."""
    return fanout_event_adapter.validate_python(
        {"serverId": server_id, "type": event_type, "data": payload}
    )


def decode_event(raw: str | bytes) -> FanoutEvent:
    return fanout_event_adapter.validate_json(raw)


def encode_event(event: FanoutEvent) -> str:
    return event.model_dump_json(by_alias=True)


# ============================================================================
# REST MODELS
# ============================================================================

class Room(BaseModel):
    id: str
    name: Optional[str] = None
    names: List[Optional[str]] = []


class RoomPreload(BaseModel):
    id: str
    name: Optional[str] = None
    messages: List[dict] = []


class CreatePrivateRoomRequest(BaseModel):
    user1: str
    user2: str


class LastSeenRoom(BaseModel):
    id: str


class LastSeenRequest(BaseModel):
    userid: str
    roomids: List[LastSeenRoom]


class LastSeenEntry(BaseModel):
    roomid: str
    ls: Optional[str] = None
