# chat_relay/services/event_bus.py
"""
Transport-independent half of the event bus.

Every instance publishes onto one fixed topic and receives everything
published there, including its own events. An instance has already
delivered its own events to its local sockets, so the dispatcher drops
them by comparing the event's origin id with the local one.
"""

from __future__ import annotations

import enum
import logging
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from chat_relay.core.errors import InvalidRoomTarget
from chat_relay.models.ids import RoomId, room_group
from chat_relay.models.models import (
    FanoutEvent,
    MessageEvent,
    build_event,
    decode_event,
    encode_event,
)
from chat_relay.services.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)

EventHandler = Callable[[FanoutEvent], Awaitable[None]]


class Delivery(enum.Enum):
    DELIVER = "deliver"
    IGNORE = "ignore"


def route_event(local_server_id: str, event: FanoutEvent) -> Delivery:
    """Decide whether an event received from the bus is relayed locally."""
    if event.server_id == local_server_id:
        return Delivery.IGNORE
    return Delivery.DELIVER


class EventBus:
    """
    Base class of the bus transports.

    Subclasses implement `_send(data)` and `listen()`; this class owns
    event framing, the single subscriber and failure handling.
    """

    def __init__(self, server_id: str, channel: str) -> None:
        self.server_id = server_id
        self.channel = channel
        self._handler: Optional[EventHandler] = None

    def subscribe(self, handler: EventHandler) -> None:
        """Register the one handler of this instance."""
        if self._handler is not None:
            raise RuntimeError("Event bus already has a subscriber")
        self._handler = handler

    async def publish(self, event_type: str, payload: dict) -> bool:
        """
        Broadcast an event to every instance. Fire-and-forget.

        Returns:
            False if the transport failed. The failure is logged and never
            raised: it only costs cross-instance reach.
        """
        event = build_event(self.server_id, event_type, payload)
        try:
            await self._send(encode_event(event))
        except Exception as e:
            logger.warning("Bus publish of %s failed: %s", event_type, e)
            return False
        logger.info("📤 Published %s to '%s'", event_type, self.channel)
        return True

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            event = decode_event(raw)
        except ValidationError as e:
            logger.warning("Ignoring undecodable bus payload: %s", e)
            return

        if self._handler is None:
            logger.debug("No bus subscriber - dropping %s", event.type)
            return

        try:
            await self._handler(event)
        except Exception as e:
            logger.error(f"Error processing bus event {event.type}: {e}")

    async def _send(self, data: str) -> None:
        raise NotImplementedError

    async def listen(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class BusEventDispatcher:
    """
    The per-instance bus subscriber: relays peer events to local sockets.

    `message` events go to the local group of the target room;
    presence events go to every local authenticated connection.
    """

    def __init__(self, server_id: str, connection_manager: ConnectionManager) -> None:
        self.server_id = server_id
        self.connection_manager = connection_manager

    async def __call__(self, event: FanoutEvent) -> None:
        if route_event(self.server_id, event) is Delivery.IGNORE:
            return

        if isinstance(event, MessageEvent):
            try:
                room_id = RoomId.of(event.data.room_id)
            except InvalidRoomTarget:
                logger.warning("Bus message for invalid room %r - ignoring", event.data.room_id)
                return
            logger.info(
                "➡ Bus: Routing to room=%s, sender=%s (origin %s)",
                room_id, event.data.userid, event.server_id,
            )
            await self.connection_manager.emit_to_group(
                room_group(room_id), {"type": "message", "data": event.data.to_wire()}
            )
        else:
            await self.connection_manager.emit_to_authenticated(
                {"type": event.type, "data": event.data.model_dump()}
            )
